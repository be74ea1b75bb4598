"""Schema Package - entry payload validation.

Available Schemas:
    ENTRY_SCHEMA: JSON Schema (Draft 7) for the title/content payload
        accepted by the admin endpoints when creating or updating an entry.

Usage:
    from schema import entry_errors
    problems = entry_errors({"title": "Hello", "content": ""})
"""
from .schema import ENTRY_SCHEMA, ENTRY_VALIDATOR, entry_errors

__all__ = ["ENTRY_SCHEMA", "ENTRY_VALIDATOR", "entry_errors"]
