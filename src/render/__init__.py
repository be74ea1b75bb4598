"""Content rendering: markdown source to HTML."""
from render.render import normalize_line_endings, render_markdown, to_display_content

__all__ = ["normalize_line_endings", "render_markdown", "to_display_content"]
