"""
Configuration Module for Stream.

Settings come from a YAML file (config.yml) layered over built-in defaults,
so a config file only needs the keys it changes. Secrets such as the admin
token are read from Docker secret files under /run/secrets.

Lookup order for the config file:
    1. The path passed to load_config()
    2. The STREAM_CONFIG environment variable
    3. config.yml in the working directory or any of its parents
    4. config.yml at the project root

Usage:
    >>> from config import load_config
    >>> config = load_config()
    >>> config["websub"]["hub_url"]
    'https://pubsubhubbub.appspot.com/'
"""
import copy
import os
import yaml
import logging
from pathlib import Path
from typing import Dict, Any, Optional


logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.yml"
CONFIG_ENV_VAR = "STREAM_CONFIG"
ADMIN_TOKEN_ENV_VAR = "STREAM_ADMIN_TOKEN"

DEFAULT_HOST = "http://localhost:5000"
DEFAULT_STORAGE_PATH = "./data"
DEFAULT_NAMESPACE = "stream"

_DEFAULTS: Dict[str, Any] = {
    "host": DEFAULT_HOST,
    "title": "Stream",
    "author": "",
    "storage": {
        "path": DEFAULT_STORAGE_PATH,
        "namespace": DEFAULT_NAMESPACE,
    },
    "websub": {
        "hub_url": None,
        "timeout": 30.0,
    },
    "webmention": {
        "timeout": 30.0,
        "block_private_targets": True,
    },
    "bridges": [],
    "fedsoc_bridge": None,
    "notifications": {
        "async": False,
    },
    "cors": {
        "enabled": False,
        "origins": [],
    },
    "security": {
        "admin_token_file": "/run/secrets/stream_admin_token",
    },
}


def get_default_config() -> Dict[str, Any]:
    """Return a fresh copy of the built-in configuration."""
    return copy.deepcopy(_DEFAULTS)


def find_config_file() -> Optional[Path]:
    """Locate config.yml without an explicit path. Returns None if absent."""
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)

    cwd = Path.cwd()
    search = [cwd, *cwd.parents, Path(__file__).resolve().parents[2]]
    for directory in search:
        candidate = directory / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load config.yml merged over the defaults.

    Nested sections are merged key by key; any other value in the file
    replaces the default. A missing, unreadable or malformed file is logged
    and the defaults are returned.

    Args:
        config_path: Explicit path to the YAML file. Located with
            find_config_file() when None.

    Returns:
        Configuration dictionary; ``host`` never has a trailing slash.
    """
    path = Path(config_path) if config_path else find_config_file()
    config = get_default_config()

    if path is None:
        logger.warning(f"{CONFIG_FILENAME} not found, using default configuration")
        return config

    try:
        with open(path, "r") as f:
            loaded = yaml.safe_load(f)
    except FileNotFoundError:
        logger.warning(f"Configuration file not found: {path}")
        return config
    except yaml.YAMLError as e:
        logger.error(f"Invalid YAML in {path}: {e}")
        return config

    if loaded is None:
        loaded = {}
    if not isinstance(loaded, dict):
        logger.warning(f"Top level of {path} is {type(loaded).__name__}, expected a mapping; using defaults")
        return config

    _merge(config, loaded)
    config["host"] = get_host(config)
    logger.info(f"Loaded configuration from {path}")
    return config


def get_host(config: Dict[str, Any]) -> str:
    """Return the public host URL from config without a trailing slash."""
    host = config.get("host", DEFAULT_HOST)
    if not isinstance(host, str) or not host.strip():
        logger.warning(f"Invalid host configuration {host!r}; falling back to {DEFAULT_HOST}")
        return DEFAULT_HOST
    return host.strip().rstrip("/")


def read_secret_file(filepath: str) -> Optional[str]:
    """Return the stripped contents of a Docker secret file, or None.

    Example:
        >>> token = read_secret_file("/run/secrets/stream_admin_token")
    """
    try:
        return Path(filepath).read_text().strip()
    except FileNotFoundError:
        logger.debug(f"No secret at {filepath}")
        return None
    except OSError as e:
        logger.error(f"Could not read secret {filepath}: {e}")
        return None


def get_admin_token(config: Dict[str, Any]) -> Optional[str]:
    """Resolve the admin API token.

    Priority: config value > secret file > STREAM_ADMIN_TOKEN environment variable.
    """
    security_config = config.get("security", {}) or {}
    token = security_config.get("admin_token")
    if not token:
        token_file = security_config.get("admin_token_file")
        if token_file:
            token = read_secret_file(token_file)
    if not token:
        token = os.environ.get(ADMIN_TOKEN_ENV_VAR)
    return token or None
