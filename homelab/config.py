"""
Configuration management for homelab.

Configuration is merged from three layers, later layers winning:

1. Built-in defaults (``get_default_config``)
2. The config file (``~/.config/homelab/config.json`` or ``config.toml``)
3. Environment variables named ``HOMELAB_<SECTION>_<KEY>``

``HOMELAB_CONFIG_DIR`` relocates the whole configuration directory.
"""
import json
import logging
import os
from pathlib import Path

import toml
from rich.console import Console
from rich.logging import RichHandler

# Initialize Rich Console
console = Console()

# Configure logging to use RichHandler
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(console=console, rich_tracebacks=True)]
)

logger = logging.getLogger("homelab")

ENV_PREFIX = "HOMELAB_"


def get_config_dir():
    """Return the configuration directory, honouring HOMELAB_CONFIG_DIR."""
    override = os.environ.get("HOMELAB_CONFIG_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".config" / "homelab"


def get_config_path():
    """
    Return the path of the active config file.

    A ``config.toml`` is preferred when present, otherwise ``config.json``
    (which may not exist yet).
    """
    config_dir = get_config_dir()
    toml_path = config_dir / "config.toml"
    if toml_path.exists():
        return toml_path
    return config_dir / "config.json"


def get_default_config():
    """
    Returns the default configuration.

    Returns:
        dict: Nested configuration dictionary.
    """
    config_dir = get_config_dir()
    return {
        "paths": {
            "config_dir": str(config_dir),
            "log_dir": str(Path.home() / "homelab-logs"),
            "workflow_dir": str(config_dir / "workflows"),
            "override_dir": str(config_dir / ".workflow-overrides"),
            "state_file": str(config_dir / "workflows" / "state.json"),
            "script_dir": "",
        },
        # Explicit locations for known maintenance scripts, keyed by file name
        "scripts": {},
        "workflows": {
            "emergency": {
                "threshold_gb": 10,
            },
            "pre_deploy": {
                "min_disk_gb": 10,
            },
        },
        "notifications": {
            "enabled": True,
            "notify_manual": False,
            "triggers": ["warning", "failure"],
            "channels": ["slack", "macos"],
            "min_interval_seconds": 60,
            "rich_format": True,
            "redact_paths": False,
            "http_timeout": 10,
            "slack_webhook_url": "",
            "slack_username": "homelab-bot",
            "webhook_url": "",
            "webhook_headers": {},
            "email_to": "",
            "email_from": "homelab@localhost",
            "macos_sound": True,
        },
        "logging": {
            "level": "INFO",
        },
    }


def _merge(base, override):
    """Recursively merge ``override`` into ``base`` in place."""
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def _coerce(raw, default):
    """Convert an environment string to the type of the default value."""
    if isinstance(default, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    if isinstance(default, list):
        return [item.strip() for item in raw.split(",") if item.strip()]
    if isinstance(default, dict):
        return json.loads(raw)
    return raw


def _resolve_env_key(config, parts):
    """
    Match underscore-separated name parts against nested config keys.

    Keys may themselves contain underscores, so the longest key that matches
    a prefix of ``parts`` wins at each level.

    Returns:
        tuple: (container dict, key) or (None, None) if nothing matches.
    """
    for end in range(len(parts), 0, -1):
        key = "_".join(parts[:end])
        if key not in config:
            continue
        if end == len(parts):
            return config, key
        if isinstance(config[key], dict) and config[key]:
            container, leaf = _resolve_env_key(config[key], parts[end:])
            if container is not None:
                return container, leaf
    return None, None


def _apply_env_overrides(config):
    for name, raw in os.environ.items():
        if not name.startswith(ENV_PREFIX) or name == "HOMELAB_CONFIG_DIR":
            continue
        parts = name[len(ENV_PREFIX):].lower().split("_")
        container, key = _resolve_env_key(config, parts)
        if container is None:
            continue
        try:
            container[key] = _coerce(raw, container[key])
        except ValueError as e:
            logger.warning(f"Ignoring invalid value for {name}: {e}")
    return config


def _read_config_file(path):
    path = Path(path)
    with open(path, "r") as f:
        if path.suffix == ".toml":
            return toml.load(f)
        return json.load(f)


def load_config(config_path=None):
    """
    Load configuration, merging defaults, the config file and environment.

    Args:
        config_path (str|Path): Explicit config file. Defaults to
            ``get_config_path()``.

    Returns:
        dict: The merged configuration.
    """
    config = get_default_config()
    path = Path(config_path).expanduser() if config_path else get_config_path()

    if path.exists():
        try:
            _merge(config, _read_config_file(path))
        except (OSError, ValueError, toml.TomlDecodeError) as e:
            logger.warning(f"Failed to read config file {path}: {e}")
    elif config_path:
        logger.warning(f"Config file not found: {path}")

    return _apply_env_overrides(config)


def save_config(config, config_path=None):
    """
    Save configuration as JSON or TOML depending on the file suffix.

    Args:
        config (dict): Configuration to write.
        config_path (str|Path): Destination. Defaults to ``get_config_path()``.
    """
    path = Path(config_path).expanduser() if config_path else get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        if path.suffix == ".toml":
            toml.dump(config, f)
        else:
            json.dump(config, f, indent=2)
    logger.debug(f"Saved configuration to {path}")


def set_log_level(verbose=False, quiet=False, level=None):
    """Adjust the homelab logger from CLI flags or the config level."""
    if verbose:
        logger.setLevel(logging.DEBUG)
    elif quiet:
        logger.setLevel(logging.WARNING)
    elif level:
        logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))
