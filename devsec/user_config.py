"""
Persistent DevSec settings.

``~/.devsec/config.json`` keeps the adb connection, the backup location,
the timing knobs and the HTTP API key between runs. Each setting can also
come from a ``DEVSEC_*`` environment variable, which wins over the file.
"""
import os
import json
import logging

from pathlib import Path
from typing import Optional, Dict, Any

logger = logging.getLogger("DevSec")

CONFIG_DIR = Path.home() / ".devsec"
CONFIG_FILE = CONFIG_DIR / "config.json"

# setting -> (environment variable, masked when displayed)
_SETTINGS = {
    "adb_path": ("DEVSEC_ADB_PATH", False),
    "device_serial": ("DEVSEC_DEVICE_SERIAL", False),
    "backup_dir": ("DEVSEC_BACKUP_DIR", False),
    "shell_timeout_ms": ("DEVSEC_SHELL_TIMEOUT_MS", False),
    "monitor_interval_ms": ("DEVSEC_MONITOR_INTERVAL_MS", False),
    "cache_ttl_seconds": ("DEVSEC_CACHE_TTL_SECONDS", False),
    "api_key": ("DEVSEC_API_KEY", True),
}

_ENV_VAR_MAP = {key: env_var for key, (env_var, _) in _SETTINGS.items()}
_SENSITIVE_KEYS = {key for key, (_, secret) in _SETTINGS.items() if secret}
SUPPORTED_KEYS = frozenset(_SETTINGS)

_MASK_KEEP = 3


def load_user_config() -> Dict[str, Any]:
    """Stored settings, or ``{}`` when the file is absent, unreadable or not a JSON object."""
    try:
        raw = CONFIG_FILE.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError as e:
        logger.warning("Cannot read settings file %s: %s", CONFIG_FILE, e)
        return {}
    try:
        settings = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning("Settings file %s is not valid JSON, ignoring it: %s", CONFIG_FILE, e)
        return {}
    if not isinstance(settings, dict):
        logger.warning("Settings file %s does not hold a JSON object, ignoring it.", CONFIG_FILE)
        return {}
    return settings


def save_user_config(settings: Dict[str, Any]) -> None:
    """Replace the settings file. It is written beside the target and readable by the owner only."""
    staging = CONFIG_FILE.with_name(CONFIG_FILE.name + ".tmp")
    try:
        CONFIG_DIR.mkdir(parents=True, exist_ok=True)
        staging.write_text(json.dumps(settings, indent=2, sort_keys=True), encoding="utf-8")
        staging.chmod(0o600)
        staging.replace(CONFIG_FILE)
    except OSError as e:
        logger.error("Cannot write settings file %s: %s", CONFIG_FILE, e)
        staging.unlink(missing_ok=True)
        raise


def get_config_value(key: str) -> Optional[str]:
    """The ``DEVSEC_*`` variable for *key* if set, else the stored value, else ``None``."""
    env_var = _ENV_VAR_MAP.get(key)
    if env_var and os.getenv(env_var):
        return os.getenv(env_var)
    stored = load_user_config().get(key)
    return None if stored is None else str(stored)


def set_config_value(key: str, value: str) -> None:
    settings = load_user_config()
    settings[key] = value
    save_user_config(settings)
    logger.info("Setting '%s' stored in %s", key, CONFIG_FILE)


def delete_config_value(key: str) -> bool:
    """Drop a stored setting. False when it was not stored."""
    settings = load_user_config()
    if key not in settings:
        return False
    del settings[key]
    save_user_config(settings)
    logger.info("Setting '%s' removed from %s", key, CONFIG_FILE)
    return True


def _mask(secret: str) -> str:
    # Short secrets are hidden entirely
    keep = _MASK_KEEP if len(secret) > 2 * _MASK_KEEP else 0
    hidden = "*" * (len(secret) - 2 * keep)
    return secret[:keep] + hidden + (secret[-keep:] if keep else "")


def get_masked_config() -> Dict[str, Any]:
    """Stored settings with secrets masked, plus ``_env_overrides`` naming the variables in effect."""
    view = {
        key: _mask(value) if key in _SENSITIVE_KEYS and isinstance(value, str) else value
        for key, value in load_user_config().items()
    }
    overrides = {
        key: f"(overridden by ${env_var} environment variable)"
        for key, env_var in _ENV_VAR_MAP.items()
        if os.getenv(env_var)
    }
    if overrides:
        view["_env_overrides"] = overrides
    return view
