"""
Central configuration, logging setup, and constants.

Runtime settings (adb location, device serial, timeouts, backup directory)
are resolved through ``devsec.user_config`` so environment variables win
over ~/.devsec/config.json, which wins over the defaults below.
"""
import logging

from pathlib import Path
from typing import Dict, Any, Optional

from mcp.server.fastmcp import FastMCP, Context  # noqa: F401  (re-exported for tool modules)

from devsec.state import StateProxy
from devsec.user_config import get_config_value, CONFIG_DIR

# --- Logging Setup ---
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(name)s - %(message)s')
logger = logging.getLogger("DevSec")

# --- Global State Proxy (resolves to the active session) ---
state = StateProxy()

# --- Defaults ---
DEFAULT_ADB_PATH = "adb"
DEFAULT_SHELL_TIMEOUT_MS = 30000
DEFAULT_MONITOR_INTERVAL_MS = 5000
DEFAULT_MONITOR_DURATION_MS = 30000
DEFAULT_CACHE_TTL_SECONDS = 30
DEFAULT_BACKUP_DIR = CONFIG_DIR / "backups"

# Detection thresholds: a category is "detected" when confidence exceeds these.
DEFAULT_DETECTION_THRESHOLD = 0.5
DETECTION_THRESHOLDS = {
    "root": 0.3,
    "emulator": 0.5,
    "debug": 0.5,
    "environment": 0.5,
    "network": 0.5,
    "application": 0.5,
    "security_features": 0.5,
}

# Assessment
PASS_THRESHOLD = 70.0
CATEGORY_PASS_BAR = 70.0
NEUTRAL_SCORE = 50.0

# --- Constants for MCP Response Size Limit ---
MAX_MCP_RESPONSE_SIZE_KB = 64
MAX_MCP_RESPONSE_SIZE_BYTES = MAX_MCP_RESPONSE_SIZE_KB * 1024


def _safe_int_setting(key: str, default: int) -> int:
    """Read a config value as a positive int with fallback to default."""
    val = get_config_value(key)
    if val is None:
        return default
    try:
        parsed = int(val)
    except (ValueError, TypeError):
        logger.warning("Invalid value for %s=%r, using default %d", key, val, default)
        return default
    if parsed <= 0:
        logger.warning("Non-positive value for %s=%r, using default %d", key, val, default)
        return default
    return parsed


def get_adb_path() -> str:
    return get_config_value("adb_path") or DEFAULT_ADB_PATH


def get_device_serial() -> Optional[str]:
    return get_config_value("device_serial")


def get_backup_dir() -> Path:
    configured = get_config_value("backup_dir")
    return Path(configured).expanduser() if configured else DEFAULT_BACKUP_DIR


def get_shell_timeout_ms() -> int:
    return _safe_int_setting("shell_timeout_ms", DEFAULT_SHELL_TIMEOUT_MS)


def get_monitor_interval_ms() -> int:
    return _safe_int_setting("monitor_interval_ms", DEFAULT_MONITOR_INTERVAL_MS)


def get_cache_ttl_seconds() -> int:
    return _safe_int_setting("cache_ttl_seconds", DEFAULT_CACHE_TTL_SECONDS)


def get_runtime_settings() -> Dict[str, Any]:
    """Snapshot of the effective settings after env/config/default resolution."""
    return {
        "adb_path": get_adb_path(),
        "device_serial": get_device_serial(),
        "backup_dir": str(get_backup_dir()),
        "shell_timeout_ms": get_shell_timeout_ms(),
        "monitor_interval_ms": get_monitor_interval_ms(),
        "cache_ttl_seconds": get_cache_ttl_seconds(),
    }
