"""MCP tools for background task status, the result cache, and persistent configuration."""
from typing import Dict, Any

from devsec.config import state, Context, get_runtime_settings
from devsec.mcp.server import tool_decorator, _get_engine, _check_mcp_response_size
from devsec.state import TASK_COMPLETED, TASK_CANCELLED, TASK_FAILED, TASK_RUNNING
from devsec.user_config import (
    SUPPORTED_KEYS, get_masked_config, set_config_value as _store_config_value,
    delete_config_value,
)

_INT_KEYS = {"shell_timeout_ms", "monitor_interval_ms", "cache_ttl_seconds"}


@tool_decorator
async def check_task_status(ctx: Context, task_id: str) -> Dict[str, Any]:
    """
    Checks the status and progress of a background task (e.g. an integrity monitor).

    Args:
        task_id: The ID returned by a tool running in background mode.
    """
    task = state.get_task(task_id)
    if not task:
        return {"error": f"Task ID '{task_id}' not found.", "available_task_ids": state.get_all_task_ids()}

    response = {
        "task_id": task_id,
        "status": task["status"],
        "progress_percent": task.get("progress_percent", 0),
        "progress_message": task.get("progress_message", "Initializing..."),
        "created_at": task.get("created_at", "unknown"),
        "tool": task.get("tool", "unknown")
    }

    if task["status"] in (TASK_COMPLETED, TASK_CANCELLED):
        full_response = {**response, "result": task.get("result")}
        return await _check_mcp_response_size(ctx, full_response, f"check_task_status_{task_id}")

    elif task["status"] == TASK_FAILED:
        response["error"] = task.get("error", "Unknown error")

    elif task["status"] == TASK_RUNNING:
        response["hint"] = "Task is still processing. Poll again shortly with check_task_status, or stop it with cancel_task."

    return response


@tool_decorator
async def get_cache_stats(ctx: Context) -> Dict[str, Any]:
    """Returns hit/miss counters and the entry count of this session's detection result cache."""
    if not state.has_engine():
        return {"engine_initialised": False, "entry_count": 0}
    stats = state.get_engine().cache.get_stats()
    stats["engine_initialised"] = True
    return stats


@tool_decorator
async def clear_result_cache(ctx: Context) -> Dict[str, Any]:
    """
    Drops cached detection results so the next detection re-queries the device.

    Args:
        ctx: The MCP Context object.
    """
    engine = _get_engine("clear_result_cache")
    removed = engine.cache.clear()
    await ctx.info(f"Cleared {removed} cached detection result(s).")
    return {"status": "success", "removed": removed}


@tool_decorator
async def get_config(ctx: Context) -> Dict[str, Any]:
    """
    Retrieves the current DevSec configuration: stored values (the API key
    masked), which keys are overridden by environment variables, the
    effective runtime settings, and this session's device selection.

    Args:
        ctx: The MCP Context object.

    Returns:
        A dictionary containing the stored configuration plus
        '_runtime_settings' and '_session' sections.
    """
    await ctx.info("Retrieving current configuration.")
    config = get_masked_config()
    config["_runtime_settings"] = get_runtime_settings()
    config["_session"] = {
        "device_serial": state.device_serial,
        "adb_path": state.adb_path,
        "engine_initialised": state.has_engine(),
        "task_ids": state.get_all_task_ids(),
        "auth_enabled": bool(state.api_key),
    }
    return await _check_mcp_response_size(ctx, config, "get_config")


@tool_decorator
async def set_config_value(ctx: Context, key: str, value: str) -> Dict[str, Any]:
    """
    Stores a setting in ~/.devsec/config.json (file permissions restricted to
    the owner). Environment variables (e.g. DEVSEC_ADB_PATH) always take
    priority over stored values. An empty value removes the stored key.

    Supported keys: adb_path, device_serial, backup_dir, shell_timeout_ms,
    monitor_interval_ms, cache_ttl_seconds, api_key.

    Settings apply to engines created afterwards; call connect_device to
    rebuild this session's engine.

    Args:
        ctx: The MCP Context object.
        key: (str) The configuration key.
        value: (str) The value to store.

    Returns:
        A dictionary confirming the change.
    """
    if key not in SUPPORTED_KEYS:
        raise ValueError(
            f"[set_config_value] Unknown key '{key}'. "
            f"Supported keys: {', '.join(sorted(SUPPORTED_KEYS))}"
        )

    value = (value or "").strip()
    if not value:
        existed = delete_config_value(key)
        return {"status": "success", "key": key, "removed": existed}

    if key in _INT_KEYS:
        try:
            if int(value) <= 0:
                raise ValueError
        except ValueError:
            raise ValueError(f"[set_config_value] '{key}' must be a positive integer, got '{value}'.") from None

    if key == "api_key" and not state.api_key:
        await ctx.warning(
            "API key is being transmitted over an unencrypted MCP connection. "
            "Use a TLS-terminating reverse proxy in production deployments."
        )

    _store_config_value(key, value)
    await ctx.info(f"Config key '{key}' saved to persistent configuration.")
    return {"status": "success", "key": key, "removed": False}
