"""MCP server setup, tool decorator, and shared helpers for tool modules."""
import asyncio
import copy
import functools
import json

from typing import Any, Callable, Optional

from devsec.config import (
    state, logger, FastMCP, Context,
    MAX_MCP_RESPONSE_SIZE_BYTES, MAX_MCP_RESPONSE_SIZE_KB,
)
from devsec.errors import DevSecError, DeviceUnreachableError
from devsec.state import get_session_key_from_context, activate_session_state, get_current_state

# --- MCP Server Setup ---
mcp_server = FastMCP("DeviceSecurityMCP")
_raw_tool_decorator = mcp_server.tool()


def tool_decorator(func):
    """MCP tool decorator that activates per-session state before each call."""
    @functools.wraps(func)
    async def _with_session(*args, **kwargs):
        for arg in list(args) + list(kwargs.values()):
            if isinstance(arg, Context):
                activate_session_state(get_session_key_from_context(arg))
                break
        get_current_state().touch()
        return await func(*args, **kwargs)
    return _raw_tool_decorator(_with_session)


def _get_engine(tool_name: str):
    """Return the session engine or raise a descriptive RuntimeError."""
    try:
        return state.get_engine()
    except DevSecError as e:
        raise RuntimeError(f"[{tool_name}] Could not initialise the device engine: {e}") from e


async def _run_engine_call(tool_name: str, func: Callable[..., Any], *args, **kwargs) -> Any:
    """Run a blocking engine call in a worker thread, mapping channel errors for the client."""
    try:
        return await asyncio.to_thread(func, *args, **kwargs)
    except DeviceUnreachableError as e:
        raise RuntimeError(
            f"[{tool_name}] Device is unreachable: {e}. "
            "Check the USB/TCP connection and use 'connect_device' to select the device."
        ) from e


def _truncate_largest_list(data: dict, target_bytes: int) -> dict:
    trimmed = copy.deepcopy(data)
    for _ in range(5):
        size = len(json.dumps(trimmed, ensure_ascii=False, default=str).encode("utf-8"))
        if size <= target_bytes:
            break
        lists = [(k, v) for k, v in trimmed.items() if isinstance(v, list) and len(v) > 1]
        if not lists:
            break
        key, values = max(lists, key=lambda kv: len(json.dumps(kv[1], default=str)))
        keep = max(1, int(len(values) * (target_bytes / size) * 0.9))
        trimmed[key] = values[:keep]
        trimmed["_truncation_warning"] = f"'{key}' truncated from {len(values)} to {keep} items to fit {MAX_MCP_RESPONSE_SIZE_KB}KB."
    return trimmed


async def _check_mcp_response_size(ctx: Context, data_to_return: Any, tool_name: str,
                                   limit_param_info: Optional[str] = None) -> Any:
    """Shrink oversized dict responses by trimming their largest list."""
    serialized = json.dumps(data_to_return, ensure_ascii=False, default=str)
    size = len(serialized.encode("utf-8"))
    if size <= MAX_MCP_RESPONSE_SIZE_BYTES:
        return data_to_return

    await ctx.warning(f"Response for '{tool_name}' was {size / 1024:.1f}KB. Auto-truncating to fit limits.")
    if isinstance(data_to_return, dict):
        trimmed = _truncate_largest_list(data_to_return, MAX_MCP_RESPONSE_SIZE_BYTES - 4096)
        if len(json.dumps(trimmed, default=str).encode("utf-8")) <= MAX_MCP_RESPONSE_SIZE_BYTES:
            return trimmed
    logger.warning("MCP: response for %s could not be reduced below %dKB", tool_name, MAX_MCP_RESPONSE_SIZE_KB)
    return {
        "error": "Response too large",
        "message": f"The data generated was {size} bytes (limit {MAX_MCP_RESPONSE_SIZE_BYTES}).",
        "suggestion": limit_param_info or "Request fewer paths or categories per call.",
    }
