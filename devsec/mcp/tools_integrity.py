"""MCP tools for baselines, backups, config edits, tampering and integrity monitoring."""
from typing import Dict, Any, List, Optional

from devsec.background import start_background_task, _update_progress
from devsec.config import state, logger, Context, DEFAULT_MONITOR_DURATION_MS
from devsec.errors import BackupError, ConfigFormatError, EvidenceCollectionFault, MonitorConflictError
from devsec.integrity import CancelToken, TAMPER_TYPES
from devsec.mcp.server import tool_decorator, _get_engine, _run_engine_call, _check_mcp_response_size

MAX_MONITOR_DURATION_MS = 3600 * 1000


@tool_decorator
async def capture_baseline(ctx: Context, paths: List[str]) -> Dict[str, Any]:
    """
    Records the current SHA-256 of each device file.

    Args:
        ctx: The MCP Context object.
        paths: (List[str]) Absolute device paths.

    Returns:
        {"baselines": {path: {path, checksum, captured_at} or
        {path, fault, message}}}. Missing files are reported with fault
        'missing'; if the device drops mid-batch the remaining paths carry
        fault 'unreachable'.
    """
    if not paths:
        raise ValueError("[capture_baseline] 'paths' must contain at least one path.")
    engine = _get_engine("capture_baseline")
    baselines = await _run_engine_call("capture_baseline", engine.capture_baseline, paths)
    return await _check_mcp_response_size(
        ctx, {"baselines": {p: b.to_dict() for p, b in baselines.items()}}, "capture_baseline")


@tool_decorator
async def create_backup(ctx: Context, path: str) -> Dict[str, Any]:
    """
    Pulls a device file into the local backup store and records its checksum.

    Args:
        ctx: The MCP Context object.
        path: (str) Absolute device path to back up.

    Returns:
        The backup record: id, original_path, local_storage_path, checksum, created_at.
    """
    engine = _get_engine("create_backup")
    try:
        record = await _run_engine_call("create_backup", engine.create_backup, path)
    except BackupError as e:
        raise RuntimeError(f"[create_backup] {e}") from e
    await ctx.info(f"Backup {record.id} created for {path}")
    return record.to_dict()


@tool_decorator
async def restore_from_backup(ctx: Context, backup_id: str) -> Dict[str, Any]:
    """
    Restores a device file from a backup after re-verifying the backup's
    checksum. If the local copy no longer matches, nothing is written and
    error_code is 'integrity_verification_failed'. A successful restore
    consumes the backup.

    Args:
        ctx: The MCP Context object.
        backup_id: (str) Id returned by create_backup, modify_config or tamper_file.

    Returns:
        {success, backup_id, error, error_code}.
    """
    engine = _get_engine("restore_from_backup")
    result = await _run_engine_call("restore_from_backup", engine.restore_from_backup, backup_id)
    if not result.success:
        await ctx.warning(f"Restore of {backup_id} failed: {result.error_code}")
    return result.to_dict()


@tool_decorator
async def list_backups(ctx: Context) -> Dict[str, Any]:
    """Lists the backup records held for this session's device, oldest first."""
    engine = _get_engine("list_backups")
    records = await _run_engine_call("list_backups", engine.list_backups)
    return await _check_mcp_response_size(
        ctx, {"count": len(records), "backups": [r.to_dict() for r in records]}, "list_backups")


@tool_decorator
async def read_config_value(ctx: Context, path: str, key: str,
                            config_format: str = "properties") -> Dict[str, Any]:
    """
    Reads one setting from a config file on the device without changing it.
    Useful to preview what modify_config would replace.

    Args:
        ctx: The MCP Context object.
        path: (str) Absolute device path of the config file.
        key: (str) The setting to read, addressed as in modify_config.
        config_format: (str) 'properties' (default), 'json' or 'xml'.

    Returns:
        {path, key, config_format, present, value}. 'present' is False and
        'value' is null when the key does not exist in the file.
    """
    engine = _get_engine("read_config_value")
    try:
        value = await _run_engine_call("read_config_value", engine.read_config_value,
                                       path, key, config_format)
    except (ConfigFormatError, EvidenceCollectionFault) as e:
        raise RuntimeError(f"[read_config_value] {e}") from e
    return {"path": path, "key": key, "config_format": config_format,
            "present": value is not None, "value": value}


@tool_decorator
async def modify_config(ctx: Context, path: str, key: str, value: Any,
                        config_format: str = "properties") -> Dict[str, Any]:
    """
    Changes one setting in a config file on the device, backing the file up first.

    Args:
        ctx: The MCP Context object.
        path: (str) Absolute device path of the config file.
        key: (str) The setting to change. For 'json' use a dotted path
            (e.g. 'security.level'); for 'xml' an element tag or an Android
            shared_prefs entry name.
        value: The new value.
        config_format: (str) 'properties' (default), 'json' or 'xml'.

    Returns:
        {success, backup_id, original_value, new_value, error, error_code}.
        On 'config_format_error' or 'push_failed' the backup is kept and
        backup_id can be passed to restore_from_backup.
    """
    engine = _get_engine("modify_config")
    result = await _run_engine_call("modify_config", engine.modify_config, path, key, value, config_format)
    if result.success:
        await ctx.info(f"{path}: {key} changed from {result.original_value!r} to {value!r}")
    return result.to_dict()


@tool_decorator
async def tamper_file(ctx: Context, path: str, tamper_type: str,
                      options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Applies a controlled tamper operation to a device file after backing it up,
    for exercising tamper detection.

    Args:
        ctx: The MCP Context object.
        path: (str) Absolute device path.
        tamper_type: (str) One of 'corrupt', 'modify_permissions', 'inject_code',
            'replace_content', 'modify_timestamp', 'add_malicious_payload'.
        options: (Optional[Dict]) Type-specific options: 'corruption',
            'permissions' (octal, e.g. '777'), 'code', 'new_content',
            'timestamp' (YYYYMMDDhhmm), 'payload'.

    Returns:
        {success, tamper_type, backup_id, details, error}.
    """
    if tamper_type not in TAMPER_TYPES:
        raise ValueError(f"[tamper_file] Unknown tamper_type '{tamper_type}'. Supported: {', '.join(TAMPER_TYPES)}")
    engine = _get_engine("tamper_file")
    result = await _run_engine_call("tamper_file", engine.tamper_file, path, tamper_type, **(options or {}))
    if result.success:
        await ctx.warning(f"{path} tampered ({tamper_type}); restore with backup {result.backup_id}")
    return result.to_dict()


def _monitor_worker(engine, paths: List[str], duration_ms: int, interval_ms: Optional[int],
                    token: CancelToken, task_id_for_progress: str) -> Dict[str, Any]:
    seen = []

    def _on_change(change):
        seen.append(change)
        _update_progress(task_id_for_progress, 50,
                         f"{len(seen)} change(s) detected; latest {change.change_type} on {change.path}")

    _update_progress(task_id_for_progress, 5, f"Monitoring {len(paths)} path(s)...")
    result = engine.monitor(paths, duration_ms, token, interval_ms=interval_ms, on_change=_on_change)
    return result.to_dict()


@tool_decorator
async def start_integrity_monitor(ctx: Context, paths: List[str],
                                  duration_ms: int = DEFAULT_MONITOR_DURATION_MS,
                                  interval_ms: Optional[int] = None) -> Dict[str, Any]:
    """
    Starts a background integrity monitor that polls the SHA-256 of each path
    and records every change (modified, created or deleted). Each observed
    change becomes the new baseline, so A -> B -> A reports two changes.

    Poll the returned task with check_task_status; stop it early with
    cancel_task. A path can only be watched by one monitor at a time.

    Args:
        ctx: The MCP Context object.
        paths: (List[str]) Absolute device paths to watch.
        duration_ms: (int) How long to monitor. Default 30000, max 3600000.
        interval_ms: (Optional[int]) Poll interval. Defaults to the configured
            monitor interval (5000).

    Returns:
        {"status": "queued", "task_id": ...}.
    """
    if not paths:
        raise ValueError("[start_integrity_monitor] 'paths' must contain at least one path.")
    if duration_ms <= 0 or duration_ms > MAX_MONITOR_DURATION_MS:
        raise ValueError(f"[start_integrity_monitor] duration_ms must be in 1..{MAX_MONITOR_DURATION_MS}.")
    if interval_ms is not None and interval_ms <= 0:
        raise ValueError("[start_integrity_monitor] interval_ms must be positive.")

    engine = _get_engine("start_integrity_monitor")
    busy = sorted(set(paths) & set(engine.integrity.active_paths()))
    if busy:
        raise RuntimeError(f"[start_integrity_monitor] {MonitorConflictError.code}: already monitored: {', '.join(busy)}")

    token = CancelToken()
    task_id = start_background_task(
        "start_integrity_monitor", _monitor_worker, engine, list(paths), duration_ms, interval_ms, token,
        cancel_token=token, message="Capturing baseline...",
    )
    await ctx.info(f"Integrity monitor started as task {task_id}")
    return {
        "status": "queued",
        "task_id": task_id,
        "message": f"Monitoring {len(paths)} path(s) for {duration_ms} ms. Use check_task_status('{task_id}').",
    }


@tool_decorator
async def cancel_task(ctx: Context, task_id: str) -> Dict[str, Any]:
    """
    Requests cancellation of a running background task (e.g. an integrity
    monitor). The in-flight device call finishes; no further poll starts.
    The task then reports status 'cancelled' with partial results.

    Args:
        ctx: The MCP Context object.
        task_id: (str) The task to cancel.
    """
    task = state.get_task(task_id)
    if not task:
        raise ValueError(f"[cancel_task] Task ID '{task_id}' not found.")
    if not state.cancel_task(task_id):
        return {"task_id": task_id, "cancelled": False, "status": task["status"],
                "message": "Task is not running or cannot be cancelled."}
    await ctx.info(f"Cancellation requested for task {task_id}")
    return {"task_id": task_id, "cancelled": True, "status": task["status"]}


@tool_decorator
async def cleanup_backups(ctx: Context) -> Dict[str, Any]:
    """Deletes every backup record and local backup file for this session's store."""
    engine = _get_engine("cleanup_backups")
    removed = await _run_engine_call("cleanup_backups", engine.cleanup)
    logger.info("cleanup_backups removed %d backup(s)", removed)
    return {"status": "success", "removed": removed}
