"""Background task management: heartbeat monitoring, progress tracking, async wrappers."""
import datetime
import inspect
import sys
import time
import asyncio
import threading
import uuid

from typing import Any, Callable, Optional

from devsec.config import state, logger
from devsec.state import (
    get_current_state, set_current_state, get_all_session_states,
    TASK_RUNNING, TASK_COMPLETED, TASK_FAILED, TASK_CANCELLED,
)

HEARTBEAT_INTERVAL_SECONDS = 30

_monitor_lock = threading.Lock()
_monitor_started = False

# Strong references to scheduled tasks until they finish
_pending_tasks = set()


def _console_heartbeat_loop():
    """Daemon thread printing running background tasks to stderr every 30 seconds."""
    while True:
        time.sleep(HEARTBEAT_INTERVAL_SECONDS)

        current_time_str = datetime.datetime.now(datetime.timezone.utc).strftime('%H:%M:%S')

        running_entries = []
        for session_state in get_all_session_states():
            for task_id in session_state.get_all_task_ids():
                task = session_state.get_task(task_id)
                if task and task["status"] == TASK_RUNNING:
                    running_entries.append((task_id, task))

        if running_entries:
            print(f"\n--- [Status Heartbeat {current_time_str}] ---", file=sys.stderr)
            for task_id, task in running_entries:
                elapsed = time.time() - task.get("created_at_epoch", time.time())
                percent = task.get("progress_percent", 0)
                msg = task.get("progress_message", "Processing...")
                print(f" * Task {task_id[:8]}... [{int(elapsed)}s elapsed] | {percent}%: {msg}", file=sys.stderr)
            print("------------------------------------------\n", file=sys.stderr)
            sys.stderr.flush()


def _ensure_heartbeat_started():
    global _monitor_started
    with _monitor_lock:
        if not _monitor_started:
            monitor_thread = threading.Thread(target=_console_heartbeat_loop, daemon=True)
            monitor_thread.start()
            _monitor_started = True
            logger.info("Console heartbeat monitor started.")


def _update_progress(task_id: str, percent: int, message: str):
    state.update_task(task_id, progress_percent=percent, progress_message=message)


def _log_task_exception(task_id: str):
    """Return a done-callback that logs unhandled exceptions from background tasks."""
    def _callback(t):
        if not t.cancelled() and t.exception() is not None:
            logger.error(f"Background task '{task_id}' failed: {t.exception()}")
    return _callback


async def _run_background_task_wrapper(task_id: str, func, *args, **kwargs):
    """Run a blocking function in a worker thread and record the outcome in the task registry."""
    _ensure_heartbeat_started()

    # Propagate the caller's session state into the worker thread
    _session_state = get_current_state()

    sig = inspect.signature(func)
    params = sig.parameters
    if 'task_id_for_progress' in params or any(
        p.kind == inspect.Parameter.VAR_KEYWORD for p in params.values()
    ):
        kwargs['task_id_for_progress'] = task_id

    def _thread_wrapper():
        set_current_state(_session_state)
        return func(*args, **kwargs)

    try:
        result = await asyncio.to_thread(_thread_wrapper)
        token = _session_state.pop_cancel_token(task_id)
        final_status = TASK_CANCELLED if token is not None and token.cancelled else TASK_COMPLETED
        _session_state.update_task(task_id, result=result, status=final_status,
                                   progress_percent=100,
                                   progress_message="Cancelled." if final_status == TASK_CANCELLED else "Complete.")
        print(f"\n[*] Task {task_id[:8]} finished ({final_status}).", file=sys.stderr)

    except Exception as e:
        _session_state.pop_cancel_token(task_id)
        logger.error(f"Background task {task_id} failed: {type(e).__name__}: {e}", exc_info=True)
        _session_state.update_task(task_id, error=str(e), status=TASK_FAILED)
        print(f"\n[!] Task {task_id[:8]} failed: {e}", file=sys.stderr)


def start_background_task(tool_label: str, func: Callable[..., Any], *args,
                          cancel_token: Optional[Any] = None, message: str = "Queued.",
                          **kwargs) -> str:
    """Register a task for the current session and schedule it on the running loop.

    Must be called from within a coroutine. Returns the new task id.
    """
    task_id = str(uuid.uuid4())
    state.set_task(task_id, {
        "status": TASK_RUNNING,
        "progress_percent": 0,
        "progress_message": message,
        "created_at": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "created_at_epoch": time.time(),
        "tool": tool_label,
    })
    if cancel_token is not None:
        state.register_cancel_token(task_id, cancel_token)
    task = asyncio.create_task(_run_background_task_wrapper(task_id, func, *args, **kwargs))
    _pending_tasks.add(task)
    task.add_done_callback(_pending_tasks.discard)
    task.add_done_callback(_log_task_exception(task_id))
    logger.info(f"Background task {task_id[:8]} started ({tool_label}).")
    return task_id
