"""Per-session state: the device engine, background tasks and their cancel tokens.

Supports per-session isolation via ``StateProxy`` and ``contextvars``.
In stdio mode (single client) the default state is used transparently.
In HTTP mode each MCP session gets its own ``DeviceSessionState`` so
concurrent clients never share a device engine or its result cache.
"""
import contextvars
import logging
import time
import threading
from typing import Dict, Any, Optional, List

logger = logging.getLogger("DevSec")

# Maximum number of completed/failed background tasks to retain per session.
MAX_COMPLETED_TASKS = 50

# Stale session TTL in seconds (1 hour).
SESSION_TTL_SECONDS = 3600

TASK_RUNNING = "running"
TASK_COMPLETED = "completed"
TASK_FAILED = "failed"
TASK_CANCELLED = "cancelled"

FINISHED_STATES = (TASK_COMPLETED, TASK_FAILED, TASK_CANCELLED)


class DeviceSessionState:
    """State for one MCP session bound to (at most) one device."""

    def __init__(self):
        self.device_serial: Optional[str] = None
        self.adb_path: Optional[str] = None
        self.backup_dir: Optional[str] = None

        # API key for HTTP bearer token authentication (None = no auth required)
        self.api_key: Optional[str] = None

        self._engine_lock = threading.Lock()
        self._engine = None

        # Background Tasks
        self._task_lock = threading.Lock()
        self.background_tasks: Dict[str, Dict[str, Any]] = {}
        self._cancel_tokens: Dict[str, Any] = {}

        self.last_active: float = time.time()

    # ------------------------------------------------------------------
    #  Engine
    # ------------------------------------------------------------------

    def get_engine(self):
        """Return the session engine, building one from settings on first use."""
        with self._engine_lock:
            if self._engine is None:
                from devsec.engine import SecurityEngine
                self._engine = SecurityEngine.from_settings(
                    serial=self.device_serial,
                    adb_path=self.adb_path,
                    backup_dir=self.backup_dir,
                )
                logger.info("Created device engine for serial=%s", self.device_serial or "(default)")
            return self._engine

    def set_engine(self, engine) -> None:
        with self._engine_lock:
            self._engine = engine

    def has_engine(self) -> bool:
        with self._engine_lock:
            return self._engine is not None

    def reset_engine(self) -> None:
        with self._engine_lock:
            self._engine = None

    # ------------------------------------------------------------------
    #  Background tasks
    # ------------------------------------------------------------------

    def get_task(self, task_id: str) -> Optional[Dict[str, Any]]:
        """Thread-safe read of a background task."""
        with self._task_lock:
            task = self.background_tasks.get(task_id)
            return dict(task) if task else None

    def set_task(self, task_id: str, task_data: Dict[str, Any]):
        """Thread-safe creation/replacement of a background task."""
        with self._task_lock:
            self.background_tasks[task_id] = task_data
            self._evict_old_tasks()

    def update_task(self, task_id: str, **kwargs):
        """Thread-safe partial update of a background task's fields."""
        with self._task_lock:
            if task_id in self.background_tasks:
                self.background_tasks[task_id].update(kwargs)

    def get_all_task_ids(self) -> List[str]:
        with self._task_lock:
            return list(self.background_tasks.keys())

    def register_cancel_token(self, task_id: str, token) -> None:
        with self._task_lock:
            self._cancel_tokens[task_id] = token

    def pop_cancel_token(self, task_id: str):
        with self._task_lock:
            return self._cancel_tokens.pop(task_id, None)

    def cancel_task(self, task_id: str) -> bool:
        """Signal a running task's cancel token. Returns False if it has none."""
        with self._task_lock:
            token = self._cancel_tokens.get(task_id)
        if token is None:
            return False
        token.cancel()
        return True

    def cancel_all_tasks(self) -> int:
        with self._task_lock:
            tokens = list(self._cancel_tokens.values())
        for token in tokens:
            token.cancel()
        return len(tokens)

    def touch(self):
        """Update the last-active timestamp (called by the tool decorator)."""
        self.last_active = time.time()

    def _evict_old_tasks(self):
        """Remove oldest finished tasks when the count exceeds the limit.

        Must be called while ``_task_lock`` is held.
        """
        finished = [
            (tid, t) for tid, t in self.background_tasks.items()
            if t.get("status") in FINISHED_STATES
        ]
        if len(finished) <= MAX_COMPLETED_TASKS:
            return
        finished.sort(key=lambda item: item[1].get("created_at_epoch", 0))
        to_remove = len(finished) - MAX_COMPLETED_TASKS
        for tid, _ in finished[:to_remove]:
            del self.background_tasks[tid]


# ---------------------------------------------------------------------------
# Session-scoped state (HTTP mode isolation)
# ---------------------------------------------------------------------------

_current_state_var: contextvars.ContextVar[Optional[DeviceSessionState]] = contextvars.ContextVar(
    '_current_state', default=None,
)

# Registry: session_key -> DeviceSessionState
_session_registry: Dict[str, DeviceSessionState] = {}
_registry_lock = threading.Lock()

# Default state instance (stdio / fallback)
_default_state = DeviceSessionState()


def get_current_state() -> DeviceSessionState:
    s = _current_state_var.get()
    return s if s is not None else _default_state


def set_current_state(state: Optional[DeviceSessionState]) -> None:
    _current_state_var.set(state)


def get_or_create_session_state(session_key: str) -> DeviceSessionState:
    """Get or lazily create the state for *session_key*.

    ``"default"`` (stdio mode) maps to the global default state. New HTTP
    sessions inherit the server-level device settings from the default
    state but build their own engine on first use.
    """
    if session_key == "default":
        return _default_state

    stale_to_cleanup = []
    with _registry_lock:
        now = time.time()
        stale_keys = [
            key for key, st in _session_registry.items()
            if (now - st.last_active) > SESSION_TTL_SECONDS
        ]
        for key in stale_keys:
            stale_session = _session_registry.pop(key)
            stale_session.last_active = 0
            stale_to_cleanup.append(stale_session)

        if session_key not in _session_registry:
            new_state = DeviceSessionState()
            new_state.device_serial = _default_state.device_serial
            new_state.adb_path = _default_state.adb_path
            new_state.backup_dir = _default_state.backup_dir
            new_state.api_key = _default_state.api_key
            _session_registry[session_key] = new_state
        result = _session_registry[session_key]

    # Stop monitors left running by expired sessions, outside the lock.
    for stale in stale_to_cleanup:
        cancelled = stale.cancel_all_tasks()
        if cancelled:
            logger.info("Cancelled %d task(s) of an expired session", cancelled)

    return result


def get_all_session_states() -> list:
    with _registry_lock:
        return list(_session_registry.values()) + [_default_state]


def activate_session_state(session_key: str) -> DeviceSessionState:
    s = get_or_create_session_state(session_key)
    _current_state_var.set(s)
    return s


def get_session_key_from_context(ctx) -> str:
    """Extract a unique session key from an MCP ``Context`` object.

    Falls back to ``"default"`` when no session can be identified (e.g.
    stdio mode), which transparently collapses to the singleton model.
    """
    try:
        if hasattr(ctx, '_request_context'):
            session = getattr(ctx._request_context, 'session', None)
            if session is not None:
                return str(id(session))
        if hasattr(ctx, 'session'):
            return str(id(ctx.session))
    except Exception:
        logger.debug("Could not extract session key from context, using default", exc_info=True)
    return "default"


class StateProxy:
    """Delegates attribute access to the active session's ``DeviceSessionState``.

    Attributes prefixed with ``_proxy_`` are stored on the proxy itself.
    """

    def __getattr__(self, name: str):
        return getattr(get_current_state(), name)

    def __setattr__(self, name: str, value):
        if name.startswith("_proxy_"):
            object.__setattr__(self, name, value)
        else:
            setattr(get_current_state(), name, value)

    def __repr__(self):
        current = get_current_state()
        return f"<StateProxy -> {current!r}>"
