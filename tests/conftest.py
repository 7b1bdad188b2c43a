"""Shared fixtures for DevSec tests."""
import shlex
import threading

import pytest

from devsec.backup_store import BackupStore
from devsec.cache import ResultCache
from devsec.engine import SecurityEngine
from devsec.errors import DeviceUnreachableError
from devsec.hashing import sha256_bytes
from devsec.models import ShellResult
from devsec.shell import DeviceShell
from devsec.state import DeviceSessionState, set_current_state


class MockContext:
    """Minimal mock for MCP Context used by tool tests."""
    def __init__(self):
        self.warnings = []
        self.errors = []
        self.infos = []

    async def warning(self, msg):
        self.warnings.append(msg)

    async def error(self, msg):
        self.errors.append(msg)

    async def info(self, msg):
        self.infos.append(msg)


class FakeShell(DeviceShell):
    """In-memory device: a dict of remote files plus scripted command outputs.

    ``sha256sum``, ``echo ... >/>>``, ``chmod`` and ``touch`` are simulated
    against ``files``. Any other command returns its scripted output from
    ``outputs`` (a str or a ``ShellResult``) or an empty success.
    """

    def __init__(self, files=None, outputs=None):
        self.files = dict(files or {})
        self.outputs = dict(outputs or {})
        self.commands = []
        self.pushes = []
        self.pulls = []
        self.unreachable = False
        self.unreachable_after = None
        self.fail_push = False
        self.before_command = None
        self.calls = 0
        self._lock = threading.Lock()

    def _tick(self):
        with self._lock:
            self.calls += 1
            n = self.calls
        if self.unreachable or (self.unreachable_after is not None and n > self.unreachable_after):
            raise DeviceUnreachableError("error: device offline")

    def execute(self, command, timeout_ms=None):
        self._tick()
        with self._lock:
            self.commands.append(command)
        if self.before_command is not None:
            self.before_command(command)

        if command in self.outputs:
            out = self.outputs[command]
            return out if isinstance(out, ShellResult) else ShellResult(True, out)

        if command.startswith("sha256sum "):
            path = shlex.split(command)[1]
            if path not in self.files:
                return ShellResult(False, "", f"sha256sum: {path}: No such file or directory")
            return ShellResult(True, f"{sha256_bytes(self.files[path])}  {path}")

        parts = shlex.split(command)
        if parts and parts[0] == "echo" and len(parts) == 4 and parts[2] in (">", ">>"):
            data = (parts[1] + "\n").encode("utf-8")
            path = parts[3]
            if parts[2] == ">":
                self.files[path] = data
            else:
                self.files[path] = self.files.get(path, b"") + data
            return ShellResult(True, "")
        if parts and parts[0] in ("chmod", "touch"):
            if parts[-1] not in self.files:
                return ShellResult(False, "", f"{parts[0]}: {parts[-1]}: No such file or directory")
            return ShellResult(True, "")
        return ShellResult(True, "")

    def push_file(self, local_path, remote_path, timeout_ms=None):
        self._tick()
        self.pushes.append((str(local_path), remote_path))
        if self.fail_push:
            return ShellResult(False, "", "remote couldn't create file: Read-only file system")
        with open(local_path, "rb") as f:
            self.files[remote_path] = f.read()
        return ShellResult(True, "1 file pushed")

    def pull_file(self, remote_path, local_path, timeout_ms=None):
        self._tick()
        self.pulls.append(remote_path)
        if remote_path not in self.files:
            return ShellResult(False, "", f"adb: error: failed to stat remote object '{remote_path}': No such file or directory")
        with open(local_path, "wb") as f:
            f.write(self.files[remote_path])
        return ShellResult(True, "1 file pulled")


@pytest.fixture
def mock_ctx():
    """Provide a MockContext for async tool tests."""
    return MockContext()


@pytest.fixture
def clean_state():
    """Ensure a clean DeviceSessionState for each test, then tear down."""
    s = DeviceSessionState()
    set_current_state(s)
    yield s
    s.cancel_all_tasks()
    set_current_state(None)


@pytest.fixture
def shell():
    return FakeShell()


@pytest.fixture
def store(tmp_path):
    return BackupStore(tmp_path / "backups")


@pytest.fixture
def engine(shell, tmp_path):
    """SecurityEngine over the FakeShell with a private cache and backup dir."""
    return SecurityEngine(
        shell,
        backup_dir=tmp_path / "backups",
        cache=ResultCache(ttl_seconds=60),
        timeout_ms=1000,
        interval_ms=5,
    )
