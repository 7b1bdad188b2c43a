"""Device shell channel: the abstract contract and the ADB adapter."""
import logging
import re
import subprocess

from typing import List, Optional, Dict, Any

from devsec.errors import DeviceUnreachableError
from devsec.models import ShellResult

logger = logging.getLogger("DevSec")

DEFAULT_TIMEOUT_MS = 30000

# adb prints these when the channel itself is unusable (as opposed to the
# remote command failing).
_UNREACHABLE_MARKERS = (
    "device not found",
    "device offline",
    "no devices/emulators found",
    "no devices found",
    "device unauthorized",
    "cannot connect to daemon",
    "error: closed",
)


class DeviceShell:
    """Contract for running commands and moving files on a device.

    Implementations return ``ShellResult`` for ordinary command failures and
    raise ``DeviceUnreachableError`` only when the channel itself is down.
    """

    default_timeout_ms = DEFAULT_TIMEOUT_MS

    def execute(self, command: str, timeout_ms: Optional[int] = None) -> ShellResult:
        raise NotImplementedError

    def push_file(self, local_path: str, remote_path: str,
                  timeout_ms: Optional[int] = None) -> ShellResult:
        raise NotImplementedError

    def pull_file(self, remote_path: str, local_path: str,
                  timeout_ms: Optional[int] = None) -> ShellResult:
        raise NotImplementedError

    def describe(self) -> Dict[str, Any]:
        return {"type": type(self).__name__}


_DEVICE_NOT_FOUND_RE = re.compile(r"device '[^']*' not found")


def _is_unreachable_message(text: str) -> bool:
    lowered = text.lower()
    if _DEVICE_NOT_FOUND_RE.search(lowered):
        return True
    return any(marker in lowered for marker in _UNREACHABLE_MARKERS)


class AdbShell(DeviceShell):
    """``DeviceShell`` backed by the ``adb`` command-line client."""

    def __init__(self, adb_path: str = "adb", serial: Optional[str] = None,
                 default_timeout_ms: int = DEFAULT_TIMEOUT_MS):
        self.adb_path = adb_path
        self.serial = serial
        self.default_timeout_ms = default_timeout_ms

    def _base_args(self) -> List[str]:
        args = [self.adb_path]
        if self.serial:
            args += ["-s", self.serial]
        return args

    def _run(self, args: List[str], timeout_ms: Optional[int]) -> ShellResult:
        timeout_s = (timeout_ms or self.default_timeout_ms) / 1000.0
        logger.debug("adb call: %s (timeout=%.1fs)", args, timeout_s)
        try:
            proc = subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=timeout_s,
                errors="replace",
            )
        except FileNotFoundError as e:
            raise DeviceUnreachableError(f"adb binary not found at '{self.adb_path}'") from e
        except subprocess.TimeoutExpired:
            logger.warning("adb call timed out after %.1fs: %s", timeout_s, args[-1])
            return ShellResult(success=False, output="", error=f"Command timed out after {timeout_s:.1f}s",
                               timed_out=True)
        except OSError as e:
            raise DeviceUnreachableError(f"Failed to launch adb: {e}") from e

        stdout = (proc.stdout or "").strip()
        stderr = (proc.stderr or "").strip()
        if proc.returncode != 0 and _is_unreachable_message(stderr or stdout):
            raise DeviceUnreachableError(stderr or stdout)
        if proc.returncode != 0:
            return ShellResult(success=False, output=stdout, error=stderr or f"exit status {proc.returncode}")
        return ShellResult(success=True, output=stdout, error=stderr or None)

    def execute(self, command: str, timeout_ms: Optional[int] = None) -> ShellResult:
        return self._run(self._base_args() + ["shell", command], timeout_ms)

    def push_file(self, local_path: str, remote_path: str,
                  timeout_ms: Optional[int] = None) -> ShellResult:
        return self._run(self._base_args() + ["push", str(local_path), remote_path], timeout_ms)

    def pull_file(self, remote_path: str, local_path: str,
                  timeout_ms: Optional[int] = None) -> ShellResult:
        return self._run(self._base_args() + ["pull", remote_path, str(local_path)], timeout_ms)

    def list_devices(self) -> List[Dict[str, str]]:
        """Parse ``adb devices`` into ``[{"serial": ..., "state": ...}]``."""
        result = self._run([self.adb_path, "devices"], None)
        devices = []
        for line in result.output.splitlines()[1:]:
            parts = line.split()
            if len(parts) >= 2:
                devices.append({"serial": parts[0], "state": parts[1]})
        return devices

    def describe(self) -> Dict[str, Any]:
        return {
            "type": "adb",
            "adb_path": self.adb_path,
            "serial": self.serial,
            "default_timeout_ms": self.default_timeout_ms,
        }
