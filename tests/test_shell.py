"""Unit tests for devsec/shell.py — the adb adapter, with subprocess mocked."""
import subprocess
from unittest import mock

import pytest

from devsec.errors import DeviceUnreachableError
from devsec.shell import AdbShell, DeviceShell


def _completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class TestAdbShell:
    def test_execute_builds_command(self):
        shell = AdbShell(adb_path="/opt/adb", serial="abc123", default_timeout_ms=5000)
        with mock.patch("devsec.shell.subprocess.run", return_value=_completed(stdout="1\n")) as run:
            result = shell.execute("getprop ro.debuggable")
        assert result.success is True
        assert result.output == "1"
        args, kwargs = run.call_args
        assert args[0] == ["/opt/adb", "-s", "abc123", "shell", "getprop ro.debuggable"]
        assert kwargs["timeout"] == 5.0

    def test_explicit_timeout(self):
        shell = AdbShell()
        with mock.patch("devsec.shell.subprocess.run", return_value=_completed()) as run:
            shell.execute("id", timeout_ms=1500)
        assert run.call_args[1]["timeout"] == 1.5

    def test_non_zero_exit_is_failed_result(self):
        shell = AdbShell()
        with mock.patch("devsec.shell.subprocess.run",
                        return_value=_completed(1, "", "/system/bin/sh: su: not found")):
            result = shell.execute("su -c id")
        assert result.success is False
        assert "not found" in result.error

    def test_timeout_is_failed_result(self):
        shell = AdbShell()
        with mock.patch("devsec.shell.subprocess.run",
                        side_effect=subprocess.TimeoutExpired(cmd="adb", timeout=1)):
            result = shell.execute("sleep 100", timeout_ms=1000)
        assert result.success is False
        assert result.timed_out is True

    @pytest.mark.parametrize("stderr", [
        "error: device 'abc' not found",
        "error: device offline",
        "error: no devices/emulators found",
        "error: device unauthorized.",
    ])
    def test_unreachable_markers_raise(self, stderr):
        shell = AdbShell(serial="abc")
        with mock.patch("devsec.shell.subprocess.run", return_value=_completed(1, "", stderr)):
            with pytest.raises(DeviceUnreachableError):
                shell.execute("id")

    def test_missing_adb_binary(self):
        shell = AdbShell(adb_path="/nope/adb")
        with mock.patch("devsec.shell.subprocess.run", side_effect=FileNotFoundError()):
            with pytest.raises(DeviceUnreachableError, match="adb binary not found"):
                shell.execute("id")

    def test_push_and_pull_args(self):
        shell = AdbShell(serial="s1")
        with mock.patch("devsec.shell.subprocess.run", return_value=_completed()) as run:
            shell.push_file("/tmp/local", "/data/remote")
            shell.pull_file("/data/remote", "/tmp/local")
        assert run.call_args_list[0][0][0] == ["adb", "-s", "s1", "push", "/tmp/local", "/data/remote"]
        assert run.call_args_list[1][0][0] == ["adb", "-s", "s1", "pull", "/data/remote", "/tmp/local"]

    def test_list_devices(self):
        output = "List of devices attached\nemulator-5554\tdevice\nR58M\tunauthorized\n"
        with mock.patch("devsec.shell.subprocess.run", return_value=_completed(stdout=output)):
            devices = AdbShell().list_devices()
        assert devices == [
            {"serial": "emulator-5554", "state": "device"},
            {"serial": "R58M", "state": "unauthorized"},
        ]

    def test_describe(self):
        assert AdbShell(serial="x").describe()["serial"] == "x"


class TestDeviceShellContract:
    def test_base_methods_not_implemented(self):
        shell = DeviceShell()
        with pytest.raises(NotImplementedError):
            shell.execute("id")
        with pytest.raises(NotImplementedError):
            shell.push_file("a", "b")
        with pytest.raises(NotImplementedError):
            shell.pull_file("a", "b")
