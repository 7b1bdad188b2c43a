"""Unit tests for devsec/collector.py — fault isolation, unreachable handling and caching."""
import pytest

from conftest import FakeShell
from devsec.cache import ResultCache
from devsec.collector import SignalCollector
from devsec.models import ShellResult
from devsec.probes import android


ROOT_OUTPUTS = {
    "which su": "/system/xbin/su",
    "test -w /system && echo writable || echo readonly": "writable",
}


# ---------------------------------------------------------------------------
# Single category
# ---------------------------------------------------------------------------

class TestCollect:
    def test_indicators_in_probe_order(self):
        collector = SignalCollector(FakeShell(outputs=ROOT_OUTPUTS))
        result = collector.collect("root", android.root_probes())
        assert [i.name for i in result.indicators] == [
            "su_binary", "root_apps", "system_writable", "dangerous_props", "busybox", "magisk",
        ]
        fired = {i.name for i in result.indicators if i.detected}
        assert fired == {"su_binary", "system_writable"}
        assert not result.unreachable
        assert result.faults == []

    def test_faulted_probe_becomes_negative_indicator(self):
        outputs = dict(ROOT_OUTPUTS)
        outputs["pm list packages"] = ShellResult(False, "", "Permission denied")
        collector = SignalCollector(FakeShell(outputs=outputs))
        result = collector.collect("root", android.root_probes())
        root_apps = next(i for i in result.indicators if i.name == "root_apps")
        assert root_apps.detected is False
        assert root_apps.fault == "Permission denied"
        # Remaining probes still ran
        assert len(result.indicators) == 6

    def test_unexpected_probe_exception_is_isolated(self):
        def boom(out):
            raise KeyError("oops")
        probes = [("broken", "id", boom), ("uid0", "id", "uid=0")]
        collector = SignalCollector(FakeShell(outputs={"id": "uid=0(root)"}))
        result = collector.collect("custom", probes)
        assert result.indicators[0].fault
        assert result.indicators[1].detected

    def test_unreachable_returns_partial(self):
        shell = FakeShell(outputs=ROOT_OUTPUTS)
        shell.unreachable_after = 2
        result = SignalCollector(shell).collect("root", android.root_probes())
        assert result.unreachable is True
        assert result.fault.startswith("device unreachable")
        assert [i.name for i in result.indicators] == ["su_binary", "root_apps"]

    def test_custom_probe_mappings(self):
        probes = [{"name": "selinux_permissive", "command": "getenforce", "predicate": "Permissive"}]
        result = SignalCollector(FakeShell(outputs={"getenforce": "Permissive"})).collect("custom", probes)
        assert result.indicators[0].detected


# ---------------------------------------------------------------------------
# Caching
# ---------------------------------------------------------------------------

class TestCollectCaching:
    def test_clean_result_is_cached(self):
        shell = FakeShell(outputs=ROOT_OUTPUTS)
        collector = SignalCollector(shell, cache=ResultCache(60))
        first = collector.collect("root", android.root_probes())
        calls = shell.calls
        second = collector.collect("root", android.root_probes())
        assert shell.calls == calls
        assert second is first

    def test_application_results_not_shared_between_packages(self):
        shell = FakeShell(outputs={
            "dumpsys package com.a": "pkgFlags=[ HAS_CODE DEBUGGABLE ALLOW_BACKUP TEST_ONLY ]",
            "dumpsys package com.b": "pkgFlags=[ HAS_CODE ]",
        })
        collector = SignalCollector(shell, cache=ResultCache(60))
        a = collector.collect("application", android.application_probes("com.a"))
        b = collector.collect("application", android.application_probes("com.b"))
        assert all(i.detected for i in a.indicators)
        assert not any(i.detected for i in b.indicators)
        assert "dumpsys package com.b" in shell.commands
        # A repeat for the same package is still served from the cache
        calls = shell.calls
        again = collector.collect("application", android.application_probes("com.a"))
        assert again is a
        assert shell.calls == calls

    def test_same_name_different_command_is_a_miss(self):
        shell = FakeShell(outputs={"id": "uid=0(root)", "id -u": "2000"})
        collector = SignalCollector(shell, cache=ResultCache(60))
        first = collector.collect("custom", [("uid0", "id", "uid=0")])
        second = collector.collect("custom", [("uid0", "id -u", "uid=0")])
        assert first.indicators[0].detected is True
        assert second.indicators[0].detected is False

    def test_same_name_different_predicate_or_weight_is_a_miss(self):
        shell = FakeShell(outputs={"id": "uid=0(root)"})
        collector = SignalCollector(shell, cache=ResultCache(60))
        collector.collect("custom", [("uid", "id", "uid=0")])
        other = collector.collect("custom", [("uid", "id", "uid=2000")])
        assert other.indicators[0].detected is False
        weighted = collector.collect("custom", [("uid", "id", "uid=0", 0.5)])
        assert weighted.indicators[0].weight == 0.5

    def test_faulted_result_not_cached(self):
        outputs = dict(ROOT_OUTPUTS)
        outputs["ps -A"] = ShellResult(False, "", "timed out", timed_out=True)
        shell = FakeShell(outputs=outputs)
        collector = SignalCollector(shell, cache=ResultCache(60))
        collector.collect("environment", android.environment_probes())
        calls = shell.calls
        collector.collect("environment", android.environment_probes())
        assert shell.calls > calls

    def test_unreachable_result_not_cached(self):
        shell = FakeShell()
        shell.unreachable = True
        cache = ResultCache(60)
        SignalCollector(shell, cache=cache).collect("debug", android.debug_probes())
        assert cache.get_stats()["entry_count"] == 0


# ---------------------------------------------------------------------------
# Concurrent categories
# ---------------------------------------------------------------------------

class TestCollectMany:
    def test_preserves_category_order(self):
        collector = SignalCollector(FakeShell(outputs=ROOT_OUTPUTS), max_workers=3)
        results = collector.collect_many({
            "emulator": android.emulator_probes(),
            "root": android.root_probes(),
            "debug": android.debug_probes(),
        })
        assert list(results) == ["emulator", "root", "debug"]
        assert results["root"].indicators[0].detected

    def test_empty(self):
        assert SignalCollector(FakeShell()).collect_many({}) == {}
