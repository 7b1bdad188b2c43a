"""Declarative deduction rules that turn boolean facts into 0-100 scores."""
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Union

from devsec.models import DetectionResult

Check = Union[str, Callable[[Mapping[str, Any]], bool]]


@dataclass(frozen=True)
class Rule:
    name: str
    check: Check
    deduction: float

    def applies(self, facts: Mapping[str, Any]) -> bool:
        if callable(self.check):
            return bool(self.check(facts))
        return bool(facts.get(self.check))


def evaluate_rules(facts: Mapping[str, Any], rules: Iterable[Rule], base: float = 100) -> float:
    score = base - sum(rule.deduction for rule in rules if rule.applies(facts))
    return float(max(0, min(100, score)))


def triggered_rules(facts: Mapping[str, Any], rules: Iterable[Rule]) -> List[str]:
    return [rule.name for rule in rules if rule.applies(facts)]


DEVICE_RULES = (
    Rule("emulator", "emulator", 30),
    Rule("root", "root", 40),
    Rule("debug", "debug", 20),
)

APPLICATION_RULES = (
    Rule("debuggable", "debuggable", 30),
    Rule("allow_backup", "allow_backup", 15),
    Rule("test_only", "test_only", 25),
)

ENVIRONMENT_RULES = (
    Rule("hooking_framework", lambda f: bool(f.get("hooking_framework") or f.get("frida_server")), 20),
    Rule("adb_over_network", "adb_over_network", 20),
    Rule("developer_options", "developer_options", 10),
    Rule("mock_location", "mock_location", 10),
    # Platform protections weakened or out of date
    Rule("selinux_not_enforcing", "selinux_not_enforcing", 15),
    Rule("storage_unencrypted", "storage_unencrypted", 15),
    Rule("verified_boot_not_green", "verified_boot_not_green", 15),
    Rule("stale_security_patch", "stale_security_patch", 10),
    Rule("screen_lock_disabled", "screen_lock_disabled", 10),
)

NETWORK_RULES = (
    Rule("user_ca_installed", "user_ca_installed", 20),
    Rule("global_proxy", "global_proxy", 20),
    Rule("vpn_active", "vpn_active", 10),
)

RULE_TABLES: Dict[str, tuple] = {
    "device": DEVICE_RULES,
    "application": APPLICATION_RULES,
    "environment": ENVIRONMENT_RULES,
    "network": NETWORK_RULES,
}


def facts_from_detection(result: DetectionResult) -> Dict[str, bool]:
    """Map each clean indicator name to whether it fired. Faulted indicators are left out."""
    return {i.name: i.detected for i in result.indicators if i.fault is None}
