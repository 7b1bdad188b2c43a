"""SecurityEngine: the public facade over collection, scoring and integrity."""
import logging
import re

from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from devsec import config
from devsec.aggregator import DetectionAggregator
from devsec.assessor import RiskAssessor
from devsec.backup_store import BackupStore
from devsec.cache import ResultCache
from devsec.collector import SignalCollector
from devsec.errors import DeviceUnreachableError
from devsec.integrity import CancelToken, IntegrityMonitor
from devsec.models import (
    AssessmentReport, BackupRecord, DetectionResult, IntegritySummary,
    ModifyResult, MonitorResult, RestoreResult, TamperResult,
)
from devsec.probes import ProbeRegistry, default_registry
from devsec.probes.android import (
    APPLICATION, DEBUG, EMULATOR, ENVIRONMENT, NETWORK, ROOT, SECURITY_FEATURES,
)
from devsec.shell import AdbShell, DeviceShell

logger = logging.getLogger("DevSec")

DEVICE_CATEGORIES = (EMULATOR, ROOT, DEBUG)

_GETPROP_LINE_RE = re.compile(r"^\[([^\]]+)\]:\s*\[(.*)\]$")

DEVICE_INFO_PROPS = {
    "manufacturer": "ro.product.manufacturer",
    "model": "ro.product.model",
    "device": "ro.product.device",
    "android_version": "ro.build.version.release",
    "api_level": "ro.build.version.sdk",
    "build_fingerprint": "ro.build.fingerprint",
    "hardware": "ro.hardware",
    "security_patch": "ro.build.version.security_patch",
}


class SecurityEngine:
    """One engine per device. Owns its own result cache and backup store."""

    def __init__(self, shell: DeviceShell, backup_dir: Union[str, Path, None] = None,
                 cache: Optional[ResultCache] = None,
                 registry: Optional[ProbeRegistry] = None,
                 aggregator: Optional[DetectionAggregator] = None,
                 assessor: Optional[RiskAssessor] = None,
                 timeout_ms: Optional[int] = None,
                 interval_ms: Optional[int] = None):
        self.shell = shell
        self.timeout_ms = timeout_ms or config.get_shell_timeout_ms()
        self.cache = cache if cache is not None else ResultCache(config.get_cache_ttl_seconds())
        self.registry = registry or default_registry()
        self.aggregator = aggregator or DetectionAggregator()
        self.assessor = assessor or RiskAssessor()
        self.collector = SignalCollector(shell, self.cache, self.timeout_ms)
        self.store = BackupStore(backup_dir or config.get_backup_dir())
        self.integrity = IntegrityMonitor(
            shell, self.store, self.timeout_ms,
            interval_ms or config.get_monitor_interval_ms(),
        )

    @classmethod
    def from_settings(cls, serial: Optional[str] = None, adb_path: Optional[str] = None,
                      **kwargs) -> "SecurityEngine":
        """Build an engine on an ``AdbShell`` using the resolved user settings."""
        timeout_ms = kwargs.pop("timeout_ms", None) or config.get_shell_timeout_ms()
        shell = AdbShell(
            adb_path=adb_path or config.get_adb_path(),
            serial=serial or config.get_device_serial(),
            default_timeout_ms=timeout_ms,
        )
        return cls(shell, timeout_ms=timeout_ms, **kwargs)

    # ------------------------------------------------------------------
    #  Detection and assessment
    # ------------------------------------------------------------------

    def _probe_set(self, category: str, package_name: Optional[str]):
        try:
            if category == APPLICATION:
                return self.registry.probes_for(category, package_name=package_name)
            return self.registry.probes_for(category)
        except KeyError as e:
            raise ValueError(
                f"Unknown detection category '{category}'. "
                f"Known: {', '.join(self.registry.categories())}"
            ) from e

    def detect_category(self, category: str, probe_set: Optional[Iterable[Any]] = None,
                        package_name: Optional[str] = None) -> DetectionResult:
        probes = probe_set if probe_set is not None else self._probe_set(category, package_name)
        return self.aggregator.aggregate(self.collector.collect(category, probes))

    def detect_many(self, categories: Iterable[str],
                    package_name: Optional[str] = None) -> Dict[str, DetectionResult]:
        probe_sets = {c: self._probe_set(c, package_name) for c in categories}
        collections = self.collector.collect_many(probe_sets)
        return {c: self.aggregator.aggregate(col) for c, col in collections.items()}

    def assess(self, category_inputs: Mapping[str, Any]) -> AssessmentReport:
        return self.assessor.assess(category_inputs)

    def get_device_info(self) -> Dict[str, Optional[str]]:
        """Basic identity properties parsed from ``getprop``."""
        result = self.shell.execute("getprop", self.timeout_ms)
        props = {}
        for line in result.output.splitlines():
            match = _GETPROP_LINE_RE.match(line.strip())
            if match:
                props[match.group(1)] = match.group(2)
        return {field: props.get(prop) for field, prop in DEVICE_INFO_PROPS.items()}

    # ------------------------------------------------------------------
    #  Integrity delegation
    # ------------------------------------------------------------------

    def capture_baseline(self, paths: Iterable[str]):
        return self.integrity.capture_baseline(paths)

    def create_backup(self, path: str) -> BackupRecord:
        return self.integrity.create_backup(path)

    def restore_from_backup(self, backup_id: str) -> RestoreResult:
        return self.integrity.restore_from_backup(backup_id)

    def read_config_value(self, path: str, key: str, fmt: str = "properties") -> Any:
        return self.integrity.read_config_value(path, key, fmt)

    def modify_config(self, path: str, key: str, value: Any, fmt: str = "properties") -> ModifyResult:
        return self.integrity.modify_config(path, key, value, fmt)

    def tamper_file(self, path: str, tamper_type: str, **options) -> TamperResult:
        return self.integrity.tamper_file(path, tamper_type, **options)

    def monitor(self, paths: Iterable[str], duration_ms: int,
                cancel_token: Optional[CancelToken] = None, **kwargs) -> MonitorResult:
        return self.integrity.monitor(paths, duration_ms, cancel_token, **kwargs)

    def summarize_integrity(self, baselines, expected=None, changes=()) -> IntegritySummary:
        return self.integrity.summarize(baselines, expected, changes)

    def list_backups(self) -> List[BackupRecord]:
        return self.integrity.list_backups()

    def cleanup(self) -> int:
        return self.integrity.cleanup()

    # ------------------------------------------------------------------
    #  Full analysis
    # ------------------------------------------------------------------

    def analyze_device(self, package_name: Optional[str] = None,
                       critical_files: Optional[Iterable[str]] = None,
                       expected_checksums: Optional[Mapping[str, Optional[str]]] = None) -> Dict[str, Any]:
        """Run every detection category, summarize file integrity and assess.

        Device categories run concurrently. The application category is
        only included when *package_name* is given.
        """
        categories = list(DEVICE_CATEGORIES) + [ENVIRONMENT, SECURITY_FEATURES, NETWORK]
        if package_name:
            categories.append(APPLICATION)
        detections = self.detect_many(categories, package_name=package_name)

        files = list(critical_files or [])
        if expected_checksums:
            files += [p for p in expected_checksums if p not in files]
        baselines = self.capture_baseline(files) if files else {}
        summary = self.summarize_integrity(baselines, expected_checksums)

        inputs: Dict[str, Any] = {
            "device": {"detections": {c: detections[c] for c in DEVICE_CATEGORIES}},
            "environment": {"detections": {c: detections[c] for c in (ENVIRONMENT, SECURITY_FEATURES)}},
            "network": detections[NETWORK],
            "file_integrity": summary,
        }
        if package_name:
            inputs["application"] = detections[APPLICATION]
        report = self.assess(inputs)

        return {
            "package_name": package_name,
            "detections": {c: d.to_dict() for c, d in detections.items()},
            "file_integrity": summary.to_dict(),
            "baselines": {p: b.to_dict() for p, b in baselines.items()},
            "report": report.to_dict(),
        }

    def check_connection(self) -> bool:
        try:
            return self.shell.execute("echo ok", self.timeout_ms).success
        except DeviceUnreachableError:
            return False
