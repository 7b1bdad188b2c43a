"""
File integrity monitoring for files on the device.

Covers baselines, checksum-verified backup and restore, config edits and
controlled tamper operations (each backed up first), and a cancellable
polling monitor. Expected failures come back as result objects carrying
an ``error_code``; only caller mistakes raise.
"""
import logging
import re
import tempfile
import threading
import time

from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Union

from devsec.backup_store import BackupStore
from devsec.config_edit import apply_edit, read_value
from devsec.errors import (
    BackupError, ConfigFormatError, DeviceUnreachableError,
    EvidenceCollectionFault, IntegrityVerificationError, MonitorConflictError,
)
from devsec.hashing import looks_like_missing_file, parse_sha256sum_output, sha256_file
from devsec.models import (
    BackupRecord, FileBaseline, IntegrityChange, IntegrityFault, IntegritySummary,
    ModifyResult, MonitorResult, RestoreResult, TamperResult,
    CHANGE_CREATED, CHANGE_DELETED, CHANGE_MODIFIED,
    FAULT_ERROR, FAULT_MISSING, FAULT_UNREACHABLE,
)
from devsec.shell import DEFAULT_TIMEOUT_MS, DeviceShell
from devsec.utils import quote_remote

logger = logging.getLogger("DevSec")

DEFAULT_INTERVAL_MS = 5000

TAMPER_TYPES = (
    "corrupt",
    "modify_permissions",
    "inject_code",
    "replace_content",
    "modify_timestamp",
    "add_malicious_payload",
)
DEFAULT_CORRUPTION = "CORRUPTED_DATA_INJECTION"
DEFAULT_INJECTED_CODE = "// Injected code"
DEFAULT_REPLACEMENT = "TAMPERED"
DEFAULT_TOUCH_TIME = "202301010000"
DEFAULT_PAYLOAD = 'eval(base64_decode("bWFsaWNpb3VzX2NvZGU="))'

_PERMISSIONS_RE = re.compile(r"^[0-7]{3,4}$")
_TOUCH_TIME_RE = re.compile(r"^\d{12}(\.\d{2})?$")

Baseline = Union[FileBaseline, IntegrityFault]


class CancelToken:
    """Cooperative cancellation flag shared between a monitor and its owner."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to *timeout* seconds; returns True as soon as cancelled."""
        return self._event.wait(timeout)


class IntegrityMonitor:

    def __init__(self, shell: DeviceShell, store: BackupStore,
                 timeout_ms: int = DEFAULT_TIMEOUT_MS,
                 interval_ms: int = DEFAULT_INTERVAL_MS,
                 clock: Callable[[], float] = time.monotonic):
        self.shell = shell
        self.store = store
        self.timeout_ms = timeout_ms
        self.interval_ms = interval_ms
        self._clock = clock
        self._monitor_lock = threading.Lock()
        self._active_paths: Set[str] = set()

    # ------------------------------------------------------------------
    #  Checksums and baselines
    # ------------------------------------------------------------------

    def remote_checksum(self, path: str) -> Optional[str]:
        """SHA-256 of a device file, or ``None`` when it does not exist.

        Raises ``EvidenceCollectionFault`` for other failures;
        ``DeviceUnreachableError`` propagates.
        """
        result = self.shell.execute(f"sha256sum {quote_remote(path)}", self.timeout_ms)
        if result.success:
            digest = parse_sha256sum_output(result.output)
            if digest is None:
                raise EvidenceCollectionFault(f"Unparseable sha256sum output for {path}: {result.output[:80]!r}")
            return digest
        if looks_like_missing_file(result.error) or looks_like_missing_file(result.output):
            return None
        raise EvidenceCollectionFault(result.error or f"sha256sum failed for {path}")

    def capture_baseline(self, paths: Iterable[str]) -> Dict[str, Baseline]:
        paths = list(dict.fromkeys(paths))
        baselines: Dict[str, Baseline] = {}
        for index, path in enumerate(paths):
            try:
                checksum = self.remote_checksum(path)
            except DeviceUnreachableError as e:
                logger.warning("Device unreachable while capturing baseline at %s: %s", path, e)
                for remaining in paths[index:]:
                    baselines[remaining] = IntegrityFault(remaining, FAULT_UNREACHABLE, str(e))
                break
            except EvidenceCollectionFault as e:
                baselines[path] = IntegrityFault(path, FAULT_ERROR, str(e))
                continue
            if checksum is None:
                baselines[path] = IntegrityFault(path, FAULT_MISSING, "file not found")
            else:
                baselines[path] = FileBaseline(path, checksum)
        return baselines

    # ------------------------------------------------------------------
    #  Backup / restore
    # ------------------------------------------------------------------

    def create_backup(self, path: str) -> BackupRecord:
        """Pull *path* into the local store and record its checksum.

        Raises ``BackupError`` when the pull fails; nothing is left behind.
        """
        with self.store.path_lock(path):
            backup_id = self.store.new_id()
            blob = self.store.blob_path(backup_id)
            try:
                blob.parent.mkdir(parents=True, exist_ok=True)
                result = self.shell.pull_file(path, str(blob), self.timeout_ms)
            except DeviceUnreachableError as e:
                blob.unlink(missing_ok=True)
                raise BackupError(f"Device unreachable while backing up {path}: {e}") from e
            except OSError as e:
                raise BackupError(f"Cannot write backup for {path}: {e}") from e
            if not result.success or not blob.exists():
                blob.unlink(missing_ok=True)
                raise BackupError(f"Failed to pull {path}: {result.error or 'no file produced'}")

            record = BackupRecord(
                id=backup_id,
                original_path=path,
                local_storage_path=str(blob),
                checksum=sha256_file(blob),
            )
            try:
                self.store.save(record)
            except BackupError:
                blob.unlink(missing_ok=True)
                raise
            logger.info("Backup %s created for %s", backup_id[:8], path)
            return record

    def _verify_backup(self, record: BackupRecord) -> None:
        blob = Path(record.local_storage_path)
        if not blob.exists():
            raise IntegrityVerificationError(f"Backup blob for {record.id} is missing")
        actual = sha256_file(blob)
        if actual != record.checksum:
            raise IntegrityVerificationError(
                f"Backup {record.id} checksum mismatch (recorded {record.checksum[:12]}, now {actual[:12]})"
            )

    def restore_from_backup(self, backup_id: str) -> RestoreResult:
        """Verify the local copy and push it back. The record is consumed on success."""
        record = self.store.find(backup_id)
        if record is None:
            return RestoreResult(False, backup_id, f"No backup with id '{backup_id}'", "backup_not_found")

        with self.store.path_lock(record.original_path):
            # A concurrent restore may have consumed the record while we waited
            record = self.store.find(backup_id)
            if record is None:
                return RestoreResult(False, backup_id, f"No backup with id '{backup_id}'", "backup_not_found")
            try:
                self._verify_backup(record)
            except IntegrityVerificationError as e:
                logger.error("Refusing to restore %s: %s", record.original_path, e)
                return RestoreResult(False, backup_id, str(e), e.code)

            try:
                result = self.shell.push_file(record.local_storage_path, record.original_path, self.timeout_ms)
            except DeviceUnreachableError as e:
                return RestoreResult(False, backup_id, str(e), e.code)
            if not result.success:
                return RestoreResult(False, backup_id, result.error or "push failed", "push_failed")

            self.store.remove(backup_id)
            logger.info("Restored %s from backup %s", record.original_path, backup_id[:8])
            return RestoreResult(True, backup_id)

    def list_backups(self) -> List[BackupRecord]:
        return self.store.list()

    def cleanup(self) -> int:
        count = self.store.clear()
        logger.info("Removed %d backup(s) from %s", count, self.store.root)
        return count

    def read_config_value(self, path: str, key: str, fmt: str = "properties") -> Any:
        """Pull a config file and return the current value of *key* (``None`` when absent).

        Nothing is written to the device. Raises ``EvidenceCollectionFault``
        when the file cannot be pulled and ``ConfigFormatError`` when it
        cannot be parsed as *fmt*.
        """
        with tempfile.TemporaryDirectory(prefix="devsec-read-") as tmp:
            local = Path(tmp) / "config"
            pulled = self.shell.pull_file(path, str(local), self.timeout_ms)
            if not pulled.success or not local.exists():
                raise EvidenceCollectionFault(f"Failed to pull {path}: {pulled.error or 'no file produced'}")
            try:
                content = local.read_text(encoding="utf-8")
            except UnicodeDecodeError as e:
                raise ConfigFormatError(f"Config file is not UTF-8 text: {e}") from e
        return read_value(content, key, fmt)

    # ------------------------------------------------------------------
    #  Mutations
    # ------------------------------------------------------------------

    def modify_config(self, path: str, key: str, value: Any, fmt: str = "properties") -> ModifyResult:
        """Back up, pull, edit and push a structured config file.

        On a format error or a failed push the backup is kept and its id
        returned so the caller can restore.
        """
        with self.store.path_lock(path):
            try:
                record = self.create_backup(path)
            except BackupError as e:
                return ModifyResult(False, error=str(e), error_code=e.code)

            with tempfile.TemporaryDirectory(prefix="devsec-edit-") as tmp:
                local = Path(tmp) / "config"
                try:
                    pulled = self.shell.pull_file(path, str(local), self.timeout_ms)
                except DeviceUnreachableError as e:
                    return ModifyResult(False, record.id, error=str(e), error_code=e.code)
                if not pulled.success or not local.exists():
                    return ModifyResult(False, record.id, error=pulled.error or "pull failed",
                                        error_code="pull_failed")

                try:
                    content = local.read_text(encoding="utf-8")
                    new_content, original = apply_edit(content, key, value, fmt)
                except UnicodeDecodeError as e:
                    err = ConfigFormatError(f"Config file is not UTF-8 text: {e}")
                    return ModifyResult(False, record.id, error=str(err), error_code=err.code)
                except ConfigFormatError as e:
                    logger.warning("Config edit of %s rejected: %s", path, e)
                    return ModifyResult(False, record.id, error=str(e), error_code=e.code)

                local.write_text(new_content, encoding="utf-8")
                try:
                    pushed = self.shell.push_file(str(local), path, self.timeout_ms)
                except DeviceUnreachableError as e:
                    return ModifyResult(False, record.id, original, value, str(e), e.code)
                if not pushed.success:
                    return ModifyResult(False, record.id, original, value,
                                        pushed.error or "push failed", "push_failed")

            logger.info("Config %s: %s changed from %r to %r", path, key, original, value)
            return ModifyResult(True, record.id, original, value)

    def _tamper_command(self, path: str, tamper_type: str, options: Mapping[str, Any]):
        target = quote_remote(path)
        if tamper_type == "corrupt":
            data = options.get("corruption") or DEFAULT_CORRUPTION
            return f"echo {quote_remote(data)} >> {target}", {"corruption_type": "append", "data": data}
        if tamper_type == "modify_permissions":
            perms = str(options.get("permissions") or "777")
            if not _PERMISSIONS_RE.match(perms):
                raise ValueError(f"Invalid permissions '{perms}', expected octal such as 644")
            return f"chmod {perms} {target}", {"new_permissions": perms}
        if tamper_type == "inject_code":
            code = options.get("code") or DEFAULT_INJECTED_CODE
            return f"echo {quote_remote(code)} >> {target}", {"injected_code": code}
        if tamper_type == "replace_content":
            content = options.get("new_content") or DEFAULT_REPLACEMENT
            return f"echo {quote_remote(content)} > {target}", {"new_content": content}
        if tamper_type == "modify_timestamp":
            stamp = str(options.get("timestamp") or DEFAULT_TOUCH_TIME)
            if not _TOUCH_TIME_RE.match(stamp):
                raise ValueError(f"Invalid timestamp '{stamp}', expected YYYYMMDDhhmm[.ss]")
            return f"touch -t {stamp} {target}", {"new_timestamp": stamp}
        if tamper_type == "add_malicious_payload":
            payload = options.get("payload") or DEFAULT_PAYLOAD
            return f"echo {quote_remote(payload)} >> {target}", {"payload": payload}
        raise ValueError(f"Unknown tamper type '{tamper_type}'. Supported: {', '.join(TAMPER_TYPES)}")

    def tamper_file(self, path: str, tamper_type: str, **options) -> TamperResult:
        try:
            command, details = self._tamper_command(path, tamper_type, options)
        except ValueError as e:
            return TamperResult(False, tamper_type, error=str(e))

        with self.store.path_lock(path):
            try:
                record = self.create_backup(path)
            except BackupError as e:
                return TamperResult(False, tamper_type, error=str(e))
            try:
                result = self.shell.execute(command, self.timeout_ms)
            except DeviceUnreachableError as e:
                return TamperResult(False, tamper_type, record.id, details, str(e))
            if not result.success:
                return TamperResult(False, tamper_type, record.id, details, result.error or "command failed")
        logger.warning("Tampered with %s (%s); backup %s", path, tamper_type, record.id[:8])
        return TamperResult(True, tamper_type, record.id, details)

    # ------------------------------------------------------------------
    #  Monitoring
    # ------------------------------------------------------------------

    def _reserve(self, paths: List[str]) -> None:
        with self._monitor_lock:
            overlap = sorted(set(paths) & self._active_paths)
            if overlap:
                raise MonitorConflictError(f"Paths already monitored by another session: {', '.join(overlap)}")
            self._active_paths.update(paths)

    def _release(self, paths: List[str]) -> None:
        with self._monitor_lock:
            self._active_paths.difference_update(paths)

    def active_paths(self) -> List[str]:
        with self._monitor_lock:
            return sorted(self._active_paths)

    def monitor(self, paths: Iterable[str], duration_ms: int,
                cancel_token: Optional[CancelToken] = None,
                interval_ms: Optional[int] = None,
                on_change: Optional[Callable[[IntegrityChange], None]] = None) -> MonitorResult:
        """Poll the checksums of *paths* until *duration_ms* elapses or the token is cancelled.

        Each observed mismatch is reported once and becomes the new baseline
        for that path, so A -> B -> A yields two changes. Raises
        ``MonitorConflictError`` if another monitor already owns a path.
        """
        paths = list(dict.fromkeys(paths))
        if not paths:
            raise ValueError("monitor() needs at least one path")
        if duration_ms <= 0:
            raise ValueError(f"duration_ms must be positive, got {duration_ms}")
        token = cancel_token or CancelToken()
        interval_s = (interval_ms or self.interval_ms) / 1000.0

        self._reserve(paths)
        try:
            return self._run_monitor(paths, duration_ms / 1000.0, interval_s, token, on_change)
        finally:
            self._release(paths)

    def _run_monitor(self, paths: List[str], duration_s: float, interval_s: float,
                     token: CancelToken, on_change) -> MonitorResult:
        baseline: Dict[str, Optional[str]] = {}
        unknown: Set[str] = set()
        for path, entry in self.capture_baseline(paths).items():
            if isinstance(entry, FileBaseline):
                baseline[path] = entry.checksum
            elif entry.kind == FAULT_MISSING:
                baseline[path] = None
            elif entry.kind == FAULT_UNREACHABLE:
                return MonitorResult((), False, tuple(paths), f"{FAULT_UNREACHABLE}: {entry.message}")
            else:
                unknown.add(path)

        logger.info("Monitoring %d path(s) for %.1fs (interval %.1fs)", len(paths), duration_s, interval_s)
        deadline = self._clock() + duration_s
        changes: List[IntegrityChange] = []
        completed = False
        fault = None
        while not token.cancelled:
            remaining = deadline - self._clock()
            if remaining <= 0:
                completed = True
                break
            if token.wait(min(interval_s, remaining)):
                break
            fault = self._poll(paths, baseline, unknown, changes, token, on_change)
            if fault:
                break

        logger.info("Monitor finished: %d change(s), completed=%s%s",
                    len(changes), completed, f", fault={fault}" if fault else "")
        return MonitorResult(tuple(changes), completed, tuple(paths), fault)

    def _poll(self, paths, baseline, unknown, changes, token, on_change) -> Optional[str]:
        for path in paths:
            if token.cancelled:
                return None
            try:
                current = self.remote_checksum(path)
            except DeviceUnreachableError as e:
                logger.warning("Device unreachable during monitoring: %s", e)
                return f"{FAULT_UNREACHABLE}: {e}"
            except EvidenceCollectionFault as e:
                logger.debug("Checksum of %s unavailable this cycle: %s", path, e)
                continue

            if path in unknown:
                unknown.discard(path)
                baseline[path] = current
                continue

            previous = baseline.get(path)
            if current == previous:
                continue
            if previous is None:
                change_type = CHANGE_CREATED
            elif current is None:
                change_type = CHANGE_DELETED
            else:
                change_type = CHANGE_MODIFIED
            change = IntegrityChange(path, previous, current, change_type=change_type)
            changes.append(change)
            baseline[path] = current
            logger.warning("Integrity change (%s) detected on %s", change_type, path)
            if on_change is not None:
                try:
                    on_change(change)
                except Exception as e:
                    logger.warning("on_change callback failed: %s", e)
        return None

    # ------------------------------------------------------------------
    #  Summary for the file-integrity assessment category
    # ------------------------------------------------------------------

    def summarize(self, baselines: Mapping[str, Baseline],
                  expected: Optional[Mapping[str, Optional[str]]] = None,
                  changes: Iterable[IntegrityChange] = ()) -> IntegritySummary:
        """Classify each baselined path as passed, failed or missing.

        ``expected[path] = None`` means the file must be absent. Paths that
        changed during monitoring count as failed.
        """
        expected = expected or {}
        changed_paths = {c.path for c in changes}
        unreachable = [p for p, b in baselines.items()
                       if isinstance(b, IntegrityFault) and b.kind == FAULT_UNREACHABLE]
        if unreachable:
            return IntegritySummary(len(baselines), 0, 0, 0, fault=f"{FAULT_UNREACHABLE}: {', '.join(unreachable)}")

        passed = failed = missing = 0
        violations = []
        for path, entry in baselines.items():
            want_absent = path in expected and expected[path] is None
            if isinstance(entry, IntegrityFault):
                if entry.kind == FAULT_MISSING and want_absent:
                    passed += 1
                elif entry.kind == FAULT_MISSING:
                    missing += 1
                    violations.append({"path": path, "reason": "missing"})
                else:
                    failed += 1
                    violations.append({"path": path, "reason": "error", "message": entry.message})
                continue
            if want_absent:
                failed += 1
                violations.append({"path": path, "reason": "unexpected_file"})
            elif path in expected and entry.checksum != str(expected[path]).lower():
                failed += 1
                violations.append({"path": path, "reason": "checksum_mismatch",
                                   "expected": expected[path], "actual": entry.checksum})
            elif path in changed_paths:
                failed += 1
                violations.append({"path": path, "reason": "modified_during_monitoring"})
            else:
                passed += 1
        return IntegritySummary(len(baselines), passed, failed, missing, tuple(violations))
