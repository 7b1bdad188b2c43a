"""
Local store for file backups pulled from the device.

Directory layout (two-char prefix buckets, like a git object store)::

    <backup_dir>/
        index.json        # id -> BackupRecord dict
        3f/
            3fa9....bak
"""
import json
import logging
import threading
import uuid

from pathlib import Path
from typing import Dict, List, Optional, Union

from devsec.errors import BackupError, BackupNotFoundError
from devsec.models import BackupRecord

logger = logging.getLogger("DevSec")

INDEX_FILE_NAME = "index.json"


class BackupStore:
    """Thread-safe registry of backup records plus their local blobs.

    The index is rewritten atomically (temp file + ``replace``) on every
    change. Work on one target path is serialized through ``path_lock``.
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self._lock = threading.RLock()
        self._path_locks: Dict[str, threading.RLock] = {}
        self._path_locks_guard = threading.Lock()
        self._ensure_root()

    # ------------------------------------------------------------------
    #  Directory helpers
    # ------------------------------------------------------------------

    def _ensure_root(self) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True, mode=0o700)
        except OSError as e:
            raise BackupError(f"Backup directory '{self.root}' is not writable: {e}") from e

    @property
    def index_file(self) -> Path:
        return self.root / INDEX_FILE_NAME

    def new_id(self) -> str:
        return uuid.uuid4().hex

    def blob_path(self, backup_id: str) -> Path:
        return self.root / backup_id[:2] / f"{backup_id}.bak"

    def path_lock(self, remote_path: str) -> threading.RLock:
        """Re-entrant lock serializing backup/restore/edit work on one device path."""
        with self._path_locks_guard:
            lock = self._path_locks.get(remote_path)
            if lock is None:
                lock = threading.RLock()
                self._path_locks[remote_path] = lock
            return lock

    # ------------------------------------------------------------------
    #  Index
    # ------------------------------------------------------------------

    def _load_index(self) -> Dict[str, Dict]:
        if not self.index_file.exists():
            return {}
        try:
            with open(self.index_file, "r", encoding="utf-8") as f:
                data = json.load(f)
            return data if isinstance(data, dict) else {}
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Backup index read error: %s", e)
            return {}

    def _save_index(self, index: Dict[str, Dict]) -> None:
        tmp = self.index_file.with_suffix(".tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(index, f, indent=2, sort_keys=True)
            tmp.replace(self.index_file)
        except OSError as e:
            raise BackupError(f"Failed to write backup index: {e}") from e

    # ------------------------------------------------------------------
    #  Records
    # ------------------------------------------------------------------

    def save(self, record: BackupRecord) -> None:
        with self._lock:
            index = self._load_index()
            index[record.id] = record.to_dict()
            self._save_index(index)

    def get(self, backup_id: str) -> BackupRecord:
        with self._lock:
            data = self._load_index().get(backup_id)
        if data is None:
            raise BackupNotFoundError(f"No backup with id '{backup_id}'")
        return BackupRecord.from_dict(data)

    def find(self, backup_id: str) -> Optional[BackupRecord]:
        try:
            return self.get(backup_id)
        except BackupNotFoundError:
            return None

    def list(self) -> List[BackupRecord]:
        with self._lock:
            index = self._load_index()
        records = [BackupRecord.from_dict(d) for d in index.values()]
        records.sort(key=lambda r: r.created_at)
        return records

    def remove(self, backup_id: str) -> bool:
        """Drop the record and its blob. Returns True if the record existed."""
        with self._lock:
            index = self._load_index()
            data = index.pop(backup_id, None)
            if data is None:
                return False
            self._save_index(index)
        self._unlink_blob(Path(data.get("local_storage_path") or self.blob_path(backup_id)))
        return True

    def clear(self) -> int:
        """Remove every record and blob. Returns the number of records removed."""
        with self._lock:
            index = self._load_index()
            self._save_index({})
        for backup_id, data in index.items():
            self._unlink_blob(Path(data.get("local_storage_path") or self.blob_path(backup_id)))
        for stray in self.root.glob("*/*.bak"):
            self._unlink_blob(stray)
        return len(index)

    def _unlink_blob(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
            parent = path.parent
            if parent != self.root and parent.exists() and not any(parent.iterdir()):
                parent.rmdir()
        except OSError as e:
            logger.warning("Failed to remove backup blob %s: %s", path, e)
