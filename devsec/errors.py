"""Exception taxonomy for evidence collection, backups and integrity checks."""


class DevSecError(Exception):
    """Base class for all engine errors."""

    code = "devsec_error"


class EvidenceCollectionFault(DevSecError):
    """A single probe or shell call failed. Recovered locally as a negative indicator."""

    code = "evidence_collection_fault"


class DeviceUnreachableError(DevSecError):
    """The shell channel to the device is down. Aborts the current batch."""

    code = "device_unreachable"


class IntegrityVerificationError(DevSecError):
    """A backup copy no longer matches the checksum recorded at backup time."""

    code = "integrity_verification_failed"


class ConfigFormatError(DevSecError):
    """Unsupported format or malformed content for a structured config edit."""

    code = "config_format_error"


class BackupError(DevSecError):
    """A backup could not be created (pull failed, store not writable)."""

    code = "backup_failed"


class BackupNotFoundError(DevSecError):
    code = "backup_not_found"


class MonitorConflictError(DevSecError):
    """Another active monitor session already owns one of the requested paths."""

    code = "monitor_conflict"
