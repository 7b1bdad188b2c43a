"""Data models for evidence, detection results, scores, reports and integrity records.

Every model exposes ``to_dict()`` returning a JSON-safe dict so results can
be handed straight back to MCP clients or written to disk.
"""
from dataclasses import dataclass, field, asdict
from typing import Dict, Any, Optional, List

from devsec.utils import utc_now_iso

RISK_LOW = "low"
RISK_MEDIUM = "medium"
RISK_HIGH = "high"
RISK_CRITICAL = "critical"
RISK_MINIMAL = "minimal"

CHANGE_MODIFIED = "modified"
CHANGE_CREATED = "created"
CHANGE_DELETED = "deleted"

FAULT_MISSING = "missing"
FAULT_ERROR = "error"
FAULT_UNREACHABLE = "unreachable"


@dataclass(frozen=True)
class ShellResult:
    success: bool
    output: str = ""
    error: Optional[str] = None
    timed_out: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Indicator:
    """One atomic piece of evidence produced by a single probe run."""
    name: str
    category: str
    detected: bool
    weight: Optional[float] = None  # None = uniform weighting
    fault: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CollectionResult:
    category: str
    indicators: List[Indicator] = field(default_factory=list)
    unreachable: bool = False
    fault: Optional[str] = None

    @property
    def faults(self) -> List[str]:
        return [f"{i.name}: {i.fault}" for i in self.indicators if i.fault]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "indicators": [i.to_dict() for i in self.indicators],
            "unreachable": self.unreachable,
            "fault": self.fault,
        }


@dataclass(frozen=True)
class DetectionResult:
    category: str
    detected: bool
    confidence: float
    indicators_fired: int
    indicators_total: int
    risk_label: str
    indicators: tuple = ()
    fault: Optional[str] = None
    timestamp: str = field(default_factory=utc_now_iso, compare=False)

    @property
    def evaluated(self) -> bool:
        return self.fault is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "detected": self.detected,
            "confidence": self.confidence,
            "indicators_fired": self.indicators_fired,
            "indicators_total": self.indicators_total,
            "risk_label": self.risk_label,
            "indicators": [i.to_dict() for i in self.indicators],
            "evaluated": self.evaluated,
            "fault": self.fault,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class CategoryScore:
    category: str
    score: float
    weight: float
    evaluated: bool = True
    fault: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AssessmentReport:
    category_scores: tuple
    overall_score: float
    security_level: str
    risk_level: str
    passed: bool
    recommendations: tuple = ()
    excluded_categories: tuple = ()
    timestamp: str = field(default_factory=utc_now_iso, compare=False)

    def score_for(self, category: str) -> Optional[CategoryScore]:
        for cs in self.category_scores:
            if cs.category == category:
                return cs
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "category_scores": [cs.to_dict() for cs in self.category_scores],
            "overall_score": self.overall_score,
            "security_level": self.security_level,
            "risk_level": self.risk_level,
            "passed": self.passed,
            "recommendations": list(self.recommendations),
            "excluded_categories": list(self.excluded_categories),
        }


@dataclass(frozen=True)
class FileBaseline:
    path: str
    checksum: str
    captured_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class IntegrityFault:
    path: str
    kind: str  # FAULT_MISSING | FAULT_ERROR | FAULT_UNREACHABLE
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"path": self.path, "fault": self.kind, "message": self.message}


@dataclass(frozen=True)
class BackupRecord:
    id: str
    original_path: str
    local_storage_path: str
    checksum: str
    created_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BackupRecord":
        return cls(
            id=data["id"],
            original_path=data["original_path"],
            local_storage_path=data["local_storage_path"],
            checksum=data["checksum"],
            created_at=data.get("created_at") or utc_now_iso(),
        )


@dataclass(frozen=True)
class IntegrityChange:
    path: str
    previous_checksum: Optional[str]
    current_checksum: Optional[str]
    detected_at: str = field(default_factory=utc_now_iso)
    change_type: str = CHANGE_MODIFIED

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RestoreResult:
    success: bool
    backup_id: str
    error: Optional[str] = None
    error_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ModifyResult:
    success: bool
    backup_id: Optional[str] = None
    original_value: Any = None
    new_value: Any = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TamperResult:
    success: bool
    tamper_type: str
    backup_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class MonitorResult:
    changes: tuple
    completed: bool
    monitored_paths: tuple = ()
    fault: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "changes": [c.to_dict() for c in self.changes],
            "completed": self.completed,
            "monitored_paths": list(self.monitored_paths),
            "change_count": len(self.changes),
            "fault": self.fault,
        }


def file_integrity_score(passed: int, total: int) -> float:
    """Share of checked files that passed, as 0-100. No files checked scores 100."""
    if total <= 0:
        return 100.0
    return round(max(0, min(passed, total)) / total * 100, 2)


@dataclass(frozen=True)
class IntegritySummary:
    total: int
    passed: int
    failed: int
    missing: int
    violations: tuple = ()
    fault: Optional[str] = None

    @property
    def score(self) -> float:
        return file_integrity_score(self.passed, self.total)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "missing": self.missing,
            "violations": list(self.violations),
            "score": self.score,
            "fault": self.fault,
        }
