"""
Weighted risk assessment across security categories.

Per-category scores (0-100) are fused with the canonical weights into one
overall score. Categories that could not be evaluated are excluded from
both the numerator and the denominator, so the remaining weights are
renormalized rather than silently counting the missing category as zero.
"""
import logging

from typing import Any, Dict, List, Mapping, Optional, Tuple

from devsec.config import CATEGORY_PASS_BAR, NEUTRAL_SCORE, PASS_THRESHOLD
from devsec.models import (
    AssessmentReport, CategoryScore, DetectionResult, IntegritySummary,
    RISK_CRITICAL, RISK_HIGH, RISK_LOW, RISK_MEDIUM, RISK_MINIMAL,
)
from devsec.scoring import RULE_TABLES, evaluate_rules, facts_from_detection, triggered_rules
from devsec.utils import normalize_category

logger = logging.getLogger("DevSec")

CATEGORY_WEIGHTS = {
    "device": 0.40,
    "application": 0.25,
    "environment": 0.20,
    "file_integrity": 0.10,
    "network": 0.05,
}
CANONICAL_ORDER = tuple(CATEGORY_WEIGHTS)

CATEGORY_ALIASES = {
    "file-integrity": "file_integrity",
    "fileIntegrity": "file_integrity",
    "fileintegrity": "file_integrity",
    "integrity": "file_integrity",
    "app": "application",
    "env": "environment",
}

SECURITY_LEVELS = ((90, "excellent"), (80, "good"), (70, "acceptable"), (60, "poor"))
RISK_LEVELS = ((80, RISK_CRITICAL), (60, RISK_HIGH), (40, RISK_MEDIUM), (20, RISK_LOW))

_CATEGORY_ADVICE = {
    "device": "Run the assessment on a physical, non-rooted device with debugging features disabled.",
    "application": "Build the application as a release: clear android:debuggable, android:allowBackup and android:testOnly.",
    "environment": "Remove hooking frameworks, disable ADB over the network and turn off developer options and mock locations. Keep SELinux enforcing, storage encrypted, the bootloader locked and security patches current.",
    "file_integrity": "Restore the modified files from verified backups and investigate how they were changed.",
    "network": "Remove user-installed CA certificates, clear the global proxy and disconnect VPN tunnels during testing.",
}


def security_level_for(score: float) -> str:
    for bound, label in SECURITY_LEVELS:
        if score >= bound:
            return label
    return "critical"


def risk_level_for(score: float) -> str:
    """Band the inverse of the security score (100 - score) into a risk level."""
    inverse = 100 - score
    for bound, label in RISK_LEVELS:
        if inverse >= bound:
            return label
    return RISK_MINIMAL


def _clamp(score: float) -> float:
    return float(max(0.0, min(100.0, score)))


class RiskAssessor:
    """Fuses per-category evidence into an ``AssessmentReport``."""

    def __init__(self, weights: Optional[Dict[str, float]] = None,
                 pass_threshold: float = PASS_THRESHOLD,
                 category_pass_bar: float = CATEGORY_PASS_BAR):
        self.weights = dict(CATEGORY_WEIGHTS)
        if weights:
            for name, value in weights.items():
                category = normalize_category(name, CATEGORY_ALIASES)
                if float(value) < 0:
                    raise ValueError(f"Weight for '{category}' must be non-negative, got {value}")
                self.weights[category] = float(value)
        self.pass_threshold = pass_threshold
        self.category_pass_bar = category_pass_bar

    # ------------------------------------------------------------------
    #  Input normalization
    # ------------------------------------------------------------------

    def _score_input(self, category: str, value: Any) -> Tuple[Optional[float], Optional[str], List[str]]:
        """Resolve one category input to ``(score, fault, triggered_rule_names)``.

        A ``None`` score means the category is excluded and *fault* says why.
        """
        if value is None:
            return None, "no evidence supplied", []
        if isinstance(value, bool):
            raise ValueError(f"Input for '{category}' must be a score, not a bool")
        if isinstance(value, (int, float)):
            return _clamp(value), None, []
        if isinstance(value, CategoryScore):
            if not value.evaluated:
                return None, value.fault or "not evaluated", []
            return _clamp(value.score), None, []
        if isinstance(value, IntegritySummary):
            if value.fault:
                return None, value.fault, []
            return _clamp(value.score), None, []
        if isinstance(value, DetectionResult):
            return self._score_detections(category, {value.category: value})
        if isinstance(value, Mapping):
            if value.get("fault") or value.get("evaluated") is False:
                return None, str(value.get("fault") or "not evaluated"), []
            if "score" in value:
                return _clamp(float(value["score"])), None, []
            if "facts" in value:
                return self._score_facts(category, value["facts"])
            if "detections" in value:
                return self._score_detections(category, value["detections"])
        raise ValueError(f"Unsupported input for category '{category}': {type(value).__name__}")

    def _score_facts(self, category: str, facts: Mapping[str, Any]) -> Tuple[Optional[float], Optional[str], List[str]]:
        rules = RULE_TABLES.get(category)
        if rules is None:
            raise ValueError(f"No rule table for category '{category}'; supply a score instead")
        return evaluate_rules(facts, rules), None, triggered_rules(facts, rules)

    def _score_detections(self, category: str,
                          detections: Mapping[str, DetectionResult]) -> Tuple[Optional[float], Optional[str], List[str]]:
        faulted = sorted(name for name, d in detections.items() if not d.evaluated)
        if faulted:
            return None, f"unevaluated detections: {', '.join(faulted)}", []
        if category == "device":
            facts = {name: d.detected for name, d in detections.items()}
        else:
            facts = {}
            for d in detections.values():
                facts.update(facts_from_detection(d))
        return self._score_facts(category, facts)

    # ------------------------------------------------------------------
    #  Assessment
    # ------------------------------------------------------------------

    def assess(self, category_inputs: Mapping[str, Any]) -> AssessmentReport:
        resolved: Dict[str, Tuple[Optional[float], Optional[str], List[str]]] = {}
        for name, value in category_inputs.items():
            category = normalize_category(name, CATEGORY_ALIASES)
            if category not in self.weights:
                raise ValueError(
                    f"Unknown assessment category '{name}'. "
                    f"Known categories: {', '.join(self.weights)}"
                )
            resolved[category] = self._score_input(category, value)

        ordered = [c for c in CANONICAL_ORDER if c in resolved]
        ordered += sorted(c for c in resolved if c not in CANONICAL_ORDER)

        category_scores = []
        excluded = []
        weighted_sum = 0.0
        weight_total = 0.0
        for category in ordered:
            score, fault, _ = resolved[category]
            weight = self.weights[category]
            if score is None:
                excluded.append(category)
                category_scores.append(CategoryScore(category, 0.0, weight, evaluated=False, fault=fault))
                continue
            category_scores.append(CategoryScore(category, round(score, 2), weight))
            weighted_sum += score * weight
            weight_total += weight

        if weight_total > 0:
            overall = round(_clamp(weighted_sum / weight_total), 2)
            passed = overall >= self.pass_threshold
        else:
            overall = NEUTRAL_SCORE
            passed = False
            logger.warning("No category could be evaluated; reporting neutral score %.0f", overall)

        recommendations = self._recommendations(ordered, resolved, overall, passed)
        report = AssessmentReport(
            category_scores=tuple(category_scores),
            overall_score=overall,
            security_level=security_level_for(overall),
            risk_level=risk_level_for(overall),
            passed=passed,
            recommendations=tuple(recommendations),
            excluded_categories=tuple(excluded),
        )
        logger.info("Assessment: overall=%.2f level=%s risk=%s passed=%s excluded=%s",
                    overall, report.security_level, report.risk_level, passed, excluded or "none")
        return report

    def _recommendations(self, ordered: List[str], resolved, overall: float, passed: bool) -> List[str]:
        lines = []
        for category in ordered:
            score, fault, triggered = resolved[category]
            if score is None:
                lines.append(f"{category}: could not be evaluated ({fault}); re-run once the device is reachable.")
                continue
            if score < self.category_pass_bar:
                advice = _CATEGORY_ADVICE.get(category, "Review the findings for this category.")
                detail = f" Triggered: {', '.join(triggered)}." if triggered else ""
                lines.append(f"{category}: score {score:.2f} is below {self.category_pass_bar:.0f}.{detail} {advice}")
        if not passed:
            lines.append(f"overall: score {overall:.2f} does not meet the pass threshold of {self.pass_threshold:.0f}.")
        return lines
