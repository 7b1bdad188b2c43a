"""Weighted-evidence fusion of indicators into a per-category verdict."""
import logging

from typing import Dict, Iterable, Optional

from devsec.config import DETECTION_THRESHOLDS, DEFAULT_DETECTION_THRESHOLD
from devsec.models import (
    CollectionResult, DetectionResult, Indicator,
    RISK_LOW, RISK_MEDIUM, RISK_HIGH, RISK_CRITICAL,
)

logger = logging.getLogger("DevSec")

# Label applied when a category is detected; undetected is always "low".
RISK_LABELS = {
    "root": RISK_CRITICAL,
    "emulator": RISK_HIGH,
    "debug": RISK_MEDIUM,
    "environment": RISK_HIGH,
    "application": RISK_HIGH,
    "network": RISK_MEDIUM,
    "security_features": RISK_HIGH,
}


def weighted_confidence(indicators: Iterable[Indicator]) -> float:
    """Σ(w·detected) / Σw over the indicators, in [0, 1].

    Indicators with ``weight=None`` share the uniform weight ``1/N``.
    Returns 0.0 for an empty set or a set whose weights sum to zero.
    """
    indicators = list(indicators)
    if not indicators:
        return 0.0
    uniform = 1.0 / len(indicators)
    total = 0.0
    fired = 0.0
    for ind in indicators:
        w = uniform if ind.weight is None else float(ind.weight)
        total += w
        if ind.detected:
            fired += w
    if total <= 0:
        return 0.0
    return max(0.0, min(1.0, fired / total))


class DetectionAggregator:
    """Turns a ``CollectionResult`` into a ``DetectionResult``.

    Pure: identical indicator sets always produce equal results.
    """

    def __init__(self, thresholds: Optional[Dict[str, float]] = None,
                 risk_labels: Optional[Dict[str, str]] = None):
        self.thresholds = dict(DETECTION_THRESHOLDS)
        if thresholds:
            for category, value in thresholds.items():
                if not 0.0 <= float(value) <= 1.0:
                    raise ValueError(f"Threshold for '{category}' must be in [0, 1], got {value}")
                self.thresholds[category] = float(value)
        self.risk_labels = dict(RISK_LABELS)
        if risk_labels:
            self.risk_labels.update(risk_labels)

    def threshold_for(self, category: str) -> float:
        return self.thresholds.get(category, DEFAULT_DETECTION_THRESHOLD)

    def aggregate(self, collection: CollectionResult) -> DetectionResult:
        category = collection.category
        indicators = tuple(collection.indicators)
        fired = sum(1 for i in indicators if i.detected)

        fault = None
        if collection.unreachable:
            fault = collection.fault or "device unreachable"
        elif indicators and all(i.fault for i in indicators):
            fault = f"all {len(indicators)} probes faulted"
        if fault:
            return DetectionResult(
                category=category,
                detected=False,
                confidence=0.0,
                indicators_fired=fired,
                indicators_total=len(indicators),
                risk_label=RISK_LOW,
                indicators=indicators,
                fault=fault,
            )

        confidence = weighted_confidence(indicators)
        detected = confidence > self.threshold_for(category)
        risk_label = self.risk_labels.get(category, RISK_LOW) if detected else RISK_LOW
        if detected:
            logger.info("Category '%s' detected (confidence %.2f, %d/%d indicators)",
                        category, confidence, fired, len(indicators))
        return DetectionResult(
            category=category,
            detected=detected,
            confidence=round(confidence, 4),
            indicators_fired=fired,
            indicators_total=len(indicators),
            risk_label=risk_label,
            indicators=indicators,
        )

    def aggregate_indicators(self, category: str, indicators: Iterable[Indicator]) -> DetectionResult:
        return self.aggregate(CollectionResult(category, list(indicators)))
