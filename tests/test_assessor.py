"""Unit tests for devsec/assessor.py — weighted risk assessment."""
import pytest

from devsec.assessor import RiskAssessor, security_level_for, risk_level_for, CATEGORY_WEIGHTS
from devsec.models import CategoryScore, DetectionResult, IntegritySummary, Indicator


def _detection(category, detected, fault=None, indicators=()):
    return DetectionResult(category, detected, 1.0 if detected else 0.0,
                           int(detected), 1, "low", tuple(indicators), fault)


# ---------------------------------------------------------------------------
# Bands
# ---------------------------------------------------------------------------

class TestBands:
    @pytest.mark.parametrize("score,level", [
        (100, "excellent"), (90, "excellent"), (89.99, "good"), (80, "good"),
        (75, "acceptable"), (70, "acceptable"), (65, "poor"), (60, "poor"),
        (59.9, "critical"), (0, "critical"),
    ])
    def test_security_level(self, score, level):
        assert security_level_for(score) == level

    @pytest.mark.parametrize("score,level", [
        (0, "critical"), (20, "critical"), (30, "high"), (40, "high"),
        (50, "medium"), (60, "medium"), (75, "low"), (80, "low"),
        (81, "minimal"), (100, "minimal"),
    ])
    def test_risk_level(self, score, level):
        assert risk_level_for(score) == level


# ---------------------------------------------------------------------------
# RiskAssessor
# ---------------------------------------------------------------------------

class TestRiskAssessor:
    def test_weights_sum_to_one(self):
        assert sum(CATEGORY_WEIGHTS.values()) == pytest.approx(1.0)

    def test_weighted_example(self):
        report = RiskAssessor().assess({
            "device": 50,
            "application": 100,
            "environment": 90,
            "file_integrity": 100,
            "network": 100,
        })
        assert report.overall_score == 78.0
        assert report.security_level == "acceptable"
        assert report.passed is True
        assert report.excluded_categories == ()
        assert [cs.category for cs in report.category_scores] == [
            "device", "application", "environment", "file_integrity", "network",
        ]

    def test_device_facts(self):
        report = RiskAssessor().assess({"device": {"facts": {"root": True}}})
        assert report.overall_score == 60.0
        assert report.passed is False
        assert any("Triggered: root" in r for r in report.recommendations)

    def test_renormalizes_over_evaluated_categories(self):
        report = RiskAssessor().assess({
            "device": 50,
            "application": {"fault": "package not installed"},
            "network": 100,
        })
        # (50*.40 + 100*.05) / .45
        assert report.overall_score == pytest.approx(55.56)
        assert report.excluded_categories == ("application",)
        app = report.score_for("application")
        assert app.evaluated is False
        assert app.fault == "package not installed"

    def test_excluded_category_gets_recommendation(self):
        report = RiskAssessor().assess({"device": 100, "environment": {"evaluated": False}})
        assert report.overall_score == 100.0
        assert any(r.startswith("environment: could not be evaluated") for r in report.recommendations)

    def test_nothing_evaluated_is_neutral_and_not_passed(self):
        report = RiskAssessor().assess({"device": None, "network": {"fault": "unreachable"}})
        assert report.overall_score == 50.0
        assert report.passed is False
        assert set(report.excluded_categories) == {"device", "network"}

    def test_empty_input_is_neutral(self):
        report = RiskAssessor().assess({})
        assert report.overall_score == 50.0
        assert report.passed is False

    def test_aliases(self):
        report = RiskAssessor().assess({"file-integrity": 80, "fileIntegrity": 80})
        assert [cs.category for cs in report.category_scores] == ["file_integrity"]
        assert report.overall_score == 80.0

    def test_unknown_category_rejected(self):
        with pytest.raises(ValueError, match="Unknown assessment category"):
            RiskAssessor().assess({"bluetooth": 100})

    def test_bool_input_rejected(self):
        with pytest.raises(ValueError, match="bool"):
            RiskAssessor().assess({"device": True})

    def test_scores_are_clamped(self):
        report = RiskAssessor().assess({"device": 140, "network": -10})
        assert report.score_for("device").score == 100.0
        assert report.score_for("network").score == 0.0

    def test_integrity_summary_input(self):
        summary = IntegritySummary(total=4, passed=3, failed=1, missing=0)
        report = RiskAssessor().assess({"file_integrity": summary})
        assert report.overall_score == 75.0

    def test_faulted_integrity_summary_excluded(self):
        summary = IntegritySummary(total=2, passed=0, failed=0, missing=0, fault="unreachable: /a")
        report = RiskAssessor().assess({"file_integrity": summary, "device": 90})
        assert report.excluded_categories == ("file_integrity",)
        assert report.overall_score == 90.0

    def test_category_score_input(self):
        report = RiskAssessor().assess({
            "device": CategoryScore("device", 85, 0.4),
            "network": CategoryScore("network", 0, 0.05, evaluated=False, fault="offline"),
        })
        assert report.overall_score == 85.0
        assert report.excluded_categories == ("network",)

    def test_device_detections(self):
        report = RiskAssessor().assess({"device": {"detections": {
            "emulator": _detection("emulator", True),
            "root": _detection("root", False),
            "debug": _detection("debug", True),
        }}})
        assert report.overall_score == 50.0

    def test_device_excluded_when_any_detection_faulted(self):
        report = RiskAssessor().assess({"device": {"detections": {
            "emulator": _detection("emulator", False),
            "root": _detection("root", False, fault="device unreachable"),
        }}})
        assert report.excluded_categories == ("device",)

    def test_environment_detection_uses_indicator_facts(self):
        env = _detection("environment", False, indicators=(
            Indicator("adb_over_network", "environment", True),
            Indicator("developer_options", "environment", True),
            Indicator("mock_location", "environment", False),
        ))
        report = RiskAssessor().assess({"environment": env})
        assert report.overall_score == 70.0

    def test_failing_report_has_overall_recommendation(self):
        report = RiskAssessor().assess({"device": 40})
        assert report.recommendations[-1].startswith("overall: score 40.00")

    def test_custom_weights(self):
        assessor = RiskAssessor(weights={"network": 0.40})
        report = assessor.assess({"device": 100, "network": 0})
        assert report.overall_score == 50.0

    def test_to_dict_is_json_safe(self):
        import json
        report = RiskAssessor().assess({"device": 50, "network": {"fault": "x"}})
        data = json.loads(json.dumps(report.to_dict()))
        assert data["excluded_categories"] == ["network"]
        assert data["category_scores"][0]["category"] == "device"
