import pytest

from app.services.risk_service import RiskScorer


@pytest.fixture
def scorer():
    return RiskScorer()


def test_no_risk_keeps_base_threshold(scorer):
    risk = scorer.risk_factor(0)
    assert risk == 0.0
    assert scorer.adjusted_threshold(0.6, risk) == 0.6


def test_failures_saturate(scorer):
    assert scorer.risk_factor(1) == pytest.approx(0.1)
    assert scorer.risk_factor(5) == pytest.approx(0.5)
    assert scorer.risk_factor(50) == pytest.approx(0.5)


def test_device_changes_and_borderline_candidate(scorer):
    assert scorer.risk_factor(0, ip_changed=True) == pytest.approx(0.2)
    assert scorer.risk_factor(0, user_agent_changed=True) == pytest.approx(0.1)
    assert scorer.risk_factor(0, candidate_score=0.62, base_threshold=0.6) == pytest.approx(0.2)
    assert scorer.risk_factor(0, candidate_score=0.8, base_threshold=0.6) == 0.0
    assert scorer.risk_factor(10, True, True, 0.6, 0.6) == 1.0


def test_threshold_is_monotonic_in_risk(scorer):
    thresholds = [scorer.adjusted_threshold(0.6, risk / 10) for risk in range(11)]
    assert thresholds == sorted(thresholds)
    assert thresholds[0] == 0.6
    assert thresholds[-1] == pytest.approx(0.72)


def test_threshold_never_drops_below_base(scorer):
    assert scorer.adjusted_threshold(0.6, -1.0) == 0.6


def test_sensitivity_is_configurable():
    assert RiskScorer(sensitivity=0.5).adjusted_threshold(0.6, 1.0) == pytest.approx(0.9)
