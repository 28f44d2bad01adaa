import pytest

from app.exceptions import ValidationError
from app.services.liveness_service import LivenessService, parse_liveness_proof
from conftest import make_blink_proof

NOW = 1_700_000_000.0


@pytest.fixture
def liveness():
    return LivenessService(clock=lambda: NOW)


def test_missing_proof_fails(liveness):
    result = liveness.verify(None)
    assert not result.verified
    assert result.method == "none"
    assert result.score == 0.0


def test_fresh_blink_proof_passes(liveness):
    result = liveness.verify(make_blink_proof(timestamp_ms=NOW * 1000 - 5000))
    assert result.verified
    assert result.method == "blink-detection-v2"
    assert result.details["challenge"] == "blink"
    assert result.details["challenge_compliance"] == result.score
    assert 0.8 < result.details["time_validity"] < 0.85
    assert result.details["antispoofing_score"] > 0.9


def test_expired_proof_is_rejected_before_challenge(liveness):
    result = liveness.verify(make_blink_proof(timestamp_ms=NOW * 1000 - 31_000))
    assert not result.verified
    assert result.method == "timestamp"
    assert "30s" in result.reason


@pytest.mark.parametrize("challenge,window", [
    ("smile", 20), ("head-turn", 45), ("nod", 35), ("mouth-open", 25), ("sequence", 60), ("wink", 30),
])
def test_time_window_depends_on_challenge(liveness, challenge, window):
    assert liveness.time_window(challenge) == window


def test_future_timestamps_are_checked_too(liveness):
    result = liveness.verify(make_blink_proof(timestamp_ms=NOW * 1000 + 120_000))
    assert result.method == "timestamp"


def test_missing_timestamp_is_rejected(liveness):
    proof = make_blink_proof()
    del proof["timestamp"]
    result = liveness.verify(proof)
    assert not result.verified
    assert result.method == "timestamp"


def test_spoof_overrides_a_perfect_challenge(liveness):
    proof = make_blink_proof(timestamp_ms=NOW * 1000, texture_data={"moire_score": 0.95})
    result = liveness.verify(proof)
    assert not result.verified
    assert result.score == 0.0
    assert result.method == "advanced-anti-spoofing"


def test_malformed_proof_raises_validation_error():
    with pytest.raises(ValidationError):
        parse_liveness_proof({"challenge": "blink", "eye_state_sequence": [{"state": "squint"}]})


def test_unknown_challenge_falls_back_to_presence(liveness):
    result = liveness.verify({"challenge": "wink", "timestamp": NOW * 1000, "face_presence_ratio": 0.5})
    assert result.method == "basic-presence"
    assert not result.verified
