import pytest

from app.schemas.liveness import liveness_proof_adapter
from app.services.challenge_service import build_verifiers, SINGLE_IMAGE_CONFIDENCE
from conftest import make_blink_proof, make_image


@pytest.fixture
def verifiers():
    return build_verifiers()


def parse(data):
    return liveness_proof_adapter.validate_python(data)


def test_blink_sequence_passes(verifiers):
    result = verifiers["blink"].verify(parse(make_blink_proof()))
    assert result.verified
    assert result.score == 1.0
    assert result.method == "blink-detection-v2"
    assert result.details["blink_detected"] is True
    assert result.details["blink_duration_ms"] == 200.0


def test_blink_sequence_without_reopening_fails(verifiers):
    proof = make_blink_proof(eye_state_sequence=[
        {"state": "open", "ear": 0.3, "t": 0},
        {"state": "closed", "ear": 0.1, "t": 200},
        {"state": "closed", "ear": 0.1, "t": 400},
    ])
    result = verifiers["blink"].verify(parse(proof))
    assert not result.verified
    assert result.score == 0.0
    assert result.details["blink_detected"] is False


def test_blink_metrics_are_used_without_sequence(verifiers):
    proof = make_blink_proof(eye_state_sequence=None, blink_metrics={
        "ear_open": 0.3, "ear_closed": 0.08, "blink_duration_ms": 180, "closing_speed_ms": 70,
    })
    result = verifiers["blink"].verify(parse(proof))
    assert result.verified
    assert result.details["evidence"] == "metrics"
    assert result.confidence == 0.75


def test_single_image_is_low_reliability(verifiers):
    for challenge in ("blink", "smile", "head-turn", "nod", "mouth-open"):
        result = verifiers[challenge].verify(parse({"challenge": challenge, "image_data": make_image()}))
        assert not result.verified
        assert result.confidence <= SINGLE_IMAGE_CONFIDENCE
        assert result.details["reliability"] == "low"


def test_missing_telemetry_fails_with_reason(verifiers):
    for challenge in ("blink", "smile", "head-turn", "nod", "mouth-open", "sequence"):
        result = verifiers[challenge].verify(parse({"challenge": challenge}))
        assert not result.verified
        assert result.score == 0.0
        assert result.reason


def test_smile_requires_neutral_before_peak(verifiers):
    rising = [{"smile_probability": p, "t": i * 250.0} for i, p in enumerate([0.05, 0.1, 0.5, 0.9, 0.95])]
    result = verifiers["smile"].verify(parse({"challenge": "smile", "expression_sequence": rising}))
    assert result.verified

    falling = [{"smile_probability": p, "t": i * 250.0} for i, p in enumerate([0.95, 0.9, 0.5, 0.1, 0.05])]
    result = verifiers["smile"].verify(parse({"challenge": "smile", "expression_sequence": falling}))
    assert not result.verified


def test_head_turn_sequence(verifiers):
    frames = [{"yaw": yaw, "pitch": 2.0, "roll": 1.0, "t": i * 100.0} for i, yaw in enumerate([0, 8, 16, 25, 33, 40])]
    result = verifiers["head-turn"].verify(parse({"challenge": "head-turn", "head_pose_sequence": frames}))
    assert result.verified
    assert result.details["amplitude"] == 40.0


def test_head_turn_rejects_spliced_frames(verifiers):
    frames = [{"yaw": yaw, "t": i * 100.0} for i, yaw in enumerate([0, 80, 0, 80, 0, 80])]
    result = verifiers["head-turn"].verify(parse({"challenge": "head-turn", "head_pose_sequence": frames}))
    assert not result.verified


def test_nod_requires_reversal(verifiers):
    nod = [{"pitch": p, "t": i * 150.0} for i, p in enumerate([0, 8, 16, 22, 12, 2])]
    assert verifiers["nod"].verify(parse({"challenge": "nod", "head_pose_sequence": nod})).verified

    tilt = [{"pitch": p, "t": i * 150.0} for i, p in enumerate([0, 5, 10, 15, 20, 25])]
    result = verifiers["nod"].verify(parse({"challenge": "nod", "head_pose_sequence": tilt}))
    assert not result.verified
    assert result.details["reversal"] is False


def test_mouth_open_sequence(verifiers):
    frames = [{"mar": m, "t": i * 200.0} for i, m in enumerate([0.2, 0.25, 0.6, 0.75, 0.3])]
    result = verifiers["mouth-open"].verify(parse({"challenge": "mouth-open", "mouth_sequence": frames}))
    assert result.verified
    assert result.details["mar_open"] == 0.75


def test_sequence_needs_every_step(verifiers):
    blink = make_blink_proof(timestamp_ms=1000.0)
    nod = {
        "challenge": "nod",
        "timestamp": 2000.0,
        "head_pose_sequence": [{"pitch": p, "t": i * 150.0} for i, p in enumerate([0, 8, 16, 22, 12, 2])],
    }
    result = verifiers["sequence"].verify(parse({"challenge": "sequence", "steps": [blink, nod]}))
    assert result.verified
    assert result.method == "challenge-sequence-v1"

    failing_nod = dict(nod, head_pose_sequence=None)
    result = verifiers["sequence"].verify(parse({"challenge": "sequence", "steps": [blink, failing_nod]}))
    assert not result.verified
    assert result.score < 0.5


def test_sequence_out_of_order_scores_zero(verifiers):
    blink = make_blink_proof(timestamp_ms=3000.0)
    other = make_blink_proof(timestamp_ms=1000.0)
    result = verifiers["sequence"].verify(parse({"challenge": "sequence", "steps": [blink, other]}))
    assert not result.verified
    assert result.score == 0.0
    assert result.details["in_order"] is False


def test_unknown_challenge_uses_presence(verifiers):
    proof = parse({"challenge": "wink", "face_presence_ratio": 1.0})
    result = verifiers["generic"].verify(proof)
    assert result.method == "basic-presence"
    assert result.score == 0.8
    assert result.verified
