import base64

from app.schemas.liveness import MotionData, TextureData, liveness_proof_adapter
from app.services.antispoofing_service import (
    HeuristicMotionAnalyzer, HeuristicTextureAnalyzer, SpoofDetector,
)
from conftest import make_blink_proof, make_image, make_motion


def test_textured_image_looks_like_a_real_face():
    analysis = HeuristicTextureAnalyzer().analyze(make_image())
    assert analysis.is_real_face
    assert analysis.overall_score > 0.9
    assert analysis.confidence == 0.8


def test_data_url_prefix_is_accepted():
    analysis = HeuristicTextureAnalyzer().analyze("data:image/jpeg;base64," + make_image())
    assert analysis.is_real_face


def test_flat_image_is_rejected():
    flat = base64.b64encode(bytes([128]) * 4096).decode()
    analysis = HeuristicTextureAnalyzer().analyze(flat)
    assert not analysis.is_real_face
    assert analysis.texture_score == 0.0


def test_missing_small_or_unreadable_images_have_low_confidence():
    analyzer = HeuristicTextureAnalyzer()
    assert analyzer.analyze(None).confidence == 0.1
    assert analyzer.analyze("%%%").confidence == 0.2
    small = analyzer.analyze(make_image(size=100))
    assert small.confidence == 0.3
    assert not small.is_real_face


def test_moire_telemetry_lowers_texture_score():
    analyzer = HeuristicTextureAnalyzer()
    clean = analyzer.analyze(make_image())
    moire = analyzer.analyze(make_image(), TextureData(moire_score=0.8))
    assert moire.texture_score < clean.texture_score
    assert moire.confidence == 0.9


def test_natural_micro_movements():
    analysis = HeuristicMotionAnalyzer().analyze(MotionData.model_validate(make_motion()))
    assert analysis.is_natural_motion
    assert analysis.overall_score == 1.0
    assert analysis.confidence == 0.9


def test_static_or_missing_motion_is_not_natural():
    analyzer = HeuristicMotionAnalyzer()
    static = analyzer.analyze(MotionData(samples=[{"x": 0.5, "y": 0.5}] * 30))
    assert not static.is_natural_motion
    assert static.micro_movement_score == 0.0

    short = analyzer.analyze(MotionData(samples=[{"x": 0.1, "y": 0.1}, {"x": 0.2, "y": 0.1}]))
    assert short.confidence == 0.1
    assert not short.is_natural_motion
    assert analyzer.analyze(None).confidence == 0.1


def test_mechanical_translation_is_not_natural():
    # Déplacement parfaitement régulier: accélération nulle
    samples = [{"x": 0.01 * i, "y": 0.0} for i in range(30)]
    analysis = HeuristicMotionAnalyzer().analyze(MotionData(samples=samples))
    assert analysis.acceleration_pattern_score == 0.0
    assert not analysis.is_natural_motion


def test_detector_accepts_genuine_proof():
    detection = SpoofDetector().detect(liveness_proof_adapter.validate_python(make_blink_proof()))
    assert not detection.is_spoof_detected
    assert detection.confidence < 0.1


def test_detector_flags_static_head_during_movement_challenge():
    proof = liveness_proof_adapter.validate_python({
        "challenge": "head-turn",
        "timestamp": 0,
        "motion_data": {"samples": [{"x": 0.5, "y": 0.5}] * 30},
    })
    detection = SpoofDetector().detect(proof)
    assert detection.is_spoof_detected
    assert "static_during_movement_challenge" in detection.details["signals"]


def test_detector_flags_screen_replay_moire():
    proof = liveness_proof_adapter.validate_python(make_blink_proof(texture_data={"moire_score": 0.9}))
    detection = SpoofDetector().detect(proof)
    assert detection.is_spoof_detected
    assert detection.confidence == 0.9
