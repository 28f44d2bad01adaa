"""
Vérificateurs de défis de vie (blink, smile, head-turn, nod, mouth-open, sequence)

Chaque vérificateur consomme la télémétrie de son défi et produit un
LivenessResult. La preuve la plus riche disponible est utilisée:
séquence d'images > métriques agrégées > image seule.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
import logging

import numpy as np

from app.config import settings
from app.schemas.liveness import (
    BlinkProof, SmileProof, HeadTurnProof, NodProof, MouthOpenProof,
    SequenceProof, GenericProof, HeadPoseFrame,
)
from app.services.scoring import band_score, clamp, weighted_score

logger = logging.getLogger(__name__)

# Image seule: impossible d'observer un mouvement, fiabilité faible
SINGLE_IMAGE_SCORE = 0.5
SINGLE_IMAGE_CONFIDENCE = 0.3

# Composante neutre quand une mesure optionnelle est absente
UNKNOWN_COMPONENT = 0.7


@dataclass
class LivenessResult:
    verified: bool
    score: float
    method: str
    confidence: float = 0.0
    reason: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


def _sequence_confidence(frame_count: int) -> float:
    return min(0.95, 0.6 + 0.03 * frame_count)


def _duration(start: Optional[float], end: Optional[float]) -> Optional[float]:
    if start is None or end is None:
        return None
    return end - start


class ChallengeVerifier:
    """Contrat commun des vérificateurs de défi"""

    challenge = "generic"
    method = "basic"
    missing_reason = "Aucune télémétrie fournie pour le défi"

    def __init__(self, min_score: Optional[float] = None):
        self.min_score = settings.MIN_LIVENESS_SCORE if min_score is None else min_score

    def verify(self, proof) -> LivenessResult:
        raise NotImplementedError

    def _result(self, score: float, confidence: float, details: Dict[str, Any]) -> LivenessResult:
        score = round(clamp(score), 4)
        verified = score >= self.min_score
        return LivenessResult(
            verified=verified,
            score=score,
            method=self.method,
            confidence=round(clamp(confidence), 4),
            reason=None if verified else f"Score insuffisant ({score:.2f} < {self.min_score:.2f})",
            details=details,
        )

    def _missing(self) -> LivenessResult:
        return LivenessResult(
            verified=False,
            score=0.0,
            method=self.method,
            confidence=0.0,
            reason=self.missing_reason,
            details={"evidence": "none"},
        )

    def _single_image(self) -> LivenessResult:
        # Une image fixe ne prouve pas l'exécution du défi
        return self._result(
            SINGLE_IMAGE_SCORE,
            SINGLE_IMAGE_CONFIDENCE,
            {"evidence": "single_image", "reliability": "low"},
        )


class BlinkVerifier(ChallengeVerifier):
    challenge = "blink"
    method = "blink-detection-v2"
    missing_reason = "Aucune donnée de clignement fournie"

    def verify(self, proof: BlinkProof) -> LivenessResult:
        if proof.eye_state_sequence:
            return self._from_sequence(proof)
        if proof.blink_metrics:
            return self._from_metrics(proof)
        if proof.image_data:
            return self._single_image()
        return self._missing()

    def _from_sequence(self, proof: BlinkProof) -> LivenessResult:
        frames = proof.eye_state_sequence
        opened = closing = reopened = None

        # Cycle complet ouvert -> fermé -> ouvert (les états partiels sont tolérés)
        for i, frame in enumerate(frames):
            if opened is None:
                if frame.state == "open":
                    opened = i
            elif closing is None:
                if frame.state == "closed":
                    closing = i
            elif frame.state == "open":
                reopened = i
                break

        blink_detected = reopened is not None
        details: Dict[str, Any] = {
            "evidence": "sequence",
            "frames": len(frames),
            "blink_detected": blink_detected,
        }

        if not blink_detected:
            return self._result(0.0, 0.4, details)

        # Le clignement commence à la première image non ouverte après l'ouverture
        first_not_open = next(
            i for i in range(opened + 1, len(frames)) if frames[i].state != "open"
        )
        duration_ms = _duration(frames[first_not_open].t, frames[reopened].t)
        if duration_ms is None:
            duration_score = UNKNOWN_COMPONENT
        else:
            duration_score = band_score(duration_ms, 100, 400)
            details["blink_duration_ms"] = duration_ms

        open_ears = [f.ear for f in frames if f.state == "open" and f.ear is not None]
        closed_ears = [f.ear for f in frames[first_not_open:reopened] if f.ear is not None]
        if open_ears and closed_ears:
            ear_open = float(np.mean(open_ears))
            ear_closed = float(min(closed_ears))
            ear_score = self._ear_score(ear_open, ear_closed)
            details.update({"ear_open": round(ear_open, 4), "ear_closed": round(ear_closed, 4)})
        else:
            ear_score = UNKNOWN_COMPONENT

        score = weighted_score([(1.0, 0.5), (duration_score, 0.25), (ear_score, 0.25)])
        return self._result(score, _sequence_confidence(len(frames)), details)

    def _from_metrics(self, proof: BlinkProof) -> LivenessResult:
        m = proof.blink_metrics
        ear_score = self._ear_score(m.ear_open, m.ear_closed)
        duration_score = band_score(m.blink_duration_ms, 100, 400)
        # Ni instantané (vidéo montée) ni trop lent
        speed_score = band_score(m.closing_speed_ms, 30, 150)

        score = weighted_score([(ear_score, 0.35), (duration_score, 0.35), (speed_score, 0.3)])
        return self._result(score, 0.75, {
            "evidence": "metrics",
            "ear_score": round(ear_score, 4),
            "duration_score": round(duration_score, 4),
            "speed_score": round(speed_score, 4),
        })

    @staticmethod
    def _ear_score(ear_open: float, ear_closed: float) -> float:
        if ear_open <= 0:
            return 0.0
        drop = 1.0 - ear_closed / ear_open
        return 0.5 * band_score(ear_open, 0.2, 0.45) + 0.5 * band_score(drop, 0.3, 1.0)


class SmileVerifier(ChallengeVerifier):
    challenge = "smile"
    method = "expression-analysis-v2"
    missing_reason = "Aucune donnée d'expression fournie"

    def verify(self, proof: SmileProof) -> LivenessResult:
        if proof.expression_sequence:
            return self._from_sequence(proof)
        if proof.smile_metrics:
            return self._from_metrics(proof)
        if proof.image_data:
            return self._single_image()
        return self._missing()

    def _from_sequence(self, proof: SmileProof) -> LivenessResult:
        frames = proof.expression_sequence
        probabilities = [f.smile_probability for f in frames]

        baseline_index = int(np.argmin(probabilities))
        peak_index = int(np.argmax(probabilities))
        baseline = probabilities[baseline_index]
        peak = probabilities[peak_index]

        rise_score = band_score(peak - baseline, 0.4, 1.0)
        peak_score = band_score(peak, 0.7, 1.0)
        # Le visage neutre doit précéder le sourire
        order_score = 1.0 if baseline_index < peak_index else 0.0

        onset_ms = _duration(frames[baseline_index].t, frames[peak_index].t)
        onset_score = UNKNOWN_COMPONENT if onset_ms is None else band_score(onset_ms, 300, 3000)

        score = weighted_score([
            (rise_score, 0.35), (peak_score, 0.25), (order_score, 0.2), (onset_score, 0.2),
        ])
        return self._result(score, _sequence_confidence(len(frames)), {
            "evidence": "sequence",
            "frames": len(frames),
            "baseline": round(baseline, 4),
            "peak": round(peak, 4),
            "onset_ms": onset_ms,
        })

    def _from_metrics(self, proof: SmileProof) -> LivenessResult:
        m = proof.smile_metrics
        components = [
            (band_score(m.peak_probability - m.neutral_probability, 0.4, 1.0), 0.3),
            (band_score(m.peak_probability, 0.7, 1.0), 0.25),
            (band_score(m.duration_ms, 300, 3000), 0.25),
        ]
        if m.mouth_width_ratio is not None:
            components.append((band_score(m.mouth_width_ratio, 1.05, 1.6), 0.2))
        else:
            components.append((UNKNOWN_COMPONENT, 0.2))

        return self._result(weighted_score(components), 0.7, {"evidence": "metrics"})


class HeadTurnVerifier(ChallengeVerifier):
    challenge = "head-turn"
    method = "pose-estimation-v2"
    missing_reason = "Aucune donnée de pose de la tête fournie"

    def verify(self, proof: HeadTurnProof) -> LivenessResult:
        if proof.head_pose_sequence:
            return self._from_sequence(proof.head_pose_sequence)
        if proof.head_turn_metrics:
            m = proof.head_turn_metrics
            amplitude = max(abs(m.max_yaw), abs(m.min_yaw))
            speed_score = _angular_speed_score(amplitude, m.duration_ms)
            score = weighted_score([(band_score(amplitude, 20, 75), 0.6), (speed_score, 0.4)])
            return self._result(score, 0.7, {"evidence": "metrics", "amplitude": amplitude})
        if proof.image_data:
            return self._single_image()
        return self._missing()

    def _from_sequence(self, frames: List[HeadPoseFrame]) -> LivenessResult:
        yaws = [f.yaw for f in frames]
        deviations = [abs(yaw - yaws[0]) for yaw in yaws]
        peak_index = int(np.argmax(deviations))
        amplitude = deviations[peak_index]

        duration_ms = _duration(frames[0].t, frames[peak_index].t)
        speed_score = UNKNOWN_COMPONENT if duration_ms is None else _angular_speed_score(amplitude, duration_ms)

        # Tangage et roulis doivent rester stables pendant une rotation latérale
        drift = max(_range([f.pitch for f in frames]), _range([f.roll for f in frames]))
        stability_score = 1.0 if drift <= 25 else clamp(1.0 - (drift - 25) / 25)

        score = weighted_score([
            (band_score(amplitude, 20, 75), 0.4),
            (speed_score, 0.2),
            (stability_score, 0.2),
            (_smoothness(yaws), 0.2),
        ])
        return self._result(score, _sequence_confidence(len(frames)), {
            "evidence": "sequence",
            "frames": len(frames),
            "amplitude": round(amplitude, 2),
            "drift": round(drift, 2),
        })


class NodVerifier(ChallengeVerifier):
    challenge = "nod"
    method = "vertical-movement-v1"
    missing_reason = "Aucune donnée de mouvement vertical fournie"

    def verify(self, proof: NodProof) -> LivenessResult:
        if proof.head_pose_sequence:
            return self._from_sequence(proof.head_pose_sequence)
        if proof.nod_metrics:
            m = proof.nod_metrics
            amplitude = m.max_pitch - m.min_pitch
            score = weighted_score([
                (band_score(amplitude, 10, 60), 0.6),
                (_angular_speed_score(amplitude, m.duration_ms), 0.4),
            ])
            return self._result(score, 0.7, {"evidence": "metrics", "amplitude": amplitude})
        if proof.image_data:
            return self._single_image()
        return self._missing()

    def _from_sequence(self, frames: List[HeadPoseFrame]) -> LivenessResult:
        pitches = [f.pitch for f in frames]
        amplitude = _range(pitches)

        # Hochement: l'extremum doit être atteint au milieu du mouvement (aller-retour)
        deviations = [abs(p - pitches[0]) for p in pitches]
        extremum = int(np.argmax(deviations))
        reversal_score = 1.0 if 0 < extremum < len(pitches) - 1 else 0.0

        yaw_drift = _range([f.yaw for f in frames])
        stability_score = 1.0 if yaw_drift <= 20 else clamp(1.0 - (yaw_drift - 20) / 20)

        duration_ms = _duration(frames[0].t, frames[-1].t)
        speed_score = UNKNOWN_COMPONENT if duration_ms is None else _angular_speed_score(2 * amplitude, duration_ms)

        score = weighted_score([
            (band_score(amplitude, 10, 60), 0.35),
            (reversal_score, 0.3),
            (stability_score, 0.15),
            (speed_score, 0.2),
        ])
        return self._result(score, _sequence_confidence(len(frames)), {
            "evidence": "sequence",
            "frames": len(frames),
            "amplitude": round(amplitude, 2),
            "reversal": bool(reversal_score),
        })


class MouthOpenVerifier(ChallengeVerifier):
    challenge = "mouth-open"
    method = "facial-landmarks-v1"
    missing_reason = "Aucune donnée d'ouverture de bouche fournie"

    def verify(self, proof: MouthOpenProof) -> LivenessResult:
        if proof.mouth_sequence:
            frames = proof.mouth_sequence
            mars = [f.mar for f in frames]
            peak_index = int(np.argmax(mars))
            closed = min(mars[:peak_index + 1])
            duration_ms = _duration(frames[0].t, frames[-1].t)
            return self._score(
                closed, mars[peak_index], duration_ms,
                _sequence_confidence(len(frames)),
                {"evidence": "sequence", "frames": len(frames)},
            )
        if proof.mouth_metrics:
            m = proof.mouth_metrics
            return self._score(m.mar_closed, m.mar_open, m.duration_ms, 0.7, {"evidence": "metrics"})
        if proof.image_data:
            return self._single_image()
        return self._missing()

    def _score(self, closed: float, opened: float, duration_ms: Optional[float],
               confidence: float, details: Dict[str, Any]) -> LivenessResult:
        ratio = opened / closed if closed > 0 else 10.0
        duration_score = UNKNOWN_COMPONENT if duration_ms is None else band_score(duration_ms, 200, 3000)
        score = weighted_score([
            (band_score(opened, 0.5, 1.2), 0.35),
            (1.0 if closed <= 0.35 else clamp(1.0 - (closed - 0.35) / 0.35), 0.15),
            (band_score(ratio, 1.8, 10.0), 0.3),
            (duration_score, 0.2),
        ])
        details.update({"mar_closed": round(closed, 4), "mar_open": round(opened, 4)})
        return self._result(score, confidence, details)


class SequenceVerifier(ChallengeVerifier):
    """Enchaînement de défis: chaque étape doit réussir, dans l'ordre"""

    challenge = "sequence"
    method = "challenge-sequence-v1"
    missing_reason = "La séquence doit contenir au moins deux défis"

    def __init__(self, verifiers: Dict[str, ChallengeVerifier], min_score: Optional[float] = None):
        super().__init__(min_score)
        self.verifiers = verifiers

    def verify(self, proof: SequenceProof) -> LivenessResult:
        if len(proof.steps) < 2:
            return self._missing()

        step_results = [self.verifiers[step.challenge].verify(step) for step in proof.steps]
        passed = sum(1 for r in step_results if r.verified)

        timestamps = [step.timestamp for step in proof.steps if step.timestamp is not None]
        in_order = all(a < b for a, b in zip(timestamps, timestamps[1:]))

        mean_score = float(np.mean([r.score for r in step_results]))
        score = mean_score * passed / len(step_results) if in_order else 0.0

        result = self._result(score, min(r.confidence for r in step_results), {
            "evidence": "sequence",
            "steps": [
                {"challenge": step.challenge, "verified": r.verified, "score": r.score}
                for step, r in zip(proof.steps, step_results)
            ],
            "in_order": in_order,
        })
        if passed < len(step_results):
            result.verified = False
            result.reason = f"{len(step_results) - passed} étape(s) du défi non validée(s)"
        elif not in_order:
            result.reason = "Les étapes de la séquence ne sont pas dans l'ordre chronologique"
        return result


class GenericPresenceVerifier(ChallengeVerifier):
    """Défi inconnu ou absent: preuve la plus faible, biaisée vers le refus"""

    challenge = "generic"
    method = "basic-presence"
    missing_reason = "Aucune donnée de présence fournie"

    def verify(self, proof: GenericProof) -> LivenessResult:
        if proof.face_presence_ratio is not None:
            return self._result(0.8 * proof.face_presence_ratio, 0.5, {
                "evidence": "presence",
                "face_presence_ratio": proof.face_presence_ratio,
            })
        if proof.image_data:
            return self._single_image()
        return self._missing()


def _range(values: Sequence[float]) -> float:
    return float(max(values) - min(values)) if values else 0.0


def _angular_speed_score(amplitude: float, duration_ms: float) -> float:
    if duration_ms <= 0:
        return 0.0
    return band_score(amplitude / duration_ms * 1000.0, 10, 300)


def _smoothness(angles: Sequence[float], max_jump: float = 45.0) -> float:
    """Fraction des transitions sans saut brutal (images recollées)"""
    if len(angles) < 2:
        return 0.0
    jumps = sum(1 for a, b in zip(angles, angles[1:]) if abs(b - a) > max_jump)
    return 1.0 - jumps / (len(angles) - 1)


def build_verifiers(min_score: Optional[float] = None) -> Dict[str, ChallengeVerifier]:
    """Registre des vérificateurs indexé par type de défi"""
    verifiers: Dict[str, ChallengeVerifier] = {
        v.challenge: v
        for v in (
            BlinkVerifier(min_score),
            SmileVerifier(min_score),
            HeadTurnVerifier(min_score),
            NodVerifier(min_score),
            MouthOpenVerifier(min_score),
            GenericPresenceVerifier(min_score),
        )
    }
    verifiers["sequence"] = SequenceVerifier(verifiers, min_score)
    return verifiers
