"""
Service anti-spoofing

- Analyse de texture (photo imprimée, rejeu sur écran)
- Analyse du naturel des micro-mouvements (photo tenue devant la caméra)
- Détecteur multicouche qui fusionne ces signaux avec le contexte du défi

Les analyseurs par défaut sont des heuristiques déterministes sur les octets
et la télémétrie; un modèle réel peut les remplacer via les protocoles
TextureAnalyzer / MotionAnalyzer sans toucher à l'orchestration.
"""
import base64
import binascii
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Tuple
import logging

import numpy as np

from app.config import settings
from app.schemas.liveness import MotionData, TextureData
from app.services.scoring import band_score, clamp

logger = logging.getLogger(__name__)

# Défis qui impliquent un mouvement de la tête
MOVEMENT_CHALLENGES = ("head-turn", "nod", "sequence")


@dataclass
class TextureAnalysis:
    is_real_face: bool
    confidence: float
    texture_score: float = 0.0
    noise_pattern_score: float = 0.0
    depth_consistency_score: float = 0.0
    overall_score: float = 0.0
    reason: Optional[str] = None


@dataclass
class MotionAnalysis:
    is_natural_motion: bool
    confidence: float
    micro_movement_score: float = 0.0
    acceleration_pattern_score: float = 0.0
    overall_score: float = 0.0
    reason: Optional[str] = None


@dataclass
class SpoofDetection:
    is_spoof_detected: bool
    confidence: float
    reason: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class TextureAnalyzer(Protocol):
    def analyze(self, image_data: Optional[str], texture_data: Optional[TextureData] = None) -> TextureAnalysis:
        ...


class MotionAnalyzer(Protocol):
    def analyze(self, motion_data: Optional[MotionData]) -> MotionAnalysis:
        ...


def decode_image(image_data: str) -> bytes:
    """Décoder une image base64 (le préfixe data:image/...;base64, est retiré)"""
    if "," in image_data and image_data.startswith("data:"):
        image_data = image_data.split(",", 1)[1]
    return base64.b64decode(image_data, validate=True)


class HeuristicTextureAnalyzer:
    """
    Analyse de texture par statistiques d'octets

    - texture: entropie de Shannon des octets (une reproduction aplatit la distribution)
    - bruit: écart-type des différences successives (bruit capteur vs aplats)
    - profondeur: homogénéité des moyennes par blocs
    Les mesures client (moiré, profondeur) affinent le résultat si présentes.
    """

    def __init__(self, real_face_threshold: Optional[float] = None, min_image_bytes: Optional[int] = None):
        self.real_face_threshold = (
            settings.TEXTURE_REAL_FACE_THRESHOLD if real_face_threshold is None else real_face_threshold
        )
        self.min_image_bytes = settings.MIN_IMAGE_BYTES if min_image_bytes is None else min_image_bytes

    def analyze(self, image_data: Optional[str], texture_data: Optional[TextureData] = None) -> TextureAnalysis:
        if not image_data:
            return TextureAnalysis(is_real_face=False, confidence=0.1, reason="Aucune image fournie")

        try:
            image_bytes = decode_image(image_data)
        except (binascii.Error, ValueError):
            logger.warning("Image base64 invalide pour l'analyse de texture")
            return TextureAnalysis(is_real_face=False, confidence=0.2, reason="Image illisible")

        if len(image_bytes) < self.min_image_bytes:
            return TextureAnalysis(
                is_real_face=False,
                confidence=0.3,
                reason=f"Image trop petite ({len(image_bytes)} octets)",
            )

        pixels = np.frombuffer(image_bytes, dtype=np.uint8)

        histogram = np.bincount(pixels, minlength=256).astype(np.float64)
        probabilities = histogram[histogram > 0] / pixels.size
        entropy = float(-np.sum(probabilities * np.log2(probabilities)))
        texture_score = clamp(entropy / 8.0)

        noise_level = float(np.std(np.diff(pixels.astype(np.float64)))) / 128.0
        noise_pattern_score = band_score(noise_level, 0.2, 1.2)

        blocks = np.array_split(pixels.astype(np.float64), 16)
        block_spread = float(np.std([block.mean() for block in blocks]))
        depth_consistency_score = clamp(1.0 - block_spread / 64.0)

        confidence = 0.8
        if texture_data is not None:
            confidence = 0.9
            if texture_data.moire_score is not None:
                texture_score *= 1.0 - texture_data.moire_score
            if texture_data.depth_variance is not None:
                depth_consistency_score = band_score(texture_data.depth_variance, 0.05, 1.0)
            if texture_data.specular_reflection is not None:
                # Les reflets spéculaires naturels sont absents d'un papier mat
                noise_pattern_score = 0.7 * noise_pattern_score + 0.3 * band_score(
                    texture_data.specular_reflection, 0.1, 0.8
                )

        overall = clamp(0.4 * texture_score + 0.3 * noise_pattern_score + 0.3 * depth_consistency_score)
        is_real_face = overall >= self.real_face_threshold

        return TextureAnalysis(
            is_real_face=is_real_face,
            confidence=confidence,
            texture_score=round(texture_score, 4),
            noise_pattern_score=round(noise_pattern_score, 4),
            depth_consistency_score=round(depth_consistency_score, 4),
            overall_score=round(overall, 4),
            reason=None if is_real_face else "Texture incompatible avec un visage réel",
        )


class HeuristicMotionAnalyzer:
    """
    Analyse des micro-mouvements

    Une photo tenue devant la caméra est soit immobile (aucun micro-tremblement),
    soit déplacée de façon trop régulière (accélération quasi nulle).
    """

    def __init__(self, natural_threshold: Optional[float] = None):
        self.natural_threshold = (
            settings.NATURAL_MOTION_THRESHOLD if natural_threshold is None else natural_threshold
        )

    def analyze(self, motion_data: Optional[MotionData]) -> MotionAnalysis:
        samples = motion_data.samples if motion_data else []
        if len(samples) < 3:
            return MotionAnalysis(
                is_natural_motion=False,
                confidence=0.1,
                reason="Données de mouvement insuffisantes",
            )

        positions = np.array([[s.x, s.y, s.z] for s in samples], dtype=np.float64)
        velocity = np.linalg.norm(np.diff(positions, axis=0), axis=1)
        acceleration = np.linalg.norm(np.diff(positions, n=2, axis=0), axis=1)

        mean_velocity = float(velocity.mean())
        micro_movement_score = band_score(mean_velocity, 0.001, 0.5)

        # Rapport accélération/vitesse: ~0 pour un déplacement mécanique régulier
        jerk_ratio = float(acceleration.mean()) / (mean_velocity + 1e-9)
        acceleration_pattern_score = band_score(jerk_ratio, 0.15, 2.5) if mean_velocity > 0 else 0.0

        overall = clamp(0.5 * micro_movement_score + 0.5 * acceleration_pattern_score)
        is_natural = overall >= self.natural_threshold

        return MotionAnalysis(
            is_natural_motion=is_natural,
            confidence=round(min(0.95, 0.4 + len(samples) / 60.0), 4),
            micro_movement_score=round(micro_movement_score, 4),
            acceleration_pattern_score=round(acceleration_pattern_score, 4),
            overall_score=round(overall, 4),
            reason=None if is_natural else "Mouvement non naturel",
        )


class SpoofDetector:
    """Détection multicouche, indépendante du score du défi"""

    def __init__(
        self,
        texture_analyzer: Optional[TextureAnalyzer] = None,
        motion_analyzer: Optional[MotionAnalyzer] = None,
        risk_threshold: Optional[float] = None,
    ):
        self.texture_analyzer = texture_analyzer or HeuristicTextureAnalyzer()
        self.motion_analyzer = motion_analyzer or HeuristicMotionAnalyzer()
        self.risk_threshold = settings.SPOOF_RISK_THRESHOLD if risk_threshold is None else risk_threshold

    def detect(self, proof) -> SpoofDetection:
        risks: List[Tuple[str, float]] = []
        details: Dict[str, Any] = {}

        if proof.image_data:
            texture = self.texture_analyzer.analyze(proof.image_data, proof.texture_data)
            details["texture"] = {"overall_score": texture.overall_score, "confidence": texture.confidence}
            # Une analyse peu fiable n'est pas une preuve de fraude
            if texture.confidence >= 0.5:
                risks.append(("texture", 1.0 - texture.overall_score))

        if proof.motion_data is not None:
            motion = self.motion_analyzer.analyze(proof.motion_data)
            details["motion"] = {"overall_score": motion.overall_score, "confidence": motion.confidence}
            if motion.confidence >= 0.5:
                risks.append(("motion", 1.0 - motion.overall_score))
                if proof.challenge in MOVEMENT_CHALLENGES and motion.micro_movement_score == 0.0:
                    risks.append(("static_during_movement_challenge", 0.9))

        if proof.texture_data is not None and proof.texture_data.moire_score is not None:
            risks.append(("moire", proof.texture_data.moire_score))

        if not risks:
            return SpoofDetection(is_spoof_detected=False, confidence=0.0, details=details)

        signal, risk = max(risks, key=lambda item: item[1])
        risk = round(clamp(risk), 4)
        details["signals"] = {name: round(value, 4) for name, value in risks}
        detected = risk > self.risk_threshold

        if detected:
            logger.warning(f"Tentative d'usurpation détectée (signal={signal}, risque={risk:.2f})")

        return SpoofDetection(
            is_spoof_detected=detected,
            confidence=risk,
            reason=f"Possible tentative d'usurpation détectée ({signal})" if detected else None,
            details=details,
        )
