"""
Service de preuve de vie

Orchestrateur sans état: fraîcheur de l'horodatage, détection multicouche de
fraude, puis vérification spécifique au défi.
"""
import time
from typing import Any, Callable, Dict, Optional, Union
import logging

from pydantic import ValidationError as PydanticValidationError

from app.config import settings
from app.exceptions import ValidationError
from app.schemas.liveness import liveness_proof_adapter, LivenessProofBase
from app.services.antispoofing_service import SpoofDetector
from app.services.challenge_service import ChallengeVerifier, LivenessResult, build_verifiers

logger = logging.getLogger(__name__)


def parse_liveness_proof(proof: Union[LivenessProofBase, Dict[str, Any], None]) -> Optional[LivenessProofBase]:
    """Convertir un dictionnaire brut en variante typée de preuve de vie"""
    if proof is None or isinstance(proof, LivenessProofBase):
        return proof
    try:
        return liveness_proof_adapter.validate_python(proof)
    except PydanticValidationError as e:
        raise ValidationError(f"Preuve de vie invalide: {e.error_count()} erreur(s) de format")


class LivenessService:
    """Vérification de vie multi-couches"""

    def __init__(
        self,
        spoof_detector: Optional[SpoofDetector] = None,
        verifiers: Optional[Dict[str, ChallengeVerifier]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.spoof_detector = spoof_detector or SpoofDetector()
        self.verifiers = verifiers or build_verifiers()
        self.clock = clock

    def time_window(self, challenge: Optional[str]) -> int:
        """Fenêtre de validité (secondes) selon le type de défi"""
        return settings.CHALLENGE_TIME_WINDOWS.get(challenge or "", settings.DEFAULT_TIME_WINDOW_SECONDS)

    def verify(self, proof: Union[LivenessProofBase, Dict[str, Any], None]) -> LivenessResult:
        proof = parse_liveness_proof(proof)

        # 1) Pas de preuve de vie: échec
        if proof is None:
            return LivenessResult(
                verified=False,
                score=0.0,
                method="none",
                confidence=0.0,
                reason="Aucune preuve de vie fournie",
            )

        # 2) Fraîcheur de l'horodatage
        window = self.time_window(proof.challenge)
        if proof.timestamp is None:
            return LivenessResult(
                verified=False,
                score=0.0,
                method="timestamp",
                confidence=0.0,
                reason="La preuve de vie n'est pas horodatée",
            )

        age_seconds = abs(self.clock() * 1000.0 - proof.timestamp) / 1000.0
        if age_seconds > window:
            return LivenessResult(
                verified=False,
                score=0.0,
                method="timestamp",
                confidence=0.0,
                reason=f"La preuve de vie a expiré (limite: {window}s)",
                details={"age_seconds": round(age_seconds, 3), "time_window": window},
            )

        # 3) Anti-spoofing, prioritaire sur le score du défi
        spoof = self.spoof_detector.detect(proof)
        if spoof.is_spoof_detected:
            return LivenessResult(
                verified=False,
                score=0.0,
                method="advanced-anti-spoofing",
                confidence=spoof.confidence,
                reason=spoof.reason,
                details=spoof.details,
            )

        # 4) Vérification spécifique au défi
        verifier = self.verifiers.get(proof.challenge or "generic") or self.verifiers["generic"]
        result = verifier.verify(proof)

        result.details = {
            **result.details,
            "challenge": proof.challenge or "generic",
            "antispoofing_score": round(1.0 - spoof.confidence, 4),
            "challenge_compliance": result.score,
            "time_validity": round(max(0.0, 1.0 - age_seconds / window), 4),
        }

        logger.info(
            f"Preuve de vie {proof.challenge or 'generic'}: verified={result.verified}, "
            f"score={result.score:.2f}, method={result.method}"
        )
        return result


# Instance globale
liveness_service = LivenessService()
