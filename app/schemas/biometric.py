"""
Schémas Pydantic pour la biométrie
"""
from pydantic import BaseModel
from typing import Any, Dict, List, Literal, Optional
from datetime import datetime

from app.schemas.liveness import LivenessProof


class BiometricRegisterRequest(BaseModel):
    """Requête d'enregistrement biométrique"""
    user_id: int
    descriptor_data: str  # Tableau JSON encodé en base64
    type: Literal["face", "fingerprint"] = "face"
    liveness_proof: Optional[LivenessProof] = None
    metadata: Optional[Dict[str, Any]] = None


class BiometricRegisterResponse(BaseModel):
    success: bool
    message: str
    biometric_id: int


class BiometricVerifyRequest(BaseModel):
    """Requête de vérification biométrique"""
    user_id: int
    descriptor_data: str
    type: Literal["face", "fingerprint"] = "face"
    liveness_proof: Optional[LivenessProof] = None


class LivenessCheckRequest(BaseModel):
    """Vérification de vie seule, sans comparaison de descripteurs"""
    liveness_proof: Optional[LivenessProof] = None


class LivenessResultResponse(BaseModel):
    verified: bool
    score: float
    method: str
    reason: Optional[str] = None
    confidence: float
    details: Dict[str, Any] = {}

    class Config:
        from_attributes = True


class VerificationOutcomeResponse(BaseModel):
    """Résultat de vérification avec les scores par signal"""
    verified: bool
    score: float
    face_match_score: float
    liveness_score: float
    security_score: float
    confidence: float
    method: str
    timestamp: datetime
    adjusted_threshold: float
    reasons: Optional[List[str]] = None

    class Config:
        from_attributes = True


class BiometricStatusResponse(BaseModel):
    registered: bool
    type: Optional[str] = None
    last_verified: Optional[datetime] = None
    registration_date: Optional[datetime] = None
    locked: bool = False
    lock_until: Optional[datetime] = None


class BiometricRemovalResponse(BaseModel):
    success: bool
    message: str
    deactivated: int
