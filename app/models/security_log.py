"""
Modèle pour le journal d'audit de sécurité
"""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Enum, Float, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from app.database import Base


class LogType(str, enum.Enum):
    """Types de logs de sécurité"""
    ENROLLMENT_SUCCESS = "enrollment_success"
    ENROLLMENT_FAILED = "enrollment_failed"
    VERIFICATION_SUCCESS = "verification_success"
    VERIFICATION_FAILED = "verification_failed"
    LIVENESS_CHECK = "liveness_check"
    BIOMETRIC_DATA_REMOVED = "biometric_data_removed"
    ACCOUNT_LOCKED = "account_locked"
    ANOMALY_DETECTED = "anomaly_detected"


class SecurityLog(Base):
    """Journaux de sécurité"""
    __tablename__ = "security_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    # Enregistrement biométrique concerné (si applicable)
    target_id = Column(Integer, nullable=True)

    log_type = Column(Enum(LogType), nullable=False)
    message = Column(Text, nullable=True)
    details = Column(JSON, nullable=True)

    # Scores biométriques (si applicable)
    face_score = Column(Float, nullable=True)
    liveness_score = Column(Float, nullable=True)
    combined_score = Column(Float, nullable=True)

    # Métadonnées
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    # Relations
    user = relationship("User", back_populates="security_logs")

    def __repr__(self):
        return f"<SecurityLog {self.log_type.value}>"
