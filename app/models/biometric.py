"""
Modèle pour les données biométriques
"""
from sqlalchemy import (
    Column, Integer, String, Boolean, ForeignKey, LargeBinary, DateTime, JSON, Index, text
)
from sqlalchemy.orm import relationship
from datetime import datetime

from app.database import Base


class BiometricData(Base):
    """
    Stocke les descripteurs biométriques chiffrés (jamais les images brutes)
    - Descripteur: tableau JSON de 128 valeurs, chiffré en AES-256-GCM
    - Un seul enregistrement actif par (utilisateur, type); les anciens sont
      désactivés, jamais supprimés
    """
    __tablename__ = "biometric_data"
    __table_args__ = (
        Index(
            "uq_biometric_data_active",
            "user_id",
            "type",
            unique=True,
            sqlite_where=text("active = 1"),
            postgresql_where=text("active"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Descripteur chiffré + vecteur d'initialisation + tag d'authentification
    descriptor_data = Column(LargeBinary, nullable=False)
    iv = Column(LargeBinary, nullable=False)
    auth_tag = Column(LargeBinary, nullable=False)

    type = Column(String(20), nullable=False, default="face")
    active = Column(Boolean, nullable=False, default=True)

    # "metadata" est réservé par SQLAlchemy côté classe
    record_metadata = Column("metadata", JSON, nullable=False, default=dict)

    last_verified_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Verrou optimiste pour les mises à jour concurrentes des statistiques
    version_id = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    # Relation
    user = relationship("User", back_populates="biometric_data")

    def __repr__(self):
        return f"<BiometricData user_id={self.user_id} type={self.type} active={self.active}>"
