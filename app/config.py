"""
Configuration de l'application
"""
from pydantic_settings import BaseSettings
from typing import Dict


class Settings(BaseSettings):
    """Paramètres de configuration"""

    # Application
    APP_NAME: str = "Biométrie Vérification"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = True

    # Base de données
    DATABASE_URL: str = "sqlite+aiosqlite:///./biometrie.db"

    # Sécurité
    SECRET_KEY: str = "votre-cle-secrete-tres-longue-et-complexe-a-changer"
    ALGORITHM: str = "HS256"
    BIOMETRIC_ENCRYPTION_KEY: str = "default-encryption-key-change-this"

    # Descripteurs faciaux (face-api.js: 128 dimensions)
    DESCRIPTOR_LENGTH: int = 128

    # Biométrie - Seuils (valeurs non calibrées, à valider par un expert)
    MATCH_THRESHOLD: float = 0.6
    MIN_LIVENESS_SCORE: float = 0.75

    # Poids pour la fusion (somme = 1.0)
    FACE_MATCH_WEIGHT: float = 0.40
    LIVENESS_WEIGHT: float = 0.25
    TEXTURE_WEIGHT: float = 0.15
    MOTION_WEIGHT: float = 0.10
    CONSISTENCY_WEIGHT: float = 0.10

    # Seuil adaptatif selon le risque
    RISK_SENSITIVITY: float = 0.2
    RISK_FAILURE_WINDOW_MINUTES: int = 15
    RISK_FAILURE_SATURATION: int = 5
    RISK_BORDERLINE_MARGIN: float = 0.05

    # Verrouillage temporaire et anomalies
    LOCKOUT_FAILURE_THRESHOLD: int = 5
    LOCKOUT_DURATION_MINUTES: int = 30
    PHOTO_ATTACK_MAX_SCORE: float = 0.3
    PHOTO_ATTACK_MIN_LIVENESS: float = 0.7

    # Anti-spoofing
    SPOOF_RISK_THRESHOLD: float = 0.7
    TEXTURE_REAL_FACE_THRESHOLD: float = 0.6
    NATURAL_MOTION_THRESHOLD: float = 0.6
    MIN_IMAGE_BYTES: int = 1024

    # Fenêtres de validité de la preuve de vie (secondes)
    CHALLENGE_TIME_WINDOWS: Dict[str, int] = {
        "blink": 30,
        "smile": 20,
        "head-turn": 45,
        "nod": 35,
        "mouth-open": 25,
        "sequence": 60,
    }
    DEFAULT_TIME_WINDOW_SECONDS: int = 30

    # Mises à jour concurrentes d'un même enregistrement
    STATS_UPDATE_RETRIES: int = 3

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
