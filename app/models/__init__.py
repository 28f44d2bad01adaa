# Modèles de données
# Importer tous les modèles pour que SQLAlchemy puisse résoudre les relations

from app.models.user import User, UserRole
from app.models.biometric import BiometricData
from app.models.security_log import SecurityLog, LogType

__all__ = [
    "User",
    "UserRole",
    "BiometricData",
    "SecurityLog",
    "LogType",
]
