"""
Service d'authentification

L'émission des tokens appartient à l'application hôte; ce service ne fait que
les décoder et retrouver l'utilisateur.
"""
from typing import Optional
from dataclasses import dataclass
import logging

from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.config import settings
from app.models.user import User

logger = logging.getLogger(__name__)


@dataclass
class TokenData:
    """Données du token"""
    user_id: int
    email: Optional[str] = None
    role: Optional[str] = None


def decode_access_token(token: str) -> Optional[TokenData]:
    """Décoder un token JWT"""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        # sub peut être un int ou une string selon l'encodage JWT
        user_id_raw = payload.get("sub")
        if user_id_raw is None:
            return None
        return TokenData(user_id=int(user_id_raw), email=payload.get("email"), role=payload.get("role"))
    except JWTError as e:
        logger.warning(f"Token JWT invalide: {e}")
        return None
    except (ValueError, TypeError) as e:
        logger.warning(f"Erreur de lecture du token: {e}")
        return None


async def get_user_by_id(db: AsyncSession, user_id: int) -> Optional[User]:
    """Récupérer un utilisateur par ID"""
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()
