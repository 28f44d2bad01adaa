"""
Service d'audit de sécurité

Les entrées d'audit sont écrites dans leur propre session: elles survivent à
l'annulation de la requête et une erreur d'écriture est journalisée sans
jamais interrompre le flux principal.
"""
from datetime import datetime
from typing import Any, Dict, Optional
import logging

from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import async_session_maker
from app.models.security_log import SecurityLog, LogType

logger = logging.getLogger(__name__)


class AuditService:
    """Journal d'audit des opérations biométriques"""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        self.session_factory = session_factory or async_session_maker

    async def record(
        self,
        log_type: LogType,
        user_id: Optional[int],
        target_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        message: Optional[str] = None,
        face_score: Optional[float] = None,
        liveness_score: Optional[float] = None,
        combined_score: Optional[float] = None,
    ) -> None:
        """Enregistrer une entrée d'audit"""
        try:
            async with self.session_factory() as session:
                session.add(SecurityLog(
                    user_id=user_id,
                    target_id=target_id,
                    log_type=log_type,
                    message=message,
                    details=details or {},
                    face_score=face_score,
                    liveness_score=liveness_score,
                    combined_score=combined_score,
                    ip_address=ip_address,
                    user_agent=user_agent[:255] if user_agent else None,
                ))
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Échec de l'écriture d'audit ({log_type.value}, user_id={user_id}): {e}")

    async def count_recent(
        self,
        db: AsyncSession,
        user_id: int,
        log_type: LogType,
        since: datetime,
    ) -> int:
        """Nombre d'entrées d'un type donné pour un utilisateur depuis une date"""
        result = await db.execute(
            select(func.count(SecurityLog.id)).where(
                SecurityLog.user_id == user_id,
                SecurityLog.log_type == log_type,
                SecurityLog.created_at >= since,
            )
        )
        return result.scalar_one()


# Instance globale
audit_service = AuditService()
