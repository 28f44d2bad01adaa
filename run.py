"""
Script de démarrage de l'application
"""
import uvicorn
import asyncio
import logging

from sqlalchemy import select

from app.config import settings
from app.database import init_db, async_session_maker
from app.models import User, UserRole

logger = logging.getLogger(__name__)


async def create_admin_user():
    """Créer un utilisateur admin par défaut"""
    async with async_session_maker() as db:
        result = await db.execute(select(User).where(User.email == "admin@example.com"))
        if result.scalar_one_or_none() is None:
            db.add(User(email="admin@example.com", full_name="Super Admin", role=UserRole.ADMIN))
            await db.commit()
            logger.info("Utilisateur admin créé: admin@example.com")
        else:
            logger.info("Utilisateur admin existe déjà")


async def main():
    """Initialisation"""
    await init_db()
    logger.info("Base de données initialisée")
    await create_admin_user()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="info"
    )
