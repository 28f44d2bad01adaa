"""
Application principale FastAPI
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

from app.config import settings
from app.database import init_db
from app.exceptions import BiometricError
from app.routers import biometry

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Cycle de vie de l'application"""
    # Startup
    await init_db()
    logger.info("Base de données initialisée")
    yield
    # Shutdown
    logger.info("Arrêt de l'application")


# Créer l'application FastAPI
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="""
    Noyau de vérification biométrique

    - Enregistrement de descripteurs faciaux chiffrés (AES-256-GCM)
    - Preuve de vie par défis (clignement, sourire, rotation, hochement, bouche)
    - Anti-spoofing et seuil adaptatif au risque
    """,
    lifespan=lifespan
)

# Configuration CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # En production, spécifier les origines autorisées
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BiometricError)
async def biometric_error_handler(request: Request, exc: BiometricError):
    """Traduire les erreurs du noyau en réponses HTTP"""
    if exc.status_code >= 500:
        logger.exception(f"Erreur interne sur {request.method} {request.url.path}: {exc.message}", exc_info=exc)
    else:
        logger.info(f"Requête refusée ({exc.status_code}) sur {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# Inclure les routers
app.include_router(biometry.router, prefix="/api")


@app.get("/")
async def root():
    """Page d'accueil"""
    return {
        "message": "Noyau de vérification biométrique",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "redoc": "/redoc"
    }


@app.get("/health")
async def health_check():
    """Vérification de santé"""
    return {"status": "healthy", "version": settings.APP_VERSION}
