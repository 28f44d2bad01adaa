"""
Routes de vérification biométrique
"""
from fastapi import APIRouter, Depends, HTTPException, status, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from app.database import get_db
from app.schemas.biometric import (
    BiometricRegisterRequest, BiometricRegisterResponse, BiometricVerifyRequest,
    LivenessCheckRequest, LivenessResultResponse, VerificationOutcomeResponse,
    BiometricStatusResponse, BiometricRemovalResponse,
)
from app.services.auth_service import decode_access_token, get_user_by_id
from app.services.biometric_service import BiometricService, biometric_service
from app.models.user import User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/biometry", tags=["Biométrie"])

# Les tokens sont émis par l'application hôte
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token")


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db)
) -> User:
    """Récupérer l'utilisateur courant à partir du token"""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Token invalide",
        headers={"WWW-Authenticate": "Bearer"},
    )

    token_data = decode_access_token(token)
    if token_data is None:
        raise credentials_exception

    user = await get_user_by_id(db, token_data.user_id)
    if user is None or not user.is_active:
        logger.warning(f"Token valide pour un utilisateur introuvable ou inactif: {token_data.user_id}")
        raise credentials_exception

    return user


async def get_current_admin(current_user: User = Depends(get_current_user)) -> User:
    """Vérifier que l'utilisateur est un admin"""
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Accès réservé aux administrateurs"
        )
    return current_user


def get_biometric_service() -> BiometricService:
    return biometric_service


def _ensure_access(current_user: User, user_id: int):
    """Un utilisateur n'agit que sur ses propres données, un admin sur toutes"""
    if current_user.id != user_id and not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Accès non autorisé aux données biométriques de cet utilisateur"
        )


def _client(request: Request):
    ip_address = request.client.host if request.client else None
    return ip_address, request.headers.get("user-agent")


@router.post("/register", response_model=BiometricRegisterResponse)
async def register_biometric(
    data: BiometricRegisterRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: BiometricService = Depends(get_biometric_service)
):
    """Enregistrer un descripteur biométrique avec preuve de vie"""
    _ensure_access(current_user, data.user_id)
    ip_address, user_agent = _client(request)

    record = await service.register(
        db,
        user_id=data.user_id,
        descriptor_data=data.descriptor_data,
        type=data.type,
        liveness_proof=data.liveness_proof,
        metadata=data.metadata,
        ip_address=ip_address,
        user_agent=user_agent,
    )

    return BiometricRegisterResponse(
        success=True,
        message="Données biométriques enregistrées avec succès",
        biometric_id=record.id,
    )


@router.post("/verify", response_model=VerificationOutcomeResponse)
async def verify_biometric(
    data: BiometricVerifyRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: BiometricService = Depends(get_biometric_service)
):
    """Vérifier l'identité (descripteur + preuve de vie)"""
    _ensure_access(current_user, data.user_id)
    ip_address, user_agent = _client(request)

    # 423 tant que le verrou temporaire n'a pas expiré
    await service.ensure_not_locked(db, data.user_id, data.type, ip_address, user_agent)

    outcome = await service.verify(
        db,
        user_id=data.user_id,
        descriptor_data=data.descriptor_data,
        liveness_proof=data.liveness_proof,
        ip_address=ip_address,
        user_agent=user_agent,
        type=data.type,
    )
    return outcome


@router.post("/liveness", response_model=LivenessResultResponse)
async def check_liveness(
    data: LivenessCheckRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    service: BiometricService = Depends(get_biometric_service)
):
    """Vérification de vie seule"""
    ip_address, user_agent = _client(request)
    return await service.check_liveness(
        data.liveness_proof,
        user_id=current_user.id,
        ip_address=ip_address,
        user_agent=user_agent,
    )


@router.get("/status/{user_id}", response_model=BiometricStatusResponse)
async def get_biometric_status(
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: BiometricService = Depends(get_biometric_service)
):
    """État d'enregistrement biométrique"""
    _ensure_access(current_user, user_id)
    return await service.get_user_biometric_status(db, user_id)


@router.get("/diagnostics")
async def get_diagnostics(
    current_user: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    service: BiometricService = Depends(get_biometric_service)
):
    """Diagnostics du système biométrique (admin)"""
    return await service.get_system_diagnostics(db)


@router.delete("/{user_id}", response_model=BiometricRemovalResponse)
async def remove_biometric_data(
    user_id: int,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: BiometricService = Depends(get_biometric_service)
):
    """Désactiver les données biométriques d'un utilisateur"""
    _ensure_access(current_user, user_id)
    ip_address, user_agent = _client(request)

    count = await service.remove_user_biometric_data(db, user_id, ip_address, user_agent)
    if count == 0:
        return BiometricRemovalResponse(
            success=False,
            message="Aucune donnée biométrique active pour cet utilisateur",
            deactivated=0,
        )

    return BiometricRemovalResponse(
        success=True,
        message="Données biométriques supprimées avec succès",
        deactivated=count,
    )
