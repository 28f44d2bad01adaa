import base64
import math
import time

import numpy as np
import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.config import settings
from app.database import Base, get_db
from app.main import app
from app.models import User, UserRole
from app.routers.biometry import get_biometric_service
from app.services.audit_service import AuditService
from app.services.biometric_service import BiometricService
from app.services.descriptor_service import encode_descriptor
from app.services.encryption_service import EncryptionService

CLIENT_IP = "10.0.0.1"
CLIENT_AGENT = "Mozilla/5.0 (test)"


def make_descriptor(seed: int = 42):
    """Descripteur 128D à composantes de signes mélangés"""
    return np.random.default_rng(seed).normal(0.0, 0.1, settings.DESCRIPTOR_LENGTH).tolist()


def make_orthogonal_descriptor(descriptor, seed: int = 1234):
    """Descripteur aléatoire rendu orthogonal: similarité cosinus nulle"""
    reference = np.asarray(descriptor)
    candidate = np.asarray(make_descriptor(seed))
    return (candidate - reference * (candidate @ reference) / (reference @ reference)).tolist()


def make_image(seed: int = 7, size: int = 4096) -> str:
    return base64.b64encode(
        np.random.default_rng(seed).integers(0, 256, size, dtype=np.uint8).tobytes()
    ).decode("ascii")


def make_motion(count: int = 30, seed: int = 3):
    """Micro-tremblements naturels: petite oscillation bruitée"""
    rng = np.random.default_rng(seed)
    return {
        "samples": [
            {
                "x": 0.02 * math.sin(0.3 * i) + float(rng.normal(0, 0.005)),
                "y": 0.02 * math.cos(0.3 * i) + float(rng.normal(0, 0.005)),
                "t": i * 33.0,
            }
            for i in range(count)
        ]
    }


def make_blink_proof(timestamp_ms=None, **overrides):
    """Preuve de clignement complète: ouvert -> fermé -> ouvert"""
    states = [("open", 0.30), ("open", 0.31), ("open", 0.29), ("closed", 0.10), ("open", 0.30), ("open", 0.30)]
    proof = {
        "challenge": "blink",
        "timestamp": time.time() * 1000.0 if timestamp_ms is None else timestamp_ms,
        "image_data": make_image(),
        "motion_data": make_motion(),
        "eye_state_sequence": [
            {"state": state, "ear": ear, "t": i * 200.0} for i, (state, ear) in enumerate(states)
        ],
    }
    proof.update(overrides)
    return proof


@pytest.fixture
def descriptor():
    return make_descriptor()


@pytest.fixture
def descriptor_data(descriptor):
    return encode_descriptor(descriptor)


@pytest.fixture
def unrelated_descriptor_data(descriptor):
    return encode_descriptor(make_orthogonal_descriptor(descriptor))


@pytest.fixture
def blink_proof():
    return make_blink_proof()


@pytest.fixture
async def engine(tmp_path):
    # Base fichier: la session d'audit et celle de la requête doivent partager les données
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
async def users(session_maker):
    async with session_maker() as session:
        alice = User(email="alice@example.com", full_name="Alice Martin", role=UserRole.USER)
        bob = User(email="bob@example.com", full_name="Bob Durand", role=UserRole.USER)
        admin = User(email="admin@example.com", full_name="Super Admin", role=UserRole.ADMIN)
        session.add_all([alice, bob, admin])
        await session.commit()
        return {"alice": alice, "bob": bob, "admin": admin}


@pytest.fixture(scope="session")
def encryption():
    return EncryptionService("cle-de-test")


@pytest.fixture
def audit(session_maker):
    return AuditService(session_maker)


@pytest.fixture
def service(audit, encryption):
    return BiometricService(audit=audit, encryption=encryption)


def make_token(user: User) -> str:
    return jwt.encode(
        {"sub": str(user.id), "email": user.email, "role": user.role.value},
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM,
    )


@pytest.fixture
def auth_headers(users):
    return {name: {"Authorization": f"Bearer {make_token(user)}"} for name, user in users.items()}


@pytest.fixture
async def client(session_maker, service):
    async def override_get_db():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_biometric_service] = lambda: service

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
