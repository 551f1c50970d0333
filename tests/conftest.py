# tests/conftest.py
import os

# database.py exige DATABASE_URL al importar
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import models
from app import app
from database import get_session
from models.enums import TransactionStatus, UserTier
from services import payment_reconciler
from services.clock import FrozenClock, get_clock
from services.errors import PaymentGatewayError
from services.payment_gateway import GatewayVerification, get_payment_gateway
from services.permissions import ROLE_ADMIN, ROLE_OPERATOR, ROLE_REAL_USER
from services.security import create_access_token

# miércoles 12:00 UTC = 15:00 en UTC+3, fuera de peak / off-peak
NOON = datetime(2025, 1, 15, 12, 0, 0)


class FakeGateway:
    """Reemplaza a Paystack: devuelve lo que el test cargue por referencia."""

    def __init__(self):
        self.responses = {}
        self.calls = []
        self.unreachable = False

    def set(self, reference, status, *, amount=500000, user_id=None, credits=None, gateway_status=None):
        metadata = {}
        if user_id is not None:
            metadata["userId"] = str(user_id)
        if credits is not None:
            metadata["credits"] = credits
        self.responses[reference] = GatewayVerification(
            reference=reference,
            status=status,
            amount=amount,
            gateway_status=gateway_status or status.value,
            real_user_id=user_id,
            credits=credits,
            raw={"reference": reference, "status": gateway_status or status.value, "amount": amount, "metadata": metadata},
        )

    def verify_transaction(self, reference):
        self.calls.append(reference)
        if self.unreachable:
            raise PaymentGatewayError("gateway unreachable: connection refused")
        if reference not in self.responses:
            return GatewayVerification(
                reference=reference,
                status=TransactionStatus.PENDING,
                amount=0,
                gateway_status="ongoing",
                raw={"reference": reference, "status": "ongoing"},
            )
        return self.responses[reference]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def clock():
    return FrozenClock(NOON)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture(autouse=True)
def _reset_webhook_failures():
    payment_reconciler.reset_verification_failures()
    yield
    payment_reconciler.reset_verification_failures()


@pytest.fixture
def client(engine, clock, gateway):
    def _session_override():
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_session] = _session_override
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


# ---------------------------
# Factories
# ---------------------------

@pytest.fixture
def factory(session):
    class Factory:
        _seq = 0

        def _next(self):
            Factory._seq += 1
            return Factory._seq

        def user(self, role_id):
            n = self._next()
            user = models.User(role_id=role_id, name=f"user{n}", email=f"user{n}@test.local")
            session.add(user)
            session.commit()
            session.refresh(user)
            return user

        def real_user(self, *, credits=100, tier=UserTier.FREE, total_spent=0, with_login=False):
            user_id = self.user(ROLE_REAL_USER).id if with_login else None
            real_user = models.RealUser(
                user_id=user_id,
                username=f"real{self._next()}",
                credits=credits,
                user_tier=tier,
                total_spent=total_spent,
            )
            session.add(real_user)
            session.commit()
            session.refresh(real_user)
            return real_user

        def profile(self, *, featured=False, specializations=None):
            profile = models.FictionalProfile(
                name=f"profile{self._next()}",
                is_featured=featured,
                required_specializations=specializations or [],
            )
            session.add(profile)
            session.commit()
            session.refresh(profile)
            return profile

        def operator(
            self,
            *,
            available=True,
            specializations=None,
            max_chats=5,
            quality=100.0,
            current=0,
            suspended=False,
            with_login=False,
        ):
            user_id = self.user(ROLE_OPERATOR).id if with_login else None
            operator = models.Operator(
                user_id=user_id,
                name=f"op{self._next()}",
                is_available=available,
                is_suspended=suspended,
                specializations=specializations or [],
                max_concurrent_chats=max_chats,
                quality_score=quality,
                current_chat_count=current,
            )
            session.add(operator)
            session.commit()
            session.refresh(operator)
            return operator

        def admin(self):
            return self.user(ROLE_ADMIN)

        def chat(self, real_user, profile, *, now=NOON, **fields):
            chat = models.Chat(
                real_user_id=real_user.id,
                fictional_profile_id=profile.id,
                created_at=now,
                updated_at=now,
                **fields,
            )
            session.add(chat)
            session.commit()
            session.refresh(chat)
            return chat

    return Factory()


def auth_headers(user):
    token = create_access_token({"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth():
    return auth_headers
