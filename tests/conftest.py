import os

# Settings are read at import time
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["PO_EMAIL_ENABLED"] = "false"

import uuid
from decimal import Decimal
from typing import Iterable, List

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from pharmaflow.api.deps import get_mailer
from pharmaflow.core.permissions import UserSession
from pharmaflow.core.security import create_access_token
from pharmaflow.database import Base, get_db
from pharmaflow.main import app
from pharmaflow.models import Principal, Product
from pharmaflow.services.email_service import EmailService, PurchaseOrderEmail


ALL_PERMISSIONS = ["purchase_orders:*", "invoice_receiving:*", "quality_control:*"]


class FakeEmailService(EmailService):
    """Records PO emails instead of talking to an SMTP server."""

    def __init__(self, fail: bool = False):
        super().__init__(smtp_user="purchasing@example.com", smtp_password="secret")
        self.fail = fail
        self.sent: List[PurchaseOrderEmail] = []

    def send_purchase_order(self, message: PurchaseOrderEmail) -> bool:
        if self.fail:
            return False
        self.sent.append(message)
        return True


def make_session(permissions: Iterable[str] = ALL_PERMISSIONS, **kwargs) -> UserSession:
    return UserSession.build(
        user_id=kwargs.pop("user_id", uuid.uuid4()),
        permissions=permissions,
        name=kwargs.pop("name", "Test User"),
        **kwargs,
    )


def auth_headers(permissions: Iterable[str] = ALL_PERMISSIONS, user_id=None, name="Test User") -> dict:
    token = create_access_token(
        user_id or uuid.uuid4(),
        permissions=permissions,
        additional_claims={"name": name},
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def session() -> UserSession:
    return make_session()


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def seed(session_factory):
    """One principal (ACME) with two products."""
    async with session_factory() as session:
        principal = Principal(
            code="ACME",
            name="Acme Pharma Ltd",
            email="orders@acme.example.com",
            cc_emails=["accounts@acme.example.com"],
            is_active=True,
        )
        session.add(principal)
        await session.flush()

        paracetamol = Product(
            code="PCM500",
            name="Paracetamol 500mg",
            principal_id=principal.id,
            unit="STRIP",
            gst_rate=Decimal("12"),
            is_active=True,
        )
        amoxicillin = Product(
            code="AMX250",
            name="Amoxicillin 250mg",
            principal_id=principal.id,
            unit="STRIP",
            gst_rate=Decimal("12"),
            is_active=True,
        )
        session.add_all([paracetamol, amoxicillin])
        await session.commit()

        return {
            "principal": principal,
            "principal_id": str(principal.id),
            "products": [str(paracetamol.id), str(amoxicillin.id)],
        }


@pytest.fixture
def mailer() -> FakeEmailService:
    return FakeEmailService()


@pytest.fixture
async def client(session_factory, mailer):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_mailer] = lambda: mailer

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
