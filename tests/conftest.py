"""Shared fixtures: in-memory database, stub gateways and a wired app."""

import json
from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from convention_fulfillment.api.app import create_app
from convention_fulfillment.config import Settings
from convention_fulfillment.delivery.pipeline import DeliveryPolicies
from convention_fulfillment.delivery.retry import RetryPolicy
from convention_fulfillment.fulfillment import Fulfillment
from convention_fulfillment.gateways.paystack_stub import StubPaymentGateway
from convention_fulfillment.gateways.wasender_stub import StubMessagingProvider
from convention_fulfillment.models import Base
from convention_fulfillment.security.download_tokens import SecureDownloadService
from convention_fulfillment.security.rate_limit import InMemoryQuotaStore, InMemoryRateLimiter
from convention_fulfillment.services.qr_service import QRCodeService
from convention_fulfillment.services.receipt_service import (
    OperationDetails,
    ReceiptData,
    UserDetails,
)

TEST_DATABASE_URL = "sqlite+aiosqlite://"
QR_SECRET = "test-qr-secret"
PDF_SECRET = "test-pdf-secret"
PUBLIC_BASE_URL = "https://convention.test"

# Same attempt counts as production, no waiting
FAST_WHATSAPP = RetryPolicy(max_attempts=4, initial_delay_ms=0, max_delay_ms=0)
FAST_FALLBACK = RetryPolicy(max_attempts=2, initial_delay_ms=0, max_delay_ms=0)
FAST_RENDER = RetryPolicy(max_attempts=3, initial_delay_ms=0, max_delay_ms=0)
FAST_POLICIES = DeliveryPolicies(
    probe=FAST_WHATSAPP,
    render=FAST_RENDER,
    document=FAST_WHATSAPP,
    fallback=FAST_FALLBACK,
)


async def no_sleep(_seconds: float) -> None:
    return None


def dinner_body(guests: int = 2, **overrides: Any) -> dict[str, Any]:
    """A valid dinner reservation request."""
    body: dict[str, Any] = {
        "email": "ada@example.com",
        "fullName": "Ada Obi",
        "phoneNumber": "+2348012345678",
        "numberOfGuests": guests,
        "guestDetails": [{"name": f"Guest {i}"} for i in range(1, guests + 1)],
    }
    body.update(overrides)
    return body


def success_event(reference: str, **data: Any) -> bytes:
    """Paystack charge.success webhook body."""
    payload = {
        "event": "charge.success",
        "data": {"reference": reference, "status": "success", **data},
    }
    return json.dumps(payload).encode("utf-8")


def make_receipt(
    kind: str = "dinner",
    *,
    phone: str = "+2348012345678",
    reference: str = "DINNER_1735000000000_2348012345678",
    status: str = "confirmed",
    qr_code: str | None = None,
    qr_image: str | None = None,
) -> ReceiptData:
    """Receipt data without a database behind it."""
    return ReceiptData(
        user_details=UserDetails(
            name="Ada Obi",
            email="ada@example.com",
            phone=phone,
            registration_id="3f1c2b9e-0000-4000-8000-000000000001",
        ),
        operation_details=OperationDetails(
            type=kind,
            amount=150,
            payment_reference=reference,
            date=datetime(2025, 12, 1, 12, 0, tzinfo=timezone.utc),
            status=status,
            description="GOSA 2025 Convention Dinner Reservation",
            additional_info="Guests: 2 | Total Amount: ₦150 | Guest Names: Guest 1, Guest 2",
        ),
        qr_code_data=qr_code,
        qr_image=qr_image,
    )


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "database_url": TEST_DATABASE_URL,
        "host": "127.0.0.1",
        "port": 8000,
        "debug": False,
        "public_base_url": PUBLIC_BASE_URL,
        "paystack_secret_key": "",
        "paystack_base_url": "https://api.paystack.test",
        "wasender_api_key": "",
        "wasender_base_url": "https://wasender.test/api",
        "pdf_secret_key": PDF_SECRET,
        "qr_secret_key": QR_SECRET,
        "admin_phone_number": "+2348000000000",
        "rate_limit_window_seconds": 60,
        "rate_limit_max_requests": 5,
        "http_timeout_seconds": 5.0,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def now() -> datetime:
    return datetime(2025, 12, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def qr_service() -> QRCodeService:
    return QRCodeService(QR_SECRET)


@pytest.fixture
def gateway() -> StubPaymentGateway:
    return StubPaymentGateway()


@pytest.fixture
def messenger() -> StubMessagingProvider:
    return StubMessagingProvider()


@pytest.fixture
def downloads() -> SecureDownloadService:
    return SecureDownloadService(PDF_SECRET, InMemoryQuotaStore())


@pytest.fixture
def fulfillment(
    settings: Settings,
    gateway: StubPaymentGateway,
    messenger: StubMessagingProvider,
    qr_service: QRCodeService,
    downloads: SecureDownloadService,
) -> Fulfillment:
    return Fulfillment(
        settings=settings,
        gateway=gateway,
        messenger=messenger,
        qr_service=qr_service,
        downloads=downloads,
        rate_limiter=InMemoryRateLimiter(max_requests=5, window_seconds=60),
        delivery_policies=FAST_POLICIES,
        render_policy=FAST_RENDER,
        sleep=no_sleep,
    )


@pytest_asyncio.fixture
async def engine():
    """Single-connection in-memory SQLite with the full schema."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def app(fulfillment: Fulfillment, session_factory):
    return create_app(fulfillment=fulfillment, session_factory=session_factory)


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the app; unhandled errors come back as 500s."""
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def pending_reference(fulfillment: Fulfillment, db_session: AsyncSession) -> str:
    """A two-guest dinner booking awaiting payment."""
    link = await fulfillment.bookings(db_session).create_booking("dinner", dinner_body(2))
    return link.payment_reference


@pytest_asyncio.fixture
async def confirmed_reference(
    fulfillment: Fulfillment, db_session: AsyncSession, pending_reference: str
) -> str:
    """The same booking after the payment webhook."""
    await fulfillment.bookings(db_session).confirm_booking(pending_reference)
    return pending_reference
