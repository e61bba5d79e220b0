"""
Pytest configuration and shared fixtures for the storefront order service.

Provides an in-memory SQLite database, an httpx client bound to the app with
the DB, session factory and gateway config overridden, access-token helpers
and a small seeded catalog.
"""
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from config import GatewayConfig, settings

# ── Test Configuration ───────────────────────────────────────────────
# Set test-only values for settings that would normally come from .env
if not settings.jwt_secret:
    settings.jwt_secret = "test-jwt-secret-for-pytest-only"

from main import app  # noqa: E402
from database import Base, get_db, get_session_factory  # noqa: E402
from db_models import Order, Product  # noqa: E402
from deps import get_gateway_config  # noqa: E402
from middleware.auth import issue_access_token  # noqa: E402
from middleware.rate_limit import reset_limits  # noqa: E402
from services import order_service  # noqa: E402
from services.signature_service import callback_codec  # noqa: E402

BUYER_ID = "user-buyer-1"
OTHER_BUYER_ID = "user-buyer-2"
ADMIN_ID = "user-admin-1"


# ── Database Fixtures ────────────────────────────────────────────────


async def _make_engine(url: str, **kwargs):
    engine = create_async_engine(url, **kwargs)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine


@pytest_asyncio.fixture(scope="function")
async def engine():
    """
    In-memory SQLite engine for each test.

    Uses StaticPool so every session shares the one in-memory database.
    """
    engine = await _make_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def file_engine(tmp_path):
    """File-backed SQLite engine: real separate connections, for concurrency tests."""
    engine = await _make_engine(f"sqlite+aiosqlite:///{tmp_path / 'concurrency.db'}")
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


async def load_order(session_factory, order_no: str) -> Order:
    """Read an order through a fresh session, bypassing any stale identity map."""
    async with session_factory() as s:
        return await order_service.get_order_by_no(s, order_no)


async def load_product(session_factory, product_id: int) -> Product:
    async with session_factory() as s:
        res = await s.execute(select(Product).where(Product.id == product_id))
        return res.scalar_one()


# ── Gateway Fixtures ─────────────────────────────────────────────────


@pytest.fixture
def gateway_config() -> GatewayConfig:
    return GatewayConfig(
        api_key="test-api-key",
        secret="test-gateway-secret",
        website_index="1",
        payment_url="https://gateway.test/pay",
        callback_url="https://shop.test/payment/callback",
        success_url="https://shop.test/payment/success",
        cancel_url="https://shop.test/payment/cancel",
    )


@pytest.fixture
def sign_callback(gateway_config):
    """Build a callback form signed the way the gateway signs it."""
    codec = callback_codec(gateway_config)

    def _sign(order_no: str, status: str = "success", payment_id: str = "T1", **extra) -> dict:
        form = {
            "platform_order_id": order_no,
            "status": status,
            "payment_id": payment_id,
            "random_nr": "cafe1234",
            **extra,
        }
        form["signature"] = codec.sign(list(form.items()))
        return form

    return _sign


# ── HTTP Client ──────────────────────────────────────────────────────


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, gateway_config) -> AsyncGenerator[AsyncClient, None]:
    """
    httpx client against the app with test DB and gateway config.

    Each request gets its own session, like production.
    """
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_gateway_config] = lambda: gateway_config
    reset_limits()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
    reset_limits()


# ── Auth Helpers ─────────────────────────────────────────────────────


def bearer(user_id: str, roles=()) -> dict:
    return {"Authorization": f"Bearer {issue_access_token(user_id=user_id, roles=roles)}"}


@pytest.fixture
def buyer_headers() -> dict:
    return bearer(BUYER_ID)


@pytest.fixture
def other_buyer_headers() -> dict:
    return bearer(OTHER_BUYER_ID)


@pytest.fixture
def admin_headers() -> dict:
    return bearer(ADMIN_ID, roles=["admin"])


class FakePrincipal:
    """Stand-in for middleware.auth.Principal in service-level tests."""

    def __init__(self, user_id: str, is_admin: bool = False):
        self.user_id = user_id
        self.is_admin = is_admin


@pytest.fixture
def buyer():
    return FakePrincipal(BUYER_ID)


@pytest.fixture
def other_buyer():
    return FakePrincipal(OTHER_BUYER_ID)


@pytest.fixture
def admin():
    return FakePrincipal(ADMIN_ID, is_admin=True)


# ── Test Data Fixtures ────────────────────────────────────────────────


@pytest_asyncio.fixture
async def products(db_session: AsyncSession) -> dict[str, Product]:
    """A small catalog: a variant t-shirt, a plain mug and a retired product."""
    tshirt = Product(
        slug="logo-tshirt",
        title="Logo T-Shirt",
        price=Decimal("150.00"),
        images=["/uploads/tshirt.jpg"],
        colors=["black", "white"],
        sizes=["M", "L"],
        stock=10,
    )
    mug = Product(
        slug="enamel-mug",
        title="Enamel Mug",
        price=Decimal("49.90"),
        images=[],
        colors=[],
        sizes=[],
        stock=5,
    )
    retired = Product(
        slug="old-poster",
        title="Old Poster",
        price=Decimal("20.00"),
        stock=100,
        is_active=False,
    )
    db_session.add_all([tshirt, mug, retired])
    await db_session.commit()
    return {"tshirt": tshirt, "mug": mug, "retired": retired}


SHIPPING = {
    "full_name": "Ayse Yilmaz",
    "address": "Ataturk Cad. No: 5\nDaire 3",
    "city": "Istanbul",
    "district": "Kadikoy",
    "postal_code": "34710",
    "phone": "(555) 123-45 67",
}


@pytest_asyncio.fixture
async def pending_order(db_session: AsyncSession, products) -> Order:
    """Two t-shirts at 150.00, free shipping: final amount 300.00."""
    order = await order_service.create_order(
        db_session,
        user_id=BUYER_ID,
        contact_email="ayse@example.com",
        shipping=SHIPPING,
        items=[{"product_id": products["tshirt"].id, "quantity": 2, "color": "black", "size": "M"}],
        shipping_cost=Decimal("0"),
    )
    await db_session.commit()
    return order
