from __future__ import annotations

from dataclasses import dataclass

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from autopickup.core.db import create_all, get_db, make_async_engine
from autopickup.core.deps import get_code_rate_limiter, get_pickup_rate_limiter
from autopickup.core.security import create_access_token
from autopickup.main import create_app
from autopickup.models.product import Product
from autopickup.models.user import User
from autopickup.services.rate_limiter import PickupRateLimiter

DELIVERY = {"download_url": "https://files.example.com/ebook.pdf", "license": "EBOOK-LICENSE-1"}


@dataclass
class Seed:
    merchant_id: int
    other_merchant_id: int
    customer_id: int
    product_id: int
    delivery_data: dict


@pytest.fixture
async def engine(tmp_path):
    # a real file so concurrent sessions get their own connections
    engine, _ = make_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'autopickup-test.db'}")
    await create_all(engine)
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
async def seed(session_factory) -> Seed:
    async with session_factory() as s:
        merchant = User(username="merchant", role="merchant")
        other = User(username="other-merchant", role="merchant")
        customer = User(username="alice", role="customer")
        s.add_all([merchant, other, customer])
        await s.flush()

        product = Product(
            merchant_id=merchant.id,
            name="Python Tricks (e-book)",
            description="PDF edition",
            price_cents=1999,
            stock=10,
            sales=0,
            is_active=True,
            delivery_data=DELIVERY,
        )
        s.add(product)
        await s.commit()

        return Seed(
            merchant_id=merchant.id,
            other_merchant_id=other.id,
            customer_id=customer.id,
            product_id=product.id,
            delivery_data=DELIVERY,
        )


@pytest.fixture
def make_customers(session_factory):
    async def _make(n: int, prefix: str = "customer") -> list[int]:
        async with session_factory() as s:
            users = [User(username=f"{prefix}-{i}", role="customer") for i in range(n)]
            s.add_all(users)
            await s.commit()
            return [u.id for u in users]

    return _make


@pytest.fixture
def code_rate_limiter() -> PickupRateLimiter:
    return PickupRateLimiter(max_attempts=5, window_seconds=60, scope="redeem")


@pytest.fixture
def pickup_rate_limiter() -> PickupRateLimiter:
    return PickupRateLimiter(max_attempts=5, window_seconds=60, scope="pickup")


@pytest.fixture
async def client(session_factory, code_rate_limiter, pickup_rate_limiter):
    app = create_app()

    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_code_rate_limiter] = lambda: code_rate_limiter
    app.dependency_overrides[get_pickup_rate_limiter] = lambda: pickup_rate_limiter

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth_headers():
    def _headers(user_id: int, role: str = "customer") -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id=user_id, role=role)}"}

    return _headers
