"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, in-memory SQLite)
- HTTP test client with the database dependency overridden
- Test data factories (pharmacies, couriers, orders, deliveries, wallet funding)
"""
# Operator endpoints require a key when DEBUG=False; set it before importing the app
import os
os.environ.setdefault("ADMIN_API_KEY", "test-admin-api-key-for-testing-only")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from pharmadispatch.core.config import MarketplaceConfig, settings
from pharmadispatch.db.database import Base, get_db
from pharmadispatch.db.models.courier import Courier, CourierStatus
from pharmadispatch.db.models.delivery import Delivery, DeliveryStatus
from pharmadispatch.db.models.order import Order, OrderStatus, PaymentMode
from pharmadispatch.db.models.pharmacy import Pharmacy
from pharmadispatch.domain.services.wallet_service import WalletService
from pharmadispatch.main import app


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Plateau, Abidjan
PHARMACY_LAT = 5.3200
PHARMACY_LON = -4.0200

# One degree of latitude is ~111.2 km
KM_IN_LAT_DEGREES = 1 / 111.195


def north_of(latitude: float, km: float) -> float:
    return latitude + km * KM_IN_LAT_DEGREES


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession):
    """Create test client with database override"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-Admin-API-Key": settings.ADMIN_API_KEY}


@pytest.fixture
def config() -> MarketplaceConfig:
    """Default marketplace parameters"""
    return MarketplaceConfig()


# ============================================================================
# Test Data Factories
# ============================================================================

@pytest.fixture
def pharmacy_factory(db_session: AsyncSession):
    """Factory for creating test pharmacies"""
    async def _create_pharmacy(
        name: str = "Pharmacie du Plateau",
        address: str | None = "Avenue Chardy, Plateau",
        latitude: float | None = PHARMACY_LAT,
        longitude: float | None = PHARMACY_LON,
    ) -> Pharmacy:
        pharmacy = Pharmacy(name=name, address=address, latitude=latitude, longitude=longitude)
        db_session.add(pharmacy)
        await db_session.commit()
        await db_session.refresh(pharmacy)
        return pharmacy

    return _create_pharmacy


@pytest.fixture
def courier_factory(db_session: AsyncSession):
    """Factory for creating test couriers, available at the pharmacy by default"""
    async def _create_courier(
        name: str = "Test Courier",
        status: CourierStatus = CourierStatus.AVAILABLE,
        latitude: float | None = PHARMACY_LAT,
        longitude: float | None = PHARMACY_LON,
        rating: float | None = 4.0,
        completed_deliveries: int = 0,
        minutes_since_update: float | None = 1,
        vehicle_type: str = "motorcycle",
    ) -> Courier:
        last_update = None
        if minutes_since_update is not None:
            last_update = datetime.utcnow() - timedelta(minutes=minutes_since_update)

        courier = Courier(
            name=name,
            status=status,
            latitude=latitude,
            longitude=longitude,
            rating=rating,
            completed_deliveries=completed_deliveries,
            last_location_update=last_update,
            vehicle_type=vehicle_type,
        )
        db_session.add(courier)
        await db_session.commit()
        await db_session.refresh(courier)
        return courier

    return _create_courier


@pytest.fixture
def order_factory(db_session: AsyncSession):
    """Factory for creating priced test orders without going through the fee calculator"""
    async def _create_order(
        pharmacy_id: int,
        subtotal: Decimal = Decimal("10000"),
        delivery_fee: Decimal = Decimal("800"),
        service_fee: Decimal = Decimal("200"),
        payment_mode: PaymentMode = PaymentMode.CASH,
        status: OrderStatus = OrderStatus.PENDING,
    ) -> Order:
        order = Order(
            pharmacy_id=pharmacy_id,
            delivery_address="Rue des Jardins, Cocody",
            delivery_latitude=north_of(PHARMACY_LAT, 6),
            delivery_longitude=PHARMACY_LON,
            payment_mode=payment_mode,
            status=status,
            subtotal=subtotal,
            delivery_fee=delivery_fee,
            service_fee=service_fee,
            payment_fee=Decimal("0"),
            total_amount=subtotal + delivery_fee + service_fee,
        )
        db_session.add(order)
        await db_session.commit()
        await db_session.refresh(order)
        return order

    return _create_order


@pytest.fixture
def delivery_factory(db_session: AsyncSession):
    """Factory for creating test deliveries picked up at the pharmacy"""
    async def _create_delivery(
        status: DeliveryStatus = DeliveryStatus.PENDING,
        courier_id: int | None = None,
        order_id: int | None = None,
        pickup_latitude: float | None = PHARMACY_LAT,
        pickup_longitude: float | None = PHARMACY_LON,
        delivery_fee: Decimal | None = Decimal("800"),
    ) -> Delivery:
        delivery = Delivery(
            status=status,
            courier_id=courier_id,
            order_id=order_id,
            pickup_address="Avenue Chardy, Plateau",
            pickup_latitude=pickup_latitude,
            pickup_longitude=pickup_longitude,
            dropoff_address="Rue des Jardins, Cocody",
            delivery_fee=delivery_fee,
            assigned_at=datetime.utcnow() if courier_id else None,
        )
        db_session.add(delivery)
        await db_session.commit()
        await db_session.refresh(delivery)
        return delivery

    return _create_delivery


@pytest.fixture
def fund_courier(db_session: AsyncSession, config: MarketplaceConfig):
    """Top up a courier wallet through the ledger so balances replay cleanly"""
    async def _fund(courier_id: int, amount: Decimal | int = Decimal("1000")):
        return await WalletService(db_session, config).top_up(courier_id, amount, "mobile_money")

    return _fund


# ============================================================================
# Sample Test Data
# ============================================================================

@pytest.fixture
async def sample_pharmacy(pharmacy_factory) -> Pharmacy:
    return await pharmacy_factory()


@pytest.fixture
async def sample_courier(courier_factory, fund_courier) -> Courier:
    """An available courier at the pharmacy, funded for several commissions"""
    courier = await courier_factory(name="Kouassi", rating=4.5, completed_deliveries=20)
    await fund_courier(courier.id, Decimal("1000"))
    return courier
