"""
Courier Service - presence (location pings, availability) and pool stats
"""
from datetime import datetime, timedelta
from typing import Optional, Union
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from pharmadispatch.core.config import MarketplaceConfig
from pharmadispatch.core.exceptions import (
    CourierNotFoundError,
    CourierStatusLockedError,
    ValidationException,
)
from pharmadispatch.core.logging import get_logger
from pharmadispatch.db.database import commit_or_raise
from pharmadispatch.db.models.courier import Courier, CourierStatus, ADMIN_CONTROLLED_STATUSES
from pharmadispatch.domain.services.dispatch_service import DispatchService

logger = get_logger(__name__)

RECENTLY_ACTIVE_MINUTES = 30
SELF_SERVICE_STATUSES = (CourierStatus.AVAILABLE, CourierStatus.OFFLINE)


class CourierService:
    def __init__(self, db: AsyncSession, config: MarketplaceConfig):
        self.db = db
        self.config = config

    async def get_courier(self, courier_id: int) -> Courier:
        courier = await self.db.get(Courier, courier_id)
        if not courier:
            raise CourierNotFoundError(courier_id)
        return courier

    async def _lock_courier(self, courier_id: int) -> Optional[Courier]:
        result = await self.db.execute(
            select(Courier)
            .where(Courier.id == courier_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def update_location(self, courier_id: int, latitude: float, longitude: float) -> Courier:
        """Last writer wins; stamps the freshness used by scoring"""
        if not (-90 <= latitude <= 90) or not (-180 <= longitude <= 180):
            raise ValidationException("Coordinates out of range", field="latitude/longitude")

        courier = await self.get_courier(courier_id)
        courier.latitude = latitude
        courier.longitude = longitude
        courier.last_location_update = datetime.utcnow()
        await commit_or_raise(self.db, "update_location")

        logger.debug(
            "Courier location updated",
            extra_data={"courier_id": courier_id, "latitude": latitude, "longitude": longitude}
        )
        return courier

    async def set_availability(self, courier_id: int, status: Union[CourierStatus, str]) -> Courier:
        """
        Courier toggles between available and offline.

        Suspended and pending-approval couriers are operator controlled.
        Going available is followed by capacity reconciliation, so a courier
        already at the cap lands on busy.
        """
        try:
            target = CourierStatus(status)
        except ValueError:
            raise ValidationException(f"Unknown courier status: {status}", field="status")
        if target not in SELF_SERVICE_STATUSES:
            raise ValidationException(
                "Couriers can only switch between available and offline",
                field="status",
            )

        courier = await self._lock_courier(courier_id)
        if not courier:
            raise CourierNotFoundError(courier_id)
        if courier.status in ADMIN_CONTROLLED_STATUSES:
            raise CourierStatusLockedError(courier_id, courier.status.value)

        previous = courier.status
        # Busy is derived from load; reconciliation decides whether it clears
        if target == CourierStatus.OFFLINE or courier.status != CourierStatus.BUSY:
            courier.status = target
        await self.db.flush()

        if target == CourierStatus.AVAILABLE:
            await DispatchService(self.db, self.config).reconcile_courier_capacity(courier_id)
        await commit_or_raise(self.db, "set_availability")

        logger.info(
            "Courier availability changed",
            extra_data={
                "courier_id": courier_id,
                "from_status": previous.value,
                "to_status": courier.status.value,
            }
        )
        return courier

    async def get_availability_stats(self, now: Optional[datetime] = None) -> dict:
        now = now or datetime.utcnow()
        result = await self.db.execute(
            select(Courier.status, func.count(Courier.id)).group_by(Courier.status)
        )
        by_status = {status: count for status, count in result.all()}

        recent = await self.db.execute(
            select(func.count(Courier.id)).where(
                Courier.last_location_update >= now - timedelta(minutes=RECENTLY_ACTIVE_MINUTES)
            )
        )
        return {
            "available": by_status.get(CourierStatus.AVAILABLE, 0),
            "busy": by_status.get(CourierStatus.BUSY, 0),
            "offline": by_status.get(CourierStatus.OFFLINE, 0),
            "recently_active": recent.scalar_one(),
            "total": sum(by_status.values()),
        }
