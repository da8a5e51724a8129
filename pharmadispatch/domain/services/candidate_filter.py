"""
Candidate Filter - narrows the courier pool for one pickup point
"""
from dataclasses import dataclass
from typing import Iterable, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from pharmadispatch.core.config import MarketplaceConfig
from pharmadispatch.core.geo import haversine_km, has_coordinates
from pharmadispatch.core.logging import get_logger
from pharmadispatch.db.models.courier import Courier, CourierStatus
from pharmadispatch.db.models.delivery import Delivery, ACTIVE_DELIVERY_STATUSES

logger = get_logger(__name__)


@dataclass(frozen=True)
class Candidate:
    courier: Courier
    distance_km: Optional[float] = None


class CandidateFilter:
    """
    Available, geolocated couriers under the concurrency cap, optionally
    within the search radius of the pickup point.

    Capacity and radius are two independent predicates applied in process
    after a plain aggregate query, so no backend-specific HAVING clause is
    involved.
    """

    def __init__(self, db: AsyncSession, config: MarketplaceConfig):
        self.db = db
        self.config = config

    async def active_delivery_counts(self, courier_ids: Optional[Iterable[int]] = None) -> dict[int, int]:
        """Number of active deliveries per courier (couriers with none are absent)"""
        query = (
            select(Delivery.courier_id, func.count(Delivery.id))
            .where(
                Delivery.courier_id.is_not(None),
                Delivery.status.in_(ACTIVE_DELIVERY_STATUSES),
            )
            .group_by(Delivery.courier_id)
        )
        if courier_ids is not None:
            query = query.where(Delivery.courier_id.in_(list(courier_ids)))

        result = await self.db.execute(query)
        return {courier_id: count for courier_id, count in result.all()}

    def within_capacity(self, courier_id: int, active_counts: dict[int, int]) -> bool:
        return active_counts.get(courier_id, 0) < self.config.max_concurrent_deliveries

    def within_radius(self, distance_km: Optional[float]) -> bool:
        return distance_km is None or distance_km <= self.config.max_search_radius_km

    async def find_candidates(
        self,
        pickup_latitude: Optional[float] = None,
        pickup_longitude: Optional[float] = None,
        exclude_courier_ids: Iterable[int] = (),
    ) -> list[Candidate]:
        excluded = set(exclude_courier_ids)

        query = (
            select(Courier)
            .where(
                Courier.status == CourierStatus.AVAILABLE,
                Courier.latitude.is_not(None),
                Courier.longitude.is_not(None),
            )
            .order_by(Courier.id)
        )
        if excluded:
            query = query.where(Courier.id.not_in(excluded))

        result = await self.db.execute(query)
        couriers = list(result.scalars().all())
        if not couriers:
            return []

        active_counts = await self.active_delivery_counts(c.id for c in couriers)
        use_radius = has_coordinates(pickup_latitude, pickup_longitude)

        candidates = []
        for courier in couriers:
            if not self.within_capacity(courier.id, active_counts):
                continue

            distance = None
            if use_radius:
                distance = haversine_km(
                    pickup_latitude, pickup_longitude, courier.latitude, courier.longitude
                )
                if not self.within_radius(distance):
                    continue

            candidates.append(Candidate(courier=courier, distance_km=distance))

        logger.debug(
            "Courier candidates filtered",
            extra_data={
                "available": len(couriers),
                "candidates": len(candidates),
                "excluded": sorted(excluded),
                "radius_applied": use_radius,
            }
        )
        return candidates
