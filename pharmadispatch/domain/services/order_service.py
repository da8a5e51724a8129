"""
Order Service - order creation with persisted totals and the ready trigger
"""
from decimal import Decimal
from typing import Optional, Union
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import select

from pharmadispatch.core.config import MarketplaceConfig
from pharmadispatch.core.exceptions import (
    OrderNotFoundError,
    PharmacyNotFoundError,
    StorageFaultError,
    ValidationException,
)
from pharmadispatch.core.geo import haversine_km, has_coordinates
from pharmadispatch.core.logging import get_logger
from pharmadispatch.db.database import commit_or_raise
from pharmadispatch.db.models.delivery import Delivery
from pharmadispatch.db.models.order import Order, OrderStatus
from pharmadispatch.db.models.pharmacy import Pharmacy
from pharmadispatch.domain.results import AssignmentResult, Outcome
from pharmadispatch.domain.services.dispatch_service import DispatchService
from pharmadispatch.domain.services.fee_calculator import FeeCalculator, normalize_payment_mode

logger = get_logger(__name__)


class OrderService:
    def __init__(self, db: AsyncSession, config: MarketplaceConfig):
        self.db = db
        self.config = config
        self.fees = FeeCalculator(config)

    async def get_order(self, order_id: int) -> Order:
        order = await self.db.get(Order, order_id)
        if not order:
            raise OrderNotFoundError(order_id)
        return order

    async def create_order(
        self,
        pharmacy_id: int,
        subtotal: Union[int, float, Decimal],
        payment_mode: str,
        delivery_address: Optional[str] = None,
        delivery_latitude: Optional[float] = None,
        delivery_longitude: Optional[float] = None,
        distance_km: Optional[float] = None,
    ) -> Order:
        """
        Price and persist an order.

        Without an explicit distance the delivery fee is based on the
        pharmacy to customer great-circle distance (0 km when either end has
        no coordinates, so the minimum fee applies).
        """
        pharmacy = await self.db.get(Pharmacy, pharmacy_id)
        if not pharmacy:
            raise PharmacyNotFoundError(pharmacy_id)

        mode = normalize_payment_mode(payment_mode)

        if distance_km is None:
            if has_coordinates(pharmacy.latitude, pharmacy.longitude) and has_coordinates(
                delivery_latitude, delivery_longitude
            ):
                distance_km = haversine_km(
                    pharmacy.latitude, pharmacy.longitude, delivery_latitude, delivery_longitude
                )
            else:
                distance_km = 0.0

        delivery_fee = self.fees.delivery_fee(distance_km)
        breakdown = self.fees.calculate_all(subtotal, delivery_fee, mode)

        order = Order(
            pharmacy_id=pharmacy_id,
            delivery_address=delivery_address,
            delivery_latitude=delivery_latitude,
            delivery_longitude=delivery_longitude,
            payment_mode=mode,
            status=OrderStatus.PENDING,
            subtotal=breakdown.subtotal,
            delivery_fee=breakdown.delivery_fee,
            service_fee=breakdown.service_fee,
            payment_fee=breakdown.payment_fee,
            total_amount=breakdown.total_amount,
        )
        self.db.add(order)
        await commit_or_raise(self.db, "create_order")

        logger.info(
            "Order created",
            extra_data={
                "order_id": order.id,
                "reference": order.reference,
                "pharmacy_id": pharmacy_id,
                "distance_km": round(distance_km, 2),
                **{k: str(v) for k, v in breakdown.to_dict().items()},
            }
        )
        return order

    async def get_delivery_for_order(self, order_id: int) -> Optional[Delivery]:
        result = await self.db.execute(select(Delivery).where(Delivery.order_id == order_id))
        return result.scalar_one_or_none()

    async def mark_ready(self, order_id: int, dispatch: Optional[DispatchService] = None) -> AssignmentResult:
        """
        The order can be picked up: create its delivery and try to assign it.

        An order gets a single delivery; calling this again re-runs
        assignment on the existing one (a no-op once assigned).
        """
        order = await self.get_order(order_id)
        if order.status in (OrderStatus.CANCELLED, OrderStatus.DELIVERED):
            raise ValidationException(
                f"Order {order.reference} is {order.status.value}",
                field="status",
            )

        delivery = await self.get_delivery_for_order(order_id)
        if delivery is None:
            pharmacy = await self.db.get(Pharmacy, order.pharmacy_id)
            delivery = Delivery(
                order_id=order.id,
                pickup_address=pharmacy.address if pharmacy else None,
                pickup_latitude=pharmacy.latitude if pharmacy else None,
                pickup_longitude=pharmacy.longitude if pharmacy else None,
                dropoff_address=order.delivery_address,
                dropoff_latitude=order.delivery_latitude,
                dropoff_longitude=order.delivery_longitude,
                delivery_fee=order.delivery_fee,
            )
            self.db.add(delivery)
            if order.status == OrderStatus.PENDING:
                order.status = OrderStatus.READY
            try:
                await self.db.commit()
            except SQLAlchemyError as e:
                await self.db.rollback()
                raise StorageFaultError("mark_ready", str(e)) from e

            logger.info(
                "Delivery created for ready order",
                extra_data={"order_id": order.id, "delivery_id": delivery.id}
            )

        dispatch = dispatch or DispatchService(self.db, self.config)
        result = await dispatch.assign(delivery.id)
        if result.outcome == Outcome.NO_COURIER_AVAILABLE:
            logger.warning(
                "Ready order waiting for a courier",
                extra_data={"order_id": order_id, "delivery_id": delivery.id}
            )
        return result
