"""
Dispatch Service - Assignment orchestrator and delivery state machine driver

Every public operation is one unit of work: the delivery row is locked
(SELECT ... FOR UPDATE) before its preconditions are checked, and the
delivery, the courier occupancy, ledger rows and the outbox notification
are committed together or not at all.
"""
from datetime import datetime
from typing import Iterable, Optional, Union
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import select, func

from pharmadispatch.core.config import MarketplaceConfig
from pharmadispatch.core.exceptions import (
    AppException,
    CourierNotFoundError,
    DeliveryNotFoundError,
    StorageFaultError,
    ValidationException,
)
from pharmadispatch.core.geo import has_coordinates
from pharmadispatch.core.logging import get_logger, log_async_operation, log_context
from pharmadispatch.db.models.courier import Courier, CourierStatus
from pharmadispatch.db.models.delivery import Delivery, DeliveryStatus, ACTIVE_DELIVERY_STATUSES
from pharmadispatch.db.models.order import Order, OrderStatus, PaymentMode
from pharmadispatch.db.models.pharmacy import Pharmacy
from pharmadispatch.domain.results import (
    AssignmentResult,
    BulkAssignmentReport,
    Outcome,
    TransitionResult,
)
from pharmadispatch.domain.services.candidate_filter import CandidateFilter
from pharmadispatch.domain.services.commission_service import CommissionService
from pharmadispatch.domain.services.outbox_service import OutboxService
from pharmadispatch.domain.services.scoring import ScoringEngine, ScoredCandidate
from pharmadispatch.state_machine.states import DeliveryEvent, SideEffect, get_transition

logger = get_logger(__name__)

REASSIGNABLE_STATUSES = (DeliveryStatus.ASSIGNED, DeliveryStatus.ACCEPTED)


class DispatchService:
    """
    Matches pending deliveries to couriers and drives them to a terminal state.

    Expected outcomes (not eligible, no courier available, insufficient
    balance) come back as typed results. Storage failures roll the unit of
    work back and raise StorageFaultError.
    """

    def __init__(self, db: AsyncSession, config: MarketplaceConfig):
        self.db = db
        self.config = config
        self.candidates = CandidateFilter(db, config)
        self.scoring = ScoringEngine(config)
        self.commissions = CommissionService(db, config)
        self.wallets = self.commissions.wallets
        self.outbox = OutboxService(db)

    # ==================== Loading and locking ====================

    async def get_delivery(self, delivery_id: int) -> Delivery:
        delivery = await self.db.get(Delivery, delivery_id)
        if not delivery:
            raise DeliveryNotFoundError(delivery_id)
        return delivery

    async def _lock_delivery(self, delivery_id: int) -> Delivery:
        result = await self.db.execute(
            select(Delivery)
            .where(Delivery.id == delivery_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        delivery = result.scalar_one_or_none()
        if not delivery:
            raise DeliveryNotFoundError(delivery_id)
        return delivery

    async def _lock_courier(self, courier_id: int) -> Optional[Courier]:
        result = await self.db.execute(
            select(Courier)
            .where(Courier.id == courier_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def count_active_deliveries(self, courier_id: int) -> int:
        result = await self.db.execute(
            select(func.count(Delivery.id)).where(
                Delivery.courier_id == courier_id,
                Delivery.status.in_(ACTIVE_DELIVERY_STATUSES),
            )
        )
        return result.scalar_one()

    async def _pickup_point(self, delivery: Delivery) -> tuple[Optional[float], Optional[float]]:
        """Delivery pickup coordinate, else the order's pharmacy, else unknown"""
        if has_coordinates(delivery.pickup_latitude, delivery.pickup_longitude):
            return delivery.pickup_latitude, delivery.pickup_longitude

        if delivery.order_id is not None:
            order = await self.db.get(Order, delivery.order_id)
            if order:
                pharmacy = await self.db.get(Pharmacy, order.pharmacy_id)
                if pharmacy and has_coordinates(pharmacy.latitude, pharmacy.longitude):
                    return pharmacy.latitude, pharmacy.longitude

        return None, None

    # ==================== Capacity bookkeeping ====================

    async def reconcile_courier_capacity(self, courier_id: Optional[int]) -> Optional[CourierStatus]:
        """
        Align a courier's available/busy status with its active delivery count.

        Idempotent. Offline, suspended and pending-approval couriers are left
        alone.
        """
        if courier_id is None:
            return None

        courier = await self._lock_courier(courier_id)
        if not courier:
            return None

        active = await self.count_active_deliveries(courier_id)
        cap = self.config.max_concurrent_deliveries
        previous = courier.status

        if courier.status == CourierStatus.BUSY and active < cap:
            courier.status = CourierStatus.AVAILABLE
        elif courier.status == CourierStatus.AVAILABLE and active >= cap:
            courier.status = CourierStatus.BUSY

        if courier.status != previous:
            logger.info(
                "Courier capacity status changed",
                extra_data={
                    "courier_id": courier_id,
                    "from_status": previous.value,
                    "to_status": courier.status.value,
                    "active_deliveries": active,
                    "max_concurrent_deliveries": cap,
                }
            )
        return courier.status

    async def _occupy(self, delivery: Delivery, courier: Courier) -> None:
        delivery.courier_id = courier.id
        delivery.status = DeliveryStatus.ASSIGNED
        delivery.assigned_at = datetime.utcnow()
        await self.db.flush()
        await self.reconcile_courier_capacity(courier.id)

    # ==================== Assignment ====================

    async def _assign_locked(self, delivery: Delivery, exclude_courier_ids: set[int]) -> AssignmentResult:
        """Pick and occupy the best courier for an already locked pending delivery"""
        latitude, longitude = await self._pickup_point(delivery)
        candidates = await self.candidates.find_candidates(latitude, longitude, exclude_courier_ids)
        cap = self.config.max_concurrent_deliveries

        for scored in self.scoring.rank(candidates):
            # Re-check under the courier row lock; the filter ran unlocked
            courier = await self._lock_courier(scored.courier.id)
            if (
                courier is None
                or courier.status != CourierStatus.AVAILABLE
                or await self.count_active_deliveries(courier.id) >= cap
            ):
                continue

            await self._occupy(delivery, courier)
            await self.outbox.queue_assignment_notification(
                delivery, courier, score=scored.score, distance_km=scored.distance_km
            )
            return AssignmentResult(
                outcome=Outcome.OK,
                delivery_id=delivery.id,
                courier_id=courier.id,
                score=scored.score,
                distance_km=scored.distance_km,
                message=f"Delivery #{delivery.id} assigned to courier #{courier.id}",
            )

        return AssignmentResult(
            outcome=Outcome.NO_COURIER_AVAILABLE,
            delivery_id=delivery.id,
            message="No courier available",
        )

    def _log_assignment(self, operation: str, result: AssignmentResult) -> None:
        extra = {"operation": operation, **result.to_dict()}
        if result.outcome == Outcome.OK:
            logger.info("Delivery assigned", extra_data=extra)
        elif result.outcome == Outcome.NO_COURIER_AVAILABLE:
            logger.warning("No courier available", extra_data=extra)
        else:
            logger.info("Delivery not eligible for assignment", extra_data=extra)

    async def assign(self, delivery_id: int, exclude_courier_ids: Iterable[int] = ()) -> AssignmentResult:
        """
        Assign a pending, unassigned delivery to the best scoring candidate.

        Calling it again on an assigned delivery is a no-op returning
        NOT_ELIGIBLE.
        """
        try:
            delivery = await self._lock_delivery(delivery_id)

            if delivery.status != DeliveryStatus.PENDING or delivery.courier_id is not None:
                result = AssignmentResult(
                    outcome=Outcome.NOT_ELIGIBLE,
                    delivery_id=delivery_id,
                    courier_id=delivery.courier_id,
                    message=f"Delivery already {delivery.status.value}",
                )
            else:
                result = await self._assign_locked(delivery, set(exclude_courier_ids))

            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "Assignment failed",
                extra_data={"delivery_id": delivery_id, "error": str(e)},
                exc_info=True
            )
            raise StorageFaultError("assign", str(e)) from e

        self._log_assignment("assign", result)
        return result

    async def manual_assign(self, delivery_id: int, courier_id: int) -> AssignmentResult:
        """Operator override: no scoring and no eligibility filter on the courier"""
        try:
            delivery = await self._lock_delivery(delivery_id)

            if delivery.status != DeliveryStatus.PENDING or delivery.courier_id is not None:
                result = AssignmentResult(
                    outcome=Outcome.NOT_ELIGIBLE,
                    delivery_id=delivery_id,
                    courier_id=delivery.courier_id,
                    message=f"Delivery already {delivery.status.value}",
                )
            else:
                courier = await self._lock_courier(courier_id)
                if not courier:
                    await self.db.rollback()
                    raise CourierNotFoundError(courier_id)

                await self._occupy(delivery, courier)
                await self.outbox.queue_assignment_notification(delivery, courier)
                result = AssignmentResult(
                    outcome=Outcome.OK,
                    delivery_id=delivery_id,
                    courier_id=courier_id,
                    message=f"Delivery #{delivery_id} manually assigned to courier #{courier_id}",
                )

            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "Manual assignment failed",
                extra_data={"delivery_id": delivery_id, "courier_id": courier_id, "error": str(e)},
                exc_info=True
            )
            raise StorageFaultError("manual_assign", str(e)) from e

        self._log_assignment("manual_assign", result)
        return result

    async def reassign(self, delivery_id: int, reason: str) -> AssignmentResult:
        """
        Release the current courier and look for another one.

        The previous courier is never a candidate for this round. The
        delivery stays pending when nobody else qualifies.
        """
        try:
            delivery = await self._lock_delivery(delivery_id)

            if delivery.status not in REASSIGNABLE_STATUSES:
                result = AssignmentResult(
                    outcome=Outcome.NOT_ELIGIBLE,
                    delivery_id=delivery_id,
                    courier_id=delivery.courier_id,
                    message=f"Cannot reassign a delivery in status {delivery.status.value}",
                )
            else:
                previous_courier_id = delivery.courier_id
                delivery.courier_id = None
                delivery.status = DeliveryStatus.PENDING
                delivery.assigned_at = None
                delivery.accepted_at = None
                delivery.cancellation_reason = reason
                await self.db.flush()
                await self.reconcile_courier_capacity(previous_courier_id)

                logger.info(
                    "Delivery released for reassignment",
                    extra_data={
                        "delivery_id": delivery_id,
                        "previous_courier_id": previous_courier_id,
                        "reason": reason,
                    }
                )
                excluded = {previous_courier_id} if previous_courier_id is not None else set()
                result = await self._assign_locked(delivery, excluded)

            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "Reassignment failed",
                extra_data={"delivery_id": delivery_id, "error": str(e)},
                exc_info=True
            )
            raise StorageFaultError("reassign", str(e)) from e

        self._log_assignment("reassign", result)
        return result

    async def pending_delivery_ids(self, limit: Optional[int] = None) -> list[int]:
        query = (
            select(Delivery.id)
            .where(Delivery.status == DeliveryStatus.PENDING, Delivery.courier_id.is_(None))
            .order_by(Delivery.created_at, Delivery.id)
        )
        if limit:
            query = query.limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def preview_assignment(self, delivery_id: int) -> Optional[ScoredCandidate]:
        """Best candidate for a delivery right now, without writing anything"""
        delivery = await self.get_delivery(delivery_id)
        latitude, longitude = await self._pickup_point(delivery)
        candidates = await self.candidates.find_candidates(latitude, longitude)
        return self.scoring.select_best(candidates)

    @log_async_operation("bulk_assign")
    async def bulk_assign(self, delivery_ids: Optional[Iterable[int]] = None) -> BulkAssignmentReport:
        """Assign each delivery independently; one failure never aborts the batch"""
        ids = list(delivery_ids) if delivery_ids is not None else await self.pending_delivery_ids()
        report = BulkAssignmentReport()

        for delivery_id in ids:
            with log_context(delivery_id=delivery_id):
                try:
                    report.record(await self.assign(delivery_id))
                except AppException as e:
                    report.record_error(delivery_id, e.message)

        logger.info(
            "Bulk assignment finished",
            extra_data={k: v for k, v in report.to_dict().items() if k != "details"}
        )
        return report

    # ==================== Courier-side progress ====================

    async def transition(
        self,
        delivery_id: int,
        event: Union[DeliveryEvent, str],
        courier_id: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> TransitionResult:
        """
        Apply one event from the transition table.

        When ``courier_id`` is given the delivery must belong to that courier.
        Accepting and delivering require the courier's available balance to
        cover the commission.
        """
        try:
            event = DeliveryEvent(event)
        except ValueError:
            raise ValidationException(f"Unknown delivery event: {event}", field="event")

        with log_context(delivery_id=delivery_id, courier_id=courier_id):
            try:
                delivery = await self._lock_delivery(delivery_id)
                result = await self._apply_transition(delivery, event, courier_id, reason)
                await self.db.commit()
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error(
                    "Delivery transition failed",
                    extra_data={"event": event.value, "error": str(e)},
                    exc_info=True
                )
                raise StorageFaultError(f"transition:{event.value}", str(e)) from e

            log = logger.info if result.ok else logger.warning
            log(
                f"Delivery event {event.value}: {result.outcome.value}",
                extra_data={"event": event.value, **result.to_dict()}
            )
        return result

    async def _apply_transition(
        self,
        delivery: Delivery,
        event: DeliveryEvent,
        courier_id: Optional[int],
        reason: Optional[str],
    ) -> TransitionResult:
        delivery_id = delivery.id
        current = delivery.status

        if courier_id is not None and delivery.courier_id != courier_id:
            return TransitionResult(
                outcome=Outcome.NOT_ELIGIBLE,
                delivery_id=delivery_id,
                status=current.value,
                message="Delivery is not assigned to this courier",
            )

        transition = get_transition(current, event)
        if not transition:
            return TransitionResult(
                outcome=Outcome.NOT_ELIGIBLE,
                delivery_id=delivery_id,
                status=current.value,
                message=f"Cannot {event.value} a delivery in status {current.value}",
            )

        effects = transition.effects
        assigned_courier_id = delivery.courier_id

        if SideEffect.REQUIRE_COMMISSION_BALANCE in effects and assigned_courier_id is not None:
            if not await self.commissions.can_accept_work(assigned_courier_id):
                return TransitionResult(
                    outcome=Outcome.INSUFFICIENT_BALANCE,
                    delivery_id=delivery_id,
                    status=current.value,
                    message="Insufficient balance to cover the commission, please top up",
                )

        now = datetime.utcnow()
        delivery.status = transition.target
        setattr(delivery, transition.timestamp_field, now)
        if event == DeliveryEvent.CANCEL:
            delivery.cancellation_reason = reason
        elif event == DeliveryEvent.FAIL:
            delivery.failure_reason = reason

        order = await self.db.get(Order, delivery.order_id) if delivery.order_id else None
        if order and transition.target == DeliveryStatus.PICKED_UP:
            order.status = OrderStatus.IN_DELIVERY
        elif order and transition.target == DeliveryStatus.DELIVERED:
            order.status = OrderStatus.DELIVERED

        if SideEffect.CREDIT_EARNING in effects and self._earning_due(delivery):
            await self.wallets.credit_delivery_earning(
                assigned_courier_id,
                delivery_id,
                delivery.delivery_fee,
                reference=order.reference if order else None,
                order_id=delivery.order_id,
                auto_commit=False,
            )

        if SideEffect.SETTLE_COMMISSION in effects:
            settlement = await self.commissions.settle_delivery_commission(delivery, auto_commit=False)
            if not settlement.ok:
                # Undo the status change and the earning credit
                await self.db.rollback()
                return TransitionResult(
                    outcome=Outcome.INSUFFICIENT_BALANCE,
                    delivery_id=delivery_id,
                    status=current.value,
                    message=settlement.message,
                )

        # Cash is collected at the door, so the order is paid out on delivery
        if SideEffect.SETTLE_CASH_ORDER in effects and order and order.payment_mode == PaymentMode.CASH:
            await self.commissions.settle_order(order, delivery_id=delivery_id, auto_commit=False)

        if SideEffect.INCREMENT_COMPLETED in effects:
            courier = await self._lock_courier(assigned_courier_id)
            if courier:
                courier.completed_deliveries = (courier.completed_deliveries or 0) + 1

        await self.db.flush()

        if SideEffect.RELEASE_COURIER in effects:
            await self.reconcile_courier_capacity(assigned_courier_id)

        return TransitionResult(
            outcome=Outcome.OK,
            delivery_id=delivery_id,
            status=transition.target.value,
            message=f"Delivery #{delivery_id} is now {transition.target.value}",
        )

    def _earning_due(self, delivery: Delivery) -> bool:
        return (
            self.config.credit_delivery_earnings
            and delivery.courier_id is not None
            and delivery.delivery_fee is not None
            and delivery.delivery_fee > 0
        )
