"""
Tests for the delivery state machine as driven by DispatchService.transition
"""
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from pharmadispatch.core.config import MarketplaceConfig
from pharmadispatch.core.exceptions import StorageFaultError, ValidationException
from pharmadispatch.db.models.courier import CourierStatus
from pharmadispatch.db.models.delivery import DeliveryStatus
from pharmadispatch.db.models.order import OrderStatus, PaymentMode
from pharmadispatch.db.models.wallet import WalletOwner
from pharmadispatch.db.models.wallet_transaction import (
    WalletTransaction,
    TransactionCategory,
    TransactionType,
)
from pharmadispatch.domain.results import Outcome
from pharmadispatch.domain.services.dispatch_service import DispatchService
from pharmadispatch.domain.services.wallet_service import WalletService
from pharmadispatch.state_machine import DeliveryEvent, SideEffect, allowed_events, get_transition


class TestTransitionTable:

    @pytest.mark.unit
    def test_happy_path(self):
        assert get_transition(DeliveryStatus.ASSIGNED, DeliveryEvent.ACCEPT).target == DeliveryStatus.ACCEPTED
        assert get_transition(DeliveryStatus.ACCEPTED, DeliveryEvent.PICK_UP).target == DeliveryStatus.PICKED_UP
        assert get_transition(DeliveryStatus.PICKED_UP, DeliveryEvent.START_TRANSIT).target == DeliveryStatus.IN_TRANSIT
        assert get_transition(DeliveryStatus.IN_TRANSIT, DeliveryEvent.DELIVER).target == DeliveryStatus.DELIVERED

    @pytest.mark.unit
    @pytest.mark.parametrize("status", [DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED, DeliveryStatus.FAILED])
    def test_terminal_statuses_have_no_exit(self, status):
        assert allowed_events(status) == []

    @pytest.mark.unit
    def test_completion_effects(self):
        effects = get_transition(DeliveryStatus.IN_TRANSIT, DeliveryEvent.DELIVER).effects

        assert SideEffect.SETTLE_COMMISSION in effects
        assert SideEffect.SETTLE_CASH_ORDER in effects
        assert SideEffect.CREDIT_EARNING in effects
        assert SideEffect.RELEASE_COURIER in effects

    @pytest.mark.unit
    def test_accept_is_gated(self):
        effects = get_transition(DeliveryStatus.ASSIGNED, DeliveryEvent.ACCEPT).effects
        assert SideEffect.REQUIRE_COMMISSION_BALANCE in effects

    @pytest.mark.unit
    def test_no_skipping_to_delivered(self):
        assert get_transition(DeliveryStatus.ASSIGNED, DeliveryEvent.DELIVER) is None
        assert get_transition(DeliveryStatus.PENDING, DeliveryEvent.ACCEPT) is None


@pytest.fixture
async def assigned_delivery(db_session, config, sample_courier, delivery_factory):
    delivery = await delivery_factory()
    result = await DispatchService(db_session, config).assign(delivery.id)
    assert result.courier_id == sample_courier.id
    return delivery


class TestCourierProgress:

    @pytest.mark.unit
    async def test_accept(self, db_session, config, sample_courier, assigned_delivery):
        result = await DispatchService(db_session, config).transition(
            assigned_delivery.id, "accept", courier_id=sample_courier.id
        )

        assert result.outcome == Outcome.OK
        assert result.status == "accepted"
        assert assigned_delivery.accepted_at is not None

    @pytest.mark.unit
    async def test_accept_requires_commission_balance(self, db_session, config, courier_factory, fund_courier, delivery_factory):
        courier = await courier_factory()
        await fund_courier(courier.id, Decimal("150"))
        delivery = await delivery_factory(status=DeliveryStatus.ASSIGNED, courier_id=courier.id)
        service = DispatchService(db_session, config)

        refused = await service.transition(delivery.id, DeliveryEvent.ACCEPT, courier_id=courier.id)

        assert refused.outcome == Outcome.INSUFFICIENT_BALANCE
        assert delivery.status == DeliveryStatus.ASSIGNED
        assert delivery.accepted_at is None

        await fund_courier(courier.id, Decimal("50"))
        accepted = await service.transition(delivery.id, DeliveryEvent.ACCEPT, courier_id=courier.id)

        assert accepted.outcome == Outcome.OK

    @pytest.mark.unit
    async def test_courier_without_wallet_cannot_accept(self, db_session, config, courier_factory, delivery_factory):
        courier = await courier_factory()
        delivery = await delivery_factory(status=DeliveryStatus.ASSIGNED, courier_id=courier.id)

        result = await DispatchService(db_session, config).transition(delivery.id, "accept")

        assert result.outcome == Outcome.INSUFFICIENT_BALANCE

    @pytest.mark.unit
    async def test_other_courier_not_eligible(self, db_session, config, courier_factory, assigned_delivery):
        stranger = await courier_factory(name="Stranger")

        result = await DispatchService(db_session, config).transition(
            assigned_delivery.id, "accept", courier_id=stranger.id
        )

        assert result.outcome == Outcome.NOT_ELIGIBLE
        assert assigned_delivery.status == DeliveryStatus.ASSIGNED

    @pytest.mark.unit
    async def test_out_of_order_event_not_eligible(self, db_session, config, assigned_delivery):
        result = await DispatchService(db_session, config).transition(assigned_delivery.id, "deliver")

        assert result.outcome == Outcome.NOT_ELIGIBLE
        assert result.status == "assigned"

    @pytest.mark.unit
    async def test_unknown_event(self, db_session, config, assigned_delivery):
        with pytest.raises(ValidationException):
            await DispatchService(db_session, config).transition(assigned_delivery.id, "teleport")


class TestCompletion:

    @pytest.mark.scenario
    async def test_full_lifecycle_settles_wallets(
        self, db_session, config, sample_pharmacy, order_factory, sample_courier, delivery_factory
    ):
        order = await order_factory(sample_pharmacy.id)
        delivery = await delivery_factory(order_id=order.id, delivery_fee=Decimal("800"))
        service = DispatchService(db_session, config)
        await service.assign(delivery.id)

        for event in ("accept", "pick_up", "start_transit", "deliver"):
            result = await service.transition(delivery.id, event, courier_id=sample_courier.id)
            assert result.outcome == Outcome.OK, event

        assert delivery.status == DeliveryStatus.DELIVERED
        assert delivery.delivered_at is not None
        assert order.status == OrderStatus.DELIVERED
        assert sample_courier.completed_deliveries == 21
        assert sample_courier.status == CourierStatus.AVAILABLE

        wallets = WalletService(db_session, config)
        courier_wallet = await wallets.find_wallet(WalletOwner.courier(sample_courier.id))
        platform_wallet = await wallets.find_wallet(WalletOwner.platform())

        pharmacy_wallet = await wallets.find_wallet(WalletOwner.pharmacy(sample_pharmacy.id))

        # 1000 funded + 800 earning - 200 commission
        assert courier_wallet.balance == Decimal("1600")
        # 200 commission + 200 service fee on a cash order
        assert platform_wallet.balance == Decimal("400")
        assert pharmacy_wallet.balance == order.subtotal
        assert await wallets.replay_balance(pharmacy_wallet.id) == pharmacy_wallet.balance
        assert await wallets.replay_balance(courier_wallet.id) == courier_wallet.balance
        assert await wallets.replay_balance(platform_wallet.id) == platform_wallet.balance

    @pytest.mark.unit
    async def test_commission_pair_shares_reference(self, db_session, config, sample_courier, delivery_factory):
        delivery = await delivery_factory(status=DeliveryStatus.IN_TRANSIT, courier_id=sample_courier.id)

        await DispatchService(db_session, config).transition(delivery.id, "deliver")

        rows = (await db_session.execute(
            select(WalletTransaction)
            .where(WalletTransaction.category == TransactionCategory.COMMISSION)
            .order_by(WalletTransaction.id)
        )).scalars().all()

        assert [r.type for r in rows] == [TransactionType.DEBIT, TransactionType.CREDIT]
        debit, credit = rows
        assert debit.amount == credit.amount == Decimal("200")
        assert credit.reference == f"{debit.reference}-PLT"
        assert credit.meta["source_transaction_id"] == debit.id
        assert debit.delivery_id == credit.delivery_id == delivery.id

    @pytest.mark.unit
    async def test_earning_credit_can_be_disabled(self, db_session, sample_courier, delivery_factory):
        config = MarketplaceConfig(credit_delivery_earnings=False)
        delivery = await delivery_factory(status=DeliveryStatus.PICKED_UP, courier_id=sample_courier.id)

        await DispatchService(db_session, config).transition(delivery.id, "deliver")

        wallet = await WalletService(db_session, config).find_wallet(WalletOwner.courier(sample_courier.id))
        assert wallet.balance == Decimal("800")

    @pytest.mark.unit
    async def test_pickup_moves_order_in_delivery(
        self, db_session, config, sample_pharmacy, order_factory, sample_courier, delivery_factory
    ):
        order = await order_factory(sample_pharmacy.id, status=OrderStatus.READY)
        delivery = await delivery_factory(
            status=DeliveryStatus.ACCEPTED, courier_id=sample_courier.id, order_id=order.id
        )

        await DispatchService(db_session, config).transition(delivery.id, "pick_up")

        assert order.status == OrderStatus.IN_DELIVERY

    @pytest.mark.unit
    async def test_prepaid_order_not_paid_out_on_delivery(
        self, db_session, config, sample_pharmacy, order_factory, sample_courier, delivery_factory
    ):
        order = await order_factory(sample_pharmacy.id, payment_mode=PaymentMode.CARD)
        delivery = await delivery_factory(
            status=DeliveryStatus.IN_TRANSIT, courier_id=sample_courier.id, order_id=order.id
        )

        result = await DispatchService(db_session, config).transition(
            delivery.id, "deliver", courier_id=sample_courier.id
        )

        assert result.outcome == Outcome.OK
        wallets = WalletService(db_session, config)
        assert await wallets.find_wallet(WalletOwner.pharmacy(sample_pharmacy.id)) is None
        platform_wallet = await wallets.find_wallet(WalletOwner.platform())
        assert platform_wallet.balance == Decimal("200")

    @pytest.mark.unit
    async def test_storage_fault_rolls_back_whole_delivery(
        self, db_session, config, sample_pharmacy, order_factory, sample_courier, delivery_factory
    ):
        courier_id = sample_courier.id
        pharmacy_id = sample_pharmacy.id
        order = await order_factory(pharmacy_id, status=OrderStatus.IN_DELIVERY)
        delivery = await delivery_factory(
            status=DeliveryStatus.IN_TRANSIT, courier_id=courier_id, order_id=order.id
        )
        delivery_id = delivery.id
        original_credit = WalletService.credit

        async def _credit(self, owner, *args, **kwargs):
            if owner == WalletOwner.platform():
                raise OperationalError("INSERT INTO wallet_transactions", {}, Exception("database is locked"))
            return await original_credit(self, owner, *args, **kwargs)

        with patch.object(WalletService, "credit", _credit):
            with pytest.raises(StorageFaultError):
                await DispatchService(db_session, config).transition(
                    delivery_id, "deliver", courier_id=courier_id
                )

        await db_session.refresh(delivery)
        await db_session.refresh(order)
        await db_session.refresh(sample_courier)
        assert delivery.status == DeliveryStatus.IN_TRANSIT
        assert delivery.delivered_at is None
        assert order.status == OrderStatus.IN_DELIVERY
        assert sample_courier.completed_deliveries == 20

        wallets = WalletService(db_session, config)
        courier_wallet = await wallets.find_wallet(WalletOwner.courier(courier_id))
        assert courier_wallet.balance == Decimal("1000")
        assert await wallets.find_wallet(WalletOwner.platform()) is None
        assert await wallets.find_wallet(WalletOwner.pharmacy(pharmacy_id)) is None
        written = (await db_session.execute(
            select(WalletTransaction).where(WalletTransaction.delivery_id == delivery_id)
        )).scalars().all()
        assert written == []


class TestCancellation:

    @pytest.mark.unit
    @pytest.mark.parametrize("event,status,reason_field", [
        ("cancel", DeliveryStatus.CANCELLED, "cancellation_reason"),
        ("fail", DeliveryStatus.FAILED, "failure_reason"),
    ])
    async def test_releases_courier(self, db_session, courier_factory, fund_courier, delivery_factory, event, status, reason_field):
        config = MarketplaceConfig(max_concurrent_deliveries=1)
        courier = await courier_factory()
        await fund_courier(courier.id, Decimal("500"))
        delivery = await delivery_factory()
        service = DispatchService(db_session, config)
        await service.assign(delivery.id)
        assert courier.status == CourierStatus.BUSY

        result = await service.transition(delivery.id, event, reason="Customer unreachable")

        assert result.outcome == Outcome.OK
        assert delivery.status == status
        assert getattr(delivery, reason_field) == "Customer unreachable"
        assert courier.status == CourierStatus.AVAILABLE

    @pytest.mark.unit
    async def test_cancelled_delivery_is_final(self, db_session, config, delivery_factory):
        delivery = await delivery_factory(status=DeliveryStatus.CANCELLED)

        result = await DispatchService(db_session, config).transition(delivery.id, "cancel")

        assert result.outcome == Outcome.NOT_ELIGIBLE

    @pytest.mark.unit
    async def test_no_commission_on_cancel(self, db_session, config, sample_courier, delivery_factory):
        delivery = await delivery_factory(status=DeliveryStatus.IN_TRANSIT, courier_id=sample_courier.id)

        await DispatchService(db_session, config).transition(delivery.id, "cancel")

        wallet = await WalletService(db_session, config).find_wallet(WalletOwner.courier(sample_courier.id))
        assert wallet.balance == Decimal("1000")
