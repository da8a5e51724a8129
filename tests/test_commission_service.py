"""
Tests for CommissionService - work gate, per-delivery settlement and cash order payout
"""
from contextlib import contextmanager
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from pharmadispatch.core.config import MarketplaceConfig
from pharmadispatch.core.exceptions import StorageFaultError, ValidationException
from pharmadispatch.db.models.delivery import DeliveryStatus
from pharmadispatch.db.models.wallet import WalletOwner
from pharmadispatch.db.models.wallet_transaction import WalletTransaction, TransactionCategory
from pharmadispatch.domain.results import Outcome
from pharmadispatch.domain.services.commission_service import CommissionService
from pharmadispatch.domain.services.wallet_service import WalletService


@pytest.fixture
def commissions(db_session, config) -> CommissionService:
    return CommissionService(db_session, config)


@contextmanager
def _failing_credit_for(failing_owner: WalletOwner):
    """WalletService.credit raises a storage error for one owner, works for the rest"""
    original_credit = WalletService.credit

    async def _credit(self, owner, *args, **kwargs):
        if owner == failing_owner:
            raise OperationalError("INSERT INTO wallet_transactions", {}, Exception("disk I/O error"))
        return await original_credit(self, owner, *args, **kwargs)

    with patch.object(WalletService, "credit", _credit):
        yield


class TestCanAcceptWork:

    @pytest.mark.unit
    async def test_exactly_one_commission_is_enough(self, commissions, courier_factory, fund_courier):
        courier = await courier_factory()
        await fund_courier(courier.id, Decimal("200"))

        assert await commissions.can_accept_work(courier.id) is True

    @pytest.mark.unit
    async def test_below_commission(self, commissions, courier_factory, fund_courier):
        courier = await courier_factory()
        await fund_courier(courier.id, Decimal("199.99"))

        assert await commissions.can_accept_work(courier.id) is False

    @pytest.mark.unit
    async def test_no_wallet(self, commissions, courier_factory):
        courier = await courier_factory()
        assert await commissions.can_accept_work(courier.id) is False

    @pytest.mark.unit
    async def test_pending_withdrawal_counts_against_balance(self, commissions, sample_courier):
        await commissions.wallets.request_withdrawal(sample_courier.id, 900, "wave", "+2250700000000")

        assert await commissions.can_accept_work(sample_courier.id) is False

    @pytest.mark.unit
    async def test_configured_amount(self, db_session, courier_factory, fund_courier):
        courier = await courier_factory()
        await fund_courier(courier.id, Decimal("300"))

        service = CommissionService(db_session, MarketplaceConfig(courier_commission_amount=Decimal("500")))

        assert await service.can_accept_work(courier.id) is False


class TestSettlement:

    @pytest.mark.scenario
    async def test_insufficient_balance_moves_nothing(self, commissions, courier_factory, fund_courier, delivery_factory):
        courier = await courier_factory()
        await fund_courier(courier.id, Decimal("150"))
        delivery = await delivery_factory(status=DeliveryStatus.IN_TRANSIT, courier_id=courier.id)

        result = await commissions.settle_delivery_commission(delivery)

        assert result.outcome == Outcome.INSUFFICIENT_BALANCE
        courier_wallet = await commissions.wallets.find_wallet(WalletOwner.courier(courier.id))
        assert courier_wallet.balance == Decimal("150")
        assert await commissions.wallets.find_wallet(WalletOwner.platform()) is None
        assert await commissions.find_settlement(delivery.id) is None

    @pytest.mark.unit
    async def test_moves_commission_to_platform(self, commissions, sample_courier, delivery_factory):
        delivery = await delivery_factory(status=DeliveryStatus.DELIVERED, courier_id=sample_courier.id)

        result = await commissions.settle_delivery_commission(delivery)

        assert result.ok
        assert result.transaction.category == TransactionCategory.COMMISSION
        assert result.transaction.reference.startswith("COM-")
        courier_wallet = await commissions.wallets.find_wallet(WalletOwner.courier(sample_courier.id))
        platform_wallet = await commissions.wallets.find_wallet(WalletOwner.platform())
        assert courier_wallet.balance == Decimal("800")
        assert platform_wallet.balance == Decimal("200")

    @pytest.mark.unit
    async def test_settles_once(self, db_session, commissions, sample_courier, delivery_factory):
        delivery = await delivery_factory(status=DeliveryStatus.DELIVERED, courier_id=sample_courier.id)

        first = await commissions.settle_delivery_commission(delivery)
        second = await commissions.settle_delivery_commission(delivery)

        assert second.ok
        assert second.transaction.id == first.transaction.id
        rows = (await db_session.execute(
            select(WalletTransaction).where(WalletTransaction.category == TransactionCategory.COMMISSION)
        )).scalars().all()
        assert len(rows) == 2

    @pytest.mark.unit
    async def test_delivery_without_courier(self, commissions, delivery_factory):
        delivery = await delivery_factory()

        with pytest.raises(ValidationException):
            await commissions.settle_delivery_commission(delivery)

    @pytest.mark.unit
    async def test_failed_platform_credit_rolls_back_debit(self, db_session, commissions, sample_courier, delivery_factory):
        courier_id = sample_courier.id
        delivery = await delivery_factory(status=DeliveryStatus.DELIVERED, courier_id=courier_id)
        delivery_id = delivery.id

        with _failing_credit_for(WalletOwner.platform()):
            with pytest.raises(StorageFaultError) as exc_info:
                await commissions.settle_delivery_commission(delivery)

        assert exc_info.value.details["operation"] == "settle_commission"
        courier_wallet = await commissions.wallets.find_wallet(WalletOwner.courier(courier_id))
        assert courier_wallet.balance == Decimal("1000")
        assert await commissions.wallets.replay_balance(courier_wallet.id) == Decimal("1000")
        assert await commissions.wallets.find_wallet(WalletOwner.platform()) is None
        assert await commissions.find_settlement(delivery_id) is None


class TestOrderSettlement:

    @pytest.mark.unit
    async def test_pharmacy_gets_subtotal_platform_gets_service_fee(
        self, db_session, commissions, sample_pharmacy, order_factory
    ):
        order = await order_factory(sample_pharmacy.id, subtotal=Decimal("10000"), service_fee=Decimal("200"))

        pharmacy_credit = await commissions.settle_order(order)

        pharmacy_wallet = await commissions.wallets.find_wallet(WalletOwner.pharmacy(sample_pharmacy.id))
        platform_wallet = await commissions.wallets.find_wallet(WalletOwner.platform())
        assert pharmacy_wallet.balance == Decimal("10000")
        assert platform_wallet.balance == Decimal("200")

        rows = (await db_session.execute(
            select(WalletTransaction)
            .where(WalletTransaction.category == TransactionCategory.ORDER_SETTLEMENT)
            .order_by(WalletTransaction.id)
        )).scalars().all()
        assert [r.wallet_id for r in rows] == [pharmacy_wallet.id, platform_wallet.id]
        assert pharmacy_credit.reference == f"SET-{order.reference}"
        assert rows[1].reference == f"{pharmacy_credit.reference}-PLT"
        assert rows[1].meta["source_transaction_id"] == pharmacy_credit.id

    @pytest.mark.unit
    async def test_settles_once(self, db_session, commissions, sample_pharmacy, order_factory):
        order = await order_factory(sample_pharmacy.id)

        first = await commissions.settle_order(order)
        second = await commissions.settle_order(order)

        assert second.id == first.id
        pharmacy_wallet = await commissions.wallets.find_wallet(WalletOwner.pharmacy(sample_pharmacy.id))
        assert pharmacy_wallet.balance == Decimal("10000")
        rows = (await db_session.execute(
            select(WalletTransaction).where(WalletTransaction.category == TransactionCategory.ORDER_SETTLEMENT)
        )).scalars().all()
        assert len(rows) == 2

    @pytest.mark.unit
    async def test_no_service_fee_credits_pharmacy_only(self, commissions, sample_pharmacy, order_factory):
        order = await order_factory(sample_pharmacy.id, service_fee=Decimal("0"))

        await commissions.settle_order(order)

        assert await commissions.wallets.find_wallet(WalletOwner.platform()) is None
        pharmacy_wallet = await commissions.wallets.find_wallet(WalletOwner.pharmacy(sample_pharmacy.id))
        assert pharmacy_wallet.balance == Decimal("10000")

    @pytest.mark.unit
    async def test_failed_platform_credit_rolls_back_pharmacy_credit(
        self, db_session, commissions, sample_pharmacy, order_factory
    ):
        pharmacy_id = sample_pharmacy.id
        order = await order_factory(pharmacy_id)

        with _failing_credit_for(WalletOwner.platform()):
            with pytest.raises(StorageFaultError) as exc_info:
                await commissions.settle_order(order)

        assert exc_info.value.details["operation"] == "settle_order"
        assert await commissions.wallets.find_wallet(WalletOwner.pharmacy(pharmacy_id)) is None
        await db_session.refresh(order)
        assert await commissions.find_order_settlement(order) is None
