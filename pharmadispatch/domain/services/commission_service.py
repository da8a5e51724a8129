"""
Commission Service - Settlement of the per-delivery platform commission
and of collected cash orders

The courier debit and the mirrored platform credit are written in one
transaction and share a base reference (COM-XXXXXXXX / COM-XXXXXXXX-PLT).
"""
from decimal import Decimal
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import select

from pharmadispatch.core.config import MarketplaceConfig
from pharmadispatch.core.exceptions import StorageFaultError, ValidationException
from pharmadispatch.core.logging import get_logger
from pharmadispatch.db.database import commit_or_raise
from pharmadispatch.db.models.delivery import Delivery
from pharmadispatch.db.models.order import Order
from pharmadispatch.db.models.wallet import WalletOwner
from pharmadispatch.db.models.wallet_transaction import (
    WalletTransaction,
    TransactionType,
    TransactionCategory,
    TransactionStatus,
)
from pharmadispatch.domain.results import LedgerResult, Outcome
from pharmadispatch.domain.services.wallet_service import WalletService, generate_reference

logger = get_logger(__name__)


def order_settlement_reference(order: Order) -> str:
    return f"SET-{order.reference}"


class CommissionService:
    def __init__(
        self,
        db: AsyncSession,
        config: MarketplaceConfig,
        wallet_service: Optional[WalletService] = None,
    ):
        self.db = db
        self.config = config
        self.wallets = wallet_service or WalletService(db, config)

    async def can_accept_work(self, courier_id: int) -> bool:
        """Available balance must cover one commission before a delivery is taken on"""
        wallet = await self.wallets.find_wallet(WalletOwner.courier(courier_id))
        available = await self.wallets.available_balance(wallet) if wallet else Decimal("0")
        allowed = available >= self.config.courier_commission_amount

        if not allowed:
            logger.info(
                "Courier below commission balance",
                extra_data={
                    "courier_id": courier_id,
                    "available_balance": available,
                    "commission_amount": self.config.courier_commission_amount,
                }
            )
        return allowed

    async def find_settlement(self, delivery_id: int) -> Optional[WalletTransaction]:
        result = await self.db.execute(
            select(WalletTransaction).where(
                WalletTransaction.delivery_id == delivery_id,
                WalletTransaction.category == TransactionCategory.COMMISSION,
                WalletTransaction.type == TransactionType.DEBIT,
                WalletTransaction.status == TransactionStatus.COMPLETED,
            )
        )
        return result.scalars().first()

    async def settle_delivery_commission(self, delivery: Delivery, auto_commit: bool = True) -> LedgerResult:
        """
        Move the commission from the courier wallet to the platform wallet.

        A delivery is settled at most once; settling again returns the
        existing courier debit.
        """
        if delivery.courier_id is None:
            raise ValidationException(
                f"Delivery {delivery.id} has no courier to settle",
                field="courier_id",
            )

        delivery_id = delivery.id
        courier_id = delivery.courier_id
        amount = self.config.courier_commission_amount

        try:
            existing = await self.find_settlement(delivery_id)
            if existing:
                logger.info(
                    "Commission already settled",
                    extra_data={"delivery_id": delivery_id, "transaction_id": existing.id}
                )
                return LedgerResult(outcome=Outcome.OK, transaction=existing)

            reference = generate_reference("COM")
            description = f"Commission for delivery #{delivery_id}"

            debit = await self.wallets.debit(
                WalletOwner.courier(courier_id),
                amount,
                TransactionCategory.COMMISSION,
                reference=reference,
                description=description,
                metadata={"delivery_id": delivery_id},
                delivery_id=delivery_id,
                auto_commit=False,
            )
            if not debit.ok:
                logger.warning(
                    "Commission settlement refused",
                    extra_data={"delivery_id": delivery_id, "courier_id": courier_id, "amount": amount}
                )
                return debit

            await self.wallets.credit(
                WalletOwner.platform(),
                amount,
                TransactionCategory.COMMISSION,
                reference=f"{reference}-PLT",
                description=f"{description} (courier {courier_id})",
                metadata={
                    "delivery_id": delivery_id,
                    "courier_id": courier_id,
                    "source_transaction_id": debit.transaction.id,
                },
                delivery_id=delivery_id,
                auto_commit=False,
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "Commission settlement failed",
                extra_data={"delivery_id": delivery_id, "error": str(e)},
                exc_info=True
            )
            raise StorageFaultError("settle_commission", str(e)) from e

        if auto_commit:
            await commit_or_raise(self.db, "settle_commission")

        logger.info(
            "Commission settled",
            extra_data={
                "delivery_id": delivery_id,
                "courier_id": courier_id,
                "amount": amount,
                "reference": reference,
            }
        )
        return debit

    # ==================== Order settlement ====================

    async def find_order_settlement(self, order: Order) -> Optional[WalletTransaction]:
        result = await self.db.execute(
            select(WalletTransaction).where(
                WalletTransaction.reference == order_settlement_reference(order),
                WalletTransaction.category == TransactionCategory.ORDER_SETTLEMENT,
            )
        )
        return result.scalars().first()

    async def settle_order(
        self,
        order: Order,
        delivery_id: Optional[int] = None,
        auto_commit: bool = True,
    ) -> WalletTransaction:
        """
        Pay out a collected order: the pharmacy gets exactly the subtotal and
        the platform gets the service fee.

        Both credits share the reference SET-<order reference> (the platform
        side adds -PLT). An order is settled at most once; settling again
        returns the existing pharmacy credit.
        """
        order_id = order.id
        pharmacy_id = order.pharmacy_id
        pharmacy_amount = order.pharmacy_amount
        service_fee = Decimal(str(order.service_fee or 0))
        reference = order_settlement_reference(order)

        try:
            existing = await self.find_order_settlement(order)
            if existing:
                logger.info(
                    "Order already settled",
                    extra_data={"order_id": order_id, "transaction_id": existing.id}
                )
                return existing

            metadata = {"order_id": order_id, "order_reference": order.reference}
            pharmacy_credit = await self.wallets.credit(
                WalletOwner.pharmacy(pharmacy_id),
                pharmacy_amount,
                TransactionCategory.ORDER_SETTLEMENT,
                reference=reference,
                description=f"Payment for order {order.reference}",
                metadata=metadata,
                delivery_id=delivery_id,
                auto_commit=False,
            )

            if service_fee > 0:
                await self.wallets.credit(
                    WalletOwner.platform(),
                    service_fee,
                    TransactionCategory.ORDER_SETTLEMENT,
                    reference=f"{reference}-PLT",
                    description=f"Service fee for order {order.reference}",
                    metadata={**metadata, "source_transaction_id": pharmacy_credit.id},
                    delivery_id=delivery_id,
                    auto_commit=False,
                )
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "Order settlement failed",
                extra_data={"order_id": order_id, "error": str(e)},
                exc_info=True
            )
            raise StorageFaultError("settle_order", str(e)) from e

        if auto_commit:
            await commit_or_raise(self.db, "settle_order")

        logger.info(
            "Order settled",
            extra_data={
                "order_id": order_id,
                "pharmacy_id": pharmacy_id,
                "pharmacy_amount": pharmacy_amount,
                "service_fee": service_fee,
                "reference": reference,
            }
        )
        return pharmacy_credit
