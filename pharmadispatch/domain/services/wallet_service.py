"""
Wallet Service - Append-only ledger per owner

A wallet's balance always equals the signed sum of its COMPLETED
transactions. Pending debits (withdrawals awaiting payout) leave the
balance untouched but reserve funds: every debit is checked against
``balance - pending debits``.
"""
import secrets
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, case

from pharmadispatch.core.config import MarketplaceConfig
from pharmadispatch.core.exceptions import (
    CourierNotFoundError,
    InvalidAmountError,
    TransactionNotFoundError,
    ValidationException,
    WalletNotFoundError,
)
from pharmadispatch.core.logging import get_logger
from pharmadispatch.db.database import commit_or_raise
from pharmadispatch.db.models.courier import Courier
from pharmadispatch.db.models.wallet import Wallet, WalletOwner
from pharmadispatch.db.models.wallet_transaction import (
    WalletTransaction,
    TransactionType,
    TransactionCategory,
    TransactionStatus,
)
from pharmadispatch.domain.results import LedgerResult, Outcome

logger = get_logger(__name__)

CENT = Decimal("0.01")

REFERENCE_PREFIXES = {
    TransactionCategory.TOPUP: "TOP",
    TransactionCategory.DELIVERY_EARNING: "DEL",
    TransactionCategory.COMMISSION: "COM",
    TransactionCategory.WITHDRAWAL: "WTH",
    TransactionCategory.BONUS: "BONUS",
    TransactionCategory.REFUND: "REF",
    TransactionCategory.ORDER_SETTLEMENT: "SET",
}


def generate_reference(prefix: str) -> str:
    return f"{prefix}-{secrets.token_hex(4).upper()}"


def to_amount(value: Any, operation: str) -> Decimal:
    """Parse a ledger amount; anything not strictly positive is rejected"""
    try:
        amount = Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        raise InvalidAmountError(value, operation)
    if not amount.is_finite() or amount <= 0:
        raise InvalidAmountError(value, operation)
    return amount


def _owner_clause(owner: WalletOwner):
    if owner.owner_id is None:
        return (Wallet.owner_kind == owner.kind, Wallet.owner_id.is_(None))
    return (Wallet.owner_kind == owner.kind, Wallet.owner_id == owner.owner_id)


class WalletService:
    """Credit/debit primitives and the courier-facing wallet operations"""

    def __init__(self, db: AsyncSession, config: Optional[MarketplaceConfig] = None):
        self.db = db
        self.config = config or MarketplaceConfig()

    # ==================== Wallet lookup ====================

    async def find_wallet(self, owner: WalletOwner, for_update: bool = False) -> Optional[Wallet]:
        query = select(Wallet).where(*_owner_clause(owner))
        if for_update:
            # Refresh a wallet already in the identity map with the locked row
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_or_create_wallet(self, owner: WalletOwner, for_update: bool = False) -> Wallet:
        """Get existing wallet or create an empty one (flushed, not committed)"""
        wallet = await self.find_wallet(owner, for_update=for_update)
        if not wallet:
            wallet = Wallet(
                owner_kind=owner.kind,
                owner_id=owner.owner_id,
                balance=Decimal("0.00"),
                currency=self.config.currency,
            )
            self.db.add(wallet)
            await self.db.flush()
            logger.info("Wallet created", extra_data={"owner": str(owner), "wallet_id": wallet.id})
        return wallet

    async def get_wallet(self, wallet_id: int) -> Wallet:
        wallet = await self.db.get(Wallet, wallet_id)
        if not wallet:
            raise WalletNotFoundError(wallet_id)
        return wallet

    async def pending_debits(self, wallet_id: int) -> Decimal:
        result = await self.db.execute(
            select(func.coalesce(func.sum(WalletTransaction.amount), 0))
            .where(
                WalletTransaction.wallet_id == wallet_id,
                WalletTransaction.type == TransactionType.DEBIT,
                WalletTransaction.status == TransactionStatus.PENDING,
            )
        )
        return Decimal(str(result.scalar_one()))

    async def available_balance(self, wallet: Wallet) -> Decimal:
        return Decimal(str(wallet.balance)) - await self.pending_debits(wallet.id)

    # ==================== Ledger primitives ====================

    async def credit(
        self,
        owner: WalletOwner,
        amount: Any,
        category: TransactionCategory,
        reference: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[dict] = None,
        delivery_id: Optional[int] = None,
        payment_method: Optional[str] = None,
        auto_commit: bool = True,
    ) -> WalletTransaction:
        """
        Increment the balance and append a CREDIT row carrying the new balance.

        With auto_commit=False the caller owns the transaction boundary.
        """
        value = to_amount(amount, "credit")
        wallet = await self.get_or_create_wallet(owner, for_update=True)

        new_balance = Decimal(str(wallet.balance)) + value
        wallet.balance = new_balance

        transaction = WalletTransaction(
            wallet_id=wallet.id,
            delivery_id=delivery_id,
            type=TransactionType.CREDIT,
            category=category,
            status=TransactionStatus.COMPLETED,
            amount=value,
            balance_after=new_balance,
            reference=reference or generate_reference(REFERENCE_PREFIXES[category]),
            description=description,
            payment_method=payment_method,
            meta=metadata,
            processed_at=datetime.utcnow(),
        )
        self.db.add(transaction)

        if auto_commit:
            await commit_or_raise(self.db, "wallet_credit")
        else:
            await self.db.flush()

        logger.info(
            "Wallet credited",
            extra_data={
                "wallet_id": wallet.id,
                "owner": str(owner),
                "category": category.value,
                "amount": value,
                "balance_after": new_balance,
                "reference": transaction.reference,
            }
        )
        return transaction

    async def debit(
        self,
        owner: WalletOwner,
        amount: Any,
        category: TransactionCategory,
        reference: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[dict] = None,
        delivery_id: Optional[int] = None,
        payment_method: Optional[str] = None,
        pending: bool = False,
        auto_commit: bool = True,
    ) -> LedgerResult:
        """
        Decrement the balance and append a DEBIT row.

        Returns an INSUFFICIENT_BALANCE result, having written nothing, when
        the available balance does not cover the amount. A pending debit only
        reserves the amount; the balance moves when it completes.
        """
        value = to_amount(amount, "debit")
        wallet = await self.get_or_create_wallet(owner, for_update=True)

        balance = Decimal(str(wallet.balance))
        available = balance - await self.pending_debits(wallet.id)
        if available < value:
            logger.warning(
                "Debit refused: insufficient balance",
                extra_data={
                    "wallet_id": wallet.id,
                    "owner": str(owner),
                    "category": category.value,
                    "amount": value,
                    "available_balance": available,
                }
            )
            return LedgerResult(
                outcome=Outcome.INSUFFICIENT_BALANCE,
                message=f"Insufficient balance: available {available}, requested {value}",
            )

        if pending:
            status = TransactionStatus.PENDING
            processed_at = None
        else:
            balance -= value
            wallet.balance = balance
            status = TransactionStatus.COMPLETED
            processed_at = datetime.utcnow()

        transaction = WalletTransaction(
            wallet_id=wallet.id,
            delivery_id=delivery_id,
            type=TransactionType.DEBIT,
            category=category,
            status=status,
            amount=value,
            balance_after=balance,
            reference=reference or generate_reference(REFERENCE_PREFIXES[category]),
            description=description,
            payment_method=payment_method,
            meta=metadata,
            processed_at=processed_at,
        )
        self.db.add(transaction)

        if auto_commit:
            await commit_or_raise(self.db, "wallet_debit")
        else:
            await self.db.flush()

        logger.info(
            "Wallet debited",
            extra_data={
                "wallet_id": wallet.id,
                "owner": str(owner),
                "category": category.value,
                "amount": value,
                "status": status.value,
                "balance_after": balance,
                "reference": transaction.reference,
            }
        )
        return LedgerResult(outcome=Outcome.OK, transaction=transaction)

    # ==================== Courier wallet operations ====================

    async def _ensure_courier(self, courier_id: int) -> None:
        if not await self.db.get(Courier, courier_id):
            raise CourierNotFoundError(courier_id)

    async def top_up(
        self,
        courier_id: int,
        amount: Any,
        payment_method: str,
        payment_reference: Optional[str] = None,
    ) -> WalletTransaction:
        await self._ensure_courier(courier_id)
        return await self.credit(
            WalletOwner.courier(courier_id),
            amount,
            TransactionCategory.TOPUP,
            description=f"Top-up via {payment_method}",
            metadata={"payment_method": payment_method, "payment_reference": payment_reference},
            payment_method=payment_method,
        )

    async def credit_delivery_earning(
        self,
        courier_id: int,
        delivery_id: int,
        amount: Any,
        reference: Optional[str] = None,
        order_id: Optional[int] = None,
        auto_commit: bool = True,
    ) -> WalletTransaction:
        reference = reference or f"DEL-{delivery_id}"
        return await self.credit(
            WalletOwner.courier(courier_id),
            amount,
            TransactionCategory.DELIVERY_EARNING,
            reference=reference,
            description=f"Delivery earning - {reference}",
            metadata={"delivery_id": delivery_id, "order_id": order_id},
            delivery_id=delivery_id,
            auto_commit=auto_commit,
        )

    async def credit_bonus(
        self,
        courier_id: int,
        amount: Any,
        description: str,
        challenge_id: Optional[int] = None,
    ) -> WalletTransaction:
        await self._ensure_courier(courier_id)
        return await self.credit(
            WalletOwner.courier(courier_id),
            amount,
            TransactionCategory.BONUS,
            description=description,
            metadata={"challenge_id": challenge_id} if challenge_id else None,
        )

    async def request_withdrawal(
        self,
        courier_id: int,
        amount: Any,
        payment_method: str,
        phone_number: str,
    ) -> LedgerResult:
        """Reserve a payout; the debit stays PENDING until the provider settles it"""
        await self._ensure_courier(courier_id)
        value = to_amount(amount, "withdrawal")

        minimum = self.config.minimum_withdrawal_amount
        if value < minimum:
            raise ValidationException(
                f"Minimum withdrawal amount is {minimum} {self.config.currency}",
                field="amount",
                details={"minimum": str(minimum)},
            )

        return await self.debit(
            WalletOwner.courier(courier_id),
            value,
            TransactionCategory.WITHDRAWAL,
            description=f"Withdrawal to {payment_method} ({phone_number})",
            metadata={"payment_method": payment_method, "phone_number": phone_number},
            payment_method=payment_method,
            pending=True,
        )

    async def _get_pending_debit(self, transaction_id: int) -> WalletTransaction:
        result = await self.db.execute(
            select(WalletTransaction)
            .where(WalletTransaction.id == transaction_id)
            .with_for_update()
        )
        transaction = result.scalar_one_or_none()
        if not transaction:
            raise TransactionNotFoundError(transaction_id)
        if transaction.type != TransactionType.DEBIT or transaction.status != TransactionStatus.PENDING:
            raise ValidationException(
                f"Transaction {transaction_id} is not a pending debit",
                details={"status": transaction.status.value, "type": transaction.type.value},
            )
        return transaction

    async def complete_withdrawal(self, transaction_id: int) -> WalletTransaction:
        """Payout confirmed: the reserved amount now leaves the balance"""
        transaction = await self._get_pending_debit(transaction_id)

        result = await self.db.execute(
            select(Wallet).where(Wallet.id == transaction.wallet_id).with_for_update()
        )
        wallet = result.scalar_one()
        wallet.balance = Decimal(str(wallet.balance)) - Decimal(str(transaction.amount))

        transaction.status = TransactionStatus.COMPLETED
        transaction.processed_at = datetime.utcnow()
        await commit_or_raise(self.db, "complete_withdrawal")

        logger.info(
            "Withdrawal completed",
            extra_data={
                "transaction_id": transaction.id,
                "wallet_id": wallet.id,
                "amount": transaction.amount,
                "balance": wallet.balance,
            }
        )
        return transaction

    async def fail_withdrawal(self, transaction_id: int, reason: Optional[str] = None) -> WalletTransaction:
        """Payout rejected: the reservation is released, the balance never moved"""
        transaction = await self._get_pending_debit(transaction_id)
        transaction.status = TransactionStatus.FAILED
        transaction.processed_at = datetime.utcnow()
        await commit_or_raise(self.db, "fail_withdrawal")

        logger.warning(
            "Withdrawal failed",
            extra_data={
                "transaction_id": transaction.id,
                "wallet_id": transaction.wallet_id,
                "amount": transaction.amount,
                "reason": reason,
            }
        )
        return transaction

    # ==================== Reporting ====================

    async def get_balance_summary(self, courier_id: int) -> dict:
        await self._ensure_courier(courier_id)
        wallet = await self.find_wallet(WalletOwner.courier(courier_id))

        balance = Decimal(str(wallet.balance)) if wallet else Decimal("0")
        pending = await self.pending_debits(wallet.id) if wallet else Decimal("0")
        commission = self.config.courier_commission_amount
        available = balance - pending

        return {
            "balance": balance,
            "currency": wallet.currency if wallet else self.config.currency,
            "pending_withdrawals": pending,
            "available_balance": available,
            "can_deliver": available >= commission,
            "commission_amount": commission,
        }

    async def get_statistics(self, courier_id: int) -> dict:
        """Totals per category, failed transactions excluded"""
        await self._ensure_courier(courier_id)
        wallet = await self.find_wallet(WalletOwner.courier(courier_id))
        if not wallet:
            rows = {}
        else:
            result = await self.db.execute(
                select(
                    WalletTransaction.category,
                    func.sum(case((WalletTransaction.type == TransactionType.CREDIT, WalletTransaction.amount), else_=0)),
                    func.sum(case((WalletTransaction.type == TransactionType.DEBIT, WalletTransaction.amount), else_=0)),
                    func.count(WalletTransaction.id),
                )
                .where(
                    WalletTransaction.wallet_id == wallet.id,
                    WalletTransaction.status != TransactionStatus.FAILED,
                )
                .group_by(WalletTransaction.category)
            )
            rows = {category: (credits, debits, count) for category, credits, debits, count in result.all()}

        def total(category: TransactionCategory, column: int) -> Decimal:
            row = rows.get(category)
            return Decimal(str(row[column] or 0)) if row else Decimal("0")

        commission_row = rows.get(TransactionCategory.COMMISSION)
        return {
            "total_topups": total(TransactionCategory.TOPUP, 0),
            "total_delivery_earnings": total(TransactionCategory.DELIVERY_EARNING, 0),
            "total_bonuses": total(TransactionCategory.BONUS, 0),
            "total_commissions": total(TransactionCategory.COMMISSION, 1),
            "total_withdrawals": total(TransactionCategory.WITHDRAWAL, 1),
            "deliveries_count": commission_row[2] if commission_row else 0,
        }

    async def get_transaction_history(self, owner: WalletOwner, limit: int = 50) -> list[WalletTransaction]:
        """Newest first"""
        wallet = await self.find_wallet(owner)
        if not wallet:
            return []
        result = await self.db.execute(
            select(WalletTransaction)
            .where(WalletTransaction.wallet_id == wallet.id)
            .order_by(WalletTransaction.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def replay_balance(self, wallet_id: int) -> Decimal:
        """Recompute a balance from its COMPLETED transactions, in creation order"""
        result = await self.db.execute(
            select(WalletTransaction.type, WalletTransaction.amount)
            .where(
                WalletTransaction.wallet_id == wallet_id,
                WalletTransaction.status == TransactionStatus.COMPLETED,
            )
            .order_by(WalletTransaction.id)
        )
        balance = Decimal("0.00")
        for tx_type, amount in result.all():
            amount = Decimal(str(amount))
            balance = balance + amount if tx_type == TransactionType.CREDIT else balance - amount
        return balance
