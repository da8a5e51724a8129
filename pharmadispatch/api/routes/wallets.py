"""
Wallet API Routes
"""
from datetime import datetime
from decimal import Decimal
from typing import List
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, field_serializer
from sqlalchemy.ext.asyncio import AsyncSession

from pharmadispatch.api.dependencies.admin_auth import require_admin_api_key
from pharmadispatch.api.dependencies.config import get_marketplace_config
from pharmadispatch.api.responses import outcome_response
from pharmadispatch.core.config import MarketplaceConfig
from pharmadispatch.db.database import get_db
from pharmadispatch.db.models.wallet import WalletOwner
from pharmadispatch.domain.services.wallet_service import WalletService

router = APIRouter()


class TransactionResponse(BaseModel):
    id: int
    wallet_id: int
    type: str
    category: str
    status: str
    amount: float
    balance_after: float
    reference: str
    description: str | None
    delivery_id: int | None
    created_at: datetime | None
    processed_at: datetime | None

    model_config = {"from_attributes": True}

    @field_serializer("type", "category", "status")
    def serialize_enum(self, v) -> str:
        return getattr(v, "value", v)


class TopUpRequest(BaseModel):
    amount: Decimal
    payment_method: str = Field(min_length=1, max_length=30)
    payment_reference: str | None = None


class WithdrawalRequest(BaseModel):
    amount: Decimal
    payment_method: str = Field(min_length=1, max_length=30)
    phone_number: str = Field(min_length=6, max_length=20)


class WithdrawalFailure(BaseModel):
    reason: str | None = None


@router.get("/{courier_id}", summary="Balance summary")
async def get_balance_summary(
    courier_id: int,
    db: AsyncSession = Depends(get_db),
    config: MarketplaceConfig = Depends(get_marketplace_config),
):
    return await WalletService(db, config).get_balance_summary(courier_id)


@router.get(
    "/{courier_id}/history",
    response_model=List[TransactionResponse],
    summary="Transaction history, newest first",
)
async def get_transaction_history(
    courier_id: int,
    limit: int = Query(default=50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    config: MarketplaceConfig = Depends(get_marketplace_config),
):
    service = WalletService(db, config)
    return await service.get_transaction_history(WalletOwner.courier(courier_id), limit)


@router.get("/{courier_id}/statistics", summary="Totals per category")
async def get_statistics(
    courier_id: int,
    db: AsyncSession = Depends(get_db),
    config: MarketplaceConfig = Depends(get_marketplace_config),
):
    return await WalletService(db, config).get_statistics(courier_id)


@router.post(
    "/{courier_id}/top-up",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a confirmed top-up",
    description="Called by the payment confirmation flow once the provider has settled the payment.",
)
async def top_up(
    courier_id: int,
    request: TopUpRequest,
    db: AsyncSession = Depends(get_db),
    config: MarketplaceConfig = Depends(get_marketplace_config),
    _: None = Depends(require_admin_api_key),
):
    service = WalletService(db, config)
    return await service.top_up(
        courier_id, request.amount, request.payment_method, request.payment_reference
    )


@router.post(
    "/{courier_id}/withdraw",
    summary="Request a withdrawal",
    description="Reserves the amount as a pending debit; 402 when the available balance is short.",
)
async def request_withdrawal(
    courier_id: int,
    request: WithdrawalRequest,
    db: AsyncSession = Depends(get_db),
    config: MarketplaceConfig = Depends(get_marketplace_config),
):
    service = WalletService(db, config)
    result = await service.request_withdrawal(
        courier_id, request.amount, request.payment_method, request.phone_number
    )
    content = {"outcome": result.outcome.value, "message": result.message}
    if result.transaction is not None:
        content["transaction"] = TransactionResponse.model_validate(result.transaction).model_dump()
    return outcome_response(result.outcome, content)


@router.post(
    "/transactions/{transaction_id}/complete",
    response_model=TransactionResponse,
    summary="Confirm a payout",
)
async def complete_withdrawal(
    transaction_id: int,
    db: AsyncSession = Depends(get_db),
    config: MarketplaceConfig = Depends(get_marketplace_config),
    _: None = Depends(require_admin_api_key),
):
    return await WalletService(db, config).complete_withdrawal(transaction_id)


@router.post(
    "/transactions/{transaction_id}/fail",
    response_model=TransactionResponse,
    summary="Reject a payout and release the reservation",
)
async def fail_withdrawal(
    transaction_id: int,
    request: WithdrawalFailure | None = None,
    db: AsyncSession = Depends(get_db),
    config: MarketplaceConfig = Depends(get_marketplace_config),
    _: None = Depends(require_admin_api_key),
):
    reason = request.reason if request else None
    return await WalletService(db, config).fail_withdrawal(transaction_id, reason)
