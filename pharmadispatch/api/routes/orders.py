"""
Order API Routes
"""
from datetime import datetime
from decimal import Decimal
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field, field_serializer
from sqlalchemy.ext.asyncio import AsyncSession

from pharmadispatch.api.dependencies.config import get_marketplace_config
from pharmadispatch.api.responses import outcome_response
from pharmadispatch.core.config import MarketplaceConfig
from pharmadispatch.db.database import get_db
from pharmadispatch.domain.services.order_service import OrderService

router = APIRouter()


class OrderCreate(BaseModel):
    pharmacy_id: int
    subtotal: Decimal = Field(ge=0)
    payment_mode: str = "cash"
    delivery_address: str | None = Field(default=None, max_length=500)
    delivery_latitude: float | None = Field(default=None, ge=-90, le=90)
    delivery_longitude: float | None = Field(default=None, ge=-180, le=180)
    distance_km: float | None = Field(default=None, ge=0)


class OrderResponse(BaseModel):
    id: int
    reference: str
    pharmacy_id: int
    status: str
    payment_mode: str
    subtotal: float
    delivery_fee: float
    service_fee: float
    payment_fee: float
    total_amount: float
    pharmacy_amount: float
    created_at: datetime | None

    model_config = {"from_attributes": True}

    @field_serializer("status", "payment_mode")
    def serialize_enum(self, v) -> str:
        return getattr(v, "value", v)


@router.post(
    "",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an order",
    description="Prices the order once (delivery, service and payment fees) and persists the totals.",
)
async def create_order(
    order: OrderCreate,
    db: AsyncSession = Depends(get_db),
    config: MarketplaceConfig = Depends(get_marketplace_config),
):
    service = OrderService(db, config)
    return await service.create_order(**order.model_dump())


@router.get("/{order_id}", response_model=OrderResponse, summary="Get an order")
async def get_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    config: MarketplaceConfig = Depends(get_marketplace_config),
):
    return await OrderService(db, config).get_order(order_id)


@router.post(
    "/{order_id}/ready",
    summary="Mark an order ready for pickup",
    description="Creates the order's delivery (once) and runs automatic courier assignment.",
)
async def mark_ready(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    config: MarketplaceConfig = Depends(get_marketplace_config),
):
    result = await OrderService(db, config).mark_ready(order_id)
    return outcome_response(result.outcome, result.to_dict())
