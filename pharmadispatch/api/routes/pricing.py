"""
Pricing API Routes - lets clients preview fees before ordering
"""
from decimal import Decimal
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from pharmadispatch.api.dependencies.config import get_marketplace_config
from pharmadispatch.core.config import MarketplaceConfig
from pharmadispatch.core.geo import estimate_delivery_minutes
from pharmadispatch.domain.services.fee_calculator import FeeCalculator

router = APIRouter()


class FeeRequest(BaseModel):
    subtotal: Decimal = Field(ge=0)
    delivery_fee: Decimal = Field(ge=0)
    payment_mode: str


class DeliveryEstimateRequest(BaseModel):
    distance_km: float = Field(ge=0)
    vehicle_type: str = "motorcycle"


@router.get(
    "",
    summary="Pricing parameters",
    description="Delivery, service and payment fee parameters currently in force.",
)
async def get_pricing(config: MarketplaceConfig = Depends(get_marketplace_config)):
    return FeeCalculator(config).pricing_parameters()


@router.post(
    "/calculate",
    summary="Fee breakdown for a basket",
    description="Service and payment fees on top of the subtotal; the pharmacy always receives the subtotal.",
)
async def calculate_fees(
    request: FeeRequest,
    config: MarketplaceConfig = Depends(get_marketplace_config),
):
    breakdown = FeeCalculator(config).calculate_all(
        request.subtotal, request.delivery_fee, request.payment_mode
    )
    return breakdown.to_dict()


@router.post(
    "/estimate-delivery",
    summary="Delivery fee and travel time for a distance",
)
async def estimate_delivery(
    request: DeliveryEstimateRequest,
    config: MarketplaceConfig = Depends(get_marketplace_config),
):
    calculator = FeeCalculator(config)
    return {
        "distance_km": request.distance_km,
        "delivery_fee": calculator.delivery_fee(request.distance_km),
        "estimated_minutes": estimate_delivery_minutes(request.distance_km, request.vehicle_type),
        "pricing": calculator.pricing_parameters()["delivery"],
    }
