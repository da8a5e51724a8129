"""
Courier API Routes - presence and pool statistics
"""
from datetime import datetime
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_serializer
from sqlalchemy.ext.asyncio import AsyncSession

from pharmadispatch.api.dependencies.admin_auth import require_admin_api_key
from pharmadispatch.api.dependencies.config import get_marketplace_config
from pharmadispatch.core.config import MarketplaceConfig
from pharmadispatch.db.database import get_db
from pharmadispatch.domain.services.courier_service import CourierService

router = APIRouter()


class CourierResponse(BaseModel):
    id: int
    name: str
    status: str
    vehicle_type: str | None
    latitude: float | None
    longitude: float | None
    last_location_update: datetime | None
    rating: float | None
    completed_deliveries: int

    model_config = {"from_attributes": True}

    @field_serializer("status")
    def serialize_status(self, v) -> str:
        return getattr(v, "value", v)


class LocationUpdate(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class AvailabilityUpdate(BaseModel):
    status: str


@router.get(
    "/stats",
    summary="Courier pool statistics",
    description="Available, busy and offline counts plus couriers seen in the last 30 minutes.",
)
async def get_availability_stats(
    db: AsyncSession = Depends(get_db),
    config: MarketplaceConfig = Depends(get_marketplace_config),
    _: None = Depends(require_admin_api_key),
):
    return await CourierService(db, config).get_availability_stats()


@router.get("/{courier_id}", response_model=CourierResponse, summary="Get a courier")
async def get_courier(
    courier_id: int,
    db: AsyncSession = Depends(get_db),
    config: MarketplaceConfig = Depends(get_marketplace_config),
):
    return await CourierService(db, config).get_courier(courier_id)


@router.put("/{courier_id}/location", response_model=CourierResponse, summary="Location ping")
async def update_location(
    courier_id: int,
    location: LocationUpdate,
    db: AsyncSession = Depends(get_db),
    config: MarketplaceConfig = Depends(get_marketplace_config),
):
    service = CourierService(db, config)
    return await service.update_location(courier_id, location.latitude, location.longitude)


@router.put(
    "/{courier_id}/availability",
    response_model=CourierResponse,
    summary="Go available or offline",
)
async def set_availability(
    courier_id: int,
    update: AvailabilityUpdate,
    db: AsyncSession = Depends(get_db),
    config: MarketplaceConfig = Depends(get_marketplace_config),
):
    return await CourierService(db, config).set_availability(courier_id, update.status)
