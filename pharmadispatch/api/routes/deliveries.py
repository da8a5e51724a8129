"""
Delivery API Routes - assignment (operator) and courier-side progress
"""
from datetime import datetime
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field, field_serializer
from sqlalchemy.ext.asyncio import AsyncSession

from pharmadispatch.api.dependencies.admin_auth import admin_key_header, require_admin_api_key
from pharmadispatch.api.dependencies.config import get_marketplace_config
from pharmadispatch.api.responses import outcome_response
from pharmadispatch.core.config import MarketplaceConfig
from pharmadispatch.core.exceptions import ValidationException
from pharmadispatch.db.database import get_db
from pharmadispatch.db.models.delivery import DeliveryStatus
from pharmadispatch.domain.results import AssignmentResult, Outcome
from pharmadispatch.domain.services.dispatch_service import DispatchService
from pharmadispatch.state_machine.states import DeliveryEvent, allowed_events

router = APIRouter()

# Events an operator may apply without acting as the assigned courier
OPERATOR_EVENTS = (DeliveryEvent.CANCEL, DeliveryEvent.FAIL)


class DeliveryResponse(BaseModel):
    id: int
    order_id: int | None
    courier_id: int | None
    status: str
    pickup_address: str | None
    dropoff_address: str | None
    delivery_fee: float | None
    cancellation_reason: str | None
    failure_reason: str | None
    created_at: datetime | None
    assigned_at: datetime | None
    accepted_at: datetime | None
    picked_up_at: datetime | None
    delivered_at: datetime | None

    model_config = {"from_attributes": True}

    @field_serializer("status")
    def serialize_status(self, v) -> str:
        return getattr(v, "value", v)


class ManualAssignRequest(BaseModel):
    courier_id: int


class ReassignRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class RejectRequest(BaseModel):
    courier_id: int
    reason: str = Field(default="Rejected by courier", max_length=500)


class BulkAssignRequest(BaseModel):
    delivery_ids: list[int] | None = None


class EventRequest(BaseModel):
    event: DeliveryEvent
    courier_id: int | None = None
    reason: str | None = Field(default=None, max_length=500)


def _assignment_response(result: AssignmentResult):
    return outcome_response(result.outcome, result.to_dict())


@router.post(
    "/bulk-assign",
    summary="Assign every pending delivery",
    description="Runs automatic assignment on each delivery independently and reports per-outcome counts.",
)
async def bulk_assign(
    request: BulkAssignRequest | None = None,
    db: AsyncSession = Depends(get_db),
    config: MarketplaceConfig = Depends(get_marketplace_config),
    _: None = Depends(require_admin_api_key),
):
    ids = request.delivery_ids if request else None
    report = await DispatchService(db, config).bulk_assign(ids)
    return report.to_dict()


@router.get("/{delivery_id}", response_model=DeliveryResponse, summary="Get a delivery")
async def get_delivery(
    delivery_id: int,
    db: AsyncSession = Depends(get_db),
    config: MarketplaceConfig = Depends(get_marketplace_config),
):
    return await DispatchService(db, config).get_delivery(delivery_id)


@router.get("/{delivery_id}/events", summary="Events allowed in the current status")
async def get_allowed_events(
    delivery_id: int,
    db: AsyncSession = Depends(get_db),
    config: MarketplaceConfig = Depends(get_marketplace_config),
):
    delivery = await DispatchService(db, config).get_delivery(delivery_id)
    return {
        "delivery_id": delivery_id,
        "status": delivery.status.value,
        "events": [e.value for e in allowed_events(delivery.status)],
    }


@router.post("/{delivery_id}/assign", summary="Run automatic assignment")
async def assign_delivery(
    delivery_id: int,
    db: AsyncSession = Depends(get_db),
    config: MarketplaceConfig = Depends(get_marketplace_config),
    _: None = Depends(require_admin_api_key),
):
    return _assignment_response(await DispatchService(db, config).assign(delivery_id))


@router.post("/{delivery_id}/manual-assign", summary="Assign to a chosen courier")
async def manual_assign_delivery(
    delivery_id: int,
    request: ManualAssignRequest,
    db: AsyncSession = Depends(get_db),
    config: MarketplaceConfig = Depends(get_marketplace_config),
    _: None = Depends(require_admin_api_key),
):
    result = await DispatchService(db, config).manual_assign(delivery_id, request.courier_id)
    return _assignment_response(result)


@router.post("/{delivery_id}/reassign", summary="Release the courier and assign another")
async def reassign_delivery(
    delivery_id: int,
    request: ReassignRequest,
    db: AsyncSession = Depends(get_db),
    config: MarketplaceConfig = Depends(get_marketplace_config),
    _: None = Depends(require_admin_api_key),
):
    result = await DispatchService(db, config).reassign(delivery_id, request.reason)
    return _assignment_response(result)


@router.post(
    "/{delivery_id}/reject",
    summary="Courier declines an offered delivery",
    description="Only the assigned courier, before pickup. The delivery goes to another courier.",
)
async def reject_delivery(
    delivery_id: int,
    request: RejectRequest,
    db: AsyncSession = Depends(get_db),
    config: MarketplaceConfig = Depends(get_marketplace_config),
):
    service = DispatchService(db, config)
    delivery = await service.get_delivery(delivery_id)
    if delivery.courier_id != request.courier_id or delivery.status != DeliveryStatus.ASSIGNED:
        result = AssignmentResult(
            outcome=Outcome.NOT_ELIGIBLE,
            delivery_id=delivery_id,
            courier_id=delivery.courier_id,
            message="Only the assigned courier can reject an offered delivery",
        )
        return _assignment_response(result)
    return _assignment_response(await service.reassign(delivery_id, request.reason))


@router.post(
    "/{delivery_id}/events",
    summary="Advance a delivery",
    description=(
        "accept, pick_up, start_transit, deliver, cancel or fail. The acting courier_id is "
        "required; only an operator may cancel or fail a delivery without one."
    ),
)
async def apply_event(
    delivery_id: int,
    request: EventRequest,
    http_request: Request,
    api_key: str | None = Depends(admin_key_header),
    db: AsyncSession = Depends(get_db),
    config: MarketplaceConfig = Depends(get_marketplace_config),
):
    if request.courier_id is None:
        if request.event not in OPERATOR_EVENTS:
            raise ValidationException(
                f"courier_id is required for {request.event.value}", field="courier_id"
            )
        await require_admin_api_key(http_request, api_key)

    result = await DispatchService(db, config).transition(
        delivery_id, request.event, courier_id=request.courier_id, reason=request.reason
    )
    return outcome_response(result.outcome, result.to_dict())
