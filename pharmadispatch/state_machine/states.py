"""
Delivery State Machine

Transition table keyed by (current status, event). Each entry names the
target status, the timestamp column stamped on entry, and the side effects
the orchestrator runs inside the same transaction.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pharmadispatch.db.models.delivery import DeliveryStatus, TERMINAL_DELIVERY_STATUSES


class DeliveryEvent(str, Enum):
    """Courier-side and operator events driving a delivery"""

    ACCEPT = "accept"
    PICK_UP = "pick_up"
    START_TRANSIT = "start_transit"
    DELIVER = "deliver"
    CANCEL = "cancel"
    FAIL = "fail"


class SideEffect(str, Enum):
    REQUIRE_COMMISSION_BALANCE = "require_commission_balance"  # guard, checked before any write
    CREDIT_EARNING = "credit_earning"
    SETTLE_COMMISSION = "settle_commission"
    SETTLE_CASH_ORDER = "settle_cash_order"
    INCREMENT_COMPLETED = "increment_completed"
    RELEASE_COURIER = "release_courier"


@dataclass(frozen=True)
class Transition:
    target: DeliveryStatus
    timestamp_field: str
    effects: tuple[SideEffect, ...] = ()


_ACCEPT = Transition(
    DeliveryStatus.ACCEPTED, "accepted_at",
    (SideEffect.REQUIRE_COMMISSION_BALANCE,),
)
# Picking up straight from "assigned" implies acceptance
_PICK_UP_UNACCEPTED = Transition(
    DeliveryStatus.PICKED_UP, "picked_up_at",
    (SideEffect.REQUIRE_COMMISSION_BALANCE,),
)
_PICK_UP = Transition(DeliveryStatus.PICKED_UP, "picked_up_at")
_START_TRANSIT = Transition(DeliveryStatus.IN_TRANSIT, "in_transit_at")
_DELIVER = Transition(
    DeliveryStatus.DELIVERED, "delivered_at",
    (
        SideEffect.REQUIRE_COMMISSION_BALANCE,
        SideEffect.CREDIT_EARNING,
        SideEffect.SETTLE_COMMISSION,
        SideEffect.SETTLE_CASH_ORDER,
        SideEffect.INCREMENT_COMPLETED,
        SideEffect.RELEASE_COURIER,
    ),
)
_CANCEL = Transition(DeliveryStatus.CANCELLED, "cancelled_at", (SideEffect.RELEASE_COURIER,))
_FAIL = Transition(DeliveryStatus.FAILED, "failed_at", (SideEffect.RELEASE_COURIER,))


DELIVERY_TRANSITIONS: dict[tuple[DeliveryStatus, DeliveryEvent], Transition] = {
    (DeliveryStatus.ASSIGNED, DeliveryEvent.ACCEPT): _ACCEPT,
    (DeliveryStatus.ASSIGNED, DeliveryEvent.PICK_UP): _PICK_UP_UNACCEPTED,
    (DeliveryStatus.ACCEPTED, DeliveryEvent.PICK_UP): _PICK_UP,
    (DeliveryStatus.PICKED_UP, DeliveryEvent.START_TRANSIT): _START_TRANSIT,
    (DeliveryStatus.PICKED_UP, DeliveryEvent.DELIVER): _DELIVER,
    (DeliveryStatus.IN_TRANSIT, DeliveryEvent.DELIVER): _DELIVER,
}

# Cancel and fail are reachable from every non-terminal status
for _status in DeliveryStatus:
    if _status not in TERMINAL_DELIVERY_STATUSES:
        DELIVERY_TRANSITIONS[(_status, DeliveryEvent.CANCEL)] = _CANCEL
        DELIVERY_TRANSITIONS[(_status, DeliveryEvent.FAIL)] = _FAIL


def get_transition(status: DeliveryStatus, event: DeliveryEvent) -> Optional[Transition]:
    return DELIVERY_TRANSITIONS.get((status, event))


def allowed_events(status: DeliveryStatus) -> list[DeliveryEvent]:
    return [event for (current, event) in DELIVERY_TRANSITIONS if current == status]
