"""
Delivery State Machine
"""
from pharmadispatch.state_machine.states import (
    DeliveryEvent,
    SideEffect,
    Transition,
    DELIVERY_TRANSITIONS,
    get_transition,
    allowed_events,
)

__all__ = [
    "DeliveryEvent",
    "SideEffect",
    "Transition",
    "DELIVERY_TRANSITIONS",
    "get_transition",
    "allowed_events",
]
