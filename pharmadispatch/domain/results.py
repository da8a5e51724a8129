"""
Typed outcomes for dispatch and ledger operations.

Expected, recoverable outcomes travel back to the caller as values so they
can be branched on without exception handling. Hard failures (invalid input,
storage faults) are raised, see pharmadispatch.core.exceptions.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class Outcome(str, Enum):
    OK = "ok"
    NOT_ELIGIBLE = "not_eligible"
    NO_COURIER_AVAILABLE = "no_courier_available"
    INSUFFICIENT_BALANCE = "insufficient_balance"


# HTTP status used when an outcome is returned through the API
OUTCOME_HTTP_STATUS = {
    Outcome.OK: 200,
    Outcome.NO_COURIER_AVAILABLE: 200,
    Outcome.NOT_ELIGIBLE: 409,
    Outcome.INSUFFICIENT_BALANCE: 402,
}


@dataclass(frozen=True)
class AssignmentResult:
    outcome: Outcome
    delivery_id: int
    courier_id: Optional[int] = None
    score: Optional[float] = None
    distance_km: Optional[float] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome == Outcome.OK

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "delivery_id": self.delivery_id,
            "courier_id": self.courier_id,
            "score": self.score,
            "distance_km": round(self.distance_km, 2) if self.distance_km is not None else None,
            "message": self.message,
        }


@dataclass(frozen=True)
class TransitionResult:
    outcome: Outcome
    delivery_id: int
    status: Optional[str] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome == Outcome.OK

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "delivery_id": self.delivery_id,
            "status": self.status,
            "message": self.message,
        }


@dataclass(frozen=True)
class LedgerResult:
    """Outcome of a debit. ``transaction`` is set only when it succeeded."""

    outcome: Outcome
    transaction: Any = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome == Outcome.OK


@dataclass
class BulkAssignmentReport:
    """Per-outcome counts for one bulk assignment run"""

    total: int = 0
    assigned: int = 0
    no_courier: int = 0
    not_eligible: int = 0
    errors: int = 0
    details: list[dict[str, Any]] = field(default_factory=list)

    def record(self, result: AssignmentResult) -> None:
        self.total += 1
        if result.outcome == Outcome.OK:
            self.assigned += 1
        elif result.outcome == Outcome.NO_COURIER_AVAILABLE:
            self.no_courier += 1
        else:
            self.not_eligible += 1
        self.details.append(result.to_dict())

    def record_error(self, delivery_id: int, error: str) -> None:
        self.total += 1
        self.errors += 1
        self.details.append({"outcome": "error", "delivery_id": delivery_id, "message": error})

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "assigned": self.assigned,
            "no_courier": self.no_courier,
            "not_eligible": self.not_eligible,
            "errors": self.errors,
            "details": self.details,
        }
