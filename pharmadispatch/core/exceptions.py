"""
Custom Exception Hierarchy

Hard failures only. Expected dispatch and ledger outcomes (not eligible,
no courier available, insufficient balance) are returned as typed results,
see pharmadispatch.domain.results.
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    UNAUTHORIZED = "ERR_1004"
    FORBIDDEN = "ERR_1005"

    # Delivery / order errors (2xxx)
    DELIVERY_NOT_FOUND = "ERR_2001"
    ORDER_NOT_FOUND = "ERR_2006"
    PHARMACY_NOT_FOUND = "ERR_2007"

    # Courier errors (3xxx)
    COURIER_NOT_FOUND = "ERR_3001"
    COURIER_STATUS_LOCKED = "ERR_3005"

    # Wallet errors (4xxx)
    WALLET_NOT_FOUND = "ERR_4001"
    INVALID_AMOUNT = "ERR_4003"
    TRANSACTION_NOT_FOUND = "ERR_4005"

    # Infrastructure errors (5xxx)
    STORAGE_FAULT = "ERR_5000"
    EXTERNAL_SERVICE_UNAVAILABLE = "ERR_5003"
    EXTERNAL_SERVICE_TIMEOUT = "ERR_5004"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


class ValidationException(AppException):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details=details
        )
        if field:
            self.details["field"] = field


class NotFoundException(AppException):
    """Raised when a requested resource is not found"""

    def __init__(
        self,
        resource: str,
        identifier: Any,
        error_code: ErrorCode = ErrorCode.NOT_FOUND
    ):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code=error_code,
            status_code=404,
            details={"resource": resource, "identifier": str(identifier)}
        )


class DeliveryNotFoundError(NotFoundException):
    def __init__(self, delivery_id: int):
        super().__init__("Delivery", delivery_id, ErrorCode.DELIVERY_NOT_FOUND)


class OrderNotFoundError(NotFoundException):
    def __init__(self, order_id: int):
        super().__init__("Order", order_id, ErrorCode.ORDER_NOT_FOUND)


class PharmacyNotFoundError(NotFoundException):
    def __init__(self, pharmacy_id: int):
        super().__init__("Pharmacy", pharmacy_id, ErrorCode.PHARMACY_NOT_FOUND)


class CourierNotFoundError(NotFoundException):
    def __init__(self, courier_id: int):
        super().__init__("Courier", courier_id, ErrorCode.COURIER_NOT_FOUND)


class WalletNotFoundError(NotFoundException):
    def __init__(self, wallet_id: int):
        super().__init__("Wallet", wallet_id, ErrorCode.WALLET_NOT_FOUND)


class TransactionNotFoundError(NotFoundException):
    def __init__(self, transaction_id: int):
        super().__init__("WalletTransaction", transaction_id, ErrorCode.TRANSACTION_NOT_FOUND)


class OperatorAuthError(AppException):
    """Operator endpoint called without a valid X-Admin-API-Key"""

    def __init__(self, message: str, missing: bool = False):
        super().__init__(
            message=message,
            error_code=ErrorCode.UNAUTHORIZED if missing else ErrorCode.FORBIDDEN,
            status_code=401 if missing else 403,
        )


class CourierStatusLockedError(AppException):
    """Raised when a courier tries to toggle availability from an admin-controlled status"""

    def __init__(self, courier_id: int, current_status: str):
        super().__init__(
            message=f"Courier {courier_id} cannot change availability while '{current_status}'",
            error_code=ErrorCode.COURIER_STATUS_LOCKED,
            status_code=409,
            details={"courier_id": courier_id, "current_status": current_status}
        )


class InvalidAmountError(AppException):
    """Raised when a ledger movement is requested with a non-positive amount.

    Input error: surfaced immediately, never retried.
    """

    def __init__(self, amount: Any, operation: str = "ledger"):
        super().__init__(
            message=f"Amount must be positive for {operation}: {amount}",
            error_code=ErrorCode.INVALID_AMOUNT,
            status_code=400,
            details={"amount": str(amount), "operation": operation}
        )


class StorageFaultError(AppException):
    """Raised when a unit of work could not be committed.

    The transaction has already been rolled back when this is raised; the
    caller may retry the whole operation.
    """

    retryable = True

    def __init__(self, operation: str, error: str):
        super().__init__(
            message=f"Storage failure during {operation}",
            error_code=ErrorCode.STORAGE_FAULT,
            status_code=503,
            details={"operation": operation, "error": error, "retryable": True}
        )


class ExternalServiceException(AppException):
    """Base exception for external service errors"""

    def __init__(
        self,
        service_name: str,
        message: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=503,
            details=details
        )
        self.details["service"] = service_name


class PushGatewayError(ExternalServiceException):
    """Raised when the push/SMS gateway rejects a notification"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="push_gateway",
            message=f"Push gateway error: {message}",
            details=details
        )

    @classmethod
    def from_response(
        cls,
        operation: str,
        response: Any,
        *,
        max_response_chars: int = 500
    ) -> "PushGatewayError":
        status_code = getattr(response, "status_code", None)
        response_text = getattr(response, "text", "") or ""
        return cls(
            message=f"{operation} returned status {status_code}",
            details={
                "operation": operation,
                "status_code": status_code,
                "response_text": response_text[:max_response_chars],
            },
        )
