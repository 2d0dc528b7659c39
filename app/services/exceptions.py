from __future__ import annotations

from typing import Any, Dict


class ServiceError(Exception):
    """Base exception for service layer failures."""

    code = "SERVICE_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        details: Dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause


class DownstreamServiceError(ServiceError):
    """Raised when an external service returns an error response."""

    code = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, message: str, status_code: int | None = None, *, cause: Exception | None = None):
        super().__init__(message, details={"upstream_status": status_code}, cause=cause)
        self.upstream_status = status_code
        self.status_code = 502


class ValidationError(ServiceError):
    code = "VALIDATION_ERROR"
    status_code = 422

    def __init__(self, message: str, errors: Dict[str, Any] | None = None):
        super().__init__(message, details={"errors": errors or {}})
        self.errors = errors or {}


class NotFoundError(ServiceError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str, identifier: str | None = None):
        message = (
            f"{resource} '{identifier}' not found" if identifier else f"{resource} not found"
        )
        super().__init__(message, details={"resource": resource, "identifier": identifier})
        self.resource = resource
        self.identifier = identifier


class DuplicateError(ServiceError):
    code = "DUPLICATE_ERROR"
    status_code = 409

    def __init__(self, field: str, value: str):
        super().__init__(
            f"An entry with {field} '{value}' already exists",
            details={"field": field, "value": value},
        )


class BusinessError(ServiceError):
    code = "BUSINESS_ERROR"
    status_code = 400


class CompanyError(BusinessError):
    code = "COMPANY_ERROR"


class InvoiceError(BusinessError):
    """Generic invoice failure; wraps unexpected errors so internals do not leak."""

    code = "INVOICE_ERROR"


class QuoteError(BusinessError):
    code = "QUOTE_ERROR"


class CustomerError(BusinessError):
    code = "CUSTOMER_ERROR"


class ProductError(BusinessError):
    code = "PRODUCT_ERROR"


class StockError(ProductError):
    code = "STOCK_ERROR"

    def __init__(self, message: str, product_id: str, requested: float, available: float):
        super().__init__(
            message,
            details={
                "product_id": product_id,
                "requested_quantity": requested,
                "available_quantity": available,
            },
        )


class InvoiceStatusError(InvoiceError):
    code = "INVOICE_STATUS_ERROR"

    def __init__(self, current_status: str, attempted_action: str):
        super().__init__(
            f"Cannot {attempted_action} an invoice with status {current_status}",
            details={"current_status": current_status, "attempted_action": attempted_action},
        )
        self.current_status = current_status
        self.attempted_action = attempted_action


class QuoteStatusError(QuoteError):
    code = "QUOTE_STATUS_ERROR"

    def __init__(self, current_status: str, attempted_action: str):
        super().__init__(
            f"Cannot {attempted_action} a quote with status {current_status}",
            details={"current_status": current_status, "attempted_action": attempted_action},
        )
        self.current_status = current_status
        self.attempted_action = attempted_action


class AuthenticationError(ServiceError):
    code = "UNAUTHORIZED"
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class ForbiddenError(ServiceError):
    code = "FORBIDDEN"
    status_code = 403

    def __init__(self, message: str = "Access forbidden", *, details: Dict[str, Any] | None = None):
        super().__init__(message, details=details)


class PermissionDeniedError(ForbiddenError):
    code = "PERMISSION_ERROR"

    def __init__(self, action: str, resource: str):
        super().__init__(
            f"Insufficient permission to {action} {resource}",
            details={"action": action, "resource": resource},
        )

