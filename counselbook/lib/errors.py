"""
Application exception taxonomy.

Raised by the booking core and rendered by the API error handlers. Each
exception carries the HTTP status it maps to so the core stays free of
framework imports.
"""
from http import HTTPStatus
from typing import Optional, Dict, Any


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = int(status_code)
        self.details = details or {}
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(self, resource: str, resource_id: Optional[str] = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with id '{resource_id}' not found"
        super().__init__(
            message=message,
            status_code=HTTPStatus.NOT_FOUND,
            details={"resource": resource, "resource_id": resource_id},
        )


class UnauthorizedException(AppException):
    """Unauthorized access exception."""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(
            message=message,
            status_code=HTTPStatus.UNAUTHORIZED,
        )


class ForbiddenException(AppException):
    """Forbidden access exception."""

    def __init__(self, message: str = "Forbidden"):
        super().__init__(
            message=message,
            status_code=HTTPStatus.FORBIDDEN,
        )


class ConflictException(AppException):
    """Resource conflict exception."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=HTTPStatus.CONFLICT,
            details=details or {},
        )


class ValidationException(AppException):
    """Missing or malformed input the caller can correct."""

    def __init__(self, message: str, errors: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=HTTPStatus.UNPROCESSABLE_ENTITY,
            details={"errors": errors or {}},
        )


class InvalidSignatureException(AppException):
    """Payment callback failed signature verification."""

    def __init__(self, message: str = "Invalid payment signature"):
        super().__init__(
            message=message,
            status_code=HTTPStatus.BAD_REQUEST,
        )


class PaymentGatewayUnavailableException(AppException):
    """Gateway not configured, unreachable, or refused the request."""

    def __init__(self, message: str = "Payment gateway unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=HTTPStatus.SERVICE_UNAVAILABLE,
            details=details or {},
        )
