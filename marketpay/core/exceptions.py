from typing import Any

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse


class AppError(Exception):
    """Base application error with consistent schema."""

    def __init__(
        self,
        message: str,
        code: str = "ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="NOT_FOUND", status_code=status.HTTP_404_NOT_FOUND)


class ConflictError(AppError):
    def __init__(self, message: str = "Conflict", details: dict[str, Any] | None = None):
        super().__init__(message, code="CONFLICT", status_code=status.HTTP_409_CONFLICT, details=details)


class BadRequestError(AppError):
    def __init__(self, message: str = "Bad request", details: dict[str, Any] | None = None):
        super().__init__(message, code="BAD_REQUEST", status_code=status.HTTP_400_BAD_REQUEST, details=details)


class ConfigurationError(AppError):
    """Unknown gateway or missing provider credentials. Never retried."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code="CONFIGURATION_ERROR",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


class UnknownGatewayError(ConfigurationError):
    def __init__(self, gateway_id: str):
        self.gateway_id = gateway_id
        super().__init__(f"Unsupported payment gateway: {gateway_id}", details={"gateway": gateway_id})


class PaymentValidationError(AppError):
    """A mandatory request field for the selected gateway is missing or wrong."""

    def __init__(self, field: str, message: str | None = None, gateway: str | None = None):
        self.field = field
        details: dict[str, Any] = {"field": field}
        if gateway:
            details["gateway"] = gateway
        super().__init__(
            message or f"{field} is required",
            code="VALIDATION_ERROR",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


class ProviderError(Exception):
    """Outbound provider call failed. Turned into a failed outcome by the orchestrator."""

    def __init__(self, reason_code: str, message: str, provider_status: int | None = None):
        self.reason_code = reason_code
        self.message = message
        self.provider_status = provider_status
        super().__init__(message)


class ProviderUnavailableError(AppError):
    """Provider failure on a call that has no outcome to carry it (intents, saved cards)."""

    def __init__(self, exc: ProviderError):
        super().__init__(
            exc.message,
            code="PROVIDER_ERROR",
            status_code=status.HTTP_502_BAD_GATEWAY,
            details={"reason_code": exc.reason_code},
        )


class WebhookAuthenticityError(AppError):
    # The caller is an untrusted third party: the response never says why.
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__("Webhook rejected", code="WEBHOOK_REJECTED", status_code=status.HTTP_400_BAD_REQUEST)


class WebhookPayloadError(AppError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__("Invalid webhook payload", code="WEBHOOK_INVALID", status_code=status.HTTP_400_BAD_REQUEST)


class InvalidTransitionError(AppError):
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code="INVALID_TRANSITION",
            status_code=status.HTTP_409_CONFLICT,
            details=details,
        )


def error_response(request: Request, exc: AppError) -> ORJSONResponse:
    body = {
        "error": {
            "message": exc.message,
            "code": exc.code,
            "details": exc.details,
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(status_code=exc.status_code, content=body)


async def app_exception_handler(request: Request, exc: AppError) -> ORJSONResponse:
    return error_response(request, exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    body = {
        "error": {
            "message": "Validation error",
            "code": "VALIDATION_ERROR",
            "details": {"errors": jsonable_encoder(exc.errors())},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=body,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from marketpay.core.logging import get_logger
    get_logger(__name__).exception("unhandled_exception", exc_info=exc)
    body = {
        "error": {
            "message": "Internal server error",
            "code": "INTERNAL_ERROR",
            "details": {},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body,
    )
