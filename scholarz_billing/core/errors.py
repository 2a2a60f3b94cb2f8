import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from starlette.responses import JSONResponse

logger = logging.getLogger(__name__)


class BillingError(Exception):
    """Base class for every failure raised by the billing services."""

    status_code = 500
    code = "internal"

    def __init__(self, message: str, *, context: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class ConfigurationError(BillingError):
    status_code = 412
    code = "failed-precondition"


class PaymentValidationError(BillingError):
    status_code = 422
    code = "invalid-argument"


class ExternalServiceError(BillingError):
    """PayPal answered with a non-2xx response (or could not be reached)."""

    status_code = 502
    code = "external-service"

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        name: Optional[str] = None,
        details: Optional[list[dict]] = None,
        debug_id: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, context=context)
        self.status = status
        self.name = name
        self.details = details or []
        self.debug_id = debug_id


class PlanProvisioningError(ExternalServiceError):
    @classmethod
    def from_external(cls, exc: ExternalServiceError) -> "PlanProvisioningError":
        message = f"Unable to set up PayPal plan: {exc.message}"
        issue = exc.details[0] if exc.details else {}
        field = issue.get("field")
        location = issue.get("location")
        if field or location:
            message = f"{message} (field: {field or 'n/a'}, location: {location or 'n/a'})"
        return cls(
            message,
            status=exc.status,
            name=exc.name,
            details=exc.details,
            debug_id=exc.debug_id,
            context={"field": field, "location": location},
        )


class ReconciliationError(BillingError):
    """A sync step failed for one user. Stored on the profile, never returned to end users."""

    def __init__(self, message: str, *, issue: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message, context=context)
        self.issue = issue


async def _billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    if exc.status_code >= 500 or isinstance(exc, ConfigurationError):
        logger.error("%s on %s: %s %s", type(exc).__name__, request.url.path, exc.message, exc.context)
    body: dict[str, Any] = {"detail": exc.message, "code": exc.code}
    if isinstance(exc, ExternalServiceError) and exc.debug_id:
        body["debugId"] = exc.debug_id
    return JSONResponse(body, status_code=exc.status_code)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BillingError, _billing_error_handler)
