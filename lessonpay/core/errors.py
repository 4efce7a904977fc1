# lessonpay/core/errors.py
from __future__ import annotations
from typing import Optional, Dict, Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

log = structlog.get_logger(__name__)


class PaymentFlowError(Exception):
    """
    Base for every error an operation can surface to a caller.
    Rendered as {"error": {"code", "message", "payment_intent_id"?}}.
    """

    status_code: int = 500
    default_code: str = "error"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        payment_intent_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.payment_intent_id = payment_intent_id

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.payment_intent_id:
            body["payment_intent_id"] = self.payment_intent_id
        return body


class ConflictError(PaymentFlowError):
    status_code = 409
    default_code = "email_exists"


class NotFoundError(PaymentFlowError):
    status_code = 404
    default_code = "resource_missing"


class DeclinedError(PaymentFlowError):
    # subdivided by the processor's code: card_declined, setup_intent_authentication_failure, ...
    status_code = 400
    default_code = "card_declined"


class ValidationError(PaymentFlowError):
    status_code = 400
    default_code = "validation_error"


class UpstreamError(PaymentFlowError):
    status_code = 500
    default_code = "upstream_error"


def error_body(code: str, message: str) -> Dict[str, Any]:
    return {"error": {"code": code, "message": message}}


# -------------------- FastAPI handlers --------------------

async def _payment_flow_error_handler(request: Request, exc: PaymentFlowError) -> JSONResponse:
    log.warning(
        "payment_flow_error",
        error_type=type(exc).__name__,
        code=exc.code,
        payment_intent_id=exc.payment_intent_id,
        status=exc.status_code,
    )
    return JSONResponse({"error": exc.to_dict()}, status_code=exc.status_code)


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body") or "(root)"
    message = f"{loc}: {first.get('msg', 'invalid request')}"
    return JSONResponse(error_body("validation_error", message), status_code=400)


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else "HTTP error"
    return JSONResponse(
        error_body("http_error", detail),
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # never leak a stack trace to the remote caller
    log.error("unhandled_exception", path=request.url.path, exc_info=exc)
    return JSONResponse(error_body("internal_error", "Internal server error"), status_code=500)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PaymentFlowError, _payment_flow_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)
