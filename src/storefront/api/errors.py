"""Exception handlers mapping storefront failures to HTTP responses.

Every error body has the shape ``{"error": {"kind", "message", "details"}}``.
Provider internals and tracebacks never leave the process.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from protean.exceptions import ObjectNotFoundError
from protean.exceptions import ValidationError as FieldValidationError

from storefront.errors import SignatureError, StorefrontError

logger = structlog.get_logger(__name__)

STATUS_BY_KIND: dict[str, int] = {
    "validation": 400,
    "not_found": 404,
    "conflict": 409,
    "expired": 410,
    "rate_limited": 429,
    "provider": 502,
}


def error_response(status_code: int, kind: str, message: str, details: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"kind": kind, "message": message, "details": details or {}}},
    )


async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    status_code = STATUS_BY_KIND.get(exc.kind, 500)
    if exc.kind == "provider":
        # Provider messages may echo upstream payloads
        logger.warning("Provider failure answered", path=request.url.path, error=exc.message)
        return error_response(status_code, exc.kind, "Payment provider request failed", exc.details)
    return error_response(status_code, exc.kind, exc.message, exc.details)


async def signature_error_handler(request: Request, exc: SignatureError) -> JSONResponse:
    logger.warning("Rejected unsigned callback", path=request.url.path, provider=exc.provider)
    return error_response(401, exc.kind, exc.message, exc.details)


async def field_validation_handler(request: Request, exc: FieldValidationError) -> JSONResponse:
    return error_response(400, "validation", "Invalid input", {"fields": exc.messages})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = {".".join(str(part) for part in error["loc"]): error["msg"] for error in exc.errors()}
    return error_response(400, "validation", "Invalid request", {"fields": fields})


async def object_not_found_handler(request: Request, exc: ObjectNotFoundError) -> JSONResponse:
    return error_response(404, "not_found", str(exc))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SignatureError, signature_error_handler)
    app.add_exception_handler(StorefrontError, storefront_error_handler)
    app.add_exception_handler(FieldValidationError, field_validation_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(ObjectNotFoundError, object_not_found_handler)
