"""Exception handlers mapping domain errors onto HTTP error responses."""

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from streamvault.storage.exceptions import (
    CatalogError,
    EncodingError,
    InvalidRequestError,
    ObjectNotFoundError,
    ObjectStoreError,
    UploadError,
)

logger = logging.getLogger(__name__)

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate",
    "Pragma": "no-cache",
}

STATUS_CODES = {
    400: "invalid_request",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    413: "payload_too_large",
    500: "internal_error",
    502: "object_store_error",
}


def error_response(status_code: int, error: str, detail: str, **extra: Any) -> JSONResponse:
    """Build the error body shared by every failure response."""
    content = {"error": error, "detail": detail}
    content.update({k: v for k, v in extra.items() if v is not None})
    return JSONResponse(status_code=status_code, content=content, headers=NO_CACHE_HEADERS)


async def invalid_request_handler(request: Request, exc: InvalidRequestError) -> JSONResponse:
    return error_response(400, "invalid_request", str(exc))


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    detail = "; ".join(
        f"{'.'.join(str(p) for p in e.get('loc', ()))}: {e.get('msg')}" for e in errors
    )
    return error_response(400, "invalid_request", detail or "Invalid request")


async def not_found_handler(request: Request, exc: ObjectNotFoundError) -> JSONResponse:
    return error_response(404, "not_found", str(exc))


async def object_store_error_handler(request: Request, exc: ObjectStoreError) -> JSONResponse:
    logger.error(
        "Object store request failed",
        extra={"path": request.url.path, "status": exc.status, "code": exc.code, "error": str(exc)},
    )
    return error_response(502, "object_store_error", str(exc), code=exc.code)


async def upload_error_handler(request: Request, exc: UploadError) -> JSONResponse:
    logger.error("Upload failed", extra={"path": request.url.path, "error": str(exc)})
    return error_response(502, "upload_failed", str(exc))


async def catalog_error_handler(request: Request, exc: CatalogError) -> JSONResponse:
    logger.error("Catalog update failed", extra={"path": request.url.path, "error": str(exc)})
    return error_response(409, "catalog_conflict", str(exc))


async def encoding_error_handler(request: Request, exc: EncodingError) -> JSONResponse:
    logger.error("Encoding failed", extra={"path": request.url.path, "error": str(exc)})
    return error_response(500, "encoding_failed", str(exc))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code = STATUS_CODES.get(exc.status_code, "http_error")
    response = error_response(exc.status_code, code, str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled error",
        exc_info=exc,
        extra={"path": request.url.path, "method": request.method},
    )
    return error_response(500, "internal_error", "Internal server error")


def register_exception_handlers(app: FastAPI) -> None:
    """Install the domain exception handlers on app."""
    app.add_exception_handler(InvalidRequestError, invalid_request_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(ObjectNotFoundError, not_found_handler)
    app.add_exception_handler(ObjectStoreError, object_store_error_handler)
    app.add_exception_handler(UploadError, upload_error_handler)
    app.add_exception_handler(CatalogError, catalog_error_handler)
    app.add_exception_handler(EncodingError, encoding_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
