"""
Exception handlers for the tagdesk API.

Routes raise ``HTTPException`` for 401/404 themselves; everything below the
route layer is mapped here.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from tagdesk.errors import InvalidRequestError, StorageOperationError

logger = logging.getLogger(__name__)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


async def invalid_request_handler(request: Request, exc: InvalidRequestError) -> JSONResponse:
    logger.info("Rejected %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=400, content={"detail": str(exc)})


async def storage_error_handler(request: Request, exc: StorageOperationError) -> JSONResponse:
    logger.error(
        "Storage failure in %s %s [%s]: %s",
        request.method,
        request.url.path,
        exc.error.code.value,
        exc.error.message,
    )
    return JSONResponse(
        status_code=502,
        content={
            "detail": "Object storage request failed",
            "code": exc.error.code.value,
            "path": exc.error.path,
        },
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Log any unhandled exception with an error id and return a generic 500.

    Clients can quote the error id when reporting the problem.
    """
    error_id = id(exc)
    logger.error(
        "Unhandled exception [%s] in %s %s: %s",
        error_id,
        request.method,
        request.url.path,
        exc,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "error_id": error_id,
            "error_type": type(exc).__name__,
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(InvalidRequestError, invalid_request_handler)
    app.add_exception_handler(StorageOperationError, storage_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)
