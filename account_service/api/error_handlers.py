"""Application-wide handlers keeping the succeeded/message reply shape on transport errors."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..domain.service import UNEXPECTED_FAILURE

logger = logging.getLogger(__name__)

INVALID_REQUEST = "Invalid request."


def register_error_handlers(app: FastAPI) -> None:
    """Register request-validation and catch-all handlers on the FastAPI app."""

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info("rejected malformed request to %s: %s", request.url.path, exc.errors())
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"succeeded": False, "message": INVALID_REQUEST},
        )

    @app.exception_handler(Exception)
    async def unexpected_failure(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled failure serving %s", request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"succeeded": False, "message": UNEXPECTED_FAILURE},
        )
