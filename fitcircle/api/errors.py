"""Global error handlers ensuring request_id is included in JSON responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from fitcircle.domain.exceptions import MalformedRecordError, MissingInputError
from fitcircle.obs.logging import current_request_id

logger = logging.getLogger(__name__)


def _request_id(default: str = "unknown") -> str:
    return current_request_id() or default


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        payload = {"detail": exc.detail, "request_id": _request_id()}
        return JSONResponse(status_code=exc.status_code, content=payload)

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
        payload = {"detail": "validation_error", "errors": exc.errors(), "request_id": _request_id()}
        return JSONResponse(status_code=422, content=payload, media_type="application/json")

    @app.exception_handler(MissingInputError)
    async def missing_input_handler(request: Request, exc: MissingInputError):  # type: ignore[override]
        payload = {"detail": exc.reason, "request_id": _request_id()}
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content=payload)

    @app.exception_handler(MalformedRecordError)
    async def malformed_record_handler(request: Request, exc: MalformedRecordError):  # type: ignore[override]
        logger.warning("malformed_record", extra={"reason": exc.reason, "source": exc.source})
        payload = {"detail": exc.reason, "source": exc.source, "request_id": _request_id()}
        return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=payload)
