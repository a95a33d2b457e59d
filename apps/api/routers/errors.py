"""JSON error envelope for service-layer errors."""

from __future__ import annotations

import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from services.errors import ServiceError

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    """Render ServiceError as ``{"type": "error", "error": {...}, "detail": {...}}``."""

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        logger.warning("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "type": "error",
                "error": {"type": exc.code, "message": exc.message},
                "detail": exc.detail,
                "request_id": request_id,
            },
            headers={"X-Request-ID": request_id},
        )
