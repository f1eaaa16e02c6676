"""FastAPI exception handlers producing the standard ErrorResponse."""

import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from tributary.errors.exceptions import TributaryError, WebhookSignatureError
from tributary.models.common import ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)


def error_response_body(exc: TributaryError, trace_id: str) -> dict:
    detail = ErrorDetail(
        code=exc.code,
        message=exc.message,
        details=exc.details,
        recoverable=exc.recoverable,
        trace_id=trace_id,
        timestamp=datetime.now(timezone.utc),
    )
    return ErrorResponse(error=detail).model_dump(mode="json", exclude_none=True)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(TributaryError)
    async def tributary_error_handler(request: Request, exc: TributaryError):
        trace_id = getattr(request.state, "trace_id", "trc_unknown")
        if isinstance(exc, WebhookSignatureError):
            logger.warning("Rejected webhook delivery on %s: %s", request.url.path, exc.message)
        elif exc.status_code >= 500:
            logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=error_response_body(exc, trace_id))
