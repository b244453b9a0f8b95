"""Global error handling middleware."""

import logging
import traceback

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from portal.middleware.logging import redact_pii

logger = logging.getLogger(__name__)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catch unhandled exceptions and return safe error responses.

    The exception text is logged server-side only; callers get a generic
    message, since it may carry upstream error bodies.
    """

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            error_msg = redact_pii(str(exc))
            tb = traceback.format_exc()

            logger.error(
                "Unhandled exception on %s %s: %s\n%s",
                request.method,
                request.url.path,
                error_msg,
                redact_pii(tb),
            )

            return JSONResponse(
                status_code=500,
                content={
                    "detail": "Internal Server Error during processing. Please try again later.",
                    "error_type": type(exc).__name__,
                },
            )
