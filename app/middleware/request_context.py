"""Per-request correlation: request id, acting user, timing.

The request id comes from the X-Request-ID header or is generated, is
echoed back on the response, and is stamped on every log record emitted
while the request is handled.  The acting user is set by the auth
dependency once the bearer token has been verified.

Context variables are per asyncio task, so concurrent requests on the
same thread never see each other's values.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")
user_id_var: ContextVar[str] = ContextVar("user_id", default="-")


def _install_record_factory() -> None:
    """Stamp request_id and user_id on every LogRecord at creation.

    A filter on the root logger only sees records logged on the root
    logger itself, not ones propagated from app.* loggers; the record
    factory covers all of them.  Callers must not pass either key in
    `extra`.
    """
    base = logging.getLogRecordFactory()
    if getattr(base, "_stamps_request_context", False):
        return

    def factory(*args, **kwargs) -> logging.LogRecord:
        record = base(*args, **kwargs)
        record.request_id = request_id_var.get()
        record.user_id = user_id_var.get()
        return record

    factory._stamps_request_context = True  # type: ignore[attr-defined]
    logging.setLogRecordFactory(factory)


_install_record_factory()


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assign a request id, time the request, log one summary line."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        req_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request_id_var.set(req_id)
        user_id_var.set("-")

        start = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - start) * 1000, 1)

        logger.info(
            "%s %s → %d (%.1fms)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )

        response.headers["X-Request-ID"] = req_id
        return response
