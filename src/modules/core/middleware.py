import time
import uuid
from typing import Callable

import structlog
from django.http import HttpRequest, HttpResponse

logger = structlog.get_logger()

# Incoming headers checked in order; the first non-empty one wins.
CORRELATION_HEADERS = ("HTTP_X_REQUEST_ID", "HTTP_X_CORRELATION_ID")
MAX_CORRELATION_ID_LENGTH = 128


def _incoming_correlation_id(request: HttpRequest) -> str:
    for header in CORRELATION_HEADERS:
        value = request.META.get(header, "").strip()
        if value and len(value) <= MAX_CORRELATION_ID_LENGTH:
            return value
    return ""


class CorrelationIdMiddleware:
    """Tag every request, and every log line it produces, with a correlation id.

    Reuses the caller's ``X-Request-ID`` (or ``X-Correlation-ID``) so a
    bKash callback or webhook can be traced across retries; otherwise a
    UUID4 is generated.  The id is echoed back in ``X-Request-ID``.

    Only the path is logged: callback query strings carry payment ids.
    """

    def __init__(self, get_response: Callable[[HttpRequest], HttpResponse]) -> None:
        self.get_response = get_response

    def __call__(self, request: HttpRequest) -> HttpResponse:
        cid = _incoming_correlation_id(request) or str(uuid.uuid4())

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(correlation_id=cid)

        started = time.monotonic()
        logger.info("request_started", method=request.method, path=request.path)

        response = self.get_response(request)

        log = logger.warning if response.status_code >= 500 else logger.info
        log(
            "request_finished",
            method=request.method,
            path=request.path,
            status_code=response.status_code,
            duration_ms=round((time.monotonic() - started) * 1000, 1),
        )

        response["X-Request-ID"] = cid
        return response
