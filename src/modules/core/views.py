import time
from typing import Any, Callable, Dict, Tuple

import structlog
from django.core.cache import cache
from django.db import connections
from django.http import HttpRequest, JsonResponse
from django.utils import timezone

from modules.payments.gateway import get_gateway

logger = structlog.get_logger()


def _timed(check: Callable[[], None]) -> Dict[str, Any]:
    start = time.monotonic()
    check()
    return {
        "status": "up",
        "response_time_ms": round((time.monotonic() - start) * 1000, 2),
    }


def _check_database() -> None:
    conn = connections["default"]
    conn.ensure_connection()
    with conn.cursor() as cursor:
        cursor.execute("SELECT 1")
        cursor.fetchone()


def _check_cache() -> None:
    # Idempotency records and the webhook de-duplication window live here.
    cache.set("_health_check", "ok", 10)
    if cache.get("_health_check") != "ok":
        raise ConnectionError("Cache read failed")


# Services the API cannot work without: a failure turns the check red.
CRITICAL_CHECKS: Tuple[Tuple[str, Callable[[], None]], ...] = (
    ("database", _check_database),
    ("cache", _check_cache),
)


def health_check(request: HttpRequest) -> JsonResponse:
    services: Dict[str, Dict[str, Any]] = {}
    overall_healthy = True

    for name, check in CRITICAL_CHECKS:
        try:
            services[name] = _timed(check)
        except Exception as exc:
            services[name] = {"status": "down"}
            overall_healthy = False
            logger.error("health_check_failure", service=name, error=str(exc))

    # Advisory only: orders are still taken while bKash is not configured.
    gateway = get_gateway()
    services["payment_gateway"] = {
        "status": "configured" if gateway.is_configured() else "not_configured",
        "provider": gateway.name,
    }

    overall = "healthy" if overall_healthy else "unhealthy"
    logger.info("health_check_completed", status=overall)
    return JsonResponse(
        {"status": overall, "timestamp": timezone.now().isoformat(), "services": services},
        status=200 if overall_healthy else 503,
    )

