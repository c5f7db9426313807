"""
Infrastructure views for the escrow service.

Only the health check lives here; it is routed outside /api/v1/ and needs
no authentication so load balancers and Docker can call it.
"""

import logging

from django.conf import settings
from django.core.cache import cache
from django.db import connection
from django.http import JsonResponse

logger = logging.getLogger(__name__)

HEALTH_CACHE_KEY = "health_check"


def _database_ok() -> bool:
    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
    except Exception:
        logger.error("Health check: database unreachable", exc_info=True)
        return False
    return True


def _cache_ok() -> bool:
    try:
        cache.set(HEALTH_CACHE_KEY, "ok", timeout=1)
        return cache.get(HEALTH_CACHE_KEY) == "ok"
    except Exception:
        logger.warning("Health check: cache unreachable", exc_info=True)
        return False


def health_check(request):
    """
    Report database, cache and Stripe configuration health.

    The database is the only hard dependency: without it no payment can
    change state, so a failure returns 503. Cache and Stripe problems are
    reported but keep the status at 200.

    Example Response:
        {
            "status": "healthy",
            "database": "connected",
            "cache": "connected",
            "stripe": "configured"
        }
    """
    database_ok = _database_ok()
    body = {
        "status": "healthy" if database_ok else "unhealthy",
        "database": "connected" if database_ok else "disconnected",
        "cache": "connected" if _cache_ok() else "disconnected",
        "stripe": "configured" if settings.STRIPE_SECRET_KEY else "not_configured",
    }
    return JsonResponse(body, status=200 if database_ok else 503)
