# =============================================================================
# Django Project Configuration Package
# =============================================================================
# Django configuration for the escrow service: settings, URLs,
# ASGI/WSGI entry points and the Celery app.
#
# Import Celery app to ensure it's loaded when Django starts.
# Celery needs it to auto-discover the escrow tasks and sweeps.
# =============================================================================

from config.celery import app as celery_app

__all__ = ("celery_app",)
