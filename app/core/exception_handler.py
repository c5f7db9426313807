"""
DRF exception handler for application errors.

Configured via REST_FRAMEWORK["EXCEPTION_HANDLER"]. Application errors
raised from views or services are rendered with their own status code;
everything else goes through DRF's default handler.
"""

import logging

from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

from core.exceptions import BaseApplicationError

logger = logging.getLogger(__name__)


def application_exception_handler(exc, context):
    if isinstance(exc, BaseApplicationError):
        view = context.get("view")
        log = logger.error if exc.status_code >= 500 else logger.info
        log(
            f"{exc.__class__.__name__} in {view.__class__.__name__ if view else 'view'}: {exc}",
            extra={"error_code": exc.error_code, "status_code": exc.status_code},
        )
        return Response(exc.to_dict(), status=exc.status_code)

    return drf_exception_handler(exc, context)
