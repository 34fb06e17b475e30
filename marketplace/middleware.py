import logging

from django.http import JsonResponse

from .exceptions import MarketplaceError

logger = logging.getLogger(__name__)


class MarketplaceErrorMiddleware:
    """Answer uncaught marketplace errors with a JSON message instead of a 500."""

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        return self.get_response(request)

    def process_exception(self, request, exception):
        if not isinstance(exception, MarketplaceError):
            return None
        logger.info(
            "%s on %s %s: %s",
            type(exception).__name__,
            request.method,
            request.path,
            exception.message,
        )
        return JsonResponse(
            {"ok": False, "error": exception.message, "code": type(exception).__name__},
            status=exception.status_code,
        )
