"""Middleware turning django-ratelimit rejections into JSON API errors."""

import logging
from typing import Callable, Optional

from django.http import HttpRequest, HttpResponse, JsonResponse
from django_ratelimit.exceptions import Ratelimited

logger = logging.getLogger(__name__)


class RateLimitMiddleware:
    """Answer blocked requests with a 429 JSON body instead of a 403 page."""

    def __init__(self, get_response: Callable[[HttpRequest], HttpResponse]) -> None:
        self.get_response = get_response

    def __call__(self, request: HttpRequest) -> HttpResponse:
        return self.get_response(request)

    def process_exception(
        self, request: HttpRequest, exception: Exception
    ) -> Optional[JsonResponse]:
        """Convert :class:`Ratelimited` into the API's error envelope."""
        if not isinstance(exception, Ratelimited):
            return None

        logger.warning(
            "Rate limit hit on %s from %s",
            request.path,
            request.META.get('REMOTE_ADDR'),
        )
        return JsonResponse(
            {'error': 'Too many messages. Please wait before sending another one.'},
            status=429,
        )
