"""
ASGI middleware for request metrics and correlation ID tracking.
"""

import logging
import time

from .context import RequestContext, generate_request_id
from .metrics import active_requests, api_errors, api_latency, api_requests

logger = logging.getLogger(__name__)


class RequestMetricsMiddleware:
    """
    Tracks request count, server errors, latency and in-flight requests.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        api_requests.inc()
        active_requests.inc()
        start_time = time.perf_counter()

        async def send_with_timing(message):
            if message["type"] == "http.response.start":
                api_latency.observe(time.perf_counter() - start_time)
                if message.get("status", 200) >= 500:
                    api_errors.inc()
            await send(message)

        try:
            await self.app(scope, receive, send_with_timing)
        finally:
            active_requests.dec()


class CorrelationIdMiddleware:
    """
    Adds a request ID to every log line emitted while serving a request.

    Usage in server.py:
        from household.observability.middleware import CorrelationIdMiddleware
        app.add_middleware(CorrelationIdMiddleware)

    The ID is taken from X-Request-ID when the caller supplies one and is
    echoed back on the response.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = None
        for key, value in scope.get("headers", []):
            if key.lower() == b"x-request-id":
                try:
                    request_id = value.decode("utf-8")
                except UnicodeDecodeError as e:
                    logger.warning(f"Could not decode X-Request-ID header: {e}")
                break

        if not request_id:
            request_id = generate_request_id()

        async def send_with_request_id(message):
            if message["type"] == "http.response.start":
                headers_list = list(message.get("headers", []))
                headers_list.append((b"x-request-id", request_id.encode("utf-8")))
                message["headers"] = headers_list
            await send(message)

        with RequestContext(request_id=request_id):
            await self.app(scope, receive, send_with_request_id)
