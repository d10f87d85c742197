# FILE: capsule/middleware/correlation.py
"""
Correlation ID middleware
"""
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from capsule.services.correlation import set_correlation_id

HEADER_NAME = "X-Correlation-ID"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Bind the caller's correlation ID (or a fresh one) and echo it on the response"""

    async def dispatch(self, request: Request, call_next):
        correlation_id = set_correlation_id(request.headers.get(HEADER_NAME))
        response = await call_next(request)
        response.headers[HEADER_NAME] = correlation_id
        return response
