# FILE: capsule/middleware/rate_limit.py
"""
Rate limiting middleware (simple in-memory, per client, sliding 60s window)

Clients are keyed on the socket peer address. X-Forwarded-For is only
honored when the service runs behind a proxy that overwrites it.
"""
import logging
import time
from collections import deque
from typing import Callable, Deque, Dict
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Simple in-memory rate limiter; CORS preflights and health checks are exempt"""

    exempt_paths = ("/health",)

    def __init__(
        self,
        app,
        rpm: int = 120,
        trust_forwarded_for: bool = False,
        clock: Callable[[], float] = time.monotonic
    ):
        super().__init__(app)
        self.rpm = rpm
        self.trust_forwarded_for = trust_forwarded_for
        self.clock = clock
        self.requests: Dict[str, Deque[float]] = {}
        self._last_sweep = clock()

    def _client_id(self, request: Request) -> str:
        if self.trust_forwarded_for:
            forwarded = request.headers.get("x-forwarded-for")
            if forwarded:
                return forwarded.split(",")[0].strip()
        return request.client.host if request.client else "unknown"

    def _sweep(self, now: float):
        """Drop clients with no request inside the window"""
        stale = [cid for cid, window in self.requests.items() if not window or now - window[-1] >= WINDOW_SECONDS]
        for client_id in stale:
            del self.requests[client_id]
        self._last_sweep = now

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS" or request.url.path.startswith(self.exempt_paths):
            return await call_next(request)

        now = self.clock()
        if now - self._last_sweep >= WINDOW_SECONDS:
            self._sweep(now)

        client_id = self._client_id(request)
        window = self.requests.setdefault(client_id, deque())

        while window and now - window[0] >= WINDOW_SECONDS:
            window.popleft()

        if len(window) >= self.rpm:
            logger.warning(f"Rate limit exceeded for {client_id}")
            retry_after = max(1, int(WINDOW_SECONDS - (now - window[0])))
            return JSONResponse(
                status_code=429,
                content={"error": "rate_limited", "detail": "Rate limit exceeded"},
                headers={"Retry-After": str(retry_after)}
            )

        window.append(now)
        return await call_next(request)
