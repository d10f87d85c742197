# FILE: capsule/middleware/body_limit.py
"""
Body size limit middleware

Memory payloads only carry text and image URLs (image bytes go straight to
blob storage), so the limit is small. A declared Content-Length over the
limit is rejected up front; chunked bodies are counted as they are received.
"""
import logging
from starlette.datastructures import Headers
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from capsule.services.correlation import get_correlation_id

logger = logging.getLogger(__name__)

LIMITED_METHODS = ("POST", "PUT", "PATCH")


class BodyTooLarge(Exception):
    """Raised from receive() once the streamed body passes the limit"""


class BodySizeLimitMiddleware:
    """Reject POST/PUT/PATCH requests whose body exceeds max_size bytes"""

    def __init__(self, app: ASGIApp, max_size: int):
        self.app = app
        self.max_size = max_size

    def _too_large(self, path: str, size: int) -> JSONResponse:
        logger.warning(f"Request body too large on {path}: {size} > {self.max_size}")
        return JSONResponse(
            status_code=413,
            content={
                "error": "payload_too_large",
                "detail": f"Request body exceeds {self.max_size} bytes",
                "correlation_id": get_correlation_id()
            }
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope["type"] != "http" or scope["method"] not in LIMITED_METHODS:
            await self.app(scope, receive, send)
            return

        content_length = Headers(scope=scope).get("content-length")
        if content_length is not None:
            try:
                declared = int(content_length)
            except ValueError:
                response = JSONResponse(
                    status_code=400,
                    content={"error": "validation_error", "detail": "Invalid Content-Length header"}
                )
                await response(scope, receive, send)
                return
            if declared > self.max_size:
                await self._too_large(scope["path"], declared)(scope, receive, send)
                return

        received = 0
        exceeded = False
        response_started = False

        async def limited_receive() -> Message:
            nonlocal received, exceeded
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_size:
                    exceeded = True
                    raise BodyTooLarge()
            return message

        async def guarded_send(message: Message):
            nonlocal response_started
            # Whatever the app makes of the aborted read is replaced by the 413
            if exceeded:
                return
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, limited_receive, guarded_send)
        except BodyTooLarge:
            logger.debug("Body read aborted by size limit")

        if exceeded and not response_started:
            await self._too_large(scope["path"], received)(scope, receive, send)
