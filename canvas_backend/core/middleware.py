"""Raw ASGI middleware: request id and logging context.

Written against the ASGI interface directly because BaseHTTPMiddleware
buffers streaming responses and breaks SSE disconnect detection.
"""

from __future__ import annotations

from uuid import uuid4

from .logging import request_context


class RequestContextMiddleware:
    """Attach a request id to the logging context and the response headers."""

    def __init__(self, app, header_name: str = "x-request-id"):
        self.app = app
        self.header_name = header_name.lower()

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = None
        for name, value in scope.get("headers", []):
            if name.decode("latin-1").lower() == self.header_name:
                request_id = value.decode("latin-1")
                break
        request_id = request_id or str(uuid4())

        scope.setdefault("state", {})["request_id"] = request_id
        token = request_context.set({"request_id": request_id, "path": scope.get("path")})

        async def send_with_request_id(message):
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                headers.append((self.header_name.encode("latin-1"), request_id.encode("latin-1")))
                message = {**message, "headers": headers}
            await send(message)

        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            request_context.reset(token)
