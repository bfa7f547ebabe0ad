"""SSE response wrapper for a stream multiplexer."""

from __future__ import annotations

from starlette.background import BackgroundTask
from starlette.responses import StreamingResponse

from ..streaming.transport import StreamMultiplexer

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def sse_response(mux: StreamMultiplexer) -> StreamingResponse:
    """Stream ``mux`` as text/event-stream.

    A client disconnect cancels the body iterator; the background task
    then cancels every invocation still open on the connection.
    """

    async def _on_close() -> None:
        mux.disconnect()

    return StreamingResponse(
        mux.sse(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
        background=BackgroundTask(_on_close),
    )
