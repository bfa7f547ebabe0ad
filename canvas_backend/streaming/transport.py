"""Per-connection multiplexing of invocation frame streams.

Every invocation gets an :class:`InvocationChannel`: zero or more progress
and informational frames, then exactly one terminal frame. The
:class:`StreamMultiplexer` interleaves the channels of one connection
round-robin while keeping each channel in order.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import AsyncIterator
from typing import Any

from ..core.logging import get_logger
from . import frames as f
from .frames import Frame

logger = get_logger(__name__)


class InvocationChannel:
    """Ordered frame buffer for a single invocation.

    At most ``max_pending`` frames wait for the consumer. When the buffer
    is full a new progress frame replaces a progress frame at the tail, or
    is dropped; informational and terminal frames are always kept.
    """

    def __init__(self, invocation_id: str, max_pending: int, notify):
        self.invocation_id = invocation_id
        self.cancel_event = asyncio.Event()
        self._max_pending = max_pending
        self._notify = notify
        self._pending: deque[Frame] = deque()
        self._last_progress = 0.0
        self._terminated = False
        self.coalesced = 0
        self.dropped = 0

    @property
    def terminated(self) -> bool:
        """The terminal frame has been queued."""
        return self._terminated

    @property
    def drained(self) -> bool:
        return self._terminated and not self._pending

    @property
    def pending(self) -> int:
        return len(self._pending)

    def _push(self, frame: Frame) -> bool:
        if self._terminated:
            logger.debug(
                "Frame after terminal refused",
                data={"invocation_id": self.invocation_id, "type": frame.type},
            )
            return False

        if frame.droppable and len(self._pending) >= self._max_pending:
            if self._pending and self._pending[-1].droppable:
                self._pending[-1] = frame
                self.coalesced += 1
                self._notify()
                return True
            self.dropped += 1
            return False

        self._pending.append(frame)
        if frame.terminal:
            self._terminated = True
        self._notify()
        return True

    def progress(self, percent: float, message: str | None = None, data: dict[str, Any] | None = None) -> bool:
        """Queue a progress frame; the percentage is clamped and never decreases."""
        try:
            value = float(percent)
        except (TypeError, ValueError):
            value = self._last_progress
        value = max(self._last_progress, min(100.0, max(0.0, value)))
        self._last_progress = value
        payload: dict[str, Any] = {"progress": value}
        if message is not None:
            payload["message"] = message
        if data:
            payload["data"] = data
        return self._push(Frame(f.PROGRESS, self.invocation_id, payload))

    def info(self, frame_type: str, payload: dict[str, Any]) -> bool:
        return self._push(Frame(frame_type, self.invocation_id, dict(payload)))

    def succeed(self, payload: dict[str, Any], frame_type: str = f.TOOL_RESULT) -> bool:
        return self._push(Frame(frame_type, self.invocation_id, dict(payload), terminal=True))

    def fail(self, error_kind: str, error_text: str) -> bool:
        return self._push(
            Frame(
                f.ERROR,
                self.invocation_id,
                {"errorKind": error_kind, "errorText": error_text},
                terminal=True,
            )
        )

    def pop(self) -> Frame | None:
        return self._pending.popleft() if self._pending else None


class StreamMultiplexer:
    """All invocation channels carried by one outbound connection."""

    def __init__(self, max_pending: int = 32, heartbeat_s: float = 15.0):
        self.max_pending = max_pending
        self.heartbeat_s = heartbeat_s
        self._channels: dict[str, InvocationChannel] = {}
        self._order: deque[str] = deque()
        self._wakeup = asyncio.Event()
        self._sealed = False
        self._seq = 0

    def open_channel(self, invocation_id: str) -> InvocationChannel:
        if self._sealed:
            raise RuntimeError("multiplexer is sealed")
        if invocation_id in self._channels:
            raise ValueError(f"channel already open: {invocation_id}")
        channel = InvocationChannel(invocation_id, self.max_pending, self._wakeup.set)
        self._channels[invocation_id] = channel
        self._order.append(invocation_id)
        return channel

    def channel(self, invocation_id: str) -> InvocationChannel | None:
        return self._channels.get(invocation_id)

    def seal(self) -> None:
        """No more channels will be opened; the stream ends once all are drained."""
        self._sealed = True
        self._wakeup.set()

    def disconnect(self) -> None:
        """Signal cancellation to every channel that has not terminated."""
        for channel in self._channels.values():
            if not channel.terminated:
                channel.cancel_event.set()

    def _next_frame(self) -> Frame | None:
        for _ in range(len(self._order)):
            invocation_id = self._order[0]
            self._order.rotate(-1)
            frame = self._channels[invocation_id].pop()
            if frame is not None:
                return frame
        return None

    def _finished(self) -> bool:
        return self._sealed and all(c.drained for c in self._channels.values())

    async def frames(self) -> AsyncIterator[tuple[int, Frame | None]]:
        """Yield ``(seq, frame)`` pairs; ``frame`` is None for an idle heartbeat."""
        while True:
            frame = self._next_frame()
            if frame is not None:
                self._seq += 1
                yield self._seq, frame
                continue
            if self._finished():
                return
            self._wakeup.clear()
            if any(c.pending for c in self._channels.values()) or self._finished():
                continue
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.heartbeat_s)
            except asyncio.TimeoutError:
                yield self._seq, None

    async def sse(self) -> AsyncIterator[str]:
        """SSE text for :meth:`frames`; disconnect cancels open invocations."""
        try:
            async for seq, frame in self.frames():
                if frame is None:
                    yield f.HEARTBEAT
                else:
                    yield f.encode_sse(frame, seq)
        finally:
            self.disconnect()
