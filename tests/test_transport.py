"""Stream multiplexer: ordering, backpressure and disconnect."""

import asyncio
import json

import pytest

from canvas_backend.streaming import frames as f
from canvas_backend.streaming.frames import Frame, encode_sse
from canvas_backend.streaming.transport import StreamMultiplexer


async def drain(mux):
    return [frame async for _, frame in mux.frames() if frame is not None]


class TestChannel:
    def test_progress_is_clamped_and_monotonic(self):
        mux = StreamMultiplexer()
        channel = mux.open_channel("a")
        for value in (-5, 30, 20, 150, "nope"):
            channel.progress(value)
        values = []
        while (frame := channel.pop()) is not None:
            values.append(frame.payload["progress"])
        assert values == [0.0, 30.0, 30.0, 100.0, 100.0]

    def test_nothing_after_terminal(self):
        channel = StreamMultiplexer().open_channel("a")
        assert channel.succeed({"data": 1})
        assert not channel.progress(50)
        assert not channel.fail("execution", "late")
        assert channel.pending == 1

    def test_full_buffer_coalesces_tail_progress(self):
        channel = StreamMultiplexer(max_pending=3).open_channel("a")
        for p in range(1, 8):
            channel.progress(p * 10)
        assert channel.pending == 3
        assert channel.coalesced == 4
        assert [channel.pop().payload["progress"] for _ in range(3)] == [10, 20, 70]

    def test_full_buffer_never_drops_terminal_or_info(self):
        channel = StreamMultiplexer(max_pending=2).open_channel("a")
        channel.info(f.ARTIFACT_CREATED, {"data": {"id": "x"}})
        channel.info(f.ARTIFACT_CREATED, {"data": {"id": "y"}})
        assert not channel.progress(10)
        assert channel.dropped == 1
        assert channel.succeed({"data": "ok"})
        assert channel.pending == 3


@pytest.mark.asyncio
async def test_round_robin_keeps_per_channel_order():
    mux = StreamMultiplexer()
    a = mux.open_channel("a")
    b = mux.open_channel("b")
    mux.seal()
    for p in (10, 20):
        a.progress(p)
        b.progress(p)
    a.succeed({"data": "A"})
    b.fail("timeout", "Tool timeout after 1s")

    frames = await drain(mux)

    assert [fr.invocation_id for fr in frames] == ["a", "b", "a", "b", "a", "b"]
    for invocation_id in ("a", "b"):
        own = [fr for fr in frames if fr.invocation_id == invocation_id]
        assert [fr.terminal for fr in own] == [False, False, True]


@pytest.mark.asyncio
async def test_stream_waits_for_late_frames():
    mux = StreamMultiplexer(heartbeat_s=5)
    channel = mux.open_channel("a")
    mux.seal()

    async def producer():
        await asyncio.sleep(0.02)
        channel.progress(50)
        await asyncio.sleep(0.02)
        channel.succeed({"data": "done"})

    task = asyncio.create_task(producer())
    frames = await asyncio.wait_for(drain(mux), 2)
    await task
    assert [fr.type for fr in frames] == [f.PROGRESS, f.TOOL_RESULT]


@pytest.mark.asyncio
async def test_heartbeat_when_idle():
    mux = StreamMultiplexer(heartbeat_s=0.02)
    channel = mux.open_channel("a")
    mux.seal()
    stream = mux.sse()

    assert await asyncio.wait_for(stream.__anext__(), 1) == f.HEARTBEAT

    channel.succeed({"data": 1})
    chunk = await asyncio.wait_for(stream.__anext__(), 1)
    assert chunk.startswith("id: 1\nevent: tool-result\n")
    await stream.aclose()


@pytest.mark.asyncio
async def test_disconnect_cancels_open_channels_only():
    mux = StreamMultiplexer()
    done = mux.open_channel("done")
    running = mux.open_channel("running")
    mux.seal()
    done.succeed({"data": 1})

    stream = mux.sse()
    await stream.__anext__()
    await stream.aclose()

    assert running.cancel_event.is_set()
    assert not done.cancel_event.is_set()


@pytest.mark.asyncio
async def test_sealed_empty_stream_ends():
    mux = StreamMultiplexer()
    mux.seal()
    assert await drain(mux) == []
    with pytest.raises(RuntimeError):
        mux.open_channel("late")


def test_encode_sse():
    frame = Frame(f.ERROR, "inv-1", {"errorKind": "timeout", "errorText": "slow"}, terminal=True)
    text = encode_sse(frame, 7)
    lines = text.split("\n")
    assert lines[0] == "id: 7"
    assert lines[1] == "event: error"
    assert json.loads(lines[2][len("data: "):]) == {
        "type": "error",
        "invocationId": "inv-1",
        "errorKind": "timeout",
        "errorText": "slow",
    }
    assert text.endswith("\n\n")
