"""ToolExecutor: terminal outcomes, deadlines, cancellation and persistence hooks."""

import asyncio

import pytest

from canvas_backend.core.exceptions import InvalidTransition
from canvas_backend.streaming import frames as f
from canvas_backend.streaming.transport import StreamMultiplexer
from canvas_backend.tools.base import ProgressEvent, ToolContext, ToolResult, ToolValidationError
from canvas_backend.tools.executor import InvocationStatus, ToolExecutor, ToolInvocation


def open_invocation(executor, timeout_s=1.0):
    invocation = executor.new_invocation("test.tool", "user-1", timeout_s=timeout_s)
    mux = StreamMultiplexer(max_pending=64, heartbeat_s=5)
    channel = mux.open_channel(invocation.id)
    mux.seal()
    ctx = ToolContext(invocation.id, "user-1")
    return invocation, mux, channel, ctx


async def collect(mux):
    return [frame async for _, frame in mux.frames() if frame is not None]


async def run(executor, gen_fn, timeout_s=1.0, **kwargs):
    invocation, mux, channel, ctx = open_invocation(executor, timeout_s)
    status = await executor.execute(invocation, gen_fn(ctx), channel, ctx, channel.cancel_event, **kwargs)
    return status, invocation, await collect(mux), ctx


class TestInvocationStateMachine:
    def test_start_then_finish(self):
        invocation = ToolInvocation("t", "u", 1.0)
        invocation.start()
        invocation.finish(InvocationStatus.SUCCEEDED)
        assert invocation.status is InvocationStatus.SUCCEEDED
        assert invocation.finished_at is not None

    def test_terminal_is_final(self):
        invocation = ToolInvocation("t", "u", 1.0)
        invocation.start()
        invocation.finish(InvocationStatus.TIMED_OUT, "timeout", "late")
        with pytest.raises(InvalidTransition):
            invocation.finish(InvocationStatus.SUCCEEDED)

    def test_cannot_finish_with_running(self):
        invocation = ToolInvocation("t", "u", 1.0)
        invocation.start()
        with pytest.raises(InvalidTransition):
            invocation.finish(InvocationStatus.RUNNING)

    def test_cannot_start_twice(self):
        invocation = ToolInvocation("t", "u", 1.0)
        invocation.start()
        with pytest.raises(InvalidTransition):
            invocation.start()


@pytest.mark.asyncio
async def test_progress_then_result_with_persist():
    written = []

    async def tool(ctx):
        for p in (10, 40, 100):
            yield ProgressEvent(p)
        yield ToolResult({"rows": 2}, persist=True, content="body")

    async def on_success(result):
        written.append(result.content)
        return {"version": {"id": "v", "documentId": "d", "version": 1}}

    status, invocation, frames, _ = await run(ToolExecutor(), tool, on_success=on_success)

    assert status is InvocationStatus.SUCCEEDED
    assert [fr.payload["progress"] for fr in frames[:-1]] == [10, 40, 100]
    assert frames[-1].type == f.TOOL_RESULT
    assert frames[-1].payload["data"] == {"rows": 2}
    assert frames[-1].payload["shouldCreateArtifact"] is True
    assert written == ["body"]
    assert invocation.version["version"] == 1


@pytest.mark.asyncio
async def test_deadline_produces_timeout_and_skips_hook():
    written = []

    async def tool(ctx):
        yield ProgressEvent(10)
        await asyncio.sleep(10)
        yield ToolResult("late")

    async def on_success(result):
        written.append(result)

    status, invocation, frames, ctx = await run(ToolExecutor(), tool, timeout_s=0.1, on_success=on_success)

    assert status is InvocationStatus.TIMED_OUT
    assert [fr.type for fr in frames] == [f.PROGRESS, f.ERROR]
    assert frames[-1].payload == {"errorKind": "timeout", "errorText": "Tool timeout after 0.1s"}
    assert written == []
    assert ctx.cancelled.is_set()


@pytest.mark.asyncio
async def test_cancellation_stops_tool_and_skips_hook():
    written = []
    closed = asyncio.Event()

    async def tool(ctx):
        try:
            yield ProgressEvent(10)
            await asyncio.sleep(10)
            yield ToolResult("never")
        finally:
            closed.set()

    async def on_success(result):
        written.append(result)

    invocation, mux, channel, ctx = open_invocation(ToolExecutor(), timeout_s=5)
    task = asyncio.create_task(
        ToolExecutor().execute(invocation, tool(ctx), channel, ctx, channel.cancel_event, on_success=on_success)
    )
    await asyncio.sleep(0.05)
    mux.disconnect()
    status = await asyncio.wait_for(task, 2)

    frames = await collect(mux)
    assert status is InvocationStatus.CANCELLED
    assert frames[-1].payload["errorKind"] == "cancelled"
    assert closed.is_set()
    assert written == []


@pytest.mark.asyncio
async def test_error_after_progress():
    async def tool(ctx):
        yield ProgressEvent(30)
        raise ToolValidationError("bad rows")

    status, invocation, frames, _ = await run(ToolExecutor(), tool)

    assert status is InvocationStatus.FAILED
    assert [fr.type for fr in frames] == [f.PROGRESS, f.ERROR]
    assert frames[-1].payload == {"errorKind": "validation", "errorText": "bad rows"}


@pytest.mark.asyncio
async def test_generic_exception_is_execution_error():
    async def tool(ctx):
        raise RuntimeError("boom")
        yield

    status, invocation, frames, _ = await run(ToolExecutor(), tool)
    assert status is InvocationStatus.FAILED
    assert invocation.error_kind == "execution"
    assert frames[-1].payload["errorText"] == "boom"


@pytest.mark.asyncio
async def test_tool_without_result_fails():
    async def tool(ctx):
        yield ProgressEvent(50)

    status, invocation, frames, _ = await run(ToolExecutor(), tool)
    assert status is InvocationStatus.FAILED
    assert frames[-1].payload["errorText"] == "Tool finished without a result"


@pytest.mark.asyncio
async def test_hook_failure_turns_success_into_error():
    async def tool(ctx):
        yield ToolResult("ok", persist=True, content="x")

    async def on_success(result):
        raise RuntimeError("write failed")

    status, invocation, frames, _ = await run(ToolExecutor(), tool, on_success=on_success)

    assert status is InvocationStatus.FAILED
    assert len(frames) == 1
    assert frames[0].type == f.ERROR
    assert frames[0].payload["errorText"] == "write failed"


@pytest.mark.asyncio
async def test_failure_hook_runs_before_error_frame():
    seen = []

    async def tool(ctx):
        raise RuntimeError("nope")
        yield

    async def on_failure(status):
        seen.append(status)

    status, invocation, frames, _ = await run(ToolExecutor(), tool, on_failure=on_failure)
    assert seen == [InvocationStatus.FAILED]
    assert frames[-1].type == f.ERROR


@pytest.mark.asyncio
async def test_custom_success_frame_type():
    async def tool(ctx):
        yield ToolResult({"id": "doc"})

    status, _, frames, _ = await run(ToolExecutor(), tool, success_type=f.ARTIFACT_UPDATE_COMPLETE)
    assert status is InvocationStatus.SUCCEEDED
    assert frames[-1].type == f.ARTIFACT_UPDATE_COMPLETE


@pytest.mark.asyncio
@pytest.mark.parametrize("finish_at", [0.04, 0.05, 0.06])
async def test_completion_racing_deadline_has_one_terminal(finish_at):
    async def tool(ctx):
        await asyncio.sleep(finish_at)
        yield ToolResult("done")

    status, invocation, frames, _ = await run(ToolExecutor(), tool, timeout_s=0.05)

    terminal = [fr for fr in frames if fr.terminal]
    assert len(terminal) == 1
    assert status in (InvocationStatus.SUCCEEDED, InvocationStatus.TIMED_OUT)
    assert invocation.status is status
    expected = f.TOOL_RESULT if status is InvocationStatus.SUCCEEDED else f.ERROR
    assert terminal[0].type == expected


@pytest.mark.asyncio
async def test_per_event_deadline_resets_on_progress():
    async def tool(ctx):
        for p in (20, 40, 60, 80):
            await asyncio.sleep(0.05)
            yield ProgressEvent(p)
        yield ToolResult("slow but steady")

    executor = ToolExecutor(per_event_timeout=True)
    status, _, frames, _ = await run(executor, tool, timeout_s=0.12)
    assert status is InvocationStatus.SUCCEEDED

    status, _, _, _ = await run(ToolExecutor(), tool, timeout_s=0.12)
    assert status is InvocationStatus.TIMED_OUT


@pytest.mark.asyncio
async def test_outer_cancellation_records_cancelled():
    async def tool(ctx):
        await asyncio.sleep(10)
        yield ToolResult("never")

    invocation, mux, channel, ctx = open_invocation(ToolExecutor(), timeout_s=5)
    task = asyncio.create_task(ToolExecutor().execute(invocation, tool(ctx), channel, ctx, channel.cancel_event))
    await asyncio.sleep(0.02)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert invocation.status is InvocationStatus.CANCELLED
    frames = await collect(mux)
    assert frames[-1].payload["errorKind"] == "cancelled"
