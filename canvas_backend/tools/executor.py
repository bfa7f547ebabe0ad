"""Bounded tool execution.

Each invocation moves ``pending -> running -> terminal`` exactly once. The
executor races the tool's next event against the invocation deadline and
the cancellation signal; whichever settles first decides the outcome.
"""

from __future__ import annotations

import asyncio
import enum
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..core.exceptions import CanvasError, InvalidTransition, ValidationError
from ..core.logging import get_logger
from ..db.types import GUID, utcnow
from .base import ProgressEvent, ToolContext, ToolEvent, ToolResult

logger = get_logger(__name__)


class InvocationStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timedOut"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (InvocationStatus.PENDING, InvocationStatus.RUNNING)


@dataclass
class ToolInvocation:
    tool_name: str
    requester_id: str | None
    timeout_s: float
    agent_id: str | None = None
    id: str = field(default_factory=GUID.new)
    status: InvocationStatus = InvocationStatus.PENDING
    error_kind: str | None = None
    error_text: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    version: dict[str, Any] | None = None

    def start(self) -> None:
        if self.status is not InvocationStatus.PENDING:
            raise InvalidTransition(f"invocation {self.id} cannot start from {self.status.value}")
        self.status = InvocationStatus.RUNNING
        self.started_at = utcnow()

    def finish(
        self,
        status: InvocationStatus,
        error_kind: str | None = None,
        error_text: str | None = None,
    ) -> None:
        if not status.is_terminal:
            raise InvalidTransition(f"{status.value} is not a terminal status")
        if self.status.is_terminal:
            raise InvalidTransition(f"invocation {self.id} already {self.status.value}")
        self.status = status
        self.error_kind = error_kind
        self.error_text = error_text
        self.finished_at = utcnow()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tool": self.tool_name,
            "agentId": self.agent_id,
            "status": self.status.value,
            "timeoutSeconds": self.timeout_s,
            "errorKind": self.error_kind,
            "errorText": self.error_text,
            "version": self.version,
            "createdAt": self.created_at.isoformat(),
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
        }


SuccessHook = Callable[[ToolResult], Awaitable[Mapping[str, Any] | None]]
FailureHook = Callable[[InvocationStatus], Awaitable[None]]


@dataclass
class _Outcome:
    status: InvocationStatus
    error_kind: str | None = None
    error_text: str | None = None
    result: ToolResult | None = None


def _error_kind(exc: BaseException) -> str:
    if isinstance(exc, ValidationError):
        return "validation"
    if isinstance(exc, CanvasError):
        return exc.error_kind
    return "execution"


def _settle(task: asyncio.Future | None) -> None:
    """Mark a finished task's exception as retrieved."""
    if task is not None and task.done() and not task.cancelled():
        task.exception()


class ToolExecutor:
    def __init__(
        self,
        default_timeout_s: float = 30.0,
        per_event_timeout: bool = False,
        cleanup_grace_s: float = 2.0,
    ):
        self.default_timeout_s = default_timeout_s
        self.per_event_timeout = per_event_timeout
        self.cleanup_grace_s = cleanup_grace_s

    def new_invocation(
        self,
        tool_name: str,
        requester_id: str | None,
        timeout_s: float | None = None,
        agent_id: str | None = None,
    ) -> ToolInvocation:
        return ToolInvocation(
            tool_name=tool_name,
            requester_id=requester_id,
            timeout_s=timeout_s or self.default_timeout_s,
            agent_id=agent_id,
        )

    async def execute(
        self,
        invocation: ToolInvocation,
        events: AsyncIterator[ToolEvent],
        channel,
        ctx: ToolContext,
        cancel: asyncio.Event,
        *,
        on_success: SuccessHook | None = None,
        on_failure: FailureHook | None = None,
        success_type: str = "tool-result",
    ) -> InvocationStatus:
        """Drive ``events`` to exactly one terminal outcome.

        ``channel`` receives progress frames and the single terminal frame.
        ``on_success`` runs before the success frame is emitted and may
        return fields merged into it; if it raises, the invocation fails.
        ``on_failure`` runs after cleanup and before the error frame.
        """
        loop = asyncio.get_running_loop()
        invocation.start()
        logger.info(
            "Tool invocation started",
            data={"invocation_id": invocation.id, "tool": invocation.tool_name, "timeout_s": invocation.timeout_s},
        )

        deadline = loop.time() + invocation.timeout_s
        cancel_wait = asyncio.ensure_future(cancel.wait())
        pending_next: asyncio.Future | None = None
        outcome: _Outcome | None = None

        try:
            while outcome is None:
                if cancel.is_set():
                    outcome = _Outcome(InvocationStatus.CANCELLED, "cancelled", "Invocation cancelled")
                    break
                remaining = deadline - loop.time()
                if remaining <= 0:
                    outcome = self._timed_out(invocation)
                    break

                pending_next = asyncio.ensure_future(events.__anext__())
                done, _ = await asyncio.wait(
                    {pending_next, cancel_wait},
                    timeout=remaining,
                    return_when=asyncio.FIRST_COMPLETED,
                )

                if pending_next in done:
                    # A settled event wins even if the deadline or cancel landed in the same tick.
                    task, pending_next = pending_next, None
                    outcome = self._handle_event(task, channel, invocation)
                    if outcome is None and self.per_event_timeout:
                        deadline = loop.time() + invocation.timeout_s
                elif cancel_wait in done:
                    outcome = _Outcome(InvocationStatus.CANCELLED, "cancelled", "Invocation cancelled")
                else:
                    outcome = self._timed_out(invocation)

            if outcome.status is InvocationStatus.SUCCEEDED:
                await self._close(events, None, ctx, invocation, signal=False)
                await self._succeed(invocation, outcome.result, channel, on_success, success_type)
            else:
                await self._close(events, pending_next, ctx, invocation, signal=True)
                await self._fail(invocation, outcome, channel, on_failure)
        except asyncio.CancelledError:
            # The executor task itself was cancelled (shutdown drain or a cancel scope).
            await self._close(events, pending_next, ctx, invocation, signal=True)
            if not invocation.status.is_terminal:
                await self._fail(
                    invocation,
                    _Outcome(InvocationStatus.CANCELLED, "cancelled", "Invocation cancelled"),
                    channel,
                    on_failure,
                )
            raise
        finally:
            cancel_wait.cancel()

        return invocation.status

    def _timed_out(self, invocation: ToolInvocation) -> _Outcome:
        seconds = f"{invocation.timeout_s:g}"
        return _Outcome(InvocationStatus.TIMED_OUT, "timeout", f"Tool timeout after {seconds}s")

    def _handle_event(self, task: asyncio.Future, channel, invocation: ToolInvocation) -> _Outcome | None:
        """Turn one settled ``__anext__`` into either a progress frame or an outcome."""
        try:
            event = task.result()
        except StopAsyncIteration:
            return _Outcome(InvocationStatus.FAILED, "execution", "Tool finished without a result")
        except asyncio.CancelledError:
            return _Outcome(InvocationStatus.CANCELLED, "cancelled", "Invocation cancelled")
        except Exception as e:
            logger.warning(
                "Tool raised",
                data={"invocation_id": invocation.id, "tool": invocation.tool_name, "error": str(e)},
            )
            return _Outcome(InvocationStatus.FAILED, _error_kind(e), str(e) or type(e).__name__)

        if isinstance(event, ProgressEvent):
            channel.progress(event.progress, event.message, event.data)
            return None
        if isinstance(event, ToolResult):
            return _Outcome(InvocationStatus.SUCCEEDED, result=event)
        return _Outcome(
            InvocationStatus.FAILED,
            "execution",
            f"Tool yielded unsupported event {type(event).__name__}",
        )

    async def _succeed(
        self,
        invocation: ToolInvocation,
        result: ToolResult,
        channel,
        on_success: SuccessHook | None,
        success_type: str,
    ) -> None:
        extra: Mapping[str, Any] | None = None
        cancelled = False
        if on_success is not None:
            hook = asyncio.ensure_future(on_success(result))
            try:
                # The tool already produced its result; the write is allowed to finish.
                extra = await asyncio.shield(hook)
            except asyncio.CancelledError:
                cancelled = True
                try:
                    extra = await hook
                except Exception as e:
                    await self._fail_after_hook(invocation, channel, e)
                    raise asyncio.CancelledError from e
            except Exception as e:
                await self._fail_after_hook(invocation, channel, e)
                return

        invocation.finish(InvocationStatus.SUCCEEDED)
        payload: dict[str, Any] = {"data": result.payload, "shouldCreateArtifact": result.persist}
        if extra:
            payload.update(extra)
            if "version" in extra:
                invocation.version = extra["version"]
        channel.succeed(payload, frame_type=success_type)
        logger.info(
            "Tool invocation succeeded",
            data={"invocation_id": invocation.id, "tool": invocation.tool_name},
        )
        if cancelled:
            raise asyncio.CancelledError

    async def _fail_after_hook(self, invocation: ToolInvocation, channel, exc: Exception) -> None:
        logger.error(
            "Persisting tool result failed",
            data={"invocation_id": invocation.id, "tool": invocation.tool_name, "error": str(exc)},
        )
        invocation.finish(InvocationStatus.FAILED, _error_kind(exc), str(exc) or type(exc).__name__)
        channel.fail(invocation.error_kind, invocation.error_text)

    async def _fail(
        self,
        invocation: ToolInvocation,
        outcome: _Outcome,
        channel,
        on_failure: FailureHook | None,
    ) -> None:
        cancelled = False
        if on_failure is not None:
            hook = asyncio.ensure_future(on_failure(outcome.status))
            try:
                await asyncio.shield(hook)
            except asyncio.CancelledError:
                cancelled = True
            except Exception:
                logger.error(
                    "Failure hook raised",
                    data={"invocation_id": invocation.id, "tool": invocation.tool_name},
                    exc_info=True,
                )
        invocation.finish(outcome.status, outcome.error_kind, outcome.error_text)
        channel.fail(outcome.error_kind, outcome.error_text)
        log = logger.info if outcome.status is InvocationStatus.CANCELLED else logger.warning
        log(
            "Tool invocation ended without result",
            data={
                "invocation_id": invocation.id,
                "tool": invocation.tool_name,
                "status": outcome.status.value,
                "error": outcome.error_text,
            },
        )
        if cancelled:
            raise asyncio.CancelledError

    async def _close(
        self,
        events: AsyncIterator[ToolEvent],
        pending_next: asyncio.Future | None,
        ctx: ToolContext,
        invocation: ToolInvocation,
        signal: bool,
    ) -> None:
        """Stop the tool: cancel the in-flight step, then close the generator."""
        if signal:
            ctx.cancelled.set()

        if pending_next is not None and not pending_next.done():
            pending_next.cancel()
            await asyncio.wait({pending_next}, timeout=self.cleanup_grace_s)
            if not pending_next.done():
                logger.warning(
                    "Tool ignored cancellation",
                    data={"invocation_id": invocation.id, "tool": invocation.tool_name},
                )
                return
        _settle(pending_next)

        aclose = getattr(events, "aclose", None)
        if aclose is None:
            return
        try:
            await asyncio.wait_for(aclose(), timeout=self.cleanup_grace_s)
        except asyncio.TimeoutError:
            logger.warning(
                "Tool did not close in time",
                data={"invocation_id": invocation.id, "tool": invocation.tool_name},
            )
        except Exception as e:
            logger.warning(
                "Tool raised while closing",
                data={"invocation_id": invocation.id, "tool": invocation.tool_name, "error": str(e)},
            )
