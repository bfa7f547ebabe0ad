"""Streamed artifact creation and update.

Creation: the document row is written first and announced with
``data-artifact-created``; the kind's create tool then runs and its result
becomes version 1. Any outcome other than success deletes the document
before the error frame goes out.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..core.exceptions import ValidationError
from ..core.logging import get_logger
from ..db.models import ArtifactKind, User
from ..db.types import GUID
from ..streaming import frames as f
from ..streaming.transport import StreamMultiplexer
from ..tools.base import ToolContext, ToolDescriptor, ToolResult
from ..tools.builtin import DocumentHandler
from ..tools.executor import InvocationStatus, ToolExecutor, ToolInvocation
from ..tools.invocations import InvocationTracker
from ..tools.registry import ToolRegistry
from .artifact_store import ArtifactStore
from .tool_runs import version_summary

logger = get_logger(__name__)


@dataclass
class ArtifactRun:
    owner_id: str
    document: dict[str, Any]
    complete_type: str
    descriptor: ToolDescriptor | None = None
    arguments: dict[str, Any] = field(default_factory=dict)
    invocation: ToolInvocation | None = None
    metadata: dict[str, Any] | None = None
    delete_on_failure: bool = False


class ArtifactPipeline:
    def __init__(
        self,
        store: ArtifactStore,
        registry: ToolRegistry,
        executor: ToolExecutor,
        tracker: InvocationTracker,
        handlers: dict[ArtifactKind, DocumentHandler],
    ):
        self._store = store
        self._registry = registry
        self._executor = executor
        self._tracker = tracker
        self._handlers = handlers

    def _handler(self, kind: ArtifactKind) -> DocumentHandler:
        handler = self._handlers.get(kind)
        if handler is None:
            raise ValidationError(f"No document handler found for kind: {kind.value}")
        return handler

    async def prepare_create(
        self,
        user: User,
        title: str,
        kind: ArtifactKind,
        arguments: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ArtifactRun:
        descriptor = await self._registry.get(self._handler(kind).create_tool)
        tool_args = {**(arguments or {}), "title": title}
        descriptor.validate(tool_args)

        document = await self._store.create_artifact(user.id, kind, title)
        return ArtifactRun(
            owner_id=user.id,
            document=document,
            complete_type=f.ARTIFACT_CREATION_COMPLETE,
            descriptor=descriptor,
            arguments=tool_args,
            invocation=self._executor.new_invocation(descriptor.qualified_name, user.id, descriptor.timeout_s),
            metadata=metadata,
            delete_on_failure=True,
        )

    async def prepare_update(
        self,
        user: User,
        document_id: str,
        title: str | None = None,
        content: str | None = None,
        description: str | None = None,
        changes: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ArtifactRun:
        """Apply direct edits now; return a run that regenerates via the update tool if asked.

        Tool arguments are built from the edited title and content and
        validated before anything is written, so a rejected request leaves
        the document untouched.
        """
        document = await self._store.get_document(document_id, user.id)
        kind = ArtifactKind(document["kind"])

        descriptor = None
        tool_args: dict[str, Any] = {}
        if description is not None or changes is not None:
            descriptor = await self._registry.get(self._handler(kind).update_tool)
            current = content if content is not None else document["content"]
            tool_args = {
                "current": current or "",
                "title": title if title is not None else document["title"],
                "changes": changes or {},
            }
            if description is not None:
                tool_args["description"] = description
            descriptor.validate(tool_args)

        if title is not None:
            document = await self._store.update_document(document_id, user.id, title=title)
        if content is not None:
            await self._store.create_version(document_id, content, metadata, owner_id=user.id)
            document = await self._store.get_document(document_id, user.id)

        return ArtifactRun(
            owner_id=user.id,
            document=document,
            complete_type=f.ARTIFACT_UPDATE_COMPLETE,
            descriptor=descriptor,
            arguments=tool_args,
            invocation=(
                self._executor.new_invocation(descriptor.qualified_name, user.id, descriptor.timeout_s)
                if descriptor is not None
                else None
            ),
            metadata=metadata,
        )

    def start(self, run: ArtifactRun, mux: StreamMultiplexer) -> None:
        invocation_id = run.invocation.id if run.invocation else GUID.new()
        channel = mux.open_channel(invocation_id)
        mux.seal()

        if run.complete_type == f.ARTIFACT_CREATION_COMPLETE:
            document = run.document
            channel.info(
                f.ARTIFACT_CREATED,
                {"data": {"id": document["id"], "title": document["title"], "kind": document["kind"]}},
            )

        if run.invocation is None:
            channel.succeed({"data": run.document}, frame_type=run.complete_type)
            return

        self._tracker.spawn(run.invocation, self._run(run, channel))

    async def _run(self, run: ArtifactRun, channel) -> InvocationStatus:
        invocation = run.invocation
        document_id = run.document["id"]
        ctx = ToolContext(invocation.id, run.owner_id)
        events = self._registry.open(run.descriptor, run.arguments, ctx)

        async def on_success(result: ToolResult) -> dict[str, Any]:
            content = result.content if result.content is not None else ""
            metadata = {**(result.metadata or {}), **(run.metadata or {})} or None
            version = await self._store.create_version(document_id, content, metadata, owner_id=run.owner_id)
            document = await self._store.get_document(document_id, run.owner_id)
            return {"data": document, "version": version_summary(version)}

        on_failure = None
        if run.delete_on_failure:

            async def on_failure(status: InvocationStatus) -> None:
                await self._store.delete_document(document_id, run.owner_id)
                logger.info(
                    "Discarded artifact after failed creation",
                    data={"document_id": document_id, "status": status.value},
                )

        return await self._executor.execute(
            invocation,
            events,
            channel,
            ctx,
            channel.cancel_event,
            on_success=on_success,
            on_failure=on_failure,
            success_type=run.complete_type,
        )
