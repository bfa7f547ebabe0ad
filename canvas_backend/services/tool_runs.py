"""ToolRunService: gate, start and track tool calls for one conversation turn."""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.exceptions import AuthorizationError, NotFoundError
from ..core.logging import get_logger
from ..db.models import User
from ..repositories.customization_repo import SQLAlchemyCustomizationRepository
from ..streaming.transport import InvocationChannel, StreamMultiplexer
from ..tools.base import ToolContext, ToolDescriptor, ToolResult
from ..tools.executor import InvocationStatus, ToolExecutor, ToolInvocation
from ..tools.invocations import InvocationTracker
from ..tools.registry import Customization, EffectiveCatalog, ToolRegistry
from .agent_permissions import AgentPermissionService
from .artifact_store import ArtifactStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class ToolCall:
    tool: str
    arguments: dict[str, Any]
    persist_to: str | None = None
    timeout_s: float | None = None


@dataclass
class PreparedCall:
    call: ToolCall
    descriptor: ToolDescriptor
    invocation: ToolInvocation


def version_summary(version: dict[str, Any]) -> dict[str, Any]:
    return {"id": version["id"], "documentId": version["documentId"], "version": version["version"]}


class ToolRunService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: ToolRegistry,
        executor: ToolExecutor,
        tracker: InvocationTracker,
        store: ArtifactStore,
        permissions: AgentPermissionService,
    ):
        self._sf = session_factory
        self._registry = registry
        self._executor = executor
        self._tracker = tracker
        self._store = store
        self._permissions = permissions

    async def customizations(self, user_id: str) -> list[Customization]:
        async with self._sf() as session:
            rows = await SQLAlchemyCustomizationRepository(session).list_for_user(user_id)
            return [Customization(r.provider_id, r.prompt, dict(r.tool_prompts or {})) for r in rows]

    async def effective_catalog(self, user_id: str, allow_list: Any) -> EffectiveCatalog:
        return await self._registry.effective_catalog(allow_list, await self.customizations(user_id))

    async def prepare(
        self,
        user: User,
        calls: Sequence[ToolCall],
        allow_list: Any,
        agent_id: str | None = None,
    ) -> list[PreparedCall]:
        """Run every check that can reject the request before a stream opens."""
        if agent_id is not None:
            decision = await self._permissions.check_access(agent_id, user.id)
            if not decision.allowed:
                raise AuthorizationError("Agent not available to this user")

        catalog = await self.effective_catalog(user.id, allow_list)
        prepared: list[PreparedCall] = []
        for call in calls:
            descriptor = await self._registry.get(call.tool)
            if descriptor.qualified_name not in catalog.tools:
                raise AuthorizationError(f"Tool not enabled for this conversation: {call.tool}")
            descriptor.validate(call.arguments)
            if call.persist_to is not None:
                await self._store.get_document(call.persist_to, user.id)
            invocation = self._executor.new_invocation(
                descriptor.qualified_name,
                user.id,
                timeout_s=call.timeout_s or descriptor.timeout_s,
                agent_id=agent_id,
            )
            prepared.append(PreparedCall(call, descriptor, invocation))
        return prepared

    def start(self, prepared: Sequence[PreparedCall], mux: StreamMultiplexer) -> None:
        """Open one channel per call on ``mux`` and start every invocation."""
        for item in prepared:
            channel = mux.open_channel(item.invocation.id)
            self._tracker.spawn(item.invocation, self._run(item, channel))
        mux.seal()

    async def _run(self, item: PreparedCall, channel: InvocationChannel) -> InvocationStatus:
        invocation = item.invocation
        ctx = ToolContext(invocation.id, invocation.requester_id, invocation.agent_id)
        try:
            events = self._registry.open(item.descriptor, item.call.arguments, ctx)
        except NotFoundError as e:
            invocation.start()
            invocation.finish(InvocationStatus.FAILED, "execution", e.message)
            channel.fail("execution", e.message)
            return invocation.status

        on_success = None
        if item.call.persist_to is not None:
            document_id = item.call.persist_to

            async def on_success(result: ToolResult) -> dict[str, Any]:
                # Only results that ask for persistence become versions.
                if not result.persist:
                    logger.info(
                        "Tool result not persisted",
                        data={"invocation_id": invocation.id, "tool": invocation.tool_name, "document_id": document_id},
                    )
                    return {"persisted": False}
                content = result.content if result.content is not None else json.dumps(result.payload)
                version = await self._store.create_version(
                    document_id, content, result.metadata, owner_id=invocation.requester_id
                )
                return {"persisted": True, "version": version_summary(version)}

        return await self._executor.execute(
            invocation,
            events,
            channel,
            ctx,
            channel.cancel_event,
            on_success=on_success,
        )

    def get_invocation(self, invocation_id: str, requester_id: str) -> ToolInvocation:
        invocation = self._tracker.get(invocation_id)
        if invocation is None or invocation.requester_id != requester_id:
            raise NotFoundError("Invocation not found")
        return invocation
