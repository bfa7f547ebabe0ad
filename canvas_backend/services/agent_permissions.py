"""Agent sharing: visibility changes and per-user permission rows."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.exceptions import AuthorizationError, NotFoundError, ValidationError
from ..core.logging import get_logger
from ..db.models import Agent, AgentUserPermission, User
from ..permissions import AccessDecision, AgentRef, Visibility, parse_visibility, resolve_agent_access
from ..repositories.agent_repo import SQLAlchemyAgentRepository

logger = get_logger(__name__)


def _permission_to_dict(row: AgentUserPermission) -> dict[str, Any]:
    return {
        "userId": row.user_id,
        "grantedBy": row.granted_by,
        "grantedAt": row.granted_at.isoformat(),
        "permissionLevel": row.permission_level.value,
    }


def agent_ref(agent: Agent) -> AgentRef:
    return AgentRef(id=agent.id, owner_id=agent.user_id, visibility=agent.visibility)


class AgentPermissionService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], readonly_shared: bool = False):
        self._sf = session_factory
        self._readonly_shared = readonly_shared

    async def _require_agent(self, repo: SQLAlchemyAgentRepository, agent_id: str) -> Agent:
        agent = await repo.get_by_id(agent_id)
        if agent is None:
            raise NotFoundError("Agent not found")
        return agent

    @staticmethod
    def _require_manager(agent: Agent, actor: User) -> None:
        if not (actor.is_admin or agent.user_id == actor.id):
            raise AuthorizationError("Only the agent owner or an admin can manage its permissions")

    async def check_access(self, agent_id: str, user_id: str | None) -> AccessDecision:
        async with self._sf() as session:
            repo = SQLAlchemyAgentRepository(session)
            agent = await self._require_agent(repo, agent_id)
            permitted: list[str] = []
            if agent.visibility == Visibility.ADMIN_SELECTIVE and user_id:
                permitted = [user_id] if await repo.has_permission(agent_id, user_id) else []
            return resolve_agent_access(
                user_id,
                agent_ref(agent),
                permitted,
                readonly_shared=self._readonly_shared,
            )

    async def get_permissions(self, agent_id: str, actor: User) -> dict[str, Any]:
        async with self._sf() as session:
            repo = SQLAlchemyAgentRepository(session)
            agent = await self._require_agent(repo, agent_id)
            self._require_manager(agent, actor)
            rows = await repo.list_permissions(agent_id)
            return {
                "agentId": agent.id,
                "visibility": agent.visibility.value,
                "userIds": [r.user_id for r in rows],
                "permissions": [_permission_to_dict(r) for r in rows],
            }

    async def list_users(self, actor: User) -> list[dict[str, Any]]:
        if not actor.is_admin:
            raise AuthorizationError("Admin access required")
        async with self._sf() as session:
            users = await SQLAlchemyAgentRepository(session).list_users()
            return [{"id": u.id, "name": u.name, "email": u.email, "role": u.role.value} for u in users]

    async def update_permissions(
        self,
        agent_id: str,
        user_ids: Iterable[str],
        visibility: Visibility | str,
        actor: User,
    ) -> dict[str, Any]:
        """Set visibility and permission rows in one transaction.

        ``admin-selective`` replaces the rows with ``user_ids``; every other
        visibility removes all rows.
        """
        try:
            visibility = parse_visibility(visibility)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        user_ids = list(dict.fromkeys(user_ids))

        async with self._sf() as session:
            async with session.begin():
                repo = SQLAlchemyAgentRepository(session)
                agent = await self._require_agent(repo, agent_id)
                self._require_manager(agent, actor)

                if visibility is Visibility.ADMIN_SELECTIVE:
                    if user_ids:
                        found = set(
                            (await session.execute(select(User.id).where(User.id.in_(user_ids)))).scalars().all()
                        )
                        missing = [uid for uid in user_ids if uid not in found]
                        if missing:
                            raise ValidationError("Unknown users", details={"userIds": missing})
                    rows = await repo.replace_permissions(agent_id, user_ids, granted_by=actor.id)
                else:
                    await repo.revoke_all(agent_id)
                    rows = []
                await repo.set_visibility(agent, visibility)

        logger.info(
            "Agent permissions updated",
            data={"agent_id": agent_id, "visibility": visibility.value, "users": len(rows), "actor": actor.id},
        )
        return {
            "agentId": agent_id,
            "visibility": visibility.value,
            "userIds": [r.user_id for r in rows],
        }
