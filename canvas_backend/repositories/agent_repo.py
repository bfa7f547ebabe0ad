"""Agent and per-user agent permission repository."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol, runtime_checkable

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.models import Agent, AgentUserPermission, PermissionLevel, User
from ..db.types import GUID, utcnow
from ..permissions import Visibility


@runtime_checkable
class AgentRepository(Protocol):
    async def get_by_id(self, id: str) -> Agent | None: ...
    async def create(self, user_id: str, name: str, visibility: Visibility = Visibility.PRIVATE, description: str | None = None) -> Agent: ...
    async def set_visibility(self, agent: Agent, visibility: Visibility) -> Agent: ...
    async def grant(self, agent_id: str, user_id: str, granted_by: str | None = None, level: PermissionLevel = PermissionLevel.USE) -> AgentUserPermission: ...
    async def bulk_grant(self, agent_id: str, user_ids: Iterable[str], granted_by: str | None = None) -> list[AgentUserPermission]: ...
    async def revoke_all(self, agent_id: str) -> int: ...
    async def replace_permissions(self, agent_id: str, user_ids: Iterable[str], granted_by: str | None = None) -> list[AgentUserPermission]: ...
    async def list_permissions(self, agent_id: str) -> list[AgentUserPermission]: ...
    async def has_permission(self, agent_id: str, user_id: str) -> bool: ...
    async def permitted_user_ids(self, agent_id: str) -> list[str]: ...
    async def count_permissions(self, agent_id: str) -> int: ...


class SQLAlchemyAgentRepository:
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, id: str) -> Agent | None:
        return await self._session.get(Agent, id)

    async def create(
        self,
        user_id: str,
        name: str,
        visibility: Visibility = Visibility.PRIVATE,
        description: str | None = None,
    ) -> Agent:
        agent = Agent(id=GUID.new(), user_id=user_id, name=name, visibility=visibility, description=description)
        self._session.add(agent)
        await self._session.flush()
        return agent

    async def set_visibility(self, agent: Agent, visibility: Visibility) -> Agent:
        agent.visibility = visibility
        await self._session.flush()
        return agent

    async def _get_permission(self, agent_id: str, user_id: str) -> AgentUserPermission | None:
        result = await self._session.execute(
            select(AgentUserPermission).where(
                AgentUserPermission.agent_id == agent_id,
                AgentUserPermission.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def grant(
        self,
        agent_id: str,
        user_id: str,
        granted_by: str | None = None,
        level: PermissionLevel = PermissionLevel.USE,
    ) -> AgentUserPermission:
        """Insert or refresh the (agent, user) row."""
        row = await self._get_permission(agent_id, user_id)
        if row is None:
            row = AgentUserPermission(
                id=GUID.new(),
                agent_id=agent_id,
                user_id=user_id,
                granted_by=granted_by,
                permission_level=level,
            )
            self._session.add(row)
        else:
            row.granted_by = granted_by
            row.granted_at = utcnow()
            row.permission_level = level
        await self._session.flush()
        return row

    async def bulk_grant(
        self,
        agent_id: str,
        user_ids: Iterable[str],
        granted_by: str | None = None,
    ) -> list[AgentUserPermission]:
        rows = []
        for user_id in dict.fromkeys(user_ids):
            rows.append(await self.grant(agent_id, user_id, granted_by))
        return rows

    async def revoke_all(self, agent_id: str) -> int:
        result = await self._session.execute(
            delete(AgentUserPermission).where(AgentUserPermission.agent_id == agent_id)
        )
        return result.rowcount

    async def replace_permissions(
        self,
        agent_id: str,
        user_ids: Iterable[str],
        granted_by: str | None = None,
    ) -> list[AgentUserPermission]:
        """Make the permission rows exactly ``user_ids``. Runs in the caller's transaction."""
        await self.revoke_all(agent_id)
        return await self.bulk_grant(agent_id, user_ids, granted_by)

    async def list_permissions(self, agent_id: str) -> list[AgentUserPermission]:
        result = await self._session.execute(
            select(AgentUserPermission)
            .where(AgentUserPermission.agent_id == agent_id)
            .order_by(AgentUserPermission.granted_at)
        )
        return list(result.scalars().all())

    async def has_permission(self, agent_id: str, user_id: str) -> bool:
        return await self._get_permission(agent_id, user_id) is not None

    async def permitted_user_ids(self, agent_id: str) -> list[str]:
        result = await self._session.execute(
            select(AgentUserPermission.user_id).where(AgentUserPermission.agent_id == agent_id)
        )
        return list(result.scalars().all())

    async def count_permissions(self, agent_id: str) -> int:
        result = await self._session.execute(
            select(func.count()).select_from(AgentUserPermission).where(AgentUserPermission.agent_id == agent_id)
        )
        return result.scalar_one()

    async def list_users(self) -> list[User]:
        result = await self._session.execute(
            select(User).where(User.is_active.is_(True)).order_by(User.name)
        )
        return list(result.scalars().all())
