"""Per-user tool prompt customizations."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.models import ToolCustomization
from ..db.types import GUID


@runtime_checkable
class CustomizationRepository(Protocol):
    async def get(self, user_id: str, provider_id: str) -> ToolCustomization | None: ...
    async def list_for_user(self, user_id: str) -> list[ToolCustomization]: ...
    async def upsert(self, user_id: str, provider_id: str, prompt: str | None, tool_prompts: dict[str, str]) -> ToolCustomization: ...


class SQLAlchemyCustomizationRepository:
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, user_id: str, provider_id: str) -> ToolCustomization | None:
        result = await self._session.execute(
            select(ToolCustomization).where(
                ToolCustomization.user_id == user_id,
                ToolCustomization.provider_id == provider_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_for_user(self, user_id: str) -> list[ToolCustomization]:
        result = await self._session.execute(
            select(ToolCustomization)
            .where(ToolCustomization.user_id == user_id)
            .order_by(ToolCustomization.provider_id)
        )
        return list(result.scalars().all())

    async def upsert(
        self,
        user_id: str,
        provider_id: str,
        prompt: str | None,
        tool_prompts: dict[str, str],
    ) -> ToolCustomization:
        row = await self.get(user_id, provider_id)
        if row is None:
            row = ToolCustomization(id=GUID.new(), user_id=user_id, provider_id=provider_id)
            self._session.add(row)
        row.prompt = prompt
        row.tool_prompts = dict(tool_prompts)
        await self._session.flush()
        return row
