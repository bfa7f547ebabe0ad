"""FastAPI dependency factories for repository injection."""

from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from .customization_repo import SQLAlchemyCustomizationRepository
from .user_repo import SQLAlchemyUserRepository


async def get_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Yield a transactional session from the app's session factory."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        async with session.begin():
            yield session


async def get_user_repo(session: AsyncSession = Depends(get_session)) -> SQLAlchemyUserRepository:
    return SQLAlchemyUserRepository(session)


async def get_customization_repo(session: AsyncSession = Depends(get_session)) -> SQLAlchemyCustomizationRepository:
    return SQLAlchemyCustomizationRepository(session)
