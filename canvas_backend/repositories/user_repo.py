"""User and auth-session repository."""

from __future__ import annotations

import hashlib
from datetime import datetime, timedelta
from typing import Protocol, runtime_checkable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.models import AuthSession, User, UserRole
from ..db.types import GUID, utcnow


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@runtime_checkable
class UserRepository(Protocol):
    async def get_by_id(self, id: str) -> User | None: ...
    async def create(self, name: str, email: str, role: UserRole = UserRole.USER) -> User: ...
    async def create_session(self, user_id: str, token: str, ttl_seconds: int = 86400) -> AuthSession: ...
    async def get_user_for_token(self, token: str, now: datetime | None = None) -> User | None: ...


class SQLAlchemyUserRepository:
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, id: str) -> User | None:
        return await self._session.get(User, id)

    async def create(self, name: str, email: str, role: UserRole = UserRole.USER) -> User:
        user = User(id=GUID.new(), name=name, email=email, role=role)
        self._session.add(user)
        await self._session.flush()
        return user

    async def create_session(self, user_id: str, token: str, ttl_seconds: int = 86400) -> AuthSession:
        """Register an externally issued session token. Only its hash is stored."""
        row = AuthSession(
            id=GUID.new(),
            user_id=user_id,
            token_hash=hash_token(token),
            expires_at=utcnow() + timedelta(seconds=ttl_seconds),
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get_user_for_token(self, token: str, now: datetime | None = None) -> User | None:
        """Resolve an unexpired session token to an active user."""
        now = now or utcnow()
        result = await self._session.execute(
            select(User)
            .join(AuthSession, AuthSession.user_id == User.id)
            .where(
                AuthSession.token_hash == hash_token(token),
                AuthSession.expires_at > now,
                User.is_active.is_(True),
            )
        )
        return result.scalar_one_or_none()
