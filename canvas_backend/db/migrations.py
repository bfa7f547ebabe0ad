"""One-time data migrations run at startup.

Schema changes are out of scope here; these only rewrite row values that
newer code no longer accepts.
"""

from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.logging import get_logger
from ..permissions import LEGACY_ADMIN_SHARED, Visibility

logger = get_logger(__name__)


async def migrate_legacy_visibility(session_factory: async_sessionmaker[AsyncSession]) -> int:
    """Rewrite agents still marked ``admin-shared`` to ``admin-all``.

    Idempotent. Returns the number of rows changed.
    """
    async with session_factory() as session:
        async with session.begin():
            result = await session.execute(
                text("UPDATE agent SET visibility = :new WHERE visibility = :old"),
                {"new": Visibility.ADMIN_ALL.value, "old": LEGACY_ADMIN_SHARED},
            )
    changed = result.rowcount or 0
    if changed:
        logger.info("Migrated legacy agent visibility", data={"rows": changed, "to": Visibility.ADMIN_ALL.value})
    return changed


async def run_data_migrations(session_factory: async_sessionmaker[AsyncSession]) -> dict[str, int]:
    return {"legacy_visibility": await migrate_legacy_visibility(session_factory)}
