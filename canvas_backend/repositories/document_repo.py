"""Document (artifact) and version repository."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.models import ArtifactKind, Document, DocumentVersion
from ..db.types import GUID, utcnow


@runtime_checkable
class DocumentRepository(Protocol):
    async def get_owned(self, id: str, user_id: str) -> Document | None: ...
    async def create(self, user_id: str, kind: ArtifactKind, title: str) -> Document: ...
    async def list_for_user(
        self, user_id: str, kind: ArtifactKind | None = None, limit: int = 50, offset: int = 0
    ) -> tuple[list[Document], int]: ...
    async def touch(self, id: str, owner_id: str | None = None, **values: Any) -> bool: ...
    async def next_version_number(self, document_id: str) -> int: ...
    async def add_version(
        self, document_id: str, version: int, content: str, metadata: dict | None = None
    ) -> DocumentVersion: ...
    async def list_versions(self, document_id: str) -> list[DocumentVersion]: ...
    async def delete(self, id: str) -> bool: ...


class SQLAlchemyDocumentRepository:
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_owned(self, id: str, user_id: str) -> Document | None:
        result = await self._session.execute(
            select(Document).where(Document.id == id, Document.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def create(self, user_id: str, kind: ArtifactKind, title: str) -> Document:
        document = Document(id=GUID.new(), user_id=user_id, kind=kind, title=title, content="")
        self._session.add(document)
        await self._session.flush()
        return document

    async def list_for_user(
        self,
        user_id: str,
        kind: ArtifactKind | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Document], int]:
        filters = [Document.user_id == user_id]
        if kind is not None:
            filters.append(Document.kind == kind)

        total = (await self._session.execute(select(func.count()).select_from(Document).where(*filters))).scalar_one()
        result = await self._session.execute(
            select(Document)
            .where(*filters)
            .order_by(Document.updated_at.desc(), Document.id)
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), total

    async def touch(self, id: str, owner_id: str | None = None, **values: Any) -> bool:
        """UPDATE the document row, taking its write lock. False if no row matched."""
        values.setdefault("updated_at", utcnow())
        stmt = update(Document).where(Document.id == id)
        if owner_id is not None:
            stmt = stmt.where(Document.user_id == owner_id)
        result = await self._session.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def next_version_number(self, document_id: str) -> int:
        result = await self._session.execute(
            select(func.coalesce(func.max(DocumentVersion.version), 0)).where(
                DocumentVersion.document_id == document_id
            )
        )
        return result.scalar_one() + 1

    async def add_version(
        self,
        document_id: str,
        version: int,
        content: str,
        metadata: dict | None = None,
    ) -> DocumentVersion:
        row = DocumentVersion(
            id=GUID.new(),
            document_id=document_id,
            version=version,
            content=content,
            metadata_=metadata,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def list_versions(self, document_id: str) -> list[DocumentVersion]:
        result = await self._session.execute(
            select(DocumentVersion)
            .where(DocumentVersion.document_id == document_id)
            .order_by(DocumentVersion.version)
        )
        return list(result.scalars().all())

    async def delete(self, id: str) -> bool:
        await self._session.execute(delete(DocumentVersion).where(DocumentVersion.document_id == id))
        result = await self._session.execute(delete(Document).where(Document.id == id))
        return result.rowcount == 1
