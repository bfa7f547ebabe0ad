"""ArtifactStore: owner-scoped documents with an append-only version history.

Version numbers are assigned inside the writing transaction: the parent
document row is updated first, which takes its write lock on both
Postgres and SQLite, then ``max(version) + 1`` is read and inserted. The
``(document_id, version)`` unique constraint backs this up; a collision
or a locked database is retried a bounded number of times.
"""

from __future__ import annotations

import asyncio
from typing import Any

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.exceptions import ExecutionError, NotFoundError
from ..core.logging import get_logger
from ..db.models import ArtifactKind, Document, DocumentVersion
from ..repositories.document_repo import SQLAlchemyDocumentRepository

logger = get_logger(__name__)


def document_to_dict(document: Document) -> dict[str, Any]:
    return {
        "id": document.id,
        "title": document.title,
        "kind": document.kind.value,
        "content": document.content,
        "userId": document.user_id,
        "createdAt": document.created_at.isoformat(),
        "updatedAt": document.updated_at.isoformat(),
    }


def version_to_dict(version: DocumentVersion, include_content: bool = True) -> dict[str, Any]:
    data = {
        "id": version.id,
        "documentId": version.document_id,
        "version": version.version,
        "metadata": version.metadata_,
        "createdAt": version.created_at.isoformat(),
    }
    if include_content:
        data["content"] = version.content
    return data


class ArtifactStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_attempts: int = 3,
        backoff_seconds: float = 0.05,
    ):
        self._sf = session_factory
        self._max_attempts = max_attempts
        self._backoff = backoff_seconds

    async def create_artifact(
        self,
        owner_id: str,
        kind: ArtifactKind | str,
        title: str,
        content: str | None = None,
        metadata: dict | None = None,
    ) -> dict[str, Any]:
        """Create a document. Version 1 is written only when ``content`` is given."""
        kind = ArtifactKind(kind)
        async with self._sf() as session:
            async with session.begin():
                repo = SQLAlchemyDocumentRepository(session)
                document = await repo.create(owner_id, kind, title)
                if content is not None:
                    await repo.add_version(document.id, 1, content, metadata)
                    document.content = content
                await session.flush()
            logger.info(
                "Artifact created",
                data={"document_id": document.id, "kind": kind.value, "with_version": content is not None},
            )
            return document_to_dict(document)

    async def create_version(
        self,
        document_id: str,
        content: str,
        metadata: dict | None = None,
        owner_id: str | None = None,
    ) -> dict[str, Any]:
        """Append a version and make it the document's current content.

        Raises NotFoundError when the document does not exist (or is not
        owned by ``owner_id`` when given) and ExecutionError when the write
        keeps failing after the configured attempts.
        """
        last_error: Exception | None = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                async with self._sf() as session:
                    async with session.begin():
                        repo = SQLAlchemyDocumentRepository(session)
                        if not await repo.touch(document_id, owner_id=owner_id, content=content):
                            raise NotFoundError("Document not found")
                        number = await repo.next_version_number(document_id)
                        version = await repo.add_version(document_id, number, content, metadata)
                logger.debug(
                    "Version created",
                    data={"document_id": document_id, "version": number, "attempt": attempt},
                )
                return version_to_dict(version)
            except (IntegrityError, OperationalError) as e:
                last_error = e
                logger.warning(
                    "Version write conflict, retrying",
                    data={"document_id": document_id, "attempt": attempt, "error": type(e).__name__},
                )
                if attempt < self._max_attempts:
                    await asyncio.sleep(self._backoff * attempt)

        raise ExecutionError(
            "Failed to write artifact version",
            details={"document_id": document_id, "attempts": self._max_attempts},
        ) from last_error

    async def _require_owned(self, session: AsyncSession, document_id: str, requester_id: str) -> Document:
        document = await SQLAlchemyDocumentRepository(session).get_owned(document_id, requester_id)
        if document is None:
            raise NotFoundError("Document not found")
        return document

    async def get_document(self, document_id: str, requester_id: str) -> dict[str, Any]:
        async with self._sf() as session:
            return document_to_dict(await self._require_owned(session, document_id, requester_id))

    async def get_document_with_versions(self, document_id: str, requester_id: str) -> dict[str, Any]:
        async with self._sf() as session:
            document = await self._require_owned(session, document_id, requester_id)
            versions = await SQLAlchemyDocumentRepository(session).list_versions(document_id)
            data = document_to_dict(document)
            data["versions"] = [version_to_dict(v, include_content=False) for v in versions]
            return data

    async def list_documents(
        self,
        owner_id: str,
        kind: ArtifactKind | str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[dict[str, Any]], int]:
        kind = ArtifactKind(kind) if kind is not None else None
        async with self._sf() as session:
            documents, total = await SQLAlchemyDocumentRepository(session).list_for_user(
                owner_id, kind=kind, limit=limit, offset=offset
            )
            return [document_to_dict(d) for d in documents], total

    async def list_versions(self, document_id: str, requester_id: str) -> list[dict[str, Any]]:
        async with self._sf() as session:
            await self._require_owned(session, document_id, requester_id)
            versions = await SQLAlchemyDocumentRepository(session).list_versions(document_id)
            return [version_to_dict(v) for v in versions]

    async def update_document(self, document_id: str, requester_id: str, title: str | None = None) -> dict[str, Any]:
        """Update document attributes. Content only changes through versions."""
        async with self._sf() as session:
            async with session.begin():
                document = await self._require_owned(session, document_id, requester_id)
                if title is not None:
                    document.title = title
                await session.flush()
            return document_to_dict(document)

    async def delete_document(self, document_id: str, requester_id: str) -> None:
        async with self._sf() as session:
            async with session.begin():
                await self._require_owned(session, document_id, requester_id)
                await SQLAlchemyDocumentRepository(session).delete(document_id)
        logger.info("Artifact deleted", data={"document_id": document_id})
