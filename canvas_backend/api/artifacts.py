"""Artifact endpoints: streamed create/update plus document and version CRUD."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field, model_validator

from ..db.models import ArtifactKind, User
from ..services import ArtifactPipeline, ArtifactStore
from .deps import get_artifact_pipeline, get_artifact_store, get_current_user, new_multiplexer
from .sse import sse_response

router = APIRouter(prefix="/artifacts", tags=["artifacts"])


class CreateArtifactRequest(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    kind: ArtifactKind
    metadata: dict[str, Any] | None = None
    # Extra input for the kind's create tool (chart data, table rows, ...)
    arguments: dict[str, Any] | None = None


class UpdateArtifactRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=500)
    content: str | None = None
    description: str | None = None
    changes: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None

    @model_validator(mode="after")
    def require_change(self) -> "UpdateArtifactRequest":
        if self.title is None and self.content is None and self.description is None and self.changes is None:
            raise ValueError("nothing to update")
        return self


class CreateVersionRequest(BaseModel):
    content: str
    metadata: dict[str, Any] | None = None


@router.post("")
async def create_artifact(
    body: CreateArtifactRequest,
    request: Request,
    user: User = Depends(get_current_user),
    pipeline: ArtifactPipeline = Depends(get_artifact_pipeline),
):
    run = await pipeline.prepare_create(user, body.title, body.kind, body.arguments, body.metadata)
    mux = new_multiplexer(request)
    pipeline.start(run, mux)
    return sse_response(mux)


@router.get("")
async def list_artifacts(
    kind: ArtifactKind | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user: User = Depends(get_current_user),
    store: ArtifactStore = Depends(get_artifact_store),
):
    artifacts, total = await store.list_documents(user.id, kind=kind, limit=limit, offset=offset)
    return {
        "artifacts": artifacts,
        "pagination": {
            "total": total,
            "limit": limit,
            "offset": offset,
            "hasMore": offset + len(artifacts) < total,
        },
    }


@router.get("/{artifact_id}")
async def get_artifact(
    artifact_id: str,
    user: User = Depends(get_current_user),
    store: ArtifactStore = Depends(get_artifact_store),
):
    return {"artifact": await store.get_document_with_versions(artifact_id, user.id)}


@router.put("/{artifact_id}")
async def update_artifact(
    artifact_id: str,
    body: UpdateArtifactRequest,
    request: Request,
    user: User = Depends(get_current_user),
    pipeline: ArtifactPipeline = Depends(get_artifact_pipeline),
):
    run = await pipeline.prepare_update(
        user,
        artifact_id,
        title=body.title,
        content=body.content,
        description=body.description,
        changes=body.changes,
        metadata=body.metadata,
    )
    mux = new_multiplexer(request)
    pipeline.start(run, mux)
    return sse_response(mux)


@router.delete("/{artifact_id}")
async def delete_artifact(
    artifact_id: str,
    user: User = Depends(get_current_user),
    store: ArtifactStore = Depends(get_artifact_store),
):
    await store.delete_document(artifact_id, user.id)
    return {"success": True}


@router.get("/{artifact_id}/versions")
async def list_versions(
    artifact_id: str,
    user: User = Depends(get_current_user),
    store: ArtifactStore = Depends(get_artifact_store),
):
    versions = await store.list_versions(artifact_id, user.id)
    return {"versions": versions, "total": len(versions)}


@router.post("/{artifact_id}/versions", status_code=status.HTTP_201_CREATED)
async def create_version(
    artifact_id: str,
    body: CreateVersionRequest,
    user: User = Depends(get_current_user),
    store: ArtifactStore = Depends(get_artifact_store),
):
    version = await store.create_version(artifact_id, body.content, body.metadata, owner_id=user.id)
    return {"version": version}
