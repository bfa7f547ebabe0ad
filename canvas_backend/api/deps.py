"""FastAPI dependencies: authentication and service lookup."""

from __future__ import annotations

from fastapi import Depends, Request

from ..core.exceptions import AuthenticationError
from ..core.logging import get_logger, request_context
from ..core.settings import Settings
from ..db.models import User
from ..repositories.deps import get_user_repo
from ..repositories.user_repo import SQLAlchemyUserRepository
from ..services import AgentPermissionService, ArtifactPipeline, ArtifactStore, ToolRunService
from ..streaming.transport import StreamMultiplexer

logger = get_logger(__name__)


def _session_token(request: Request, cookie_name: str) -> str | None:
    token = request.cookies.get(cookie_name)
    if token:
        return token
    auth = request.headers.get("authorization", "")
    scheme, _, credentials = auth.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return None


async def get_current_user(
    request: Request,
    users: SQLAlchemyUserRepository = Depends(get_user_repo),
) -> User:
    """Resolve the session cookie (or bearer token) to an active user.

    Raises:
        AuthenticationError: no session, or the session is unknown/expired.
    """
    settings: Settings = request.app.state.settings
    token = _session_token(request, settings.session_cookie_name)
    if not token:
        raise AuthenticationError("Not authenticated")

    user = await users.get_user_for_token(token)
    if user is None:
        logger.info("Rejected invalid session", data={"path": request.url.path})
        raise AuthenticationError("Session expired or invalid")

    ctx = request_context.get()
    if ctx:
        request_context.set({**ctx, "user_id": user.id})
    return user


def get_artifact_store(request: Request) -> ArtifactStore:
    return request.app.state.artifact_store


def get_artifact_pipeline(request: Request) -> ArtifactPipeline:
    return request.app.state.artifact_pipeline


def get_tool_runs(request: Request) -> ToolRunService:
    return request.app.state.tool_runs


def get_agent_permissions(request: Request) -> AgentPermissionService:
    return request.app.state.agent_permissions


def new_multiplexer(request: Request) -> StreamMultiplexer:
    settings: Settings = request.app.state.settings
    return StreamMultiplexer(
        max_pending=settings.stream_max_pending_frames,
        heartbeat_s=settings.sse_heartbeat_seconds,
    )
