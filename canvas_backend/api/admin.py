"""Admin endpoints for agent sharing.

The agent owner may manage its own agent; listing users needs an admin.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ..db.models import User
from ..services import AgentPermissionService
from .deps import get_agent_permissions, get_current_user

router = APIRouter(prefix="/admin", tags=["admin"])


class UpdateAgentPermissionsRequest(BaseModel):
    agentId: str = Field(min_length=1)
    userIds: list[str] = Field(default_factory=list)
    visibility: str


@router.get("/agent-permissions")
async def get_agent_permissions_view(
    agent_id: str | None = Query(default=None, alias="agentId"),
    user: User = Depends(get_current_user),
    permissions: AgentPermissionService = Depends(get_agent_permissions),
):
    if agent_id is None:
        return {"users": await permissions.list_users(user)}
    return await permissions.get_permissions(agent_id, user)


@router.post("/agent-permissions")
async def update_agent_permissions(
    body: UpdateAgentPermissionsRequest,
    user: User = Depends(get_current_user),
    permissions: AgentPermissionService = Depends(get_agent_permissions),
):
    return await permissions.update_permissions(body.agentId, body.userIds, body.visibility, user)
