"""Agent access checks."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ..db.models import User
from ..services import AgentPermissionService
from .deps import get_agent_permissions, get_current_user

router = APIRouter(prefix="/agents", tags=["agents"])


@router.get("/{agent_id}/access")
async def get_agent_access(
    agent_id: str,
    user: User = Depends(get_current_user),
    permissions: AgentPermissionService = Depends(get_agent_permissions),
):
    decision = await permissions.check_access(agent_id, user.id)
    return {"agentId": agent_id, "allowed": decision.allowed}
