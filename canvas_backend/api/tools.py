"""Tool catalog, multiplexed tool invocation, and per-user tool customizations."""

from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from ..core.exceptions import ValidationError
from ..db.models import User
from ..repositories.customization_repo import SQLAlchemyCustomizationRepository
from ..repositories.deps import get_customization_repo
from ..services import ToolCall, ToolRunService
from .deps import get_current_user, get_tool_runs, new_multiplexer
from .sse import sse_response

router = APIRouter(prefix="/tools", tags=["tools"])


class ToolCallRequest(BaseModel):
    tool: str = Field(min_length=1)
    arguments: dict[str, Any] = Field(default_factory=dict)
    persistTo: str | None = None
    timeoutSeconds: float | None = Field(default=None, gt=0, le=600)


class InvokeToolsRequest(BaseModel):
    calls: list[ToolCallRequest] = Field(min_length=1, max_length=16)
    # provider id -> tool names (or {"tools": [...]}); absent providers expose nothing
    allowedTools: dict[str, Any] = Field(default_factory=dict)
    agentId: str | None = None


class CustomizationRequest(BaseModel):
    prompt: str | None = None
    toolPrompts: dict[str, str] = Field(default_factory=dict)


def _parse_allowed(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        allowed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError("allowed must be a JSON object") from e
    if not isinstance(allowed, dict):
        raise ValidationError("allowed must be a JSON object")
    return allowed


@router.get("")
async def list_tools(
    request: Request,
    allowed: str | None = Query(default=None, description="JSON allow-list for the conversation"),
    user: User = Depends(get_current_user),
    tool_runs: ToolRunService = Depends(get_tool_runs),
):
    catalog = await tool_runs.effective_catalog(user.id, _parse_allowed(allowed))
    registry = request.app.state.tool_registry
    return {
        **catalog.to_dict(),
        "excludedProviders": dict(registry.excluded_providers),
        "excludedTools": dict(registry.excluded_tools),
    }


@router.post("/invoke")
async def invoke_tools(
    body: InvokeToolsRequest,
    request: Request,
    user: User = Depends(get_current_user),
    tool_runs: ToolRunService = Depends(get_tool_runs),
):
    calls = [
        ToolCall(tool=c.tool, arguments=c.arguments, persist_to=c.persistTo, timeout_s=c.timeoutSeconds)
        for c in body.calls
    ]
    prepared = await tool_runs.prepare(user, calls, body.allowedTools, agent_id=body.agentId)
    mux = new_multiplexer(request)
    tool_runs.start(prepared, mux)
    return sse_response(mux)


@router.get("/invocations/{invocation_id}")
async def get_invocation(
    invocation_id: str,
    user: User = Depends(get_current_user),
    tool_runs: ToolRunService = Depends(get_tool_runs),
):
    return {"invocation": tool_runs.get_invocation(invocation_id, user.id).to_dict()}


@router.get("/customizations/{provider_id}")
async def get_customization(
    provider_id: str,
    user: User = Depends(get_current_user),
    repo: SQLAlchemyCustomizationRepository = Depends(get_customization_repo),
):
    row = await repo.get(user.id, provider_id)
    return {
        "providerId": provider_id,
        "prompt": row.prompt if row else None,
        "toolPrompts": dict(row.tool_prompts or {}) if row else {},
    }


@router.put("/customizations/{provider_id}")
async def put_customization(
    provider_id: str,
    body: CustomizationRequest,
    request: Request,
    user: User = Depends(get_current_user),
    repo: SQLAlchemyCustomizationRepository = Depends(get_customization_repo),
):
    registry = request.app.state.tool_registry
    if provider_id not in registry.list_providers():
        raise ValidationError(f"Unknown tool provider: {provider_id}")
    row = await repo.upsert(user.id, provider_id, body.prompt, body.toolPrompts)
    return {"providerId": row.provider_id, "prompt": row.prompt, "toolPrompts": dict(row.tool_prompts)}
