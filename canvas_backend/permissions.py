"""Agent visibility and tool allow-list resolution.

Pure functions only: callers load agents and permission rows, this module
decides. Every unknown or malformed input resolves to "no access".
"""

from __future__ import annotations

import enum
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any


class Visibility(str, enum.Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    READONLY = "readonly"
    ADMIN_ALL = "admin-all"
    ADMIN_SELECTIVE = "admin-selective"


# Rewritten to ADMIN_ALL by the startup data migration.
LEGACY_ADMIN_SHARED = "admin-shared"


class AccessDecision(str, enum.Enum):
    ALLOWED = "allowed"
    DENIED = "denied"

    @property
    def allowed(self) -> bool:
        return self is AccessDecision.ALLOWED


@dataclass(frozen=True)
class AgentRef:
    id: str
    owner_id: str
    visibility: Visibility | str


def parse_visibility(value: Any) -> Visibility:
    """Validate an inbound visibility value against the closed set."""
    if isinstance(value, Visibility):
        return value
    try:
        return Visibility(value)
    except ValueError:
        raise ValueError(f"unknown visibility: {value!r}") from None


def resolve_agent_access(
    user_id: str | None,
    agent: AgentRef,
    permitted_user_ids: Iterable[str] = (),
    *,
    readonly_shared: bool = False,
) -> AccessDecision:
    """Decide whether ``user_id`` may use ``agent``.

    ``permitted_user_ids`` are the users holding an explicit permission row
    for the agent; only ``admin-selective`` consults them.
    """
    if not user_id:
        return AccessDecision.DENIED
    if user_id == agent.owner_id:
        return AccessDecision.ALLOWED

    try:
        visibility = parse_visibility(agent.visibility)
    except ValueError:
        return AccessDecision.DENIED

    if visibility in (Visibility.PUBLIC, Visibility.ADMIN_ALL):
        return AccessDecision.ALLOWED
    if visibility is Visibility.READONLY and readonly_shared:
        return AccessDecision.ALLOWED
    if visibility is Visibility.ADMIN_SELECTIVE and user_id in set(permitted_user_ids):
        return AccessDecision.ALLOWED
    return AccessDecision.DENIED


def _allowed_names(entry: Any) -> set[str]:
    """Tool names from one allow-list entry: ``[...]`` or ``{"tools": [...]}``."""
    if isinstance(entry, Mapping):
        entry = entry.get("tools")
    if not isinstance(entry, (list, tuple, set, frozenset)):
        return set()
    return {name for name in entry if isinstance(name, str)}


def resolve_tool_access(
    catalog: Mapping[str, Iterable[str]],
    allow_list: Any,
) -> dict[str, list[str]]:
    """Filter ``catalog`` (provider -> tool names) through a conversation allow-list.

    Providers missing from the allow-list contribute no tools. Providers
    left with no tools are omitted. Catalog order is preserved.

    >>> resolve_tool_access({"a": ["t1", "t2"], "b": ["t3"]}, {"a": ["t1"]})
    {'a': ['t1']}
    """
    if not isinstance(allow_list, Mapping) or not allow_list:
        return {}

    result: dict[str, list[str]] = {}
    for provider_id, tool_names in catalog.items():
        if provider_id not in allow_list:
            continue
        allowed = _allowed_names(allow_list[provider_id])
        kept = [name for name in tool_names if name in allowed]
        if kept:
            result[provider_id] = kept
    return result
