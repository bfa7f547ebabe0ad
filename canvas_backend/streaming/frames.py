"""Stream frames and their SSE encoding."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

PROGRESS = "data-tool-progress"
TOOL_RESULT = "tool-result"
ERROR = "error"
ARTIFACT_CREATED = "data-artifact-created"
ARTIFACT_CREATION_COMPLETE = "data-artifact-creation-complete"
ARTIFACT_UPDATE_COMPLETE = "data-artifact-update-complete"

HEARTBEAT = ": heartbeat\n\n"


@dataclass(frozen=True)
class Frame:
    type: str
    invocation_id: str | None
    payload: dict[str, Any] = field(default_factory=dict)
    terminal: bool = False

    @property
    def droppable(self) -> bool:
        return self.type == PROGRESS

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type}
        if self.invocation_id is not None:
            data["invocationId"] = self.invocation_id
        data.update(self.payload)
        return data


def encode_sse(frame: Frame, seq: int) -> str:
    """Format one frame as an SSE event."""
    return f"id: {seq}\nevent: {frame.type}\ndata: {json.dumps(frame.to_dict(), default=str)}\n\n"
