"""Tool capability types shared by providers, the registry and the executor."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any, Protocol

from jsonschema import Draft202012Validator

from ..core.exceptions import ValidationError


class ToolValidationError(ValidationError):
    """Raised by a tool when its input is unusable."""


@dataclass(frozen=True)
class ProgressEvent:
    """Intermediate progress. ``progress`` is a percentage, 0 to 100."""

    progress: float
    message: str | None = None
    data: dict[str, Any] | None = None


@dataclass(frozen=True)
class ToolResult:
    """Final output of a tool. ``persist`` asks for an artifact version to be written."""

    payload: Any
    persist: bool = False
    content: str | None = None
    metadata: dict[str, Any] | None = None


ToolEvent = ProgressEvent | ToolResult


@dataclass
class ToolContext:
    invocation_id: str
    requester_id: str | None
    agent_id: str | None = None
    cancelled: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled.is_set()


class ToolFunction(Protocol):
    def __call__(self, arguments: dict[str, Any], ctx: ToolContext) -> AsyncIterator[ToolEvent]: ...


@dataclass
class ToolDescriptor:
    provider_id: str
    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=lambda: {"type": "object"})
    timeout_s: float | None = None
    prompt: str | None = None

    @property
    def qualified_name(self) -> str:
        return f"{self.provider_id}.{self.name}"

    @cached_property
    def validator(self) -> Draft202012Validator:
        # Compiled once per descriptor and reused for every call.
        Draft202012Validator.check_schema(self.input_schema)
        return Draft202012Validator(self.input_schema)

    def validate(self, arguments: Any) -> None:
        errors = sorted(self.validator.iter_errors(arguments), key=lambda e: list(e.path))
        if errors:
            messages = [
                f"{'/'.join(str(p) for p in err.path) or '<root>'}: {err.message}" for err in errors
            ]
            raise ValidationError(
                f"Invalid arguments for {self.qualified_name}",
                details={"errors": messages},
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.qualified_name,
            "provider": self.provider_id,
            "tool": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }
