"""Built-in artifact tools: deterministic chart, table, text and dashboard builders.

Every tool reports progress 10 -> 40 -> 100 and finishes with a JSON
document (or plain text for ``text``) that is persisted as a version.
"""

from __future__ import annotations

import asyncio
import json
import math
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from ..db.models import ArtifactKind
from .base import ProgressEvent, ToolContext, ToolEvent, ToolResult, ToolValidationError
from .providers import LocalToolProvider

PROVIDER_ID = "artifacts"

CHART_TYPES = ("bar", "line", "pie")

_SERIES_SCHEMA = {
    "type": "object",
    "properties": {
        "seriesName": {"type": "string"},
        "value": {"type": "number"},
    },
    "required": ["seriesName", "value"],
}

_CHART_SPEC_SCHEMA = {
    "type": "object",
    "properties": {
        "title": {"type": "string", "minLength": 1},
        "chartType": {"enum": list(CHART_TYPES)},
        "description": {"type": "string"},
        "xAxisLabel": {"type": "string"},
        "yAxisLabel": {"type": "string"},
        "data": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "xAxisLabel": {"type": "string"},
                    "series": {"type": "array", "items": _SERIES_SCHEMA},
                },
                "required": ["xAxisLabel", "series"],
            },
        },
    },
    "required": ["title"],
}

_TABLE_SPEC_SCHEMA = {
    "type": "object",
    "properties": {
        "title": {"type": "string", "minLength": 1},
        "columns": {"type": "array", "items": {"type": "string"}},
        "rows": {"type": "array", "items": {"type": "array"}},
    },
    "required": ["title"],
}

_TEXT_SPEC_SCHEMA = {
    "type": "object",
    "properties": {
        "title": {"type": "string", "minLength": 1},
        "text": {"type": "string"},
    },
    "required": ["title"],
}

_DASHBOARD_SPEC_SCHEMA = {
    "type": "object",
    "properties": {
        "title": {"type": "string", "minLength": 1},
        "charts": {"type": "array", "items": _CHART_SPEC_SCHEMA},
    },
    "required": ["title"],
}


def _update_schema(changes_schema: dict[str, Any]) -> dict[str, Any]:
    changes = {k: v for k, v in changes_schema.items() if k != "required"}
    return {
        "type": "object",
        "properties": {
            "current": {"type": "string"},
            "description": {"type": "string"},
            "changes": changes,
        },
        "required": ["current"],
    }


def validate_chart_data(data: Any) -> list[dict[str, Any]]:
    if not isinstance(data, list):
        raise ToolValidationError("Chart data must be an array")
    points = []
    for index, item in enumerate(data):
        label = item.get("xAxisLabel") if isinstance(item, dict) else None
        if not label or not isinstance(label, str):
            raise ToolValidationError(f"Invalid xAxisLabel at index {index}")
        series = item.get("series")
        if not isinstance(series, list):
            raise ToolValidationError(f"Invalid series data at index {index}")
        validated = []
        for series_index, entry in enumerate(series):
            name = entry.get("seriesName") if isinstance(entry, dict) else None
            if not name or not isinstance(name, str):
                raise ToolValidationError(f"Invalid seriesName at data index {index}, series index {series_index}")
            value = entry.get("value")
            if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
                raise ToolValidationError(f"Invalid value at data index {index}, series index {series_index}")
            validated.append({"seriesName": name, "value": value})
        points.append({"xAxisLabel": label, "series": validated})
    return points


def _sample_chart_data() -> list[dict[str, Any]]:
    return [
        {"xAxisLabel": "Sample 1", "series": [{"seriesName": "Value", "value": 10}]},
        {"xAxisLabel": "Sample 2", "series": [{"seriesName": "Value", "value": 20}]},
    ]


def build_chart(params: dict[str, Any]) -> dict[str, Any]:
    chart_type = params.get("chartType", "bar")
    if chart_type not in CHART_TYPES:
        raise ToolValidationError(f"Invalid chart type. Must be one of: {', '.join(CHART_TYPES)}")
    data = validate_chart_data(params["data"]) if "data" in params else _sample_chart_data()
    if chart_type == "pie" and any(len(point["series"]) != 1 for point in data):
        raise ToolValidationError("Pie charts take exactly one series per slice")
    chart = {
        "title": params["title"],
        "chartType": chart_type,
        "description": params.get("description"),
        "xAxisLabel": params.get("xAxisLabel"),
        "yAxisLabel": params.get("yAxisLabel"),
        "data": data,
    }
    return {k: v for k, v in chart.items() if v is not None}


def build_table(params: dict[str, Any]) -> dict[str, Any]:
    columns = params.get("columns") or []
    rows = params.get("rows") or []
    if len(set(columns)) != len(columns):
        raise ToolValidationError("Table columns must be unique")
    for index, row in enumerate(rows):
        if len(row) != len(columns):
            raise ToolValidationError(f"Row {index} has {len(row)} cells, expected {len(columns)}")
    return {"title": params["title"], "columns": list(columns), "rows": [list(r) for r in rows]}


def build_text(params: dict[str, Any]) -> dict[str, Any]:
    return {"title": params["title"], "text": params.get("text", "")}


def build_dashboard(params: dict[str, Any]) -> dict[str, Any]:
    charts = [build_chart(chart) for chart in params.get("charts") or []]
    return {"title": params["title"], "charts": charts}


def _parse_current(current: str) -> dict[str, Any]:
    if not current.strip():
        return {}
    try:
        parsed = json.loads(current)
    except json.JSONDecodeError as e:
        raise ToolValidationError(f"Current content is not valid JSON: {e.msg}") from e
    if not isinstance(parsed, dict):
        raise ToolValidationError("Current content must be a JSON object")
    return parsed


def _serialize(kind: ArtifactKind, document: dict[str, Any]) -> str:
    if kind is ArtifactKind.TEXT:
        return document.get("text", "")
    return json.dumps(document, indent=2)


async def _stages(messages: tuple[str, str]) -> AsyncIterator[ProgressEvent]:
    yield ProgressEvent(10, messages[0])
    await asyncio.sleep(0)
    yield ProgressEvent(40, messages[1])
    await asyncio.sleep(0)


def _creator(kind: ArtifactKind, build):
    async def create(arguments: dict[str, Any], ctx: ToolContext) -> AsyncIterator[ToolEvent]:
        async for event in _stages((f"Preparing {kind.value}", f"Building {kind.value}")):
            yield event
        document = build(arguments)
        yield ProgressEvent(100, "Done")
        yield ToolResult(
            payload=document,
            persist=True,
            content=_serialize(kind, document),
            metadata={"kind": kind.value, "operation": "create"},
        )

    return create


def _updater(kind: ArtifactKind, build):
    async def update(arguments: dict[str, Any], ctx: ToolContext) -> AsyncIterator[ToolEvent]:
        async for event in _stages((f"Loading {kind.value}", f"Applying changes to {kind.value}")):
            yield event
        if kind is ArtifactKind.TEXT:
            current = {"text": arguments["current"]}
        else:
            current = _parse_current(arguments["current"])
        merged = {**current, **(arguments.get("changes") or {})}
        merged.setdefault("title", arguments.get("title") or "Untitled")
        document = build(merged)
        yield ProgressEvent(100, "Done")
        yield ToolResult(
            payload=document,
            persist=True,
            content=_serialize(kind, document),
            metadata={
                "kind": kind.value,
                "operation": "update",
                "description": arguments.get("description"),
            },
        )

    return update


@dataclass(frozen=True)
class DocumentHandler:
    kind: ArtifactKind
    create_tool: str
    update_tool: str


_BUILDERS = {
    ArtifactKind.CHARTS: ("chart", build_chart, _CHART_SPEC_SCHEMA),
    ArtifactKind.TABLE: ("table", build_table, _TABLE_SPEC_SCHEMA),
    ArtifactKind.TEXT: ("text", build_text, _TEXT_SPEC_SCHEMA),
    ArtifactKind.DASHBOARD: ("dashboard", build_dashboard, _DASHBOARD_SPEC_SCHEMA),
}


def build_artifact_provider(timeout_s: float | None = None) -> tuple[LocalToolProvider, dict[ArtifactKind, DocumentHandler]]:
    """Register the built-in tools and return the provider plus the per-kind handlers."""
    provider = LocalToolProvider(PROVIDER_ID)
    handlers: dict[ArtifactKind, DocumentHandler] = {}
    for kind, (noun, build, schema) in _BUILDERS.items():
        create = provider.register(
            f"create_{noun}",
            _creator(kind, build),
            description=f"Create a {noun} artifact",
            input_schema=schema,
            timeout_s=timeout_s,
        )
        update = provider.register(
            f"update_{noun}",
            _updater(kind, build),
            description=f"Update an existing {noun} artifact",
            input_schema=_update_schema(schema),
            timeout_s=timeout_s,
        )
        handlers[kind] = DocumentHandler(kind, create.qualified_name, update.qualified_name)
    return provider, handlers
