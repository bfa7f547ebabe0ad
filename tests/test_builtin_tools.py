"""Built-in artifact tools and their builders."""

import json

import pytest

from canvas_backend.core.exceptions import ValidationError
from canvas_backend.db.models import ArtifactKind
from canvas_backend.tools.base import ProgressEvent, ToolContext, ToolResult, ToolValidationError
from canvas_backend.tools.builtin import (
    build_artifact_provider,
    build_chart,
    build_table,
    validate_chart_data,
)


class TestBuilders:
    def test_chart_defaults_to_sample_bar(self):
        chart = build_chart({"title": "Revenue"})
        assert chart["chartType"] == "bar"
        assert len(chart["data"]) == 2

    def test_chart_rejects_bad_type(self):
        with pytest.raises(ToolValidationError, match="Invalid chart type"):
            build_chart({"title": "x", "chartType": "radar"})

    def test_pie_needs_single_series(self):
        data = [{"xAxisLabel": "a", "series": [{"seriesName": "s", "value": 1}, {"seriesName": "t", "value": 2}]}]
        with pytest.raises(ToolValidationError):
            build_chart({"title": "x", "chartType": "pie", "data": data})

    @pytest.mark.parametrize(
        "data, message",
        [
            ("nope", "must be an array"),
            ([{"series": []}], "Invalid xAxisLabel at index 0"),
            ([{"xAxisLabel": "a", "series": "x"}], "Invalid series data at index 0"),
            ([{"xAxisLabel": "a", "series": [{"value": 1}]}], "Invalid seriesName"),
            ([{"xAxisLabel": "a", "series": [{"seriesName": "s", "value": True}]}], "Invalid value"),
        ],
    )
    def test_chart_data_validation(self, data, message):
        with pytest.raises(ToolValidationError, match=message):
            validate_chart_data(data)

    def test_table_row_width_checked(self):
        with pytest.raises(ToolValidationError, match="Row 1"):
            build_table({"title": "t", "columns": ["a", "b"], "rows": [[1, 2], [3]]})

    def test_table_columns_unique(self):
        with pytest.raises(ToolValidationError):
            build_table({"title": "t", "columns": ["a", "a"]})


class TestProvider:
    def test_handlers_cover_every_kind(self):
        provider, handlers = build_artifact_provider()
        assert set(handlers) == set(ArtifactKind)
        assert handlers[ArtifactKind.CHARTS].create_tool == "artifacts.create_chart"
        assert handlers[ArtifactKind.TABLE].update_tool == "artifacts.update_table"

    @pytest.mark.asyncio
    async def test_create_table_streams_progress_then_result(self):
        provider, _ = build_artifact_provider()
        descriptor = {d.name: d for d in await provider.list_tools()}["create_table"]
        arguments = {"title": "Sales", "columns": ["q", "total"], "rows": [["Q1", 10]]}
        descriptor.validate(arguments)

        events = [e async for e in provider.open(descriptor, arguments, ToolContext("inv", "u"))]

        assert [e.progress for e in events if isinstance(e, ProgressEvent)] == [10, 40, 100]
        result = events[-1]
        assert isinstance(result, ToolResult)
        assert result.persist
        assert json.loads(result.content)["rows"] == [["Q1", 10]]

    @pytest.mark.asyncio
    async def test_update_merges_changes_into_current(self):
        provider, _ = build_artifact_provider()
        descriptor = {d.name: d for d in await provider.list_tools()}["update_table"]
        current = json.dumps({"title": "Sales", "columns": ["q"], "rows": [["Q1"]]})
        arguments = {"current": current, "changes": {"rows": [["Q1"], ["Q2"]]}, "description": "add Q2"}
        descriptor.validate(arguments)

        events = [e async for e in provider.open(descriptor, arguments, ToolContext("inv", "u"))]

        result = events[-1]
        assert json.loads(result.content)["rows"] == [["Q1"], ["Q2"]]
        assert result.metadata["description"] == "add Q2"

    @pytest.mark.asyncio
    async def test_text_content_is_plain(self):
        provider, _ = build_artifact_provider()
        descriptor = {d.name: d for d in await provider.list_tools()}["create_text"]
        events = [e async for e in provider.open(descriptor, {"title": "Memo", "text": "hi"}, ToolContext("inv", "u"))]
        assert events[-1].content == "hi"

    @pytest.mark.asyncio
    async def test_schema_rejects_missing_title(self):
        provider, _ = build_artifact_provider()
        descriptor = {d.name: d for d in await provider.list_tools()}["create_chart"]
        with pytest.raises(ValidationError) as exc_info:
            descriptor.validate({"chartType": "bar"})
        assert exc_info.value.details["errors"]
