"""ToolRegistry: aggregation, partial failure, caching and effective catalogs."""

import asyncio

import pytest

from canvas_backend.core.exceptions import NotFoundError
from canvas_backend.tools.base import ToolDescriptor, ToolResult
from canvas_backend.tools.providers import LocalToolProvider
from canvas_backend.tools.registry import Customization, ToolRegistry


async def echo(arguments, ctx):
    yield ToolResult(arguments)


def local(provider_id, *names):
    provider = LocalToolProvider(provider_id)
    for name in names:
        provider.register(name, echo, description=f"{name} tool")
    return provider


class FlakyProvider:
    def __init__(self, provider_id, error=None, delay=0.0):
        self.id = provider_id
        self.error = error
        self.delay = delay
        self.calls = 0

    async def start(self):
        return None

    async def list_tools(self):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return [ToolDescriptor(self.id, "remote")]

    def open(self, descriptor, arguments, ctx):
        return echo(arguments, ctx)

    async def aclose(self):
        return None


@pytest.mark.asyncio
async def test_catalog_groups_by_provider():
    registry = ToolRegistry([local("serverA", "t1", "t2"), local("serverB", "t3")])
    assert await registry.catalog() == {"serverA": ["t1", "t2"], "serverB": ["t3"]}
    assert (await registry.get("serverB.t3")).name == "t3"


@pytest.mark.asyncio
async def test_unknown_tool_not_found():
    registry = ToolRegistry([local("serverA", "t1")])
    with pytest.raises(NotFoundError):
        await registry.get("serverA.missing")


@pytest.mark.asyncio
async def test_failing_provider_is_excluded():
    registry = ToolRegistry([local("serverA", "t1"), FlakyProvider("broken", error=RuntimeError("down"))])
    assert await registry.catalog() == {"serverA": ["t1"]}
    assert "broken" in registry.excluded_providers
    assert "down" in registry.excluded_providers["broken"]


@pytest.mark.asyncio
async def test_slow_provider_is_excluded():
    registry = ToolRegistry(
        [local("serverA", "t1"), FlakyProvider("slow", delay=1.0)],
        provider_timeout_s=0.05,
    )
    assert await registry.catalog() == {"serverA": ["t1"]}
    assert registry.excluded_providers == {"slow": "timeout"}


@pytest.mark.asyncio
async def test_tool_with_invalid_schema_is_excluded():
    provider = local("serverA", "t1")
    provider.register("broken", echo, input_schema={"type": "nonsense"})
    registry = ToolRegistry([provider])

    assert await registry.catalog() == {"serverA": ["t1"]}
    assert "serverA.broken" in registry.excluded_tools
    assert registry.excluded_tools["serverA.broken"].startswith("invalid input schema")
    with pytest.raises(NotFoundError):
        await registry.get("serverA.broken")


@pytest.mark.asyncio
async def test_catalog_is_cached_until_invalidated():
    provider = FlakyProvider("remote")
    registry = ToolRegistry([provider], cache_ttl_s=60)
    await registry.tools()
    await registry.tools()
    assert provider.calls == 1

    registry.invalidate()
    await registry.tools()
    assert provider.calls == 2


@pytest.mark.asyncio
async def test_zero_ttl_always_refreshes():
    provider = FlakyProvider("remote")
    registry = ToolRegistry([provider], cache_ttl_s=0)
    await registry.tools()
    await registry.tools()
    assert provider.calls == 2


def test_duplicate_provider_rejected():
    registry = ToolRegistry([local("serverA", "t1")])
    with pytest.raises(ValueError):
        registry.add_provider(local("serverA", "t2"))


@pytest.mark.asyncio
async def test_effective_catalog_filters_and_applies_prompts():
    registry = ToolRegistry([local("serverA", "t1", "t2"), local("serverB", "t3")])
    customizations = [Customization("serverA", prompt="Prefer t1.", tool_prompts={"t1": "Use for sales."})]

    catalog = await registry.effective_catalog({"serverA": ["t1"]}, customizations)

    assert catalog.names() == ["serverA.t1"]
    assert catalog.tools["serverA.t1"].description == "t1 tool\n\nUse for sales."
    assert "Prefer t1." in catalog.system_prompt
    assert "- t1: Use for sales." in catalog.system_prompt


@pytest.mark.asyncio
async def test_effective_catalog_without_allow_list_is_empty():
    registry = ToolRegistry([local("serverA", "t1")])
    catalog = await registry.effective_catalog(None)
    assert catalog.tools == {}
    assert catalog.to_dict() == {"tools": [], "systemPrompt": ""}


@pytest.mark.asyncio
async def test_open_runs_provider_tool():
    registry = ToolRegistry([local("serverA", "t1")])
    descriptor = await registry.get("serverA.t1")
    events = [event async for event in registry.open(descriptor, {"x": 1}, ctx=None)]
    assert events == [ToolResult({"x": 1})]
