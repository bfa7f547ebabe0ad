"""ToolRegistry: aggregated, cached tool catalog over a set of providers."""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from jsonschema.exceptions import SchemaError

from ..core.exceptions import NotFoundError
from ..core.logging import get_logger
from ..permissions import resolve_tool_access
from .base import ToolContext, ToolDescriptor, ToolEvent
from .providers import ToolProvider

logger = get_logger(__name__)


@dataclass(frozen=True)
class Customization:
    """Per-user prompt augmentation for one provider."""

    provider_id: str
    prompt: str | None = None
    tool_prompts: Mapping[str, str] | None = None


@dataclass(frozen=True)
class EffectiveTool:
    descriptor: ToolDescriptor
    description: str

    def to_dict(self) -> dict[str, Any]:
        data = self.descriptor.to_dict()
        data["description"] = self.description
        return data


@dataclass
class EffectiveCatalog:
    tools: dict[str, EffectiveTool]
    system_prompt: str

    def names(self) -> list[str]:
        return list(self.tools)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tools": [t.to_dict() for t in self.tools.values()],
            "systemPrompt": self.system_prompt,
        }


class ToolRegistry:
    """Catalog of every tool the configured providers expose.

    A provider that fails or is slow to list its tools is left out of the
    catalog rather than failing it, as is any tool whose input schema is
    not a valid JSON Schema. The catalog is cached for
    ``cache_ttl_s``; :meth:`invalidate` drops it early.
    """

    def __init__(
        self,
        providers: Iterable[ToolProvider] = (),
        cache_ttl_s: float = 60.0,
        provider_timeout_s: float = 5.0,
    ):
        self._providers: dict[str, ToolProvider] = {}
        for provider in providers:
            self.add_provider(provider)
        self.cache_ttl_s = cache_ttl_s
        self.provider_timeout_s = provider_timeout_s
        self.excluded_providers: dict[str, str] = {}
        self.excluded_tools: dict[str, str] = {}
        self._cache: dict[str, ToolDescriptor] | None = None
        self._cached_at = 0.0
        self._lock = asyncio.Lock()

    def add_provider(self, provider: ToolProvider) -> None:
        if provider.id in self._providers:
            raise ValueError(f"duplicate tool provider: {provider.id}")
        self._providers[provider.id] = provider
        self.invalidate()

    def list_providers(self) -> list[str]:
        return list(self._providers)

    def invalidate(self) -> None:
        self._cache = None

    async def start(self) -> None:
        for provider in self._providers.values():
            try:
                await asyncio.wait_for(provider.start(), timeout=self.provider_timeout_s)
            except Exception as e:
                logger.warning(f"Failed to start tool provider {provider.id}: {type(e).__name__}: {e}")

    async def aclose(self) -> None:
        for provider in self._providers.values():
            try:
                await provider.aclose()
            except Exception as e:
                logger.warning(f"Failed to close tool provider {provider.id}: {e}")
        self.invalidate()

    async def _list_provider(self, provider: ToolProvider) -> list[ToolDescriptor]:
        return await asyncio.wait_for(provider.list_tools(), timeout=self.provider_timeout_s)

    async def tools(self) -> dict[str, ToolDescriptor]:
        """All tools keyed by qualified name ``provider.tool``."""
        async with self._lock:
            if self._cache is not None and time.monotonic() - self._cached_at < self.cache_ttl_s:
                return self._cache

            providers = list(self._providers.values())
            results = await asyncio.gather(
                *(self._list_provider(p) for p in providers),
                return_exceptions=True,
            )

            catalog: dict[str, ToolDescriptor] = {}
            excluded: dict[str, str] = {}
            rejected: dict[str, str] = {}
            for provider, result in zip(providers, results):
                if isinstance(result, BaseException):
                    if isinstance(result, asyncio.CancelledError):
                        raise result
                    reason = "timeout" if isinstance(result, asyncio.TimeoutError) else f"{type(result).__name__}: {result}"
                    excluded[provider.id] = reason
                    logger.warning(
                        "Tool provider excluded from catalog",
                        data={"provider": provider.id, "reason": reason},
                    )
                    continue
                for descriptor in result:
                    try:
                        descriptor.validator
                    except SchemaError as e:
                        rejected[descriptor.qualified_name] = f"invalid input schema: {e.message}"
                        logger.warning(
                            "Tool excluded from catalog",
                            data={"tool": descriptor.qualified_name, "reason": rejected[descriptor.qualified_name]},
                        )
                        continue
                    catalog[descriptor.qualified_name] = descriptor

            self.excluded_providers = excluded
            self.excluded_tools = rejected
            self._cache = catalog
            self._cached_at = time.monotonic()
            return catalog

    @staticmethod
    def _group(tools: Mapping[str, ToolDescriptor]) -> dict[str, list[str]]:
        grouped: dict[str, list[str]] = {}
        for descriptor in tools.values():
            grouped.setdefault(descriptor.provider_id, []).append(descriptor.name)
        return grouped

    async def catalog(self) -> dict[str, list[str]]:
        """Provider id -> tool names, in provider order."""
        return self._group(await self.tools())

    async def get(self, qualified_name: str) -> ToolDescriptor:
        descriptor = (await self.tools()).get(qualified_name)
        if descriptor is None:
            raise NotFoundError(f"Tool not found: {qualified_name}")
        return descriptor

    async def effective_catalog(
        self,
        allow_list: Any,
        customizations: Iterable[Customization] = (),
    ) -> EffectiveCatalog:
        """Tools visible to one conversation, with the user's prompts applied."""
        tools = await self.tools()
        allowed = resolve_tool_access(self._group(tools), allow_list)
        by_provider = {c.provider_id: c for c in customizations}

        effective: dict[str, EffectiveTool] = {}
        prompt_sections: list[str] = []
        for provider_id, names in allowed.items():
            custom = by_provider.get(provider_id)
            tool_prompts = dict(custom.tool_prompts or {}) if custom else {}
            provider_lines: list[str] = []
            if custom and custom.prompt:
                provider_lines.append(custom.prompt.strip())

            for name in names:
                descriptor = tools[f"{provider_id}.{name}"]
                description = descriptor.description
                extra = (tool_prompts.get(name) or "").strip()
                if extra:
                    description = f"{description}\n\n{extra}" if description else extra
                    provider_lines.append(f"- {name}: {extra}")
                effective[descriptor.qualified_name] = EffectiveTool(descriptor, description)

            if provider_lines:
                prompt_sections.append(f"### {provider_id}\n" + "\n".join(provider_lines))

        return EffectiveCatalog(tools=effective, system_prompt="\n\n".join(prompt_sections))

    def open(self, descriptor: ToolDescriptor, arguments: dict[str, Any], ctx: ToolContext) -> AsyncIterator[ToolEvent]:
        provider = self._providers.get(descriptor.provider_id)
        if provider is None:
            raise NotFoundError(f"Tool provider not found: {descriptor.provider_id}")
        return provider.open(descriptor, arguments, ctx)
