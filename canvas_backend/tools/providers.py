"""Tool providers: in-process tools and remote MCP servers."""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import httpx

from ..core.exceptions import ExecutionError, NotFoundError
from ..core.logging import get_logger
from .base import ProgressEvent, ToolContext, ToolDescriptor, ToolEvent, ToolFunction, ToolResult

logger = get_logger(__name__)


@runtime_checkable
class ToolProvider(Protocol):
    id: str

    async def start(self) -> None: ...
    async def list_tools(self) -> list[ToolDescriptor]: ...
    def open(self, descriptor: ToolDescriptor, arguments: dict[str, Any], ctx: ToolContext) -> AsyncIterator[ToolEvent]: ...
    async def aclose(self) -> None: ...


@dataclass
class _LocalTool:
    descriptor: ToolDescriptor
    fn: ToolFunction


class LocalToolProvider:
    """Tools implemented as async generators in this process."""

    def __init__(self, provider_id: str):
        self.id = provider_id
        self._tools: dict[str, _LocalTool] = {}

    def register(
        self,
        name: str,
        fn: ToolFunction,
        description: str = "",
        input_schema: dict[str, Any] | None = None,
        timeout_s: float | None = None,
    ) -> ToolDescriptor:
        descriptor = ToolDescriptor(
            provider_id=self.id,
            name=name,
            description=description,
            input_schema=input_schema or {"type": "object"},
            timeout_s=timeout_s,
        )
        self._tools[name] = _LocalTool(descriptor, fn)
        return descriptor

    def tool(self, name: str, description: str = "", input_schema: dict[str, Any] | None = None, timeout_s: float | None = None):
        """Decorator form of :meth:`register`."""

        def decorator(fn: ToolFunction) -> ToolFunction:
            self.register(name, fn, description, input_schema, timeout_s)
            return fn

        return decorator

    async def start(self) -> None:
        return None

    async def list_tools(self) -> list[ToolDescriptor]:
        return [t.descriptor for t in self._tools.values()]

    def open(self, descriptor: ToolDescriptor, arguments: dict[str, Any], ctx: ToolContext) -> AsyncIterator[ToolEvent]:
        tool = self._tools.get(descriptor.name)
        if tool is None:
            raise NotFoundError(f"Tool not found: {descriptor.qualified_name}")
        return tool.fn(arguments, ctx)

    async def aclose(self) -> None:
        return None


class McpToolProvider:
    """Tools served by a remote MCP server over streamable HTTP (JSON-RPC)."""

    protocol_version = "2024-11-05"

    def __init__(
        self,
        provider_id: str,
        endpoint_url: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.id = provider_id
        self.endpoint_url = endpoint_url
        self.session_id: str | None = None
        self.server_protocol_version: str | None = None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self._initialized = False
        self._start_lock = asyncio.Lock()
        self._id = 0

    def _next_id(self) -> int:
        self._id += 1
        return self._id

    async def _rpc(self, method: str, params: dict[str, Any] | None = None, *, notify: bool = False) -> dict[str, Any] | None:
        body: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            body["params"] = params
        if not notify:
            body["id"] = self._next_id()
        headers = {"Content-Type": "application/json", "Accept": "application/json, text/event-stream"}
        if self.session_id:
            headers["Mcp-Session-Id"] = self.session_id

        resp = await self._client.post(self.endpoint_url, content=json.dumps(body), headers=headers)
        resp.raise_for_status()
        sid = resp.headers.get("Mcp-Session-Id")
        if sid:
            self.session_id = sid
        if notify:
            return None

        content_type = resp.headers.get("Content-Type", "")
        if "text/event-stream" in content_type:
            for block in resp.text.split("\n\n"):
                lines = [line for line in block.splitlines() if line.startswith("data: ")]
                if not lines:
                    continue
                payload = json.loads("\n".join(line[6:] for line in lines))
                if payload.get("id") == body["id"]:
                    return payload
            raise ExecutionError(f"MCP server {self.id} sent no RPC response in SSE stream")
        return resp.json()

    async def start(self) -> None:
        if self._initialized:
            return
        async with self._start_lock:
            if self._initialized:
                return
            started = time.perf_counter()
            rsp = await self._rpc(
                "initialize",
                {
                    "protocolVersion": self.protocol_version,
                    "capabilities": {},
                    "clientInfo": {"name": "canvas-backend", "version": "0.1"},
                },
            )
            self.server_protocol_version = (rsp or {}).get("result", {}).get("protocolVersion")
            await self._rpc("notifications/initialized", {}, notify=True)
            self._initialized = True
            logger.info(
                "MCP server initialized",
                data={
                    "provider": self.id,
                    "protocol_version": self.server_protocol_version,
                    "latency_ms": int((time.perf_counter() - started) * 1000),
                },
            )

    async def list_tools(self) -> list[ToolDescriptor]:
        await self.start()
        descriptors: list[ToolDescriptor] = []
        cursor: str | None = None
        while True:
            params = {} if cursor is None else {"cursor": cursor}
            rsp = await self._rpc("tools/list", params) or {}
            if "error" in rsp:
                raise ExecutionError(rsp["error"].get("message", "MCP error"), details={"provider": self.id})
            result = rsp.get("result", {})
            for tool in result.get("tools", []):
                descriptors.append(
                    ToolDescriptor(
                        provider_id=self.id,
                        name=tool["name"],
                        description=tool.get("description") or "",
                        input_schema=tool.get("inputSchema") or {"type": "object"},
                    )
                )
            cursor = result.get("nextCursor")
            if not cursor:
                return descriptors

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        await self.start()
        rsp = await self._rpc("tools/call", {"name": name, "arguments": arguments}) or {}
        if "error" in rsp:
            raise ExecutionError(rsp["error"].get("message", "MCP error"), details={"provider": self.id})
        return rsp.get("result", {})

    async def open(self, descriptor: ToolDescriptor, arguments: dict[str, Any], ctx: ToolContext) -> AsyncIterator[ToolEvent]:
        yield ProgressEvent(0, f"Calling {descriptor.qualified_name}")
        result = await self.call_tool(descriptor.name, arguments)
        text = "\n".join(
            item.get("text", "") for item in result.get("content", []) if item.get("type") == "text"
        )
        if result.get("isError"):
            raise ExecutionError(text or f"{descriptor.qualified_name} failed")
        yield ProgressEvent(100)
        yield ToolResult(payload=result.get("structuredContent") or result, content=text or None)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
