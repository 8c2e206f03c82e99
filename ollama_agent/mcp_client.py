"""MCP (Model Context Protocol) client manager.

Connects to the servers listed under ``mcpServers`` in the project
settings (stdio and SSE transports), discovers their tools, and wraps each
remote tool as a BaseTool named ``mcp__<server>__<tool>`` so the
ToolRegistry can route calls to it.
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from dataclasses import dataclass, field
from typing import Any

from mcp import ClientSession, StdioServerParameters
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client

from ollama_agent.config import EXTERNAL_TOOL_PREFIX
from ollama_agent.conversation import ToolResult
from ollama_agent.tools.base import BaseTool

logger = logging.getLogger(__name__)

CALL_TIMEOUT = 120
CONNECT_TIMEOUT = 30


@dataclass
class MCPServerConfig:
    """Parsed configuration for a single MCP server."""

    name: str
    transport: str = "stdio"  # "stdio" or "sse"
    command: str = ""
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    url: str = ""
    headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, name: str, raw: dict[str, Any]) -> "MCPServerConfig":
        transport = raw.get("type") or raw.get("transport") or ("sse" if raw.get("url") else "stdio")
        return cls(
            name=name,
            transport=transport,
            command=raw.get("command", ""),
            args=list(raw.get("args", [])),
            env=dict(raw.get("env", {})),
            url=raw.get("url", ""),
            headers=dict(raw.get("headers", {})),
        )


def external_tool_name(server_name: str, tool_name: str) -> str:
    return f"{EXTERNAL_TOOL_PREFIX}{server_name}__{tool_name}"


def content_to_text(result: Any) -> str:
    """Flatten an MCP call result's content blocks into text."""
    blocks = getattr(result, "content", None)
    if not blocks:
        return str(result)
    parts = []
    for block in blocks:
        text = getattr(block, "text", None)
        parts.append(text if text is not None else str(block))
    return "\n".join(parts)


class MCPToolBridge(BaseTool):
    """Wraps a single MCP tool as a BaseTool.

    Bridges the synchronous ``execute()`` call to the async
    ``session.call_tool()`` via the manager's event loop.
    """

    def __init__(
        self,
        working_dir: str,
        server_name: str,
        tool_info: dict,
        session: Any,
        loop: asyncio.AbstractEventLoop,
    ):
        super().__init__(working_dir)
        self.server_name = server_name
        self._tool_info = tool_info
        self._session = session
        self._loop = loop

    @property
    def name(self) -> str:
        return external_tool_name(self.server_name, self._tool_info.get("name", "unknown"))

    @property
    def description(self) -> str:
        return f"[MCP:{self.server_name}] {self._tool_info.get('description') or ''}"

    @property
    def parameters(self) -> dict:
        return self._tool_info.get("inputSchema") or {"type": "object", "properties": {}}

    @property
    def requires_confirmation(self) -> bool:
        return True

    def execute(self, **kwargs: Any) -> ToolResult:
        future = asyncio.run_coroutine_threadsafe(self._call_tool(kwargs), self._loop)
        try:
            return future.result(timeout=CALL_TIMEOUT)
        except TimeoutError:
            future.cancel()
            return ToolResult(success=False, error=f"MCP tool call timed out after {CALL_TIMEOUT}s")
        except Exception as e:
            return ToolResult(success=False, error=f"Error calling MCP tool: {e}")

    async def _call_tool(self, arguments: dict) -> ToolResult:
        result = await self._session.call_tool(self._tool_info["name"], arguments=arguments)
        text = content_to_text(result)
        if getattr(result, "isError", False):
            return ToolResult(success=False, error=text)
        return ToolResult(success=True, output=text)


class MCPClientManager:
    """Connects to configured MCP servers and provides their tools."""

    def __init__(self, working_dir: str, servers: dict[str, Any] | None = None):
        self._working_dir = working_dir
        self._configs: dict[str, MCPServerConfig] = {}
        self._sessions: dict[str, Any] = {}
        self._tools: list[MCPToolBridge] = []
        self._loop: asyncio.AbstractEventLoop | None = None
        self._loop_thread: threading.Thread | None = None
        self._transports: dict[str, Any] = {}
        self._session_cms: dict[str, Any] = {}
        if servers:
            self.load_config(servers)

    def load_config(self, servers: dict[str, Any]) -> dict[str, MCPServerConfig]:
        """Parse the raw ``mcpServers`` mapping into server configs."""
        self._configs = {}
        for name, raw in servers.items():
            if not isinstance(raw, dict):
                logger.warning("Ignoring MCP server '%s': config is not an object", name)
                continue
            self._configs[name] = MCPServerConfig.from_dict(name, raw)
        return self._configs

    def connect_all(self) -> list[BaseTool]:
        """Connect to all configured servers and discover tools.

        A server that fails to connect is logged and skipped.
        """
        if not self._configs:
            return []

        self._loop = asyncio.new_event_loop()
        self._loop_thread = threading.Thread(
            target=self._loop.run_forever, daemon=True, name="mcp-event-loop"
        )
        self._loop_thread.start()

        self._tools = []
        for name, cfg in self._configs.items():
            try:
                future = asyncio.run_coroutine_threadsafe(self._async_connect(name, cfg), self._loop)
                tools = future.result(timeout=CONNECT_TIMEOUT)
            except Exception as e:
                logger.warning("Failed to connect MCP server '%s': %s", name, e)
                continue
            self._tools.extend(tools)
            logger.info("MCP server '%s': connected, %d tools", name, len(tools))

        return list(self._tools)

    async def _async_connect(self, name: str, cfg: MCPServerConfig) -> list[MCPToolBridge]:
        if cfg.transport == "stdio":
            params = StdioServerParameters(
                command=cfg.command,
                args=cfg.args,
                env={**os.environ, **cfg.env},
            )
            transport_cm = stdio_client(params)
        elif cfg.transport == "sse":
            transport_cm = sse_client(cfg.url, headers=cfg.headers)
        else:
            raise ValueError(f"Unknown MCP transport: {cfg.transport}")

        read_stream, write_stream = await transport_cm.__aenter__()
        self._transports[name] = transport_cm

        session_cm = ClientSession(read_stream, write_stream)
        session = await session_cm.__aenter__()
        self._session_cms[name] = session_cm
        self._sessions[name] = session

        await session.initialize()
        return await self._discover_tools(name, session)

    async def _discover_tools(self, server_name: str, session: Any) -> list[MCPToolBridge]:
        assert self._loop is not None

        result = await session.list_tools()
        bridges = []
        for tool in getattr(result, "tools", []):
            tool_info = {
                "name": getattr(tool, "name", "unknown"),
                "description": getattr(tool, "description", ""),
                "inputSchema": getattr(tool, "inputSchema", {}),
            }
            bridges.append(MCPToolBridge(self._working_dir, server_name, tool_info, session, self._loop))
        return bridges

    def get_tools(self) -> list[BaseTool]:
        return list(self._tools)

    def get_status(self) -> dict[str, Any]:
        """Return status information about configured servers."""
        return {
            name: {
                "transport": cfg.transport,
                "connected": name in self._sessions,
                "tools": sum(1 for t in self._tools if t.server_name == name),
            }
            for name, cfg in self._configs.items()
        }

    def close(self) -> None:
        """Close sessions and transports, then stop the event loop."""
        if self._loop is not None and self._loop.is_running():
            future = asyncio.run_coroutine_threadsafe(self._async_cleanup(), self._loop)
            try:
                future.result(timeout=10)
            except Exception as e:
                logger.warning("MCP cleanup failed: %s", e)
            self._loop.call_soon_threadsafe(self._loop.stop)
            if self._loop_thread is not None:
                self._loop_thread.join(timeout=5)

        self._sessions.clear()
        self._transports.clear()
        self._session_cms.clear()
        self._tools.clear()
        self._loop = None
        self._loop_thread = None

    async def _async_cleanup(self) -> None:
        for name, cm in [*self._session_cms.items(), *self._transports.items()]:
            try:
                await cm.__aexit__(None, None, None)
            except Exception as e:
                logger.debug("Error closing MCP connection '%s': %s", name, e)
