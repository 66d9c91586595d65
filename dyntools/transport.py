"""Streamable HTTP transport for one client bundle.

Each bundle whose sink wraps a fastmcp server is served by its own Starlette
app from ``FastMCP.http_app``. That app's lifespan starts the MCP session
manager, so it runs in a background task for as long as the handle is open.
The handle lives in the bundle's sessions; evicting the bundle closes it.
"""
from __future__ import annotations
import asyncio
from typing import Optional

from fastmcp import FastMCP

from .core.errors import InternalError
from .core.logging import get_logger

logger = get_logger("dyntools.transport")

MCP_PATH = "/mcp"
TRANSPORT_SESSION_ID = "streamable-http"


class StreamableHTTPHandle:
    def __init__(self, server: FastMCP, path: str = MCP_PATH):
        self.app = server.http_app(path=path, transport="streamable-http")
        self.path = path
        self.closed = False
        self._ready = asyncio.Event()
        self._stop = asyncio.Event()
        self._task: Optional["asyncio.Task[None]"] = None

    async def start(self):
        """Enter the app lifespan once; later calls wait for the same start."""
        if self.closed:
            raise InternalError("MCP transport is closed")
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"dyntools-mcp-{id(self):x}")
        await self._ready.wait()
        if self._task.done():
            self._task.result()
            raise InternalError("MCP transport is closed")

    async def _run(self):
        try:
            async with self.app.router.lifespan_context(self.app):
                self._ready.set()
                await self._stop.wait()
        finally:
            self._ready.set()

    async def aclose(self):
        if self.closed:
            return
        self.closed = True
        self._stop.set()
        if self._task is not None:
            await self._task
        logger.debug("closed MCP transport path=%s", self.path)


__all__ = ["StreamableHTTPHandle", "MCP_PATH", "TRANSPORT_SESSION_ID"]
