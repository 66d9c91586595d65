"""Registration sinks: where activated capabilities end up.

FastMCPSink adapts a fastmcp.FastMCP server. fastmcp derives each tool's input
schema from the handler signature, so the declared schema is kept for
introspection only. Handlers taking ``*args``/``**kwargs`` are rejected by
fastmcp; those are wrapped in a single ``payload`` parameter instead.

Neither sink can unregister a tool.
"""
from __future__ import annotations
import inspect
from typing import Any, Callable, Dict, List, Optional

from fastmcp import FastMCP

from .logging import get_logger

logger = get_logger("dyntools.core.sink")


class RecordingSink:
    """In-memory sink keeping registration metadata (and handlers) by name."""

    def __init__(self):
        self.tools: Dict[str, Dict[str, Any]] = {}

    def register(self, name: str, description: str, schema: Dict[str, Any], handler: Callable[..., Any]) -> None:
        if name in self.tools:
            raise ValueError(f"tool '{name}' already registered on sink")
        self.tools[name] = {"description": description, "schema": schema, "handler": handler}

    def list_tools(self) -> List[Dict[str, Any]]:
        return [{"name": k, "description": v["description"], "input_schema": v["schema"]} for k, v in self.tools.items()]

    async def call(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Any:
        handler = self.tools[name]["handler"]
        result = handler(**(arguments or {}))
        if inspect.isawaitable(result):
            result = await result
        return result


def _has_var_params(fn: Callable[..., Any]) -> bool:
    try:
        params = inspect.signature(fn).parameters.values()
    except (TypeError, ValueError):
        return True
    return any(p.kind in (p.VAR_POSITIONAL, p.VAR_KEYWORD) for p in params)


def _payload_wrapper(name: str, handler: Callable[..., Any]) -> Callable[..., Any]:
    async def _call(payload: Optional[Dict[str, Any]] = None):
        result = handler(**(payload or {}))
        if inspect.isawaitable(result):
            result = await result
        return result

    # no functools.wraps: fastmcp must see this signature, not the wrapped one
    _call.__name__ = f"tool_{name.replace('.', '_')}_payload"
    _call.__doc__ = handler.__doc__
    return _call


class FastMCPSink(RecordingSink):
    def __init__(self, server: Optional[FastMCP] = None, name: str = "dyntools"):
        super().__init__()
        self.server = server if server is not None else FastMCP(name)

    def register(self, name: str, description: str, schema: Dict[str, Any], handler: Callable[..., Any]) -> None:
        # fastmcp silently replaces a tool of the same name
        if name in self.tools:
            raise ValueError(f"tool '{name}' already registered on sink")
        fn = _payload_wrapper(name, handler) if _has_var_params(handler) else handler
        self.server.tool(name=name, description=description or name)(fn)
        super().register(name, description, schema, handler)
        logger.debug("[MCP] registered tool=%s style=%s", name, "payload" if fn is not handler else "explicit")


__all__ = ["RecordingSink", "FastMCPSink"]
