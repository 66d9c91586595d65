"""Meta capabilities that let a connected client manage its own toolsets.

DYNAMIC mode registers enable_toolset, disable_toolset, list_toolsets,
describe_toolset and list_tools. STATIC mode only registers list_tools,
since the toolset set is fixed at startup.
"""
from __future__ import annotations
from typing import Any, Dict, List

from .activation import RegistrationSink, ToolsetActivationManager
from .mode import Mode

NAME_SCHEMA = {
    "type": "object",
    "properties": {"name": {"type": "string", "description": "Toolset name"}},
    "required": ["name"],
}
EMPTY_SCHEMA: Dict[str, Any] = {"type": "object", "properties": {}}

META_TOOL_NAMES = ("enable_toolset", "disable_toolset", "list_toolsets", "describe_toolset", "list_tools")


def toolset_payload(manager: ToolsetActivationManager, key: str, by_toolset: Dict[str, List[str]]) -> Dict[str, Any]:
    definition = manager.get_toolset_definition(key)
    return {
        "key": key,
        "active": manager.is_active(key),
        "definition": definition.describe() if definition else None,
        "tools": by_toolset.get(key, []),
    }


def register_meta_tools(sink: RegistrationSink, manager: ToolsetActivationManager, mode: Mode = "DYNAMIC") -> List[str]:
    """Register meta capabilities on ``sink``. Returns the registered names."""
    registered: List[str] = []

    if mode == "DYNAMIC":

        async def enable_toolset(name: str) -> Dict[str, Any]:
            return (await manager.enable_toolset(name)).to_payload()

        async def disable_toolset(name: str) -> Dict[str, Any]:
            return (await manager.disable_toolset(name)).to_payload()

        async def list_toolsets() -> Dict[str, Any]:
            by_toolset = manager.registry.list_by_toolset()
            return {"toolsets": [toolset_payload(manager, k, by_toolset) for k in manager.get_available_toolsets()]}

        async def describe_toolset(name: str) -> Dict[str, Any]:
            if manager.get_toolset_definition(name) is None:
                return {"error": f"Unknown toolset '{name}'"}
            return toolset_payload(manager, name, manager.registry.list_by_toolset())

        sink.register("enable_toolset", "Enable a toolset by name", NAME_SCHEMA, enable_toolset)
        sink.register("disable_toolset", "Disable a toolset by name (state only)", NAME_SCHEMA, disable_toolset)
        sink.register(
            "list_toolsets", "List available toolsets with active status and definitions", EMPTY_SCHEMA, list_toolsets
        )
        sink.register(
            "describe_toolset", "Describe a toolset with definition, active status and tools", NAME_SCHEMA, describe_toolset
        )
        registered.extend(["enable_toolset", "disable_toolset", "list_toolsets", "describe_toolset"])

    async def list_tools() -> Dict[str, Any]:
        status = manager.get_status()
        return {"tools": status["tools"], "toolset_to_tools": status["toolset_to_tools"]}

    sink.register("list_tools", "List currently registered tool names (best effort)", EMPTY_SCHEMA, list_tools)
    registered.append("list_tools")
    return registered


__all__ = ["register_meta_tools", "toolset_payload", "META_TOOL_NAMES"]
