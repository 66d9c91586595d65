"""Startup mode resolution (DYNAMIC vs STATIC) from CLI args and env."""
from __future__ import annotations
from typing import Any, Iterable, List, Literal, Mapping, Optional, Sequence

from .catalog import Catalog
from .logging import get_logger

logger = get_logger("dyntools.core.mode")

Mode = Literal["DYNAMIC", "STATIC"]

DEFAULT_DYNAMIC_KEYS = ("dynamic-tool-discovery", "dynamicToolDiscovery", "DYNAMIC_TOOL_DISCOVERY")
DEFAULT_TOOLSET_KEYS = ("tool-sets", "toolSets", "DYNTOOLS_TOOL_SETS")


class ModeResolver:
    def __init__(self, dynamic_keys: Optional[Sequence[str]] = None, toolset_keys: Optional[Sequence[str]] = None):
        self.dynamic_keys = tuple(dynamic_keys or DEFAULT_DYNAMIC_KEYS)
        self.toolset_keys = tuple(toolset_keys or DEFAULT_TOOLSET_KEYS)

    def resolve_mode(
        self, env: Optional[Mapping[str, Any]] = None, args: Optional[Mapping[str, Any]] = None
    ) -> Optional[Mode]:
        """Args take precedence over env. None means no override."""
        for source in (args, env):
            if self._is_dynamic(source):
                return "DYNAMIC"
            if self.get_toolsets_string(source):
                return "STATIC"
        return None

    def get_toolsets_string(self, source: Optional[Mapping[str, Any]]) -> Optional[str]:
        if not source:
            return None
        for key in self.toolset_keys:
            value = source.get(key)
            if isinstance(value, str) and value.strip():
                return value
        return None

    @staticmethod
    def parse_comma_separated_toolsets(value: Optional[str], catalog: Catalog) -> List[str]:
        if not value or not isinstance(value, str):
            return []
        result: List[str] = []
        for name in (s.strip() for s in value.split(",")):
            if not name:
                continue
            if name in catalog:
                result.append(name)
            else:
                logger.warning("Invalid toolset '%s' ignored. Available: %s", name, ", ".join(catalog.keys()))
        return result

    @staticmethod
    def get_modules_for_toolsets(toolsets: Iterable[str], catalog: Catalog) -> List[str]:
        modules: dict = {}
        for name in toolsets:
            definition = catalog.get(name)
            if definition is None:
                continue
            for m in definition.modules:
                modules.setdefault(m, None)
        return list(modules.keys())

    def _is_dynamic(self, source: Optional[Mapping[str, Any]]) -> bool:
        if not source:
            return False
        for key in self.dynamic_keys:
            value = source.get(key)
            if value is True:
                return True
            if isinstance(value, str) and value.strip().lower() == "true":
                return True
        return False


__all__ = ["ModeResolver", "Mode"]
