"""Toolset catalog types and capability resolution.

A catalog maps toolset keys to ToolsetDefinition. A toolset contributes
capabilities either directly (``capabilities``) or through lazy module
loaders referenced by key (``modules``), resolved against the
``module_loaders`` mapping at activation time.
"""
from __future__ import annotations
import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Union

from .errors import LoaderError
from .logging import get_logger

logger = get_logger("dyntools.core.catalog")


@dataclass(frozen=True)
class CapabilityDefinition:
    name: str
    description: str = ""
    schema: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})
    handler: Optional[Callable[..., Any]] = None


@dataclass(frozen=True)
class ToolsetDefinition:
    key: str
    name: str
    description: str = ""
    capabilities: List[CapabilityDefinition] = field(default_factory=list)
    modules: List[str] = field(default_factory=list)
    decision_criteria: Optional[str] = None

    def describe(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "modules": list(self.modules),
        }
        if self.decision_criteria:
            out["decision_criteria"] = self.decision_criteria
        return out


Catalog = Mapping[str, ToolsetDefinition]
ModuleLoader = Callable[[Any], Union[Sequence[CapabilityDefinition], Awaitable[Sequence[CapabilityDefinition]]]]


@dataclass
class NameValidation:
    is_valid: bool
    sanitized: Optional[str] = None
    error: Optional[str] = None


class ModuleResolver:
    def __init__(self, catalog: Catalog, module_loaders: Optional[Mapping[str, ModuleLoader]] = None):
        self.catalog = catalog
        self.module_loaders: Mapping[str, ModuleLoader] = module_loaders or {}

    def get_available_toolsets(self) -> List[str]:
        return list(self.catalog.keys())

    def get_toolset_definition(self, name: str) -> Optional[ToolsetDefinition]:
        return self.catalog.get(name)

    def validate_toolset_name(self, name: Any) -> NameValidation:
        available = ", ".join(self.get_available_toolsets())
        if not name or not isinstance(name, str):
            return NameValidation(
                False, error=f"Invalid toolset name provided. Must be a non-empty string. Available toolsets: {available}"
            )
        sanitized = name.strip()
        if not sanitized:
            return NameValidation(False, error=f"Empty toolset name provided. Available toolsets: {available}")
        if sanitized not in self.catalog:
            return NameValidation(False, error=f"Toolset '{sanitized}' not found. Available toolsets: {available}")
        return NameValidation(True, sanitized=sanitized)

    async def resolve_capabilities(self, toolsets: Sequence[str], context: Any = None) -> List[CapabilityDefinition]:
        """Collect direct and module-contributed capabilities for ``toolsets``.

        Raises LoaderError when a registered loader fails or returns something
        other than a list of CapabilityDefinition. Module keys with no loader
        are skipped with a warning.
        """
        collected: List[CapabilityDefinition] = []
        for name in toolsets:
            definition = self.catalog.get(name)
            if definition is None:
                continue
            collected.extend(definition.capabilities)
            for mod_key in definition.modules:
                loader = self.module_loaders.get(mod_key)
                if loader is None:
                    logger.warning("no loader registered for module '%s' (toolset '%s')", mod_key, name)
                    continue
                collected.extend(await self._run_loader(name, mod_key, loader, context))
        return collected

    @staticmethod
    async def _run_loader(toolset: str, mod_key: str, loader: ModuleLoader, context: Any) -> List[CapabilityDefinition]:
        try:
            loaded = loader(context)
            if inspect.isawaitable(loaded):
                loaded = await loaded
        except Exception as e:  # noqa: BLE001
            raise LoaderError(
                f"Module loader '{mod_key}' failed for toolset '{toolset}': {e}",
                details={"toolset": toolset, "module": mod_key},
            ) from e
        if loaded is None:
            return []
        if not isinstance(loaded, (list, tuple)) or not all(isinstance(c, CapabilityDefinition) for c in loaded):
            raise LoaderError(
                f"Module loader '{mod_key}' for toolset '{toolset}' must return a list of CapabilityDefinition",
                details={"toolset": toolset, "module": mod_key},
            )
        return list(loaded)


__all__ = [
    "CapabilityDefinition",
    "ToolsetDefinition",
    "Catalog",
    "ModuleLoader",
    "ModuleResolver",
    "NameValidation",
]
