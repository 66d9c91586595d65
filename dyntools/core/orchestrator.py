"""ServerOrchestrator: wires resolver, registry, activation manager and meta tools
for a single registration sink (one per client bundle)."""
from __future__ import annotations
from typing import Any, List, Mapping, Optional, Sequence, Union

from .activation import BatchActivationResult, NotifyHook, RegistrationSink, ToolsetActivationManager
from .catalog import Catalog, ModuleLoader, ModuleResolver
from .logging import get_logger
from .meta_tools import register_meta_tools
from .mode import Mode
from .policy import ExposurePolicy
from .registry import CapabilityRegistry

logger = get_logger("dyntools.core.orchestrator")


class ServerOrchestrator:
    def __init__(
        self,
        sink: RegistrationSink,
        catalog: Catalog,
        module_loaders: Optional[Mapping[str, ModuleLoader]] = None,
        exposure_policy: Optional[ExposurePolicy] = None,
        context: Any = None,
        notify: Optional[NotifyHook] = None,
        mode: Mode = "DYNAMIC",
        register_meta: bool = True,
    ):
        self.sink = sink
        self.mode = mode
        self.resolver = ModuleResolver(catalog, module_loaders)
        namespaced = exposure_policy.namespace_capabilities_with_toolset_key if exposure_policy else True
        self.registry = CapabilityRegistry(namespace_with_toolset=namespaced)
        self.manager = ToolsetActivationManager(
            sink=sink,
            resolver=self.resolver,
            registry=self.registry,
            exposure_policy=exposure_policy,
            context=context,
            on_capabilities_changed=notify,
        )
        self.meta_tools: List[str] = register_meta_tools(sink, self.manager, mode) if register_meta else []

    async def start(self, toolsets: Union[Sequence[str], str, None] = None) -> Optional[BatchActivationResult]:
        """Enable the startup toolsets ("ALL" enables the whole catalog)."""
        if toolsets == "ALL":
            result = await self.manager.enable_all_toolsets()
        elif toolsets:
            result = await self.manager.enable_toolsets(list(toolsets))
        else:
            return None
        for r in result.results:
            if not r.success:
                logger.warning("startup toolset '%s' not enabled: %s", r.name, r.message)
        return result


__all__ = ["ServerOrchestrator"]
