"""ToolsetActivationManager: per-bundle toolset state machine.

States per toolset key: inactive -> active (enable_toolset) and
active -> inactive (disable_toolset). Initial state is inactive.

Activation order: name validation -> already-active check -> exposure policy
-> capability resolution (may await lazy loaders) -> name validation against
the registry -> sink registration + commit per capability -> flip to active
-> best-effort change notification.

The registration sink has no unregister operation. A failure part-way through
step 5 leaves earlier capabilities registered on the sink while the toolset
stays inactive, and disable_toolset only flips bookkeeping.
"""
from __future__ import annotations
import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, Union

from .catalog import CapabilityDefinition, ModuleResolver, ToolsetDefinition
from .errors import ErrorCode, InternalError, ToolingError
from .logging import get_logger
from .policy import ExposurePolicy, evaluate_policy
from .registry import CapabilityRegistry

logger = get_logger("dyntools.core.activation")

NotifyHook = Callable[[], Union[None, Awaitable[None]]]


class RegistrationSink(Protocol):
    def register(self, name: str, description: str, schema: Dict[str, Any], handler: Callable[..., Any]) -> None:
        ...


@dataclass
class ActivationResult:
    success: bool
    message: str
    code: Optional[str] = None
    name: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"success": self.success, "message": self.message}
        if self.name is not None:
            out["name"] = self.name
        if self.code is not None:
            out["code"] = self.code
        return out


@dataclass
class BatchActivationResult:
    success: bool
    message: str
    results: List[ActivationResult] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "results": [r.to_payload() for r in self.results],
        }


class ToolsetActivationManager:
    def __init__(
        self,
        sink: RegistrationSink,
        resolver: ModuleResolver,
        registry: Optional[CapabilityRegistry] = None,
        exposure_policy: Optional[ExposurePolicy] = None,
        context: Any = None,
        on_capabilities_changed: Optional[NotifyHook] = None,
    ):
        self.sink = sink
        self.resolver = resolver
        self.exposure_policy = exposure_policy
        self.context = context
        self.on_capabilities_changed = on_capabilities_changed
        namespaced = exposure_policy.namespace_capabilities_with_toolset_key if exposure_policy else True
        self.registry = registry if registry is not None else CapabilityRegistry(namespace_with_toolset=namespaced)
        # insertion ordered set of active toolset keys
        self._active: Dict[str, None] = {}
        self._lock = asyncio.Lock()

    # Introspection ---------------------------------------------------
    def get_available_toolsets(self) -> List[str]:
        return self.resolver.get_available_toolsets()

    def get_active_toolsets(self) -> List[str]:
        return list(self._active.keys())

    def get_toolset_definition(self, name: str) -> Optional[ToolsetDefinition]:
        return self.resolver.get_toolset_definition(name)

    def is_active(self, name: str) -> bool:
        return name in self._active

    def get_status(self) -> Dict[str, Any]:
        available = self.get_available_toolsets()
        return {
            "available_toolsets": available,
            "active_toolsets": self.get_active_toolsets(),
            "total_toolsets": len(available),
            "active_count": len(self._active),
            "tools": self.registry.list(),
            "toolset_to_tools": self.registry.list_by_toolset(),
        }

    # Transitions -----------------------------------------------------
    async def enable_toolset(self, name: str, skip_notify: bool = False) -> ActivationResult:
        async with self._lock:
            result = await self._enable_locked(name)
        if result.success and not skip_notify:
            await self._notify()
        return result

    async def disable_toolset(self, name: str) -> ActivationResult:
        async with self._lock:
            validation = self.resolver.validate_toolset_name(name)
            if not validation.is_valid:
                base = validation.error or "Unknown validation error"
                return ActivationResult(
                    False, f"{base} Active toolsets: {self._active_summary()}", ErrorCode.VALIDATION, name
                )
            sanitized = validation.sanitized
            if sanitized not in self._active:
                return ActivationResult(
                    False,
                    f"Toolset '{sanitized}' is not currently active. Active toolsets: {self._active_summary()}",
                    ErrorCode.NOT_ACTIVE,
                    sanitized,
                )
            # bookkeeping only; the sink cannot unregister
            del self._active[sanitized]
        logger.info("toolset disabled name=%s", sanitized)
        await self._notify()
        return ActivationResult(
            True,
            f"Toolset '{sanitized}' disabled successfully. Individual tools remain registered.",
            name=sanitized,
        )

    async def enable_toolsets(self, names: Sequence[str]) -> BatchActivationResult:
        results: List[ActivationResult] = []
        for name in names:
            try:
                res = await self.enable_toolset(name, skip_notify=True)
            except Exception as e:  # noqa: BLE001
                logger.exception("unexpected error enabling toolset %s", name)
                res = ActivationResult(False, str(e) or "Unknown error", ErrorCode.INTERNAL)
            res.name = name
            results.append(res)
        success_all = all(r.success for r in results)
        if any(r.success for r in results):
            await self._notify()
        message = "All toolsets enabled" if success_all else "Some toolsets failed to enable"
        return BatchActivationResult(success_all, message, results)

    async def enable_all_toolsets(self) -> BatchActivationResult:
        return await self.enable_toolsets(self.get_available_toolsets())

    # Internals -------------------------------------------------------
    async def _enable_locked(self, name: str) -> ActivationResult:
        validation = self.resolver.validate_toolset_name(name)
        if not validation.is_valid or not validation.sanitized:
            return ActivationResult(False, validation.error or "Unknown validation error", ErrorCode.VALIDATION, name)
        sanitized = validation.sanitized
        if sanitized in self._active:
            return ActivationResult(
                False, f"Toolset '{sanitized}' is already enabled.", ErrorCode.ALREADY_ACTIVE, sanitized
            )

        decision = evaluate_policy(self.exposure_policy, sanitized, self.get_active_toolsets())
        if not decision.allowed:
            logger.info("toolset denied by policy name=%s code=%s", sanitized, decision.code)
            return ActivationResult(False, decision.reason, decision.code, sanitized)

        try:
            capabilities = await self.resolver.resolve_capabilities([sanitized], self.context)
            qualified = self.registry.validate_names(sanitized, capabilities)
            for cap, safe in zip(capabilities, qualified):
                self._register(sanitized, cap, safe)
        except ToolingError as e:
            logger.warning("enable toolset failed name=%s code=%s: %s", sanitized, e.code, e.message)
            return ActivationResult(
                False, f"Failed to enable toolset '{sanitized}': {e.message}", e.code, sanitized
            )
        except Exception as e:  # noqa: BLE001
            logger.exception("enable toolset failed name=%s", sanitized)
            return ActivationResult(
                False, f"Failed to enable toolset '{sanitized}': {e}", ErrorCode.INTERNAL, sanitized
            )

        self._active[sanitized] = None
        logger.info("toolset enabled name=%s tools=%d", sanitized, len(capabilities))
        return ActivationResult(
            True,
            f"Toolset '{sanitized}' enabled successfully. Registered {len(capabilities)} tools.",
            name=sanitized,
        )

    def _register(self, toolset: str, cap: CapabilityDefinition, qualified_name: str):
        if cap.handler is None:
            raise InternalError(f"Capability '{qualified_name}' has no handler")
        self.sink.register(qualified_name, cap.description, cap.schema, cap.handler)
        self.registry.commit(toolset, qualified_name)

    async def _notify(self):
        if self.on_capabilities_changed is None:
            return
        try:
            res = self.on_capabilities_changed()
            if inspect.isawaitable(res):
                await res
        except Exception as e:  # noqa: BLE001
            logger.warning("capabilities changed notification failed (%s): %s", ErrorCode.NOTIFY_FAILED, e)

    def _active_summary(self) -> str:
        return ", ".join(self._active.keys()) or "none"


__all__ = [
    "ToolsetActivationManager",
    "RegistrationSink",
    "ActivationResult",
    "BatchActivationResult",
]
