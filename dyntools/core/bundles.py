"""Per-client resource bundles and the manager that caches them.

A bundle is everything one client holds: its own registration sink (MCP
server), capability registry, activation manager and live session handles.
Bundles are cached under ``"<client_id>:<session suffix>"``; the cache's
eviction hook closes the bundle's sessions, whichever way the entry leaves
(LRU overflow, TTL, explicit eviction or shutdown).

STATIC mode enables the client's permitted toolsets when the bundle is built.
DYNAMIC mode enables nothing up front and instead turns the permissions into
the bundle's allowlist, so meta tools can only activate permitted toolsets.
"""
from __future__ import annotations
import asyncio
import inspect
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from .activation import NotifyHook, RegistrationSink, ToolsetActivationManager
from .cache import CacheConfig, ResourceCache
from .catalog import Catalog, ModuleLoader
from .errors import PolicyDeniedError, ValidationError
from .logging import get_logger, sanitize_for_log
from .mode import Mode
from .orchestrator import ServerOrchestrator
from .permissions import PermissionResolver
from .policy import ExposurePolicy, sanitize_exposure_policy_for_permissions
from .registry import CapabilityRegistry
from .session_context import SessionContextResolver, SessionContextResult
from .sink import FastMCPSink

logger = get_logger("dyntools.core.bundles")

SinkFactory = Callable[[str], RegistrationSink]


def cache_key_for(client_id: str, suffix: str = "default") -> str:
    return f"{client_id}:{suffix}"


@dataclass
class ResourceBundle:
    client_id: str
    cache_key: str
    orchestrator: ServerOrchestrator
    allowed_toolsets: List[str] = field(default_factory=list)
    failed_toolsets: List[str] = field(default_factory=list)
    sessions: Dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    closed: bool = False

    @property
    def manager(self) -> ToolsetActivationManager:
        return self.orchestrator.manager

    @property
    def registry(self) -> CapabilityRegistry:
        return self.orchestrator.registry

    @property
    def sink(self) -> RegistrationSink:
        return self.orchestrator.sink

    def summary(self) -> Dict[str, Any]:
        return {
            "client_id": self.client_id,
            "cache_key": self.cache_key,
            "mode": self.orchestrator.mode,
            "allowed_toolsets": list(self.allowed_toolsets),
            "failed_toolsets": list(self.failed_toolsets),
            "active_toolsets": self.manager.get_active_toolsets(),
            "sessions": len(self.sessions),
            "created_at": self.created_at,
        }

    async def close(self):
        """Close every live session handle. Failures are logged per handle."""
        if self.closed:
            return
        self.closed = True
        sessions, self.sessions = self.sessions, {}
        for session_id, handle in sessions.items():
            try:
                closer = getattr(handle, "aclose", None) or getattr(handle, "close", None)
                if closer is None:
                    continue
                res = closer()
                if inspect.isawaitable(res):
                    await res
            except Exception as e:  # noqa: BLE001
                logger.warning(
                    "failed to close session %s for client %s: %s",
                    sanitize_for_log(session_id),
                    sanitize_for_log(self.client_id),
                    e,
                )
        logger.info("released bundle key=%s sessions=%d", sanitize_for_log(self.cache_key), len(sessions))


class ClientBundleManager:
    def __init__(
        self,
        catalog: Catalog,
        permission_resolver: PermissionResolver,
        module_loaders: Optional[Mapping[str, ModuleLoader]] = None,
        exposure_policy: Optional[ExposurePolicy] = None,
        base_context: Any = None,
        session_context: Optional[SessionContextResolver] = None,
        cache_config: Optional[CacheConfig] = None,
        sink_factory: Optional[SinkFactory] = None,
        notify_factory: Optional[Callable[[ResourceBundle], NotifyHook]] = None,
        mode: Mode = "STATIC",
        register_meta: bool = True,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.catalog = catalog
        self.module_loaders = module_loaders or {}
        self.permission_resolver = permission_resolver
        self.exposure_policy = exposure_policy
        self.base_context = base_context
        self.session_context = session_context
        self.sink_factory: SinkFactory = sink_factory or (lambda client_id: FastMCPSink(name=f"dyntools-{client_id}"))
        self.notify_factory = notify_factory
        self.mode = mode
        self.register_meta = register_meta
        cfg = cache_config or CacheConfig()
        self._user_on_evict = cfg.on_evict
        self.cache: ResourceCache[ResourceBundle] = ResourceCache(
            max_size=cfg.max_size,
            ttl_ms=cfg.ttl_ms,
            prune_interval_ms=cfg.prune_interval_ms,
            on_evict=self._on_evict,
            loop=loop,
        )
        self._building: Dict[str, "asyncio.Future[ResourceBundle]"] = {}

    # ------------------------------------------------------------------
    def resolve_key(
        self, client_id: str, headers: Optional[Mapping[str, Any]] = None, query: Optional[Mapping[str, Any]] = None
    ) -> "tuple[str, SessionContextResult]":
        if not isinstance(client_id, str) or not client_id.strip():
            raise ValidationError("client id must be a non-empty string")
        client_id = client_id.strip()
        if self.session_context is None:
            session = SessionContextResult(self.base_context)
        else:
            request = {"client_id": client_id, "headers": dict(headers or {}), "query": dict(query or {})}
            session = self.session_context.resolve(request, self.base_context)
        return cache_key_for(client_id, session.cache_key_suffix), session

    def get(
        self, client_id: str, query: Optional[Mapping[str, Any]] = None, headers: Optional[Mapping[str, Any]] = None
    ) -> Optional[ResourceBundle]:
        key, _ = self.resolve_key(client_id, headers, query)
        return self.cache.get(key)

    async def get_or_create(
        self, client_id: str, headers: Optional[Mapping[str, Any]] = None, query: Optional[Mapping[str, Any]] = None
    ) -> ResourceBundle:
        key, session = self.resolve_key(client_id, headers, query)
        bundle = self.cache.get(key)
        if bundle is not None:
            return bundle
        pending = self._building.get(key)
        if pending is not None:
            return await asyncio.shield(pending)
        fut: "asyncio.Future[ResourceBundle]" = asyncio.get_running_loop().create_future()
        self._building[key] = fut
        try:
            bundle = await self._build(client_id.strip(), key, headers, session)
            self.cache.set(key, bundle)
            fut.set_result(bundle)
            return bundle
        except BaseException as e:
            fut.set_exception(e)
            # mark retrieved so an unawaited failure does not warn
            fut.exception()
            raise
        finally:
            self._building.pop(key, None)

    def attach_session(
        self,
        client_id: str,
        session_id: str,
        handle: Any,
        query: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, Any]] = None,
    ):
        """Store a live session handle on the cached bundle; eviction closes it."""
        bundle = self.get(client_id, query=query, headers=headers)
        if bundle is None:
            raise ValidationError(f"no bundle cached for client '{client_id}'")
        bundle.sessions[session_id] = handle

    def evict(self, client_id: str) -> int:
        """Drop every cached bundle belonging to ``client_id``."""
        prefix = f"{client_id}:"
        removed = 0
        for key in self.cache.keys():
            if key.startswith(prefix) and self.cache.delete(key):
                removed += 1
        return removed

    def invalidate_permissions(self, client_id: Optional[str] = None) -> int:
        """Forget cached permissions and bundles so new permissions apply."""
        if client_id is None:
            self.permission_resolver.clear_cache()
            count = len(self.cache)
            self.cache.clear()
            return count
        self.permission_resolver.invalidate_cache(client_id)
        return self.evict(client_id)

    def list_bundles(self) -> List[Dict[str, Any]]:
        out = []
        for key in self.cache.keys():
            entry = self.cache.entry(key)
            if entry is not None:
                out.append(entry.value.summary())
        return out

    def bind_loop(self, loop: Optional[asyncio.AbstractEventLoop]):
        self.cache.bind_loop(loop)

    def shutdown(self):
        self.cache.stop(clear_all=True)

    async def aclose(self):
        """Stop the cache, release every bundle and wait for the releases."""
        self.cache.stop(clear_all=True)
        await self.cache.drain()

    # ------------------------------------------------------------------
    def _policy_for(self, permissions: List[str]) -> Optional[ExposurePolicy]:
        if self.mode == "STATIC":
            return sanitize_exposure_policy_for_permissions(self.exposure_policy)
        base = self.exposure_policy or ExposurePolicy()
        return base.model_copy(update={"allowlist": list(permissions)})

    async def _build(
        self, client_id: str, key: str, headers: Optional[Mapping[str, Any]], session: SessionContextResult
    ) -> ResourceBundle:
        permissions = self.permission_resolver.resolve_permissions(client_id, headers)
        holder: Dict[str, ResourceBundle] = {}

        async def _notify():
            bundle = holder.get("bundle")
            if bundle is not None and self.notify_factory is not None:
                res = self.notify_factory(bundle)()
                if inspect.isawaitable(res):
                    await res
            else:
                logger.debug("capabilities changed for %s", sanitize_for_log(key))

        orchestrator = ServerOrchestrator(
            sink=self.sink_factory(client_id),
            catalog=self.catalog,
            module_loaders=self.module_loaders,
            exposure_policy=self._policy_for(permissions),
            context=session.context,
            notify=_notify,
            mode=self.mode,
            register_meta=self.register_meta,
        )
        bundle = ResourceBundle(client_id=client_id, cache_key=key, orchestrator=orchestrator)
        holder["bundle"] = bundle

        if self.mode == "DYNAMIC":
            bundle.allowed_toolsets = list(permissions)
        elif permissions:
            result = await orchestrator.manager.enable_toolsets(permissions)
            for r in result.results:
                if r.success:
                    bundle.allowed_toolsets.append(r.name)
                else:
                    bundle.failed_toolsets.append(r.name)
                    logger.warning(
                        "Failed to enable toolset '%s' for client '%s': %s",
                        r.name,
                        sanitize_for_log(client_id),
                        r.message,
                    )
            if not bundle.allowed_toolsets and bundle.failed_toolsets:
                await bundle.close()
                raise PolicyDeniedError(
                    f"All requested toolsets failed to enable for client '{client_id}'. "
                    f"Requested: [{', '.join(permissions)}]. "
                    "Check that toolset names in permissions match the catalog.",
                    details={"failed_toolsets": bundle.failed_toolsets},
                )
        logger.info(
            "built bundle key=%s mode=%s allowed=%s failed=%s",
            sanitize_for_log(key),
            self.mode,
            bundle.allowed_toolsets,
            bundle.failed_toolsets,
        )
        return bundle

    def _on_evict(self, key: str, bundle: ResourceBundle):
        closing = bundle.close()
        if self._user_on_evict is not None:
            try:
                self._user_on_evict(key, bundle)
            except Exception as e:  # noqa: BLE001
                logger.warning("user eviction hook failed key=%s: %s", sanitize_for_log(key), e)
        return closing


__all__ = ["ResourceBundle", "ClientBundleManager", "cache_key_for"]
