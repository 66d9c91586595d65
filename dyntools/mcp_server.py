"""MCP management server (FastAPI) wrapping ClientBundleManager.

Every client-scoped request carries the ``mcp-client-id`` header; the bundle
for that client (and session config query parameter) is built on first use
and cached. Permissions come from the header named in the permission config
(``mcp-toolset-permissions`` by default) or from the static config.

MCP clients connect to ``/mcp`` with the same header and are served by their
own bundle's FastMCP server over streamable HTTP.

Environment variables:
  DYNTOOLS_CATALOG=path        catalog YAML / Python file
  DYNTOOLS_PERMISSIONS=path    permission config YAML
  DYNTOOLS_POLICY=path         exposure policy YAML
  DYNAMIC_TOOL_DISCOVERY=true  run bundles in DYNAMIC mode

CLI will import this module and call create_app().
"""
from __future__ import annotations
import asyncio
import os
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

from fastapi import Body, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from starlette.routing import Route

from .core.bundles import ClientBundleManager, ResourceBundle, SinkFactory
from .core.cache import CacheConfig
from .core.catalog import Catalog, ModuleLoader
from .core.config_loader import load_catalog, load_exposure_policy, load_permission_config
from .core.errors import ConfigError, ErrorCode, InternalError, ToolingError
from .core.logging import core_logger, sanitize_for_log
from .core.meta_tools import toolset_payload
from .core.mode import Mode, ModeResolver
from .core.permissions import PermissionConfig, PermissionResolver
from .core.policy import ExposurePolicy
from .core.session_context import SessionContextResolver
from .transport import MCP_PATH, TRANSPORT_SESSION_ID, StreamableHTTPHandle

CLIENT_ID_HEADER = "mcp-client-id"

_STATUS_BY_CODE = {
    ErrorCode.VALIDATION: 400,
    ErrorCode.NOT_ACTIVE: 409,
    ErrorCode.ALREADY_ACTIVE: 409,
    ErrorCode.TOOL_NAME_CONFLICT: 409,
    ErrorCode.POLICY_DENIED: 403,
    ErrorCode.POLICY_MAX_ACTIVE: 403,
    ErrorCode.LOADER: 502,
    ErrorCode.CONFIG: 500,
    ErrorCode.INTERNAL: 500,
}


def status_for_code(code: Optional[str]) -> int:
    return _STATUS_BY_CODE.get(code or ErrorCode.INTERNAL, 500)


class BundleTransportEndpoint:
    """ASGI endpoint routing MCP traffic to the caller's bundle server.

    The transport handle is created on the first request for a bundle and
    attached to it as a session, so it shuts down when the bundle leaves the
    cache.
    """

    def __init__(self, bundles: ClientBundleManager):
        self.bundles = bundles

    async def __call__(self, scope, receive, send):
        request = Request(scope, receive)
        client_id = request.headers.get(CLIENT_ID_HEADER, "")
        if not client_id.strip():
            response = JSONResponse(
                {"error": f"Missing or empty '{CLIENT_ID_HEADER}' header", "code": ErrorCode.VALIDATION},
                status_code=400,
            )
            await response(scope, receive, send)
            return
        headers, query = dict(request.headers), dict(request.query_params)
        try:
            bundle = await self.bundles.get_or_create(client_id, headers, query)
            handle = self._handle_for(bundle, headers, query)
            await handle.start()
        except ToolingError as e:
            await JSONResponse(e.to_payload(), status_code=status_for_code(e.code))(scope, receive, send)
            return
        await handle.app(scope, receive, send)

    def _handle_for(self, bundle: ResourceBundle, headers, query) -> StreamableHTTPHandle:
        handle = bundle.sessions.get(TRANSPORT_SESSION_ID)
        if handle is not None:
            return handle
        server = getattr(bundle.sink, "server", None)
        if server is None:
            raise InternalError("Registration sink does not expose an MCP server")
        handle = StreamableHTTPHandle(server)
        self.bundles.attach_session(bundle.client_id, TRANSPORT_SESSION_ID, handle, query=query, headers=headers)
        core_logger.info("[MCP] transport opened client=%s key=%s", sanitize_for_log(bundle.client_id), sanitize_for_log(bundle.cache_key))
        return handle



def _path_from_env(explicit: Optional[str], env_var: str) -> Optional[Path]:
    value = explicit or os.getenv(env_var)
    return Path(value) if value else None


def _load_inputs(
    catalog: Optional[Catalog],
    module_loaders: Optional[Mapping[str, ModuleLoader]],
    catalog_path: Optional[str],
    permission_config: Optional[PermissionConfig],
    permissions_path: Optional[str],
    exposure_policy: Optional[ExposurePolicy],
    policy_path: Optional[str],
):
    loaders: Dict[str, ModuleLoader] = dict(module_loaders or {})
    if catalog is None:
        path = _path_from_env(catalog_path, "DYNTOOLS_CATALOG")
        if path is None:
            raise ConfigError("No catalog configured. Pass --catalog or set DYNTOOLS_CATALOG.")
        catalog, file_loaders = load_catalog(path)
        loaders = {**file_loaders, **loaders}
    if permission_config is None:
        path = _path_from_env(permissions_path, "DYNTOOLS_PERMISSIONS")
        permission_config = load_permission_config(path) if path else PermissionConfig(source="headers")
    if exposure_policy is None:
        path = _path_from_env(policy_path, "DYNTOOLS_POLICY")
        exposure_policy = load_exposure_policy(path) if path else None
    return catalog, loaders, permission_config, exposure_policy


def create_app(
    catalog_path: Optional[str] = None,
    permissions_path: Optional[str] = None,
    policy_path: Optional[str] = None,
    catalog: Optional[Catalog] = None,
    module_loaders: Optional[Mapping[str, ModuleLoader]] = None,
    permission_config: Optional[PermissionConfig] = None,
    exposure_policy: Optional[ExposurePolicy] = None,
    cache_config: Optional[CacheConfig] = None,
    session_context: Optional[SessionContextResolver] = None,
    base_context: Any = None,
    mode: Optional[Mode] = None,
    sink_factory: Optional[SinkFactory] = None,
    notify_factory: Optional[Callable[[ResourceBundle], Any]] = None,
):
    catalog, loaders, permission_config, exposure_policy = _load_inputs(
        catalog, module_loaders, catalog_path, permission_config, permissions_path, exposure_policy, policy_path
    )
    resolved_mode: Mode = mode or ModeResolver().resolve_mode(env=os.environ) or "STATIC"
    bundles = ClientBundleManager(
        catalog=catalog,
        permission_resolver=PermissionResolver(permission_config),
        module_loaders=loaders,
        exposure_policy=exposure_policy,
        base_context=base_context,
        session_context=session_context or SessionContextResolver(),
        cache_config=cache_config,
        sink_factory=sink_factory,
        notify_factory=notify_factory,
        mode=resolved_mode,
    )
    core_logger.info(
        "Catalog loaded (toolsets=%d, loaders=%d, mode=%s, permissions=%s)",
        len(catalog),
        len(loaders),
        resolved_mode,
        permission_config.source,
    )

    app = FastAPI(title="dyntools-mcp", version="0.1.0")
    app.state.bundles = bundles
    app.state.mode = resolved_mode

    @app.exception_handler(ToolingError)
    async def _tooling_error(request: Request, exc: ToolingError):  # noqa: ARG001
        return JSONResponse(status_code=status_for_code(exc.code), content=exc.to_payload())

    @app.on_event("startup")
    async def _bind_loop():
        bundles.bind_loop(asyncio.get_running_loop())

    @app.on_event("shutdown")
    async def _shutdown():
        core_logger.info("shutting down, releasing %d client bundles", len(bundles.cache))
        await bundles.aclose()

    async def _bundle_for(request: Request) -> ResourceBundle:
        client_id = request.headers.get(CLIENT_ID_HEADER, "")
        if not client_id.strip():
            raise HTTPException(status_code=400, detail=f"Missing or empty '{CLIENT_ID_HEADER}' header")
        return await bundles.get_or_create(client_id, dict(request.headers), dict(request.query_params))

    def _require_dynamic():
        if resolved_mode != "DYNAMIC":
            raise HTTPException(
                status_code=403,
                detail={"error": "Toolsets are fixed per client in STATIC mode", "code": ErrorCode.POLICY_DENIED},
            )

    @app.get("/health")
    def health():
        return {"status": "ok", "mode": resolved_mode, "clients": len(bundles.cache)}

    @app.get("/toolsets")
    async def list_toolsets(request: Request):
        bundle = await _bundle_for(request)
        by_toolset = bundle.registry.list_by_toolset()
        return {
            "allowed": bundle.allowed_toolsets,
            "toolsets": [toolset_payload(bundle.manager, k, by_toolset) for k in bundle.manager.get_available_toolsets()],
        }

    @app.get("/toolsets/{name}")
    async def describe_toolset(name: str, request: Request):
        bundle = await _bundle_for(request)
        if bundle.manager.get_toolset_definition(name) is None:
            raise HTTPException(status_code=404, detail=f"Toolset '{name}' not found")
        return toolset_payload(bundle.manager, name, bundle.registry.list_by_toolset())

    @app.post("/toolsets/{name}/enable")
    async def enable_toolset(name: str, request: Request):
        _require_dynamic()
        bundle = await _bundle_for(request)
        result = await bundle.manager.enable_toolset(name)
        if not result.success:
            raise HTTPException(status_code=status_for_code(result.code), detail=result.to_payload())
        return result.to_payload()

    @app.post("/toolsets/{name}/disable")
    async def disable_toolset(name: str, request: Request):
        _require_dynamic()
        bundle = await _bundle_for(request)
        result = await bundle.manager.disable_toolset(name)
        if not result.success:
            raise HTTPException(status_code=status_for_code(result.code), detail=result.to_payload())
        return result.to_payload()

    @app.get("/tools")
    async def list_tools(request: Request):
        bundle = await _bundle_for(request)
        status = bundle.manager.get_status()
        return {
            "tools": status["tools"],
            "toolset_to_tools": status["toolset_to_tools"],
            "meta_tools": bundle.orchestrator.meta_tools,
        }

    @app.post("/tools/{name}/call")
    async def call_tool(name: str, request: Request, arguments: Optional[Dict[str, Any]] = Body(None)):
        bundle = await _bundle_for(request)
        caller = getattr(bundle.sink, "call", None)
        if caller is None:
            raise HTTPException(status_code=501, detail="Registration sink does not support direct calls")
        if not bundle.registry.has(name) and name not in bundle.orchestrator.meta_tools:
            raise HTTPException(status_code=404, detail=f"Tool '{name}' not registered")
        try:
            return {"tool": name, "result": await caller(name, arguments or {})}
        except ToolingError:
            raise
        except Exception as e:  # noqa: BLE001
            core_logger.exception("tool call failed tool=%s", name)
            raise HTTPException(status_code=500, detail=str(e))

    @app.get("/admin/clients")
    def admin_clients():
        return {"clients": bundles.list_bundles(), "max_size": bundles.cache.max_size, "ttl_ms": bundles.cache.ttl_ms}

    @app.delete("/admin/clients/{client_id}")
    async def admin_evict_client(client_id: str):
        removed = bundles.evict(client_id)
        await bundles.cache.drain()
        if not removed:
            raise HTTPException(status_code=404, detail="Client has no cached bundle")
        core_logger.info("evicted client=%s bundles=%d", sanitize_for_log(client_id), removed)
        return {"evicted": client_id, "bundles": removed}

    @app.post("/admin/permissions/invalidate")
    async def admin_invalidate_permissions(client_id: Optional[str] = Query(None)):
        removed = bundles.invalidate_permissions(client_id)
        await bundles.cache.drain()
        return {"invalidated": client_id or "*", "bundles": removed}

    # per-client MCP servers; the bundle is picked by the client id header
    app.router.routes.append(
        Route(MCP_PATH, endpoint=BundleTransportEndpoint(bundles), methods=["GET", "POST", "DELETE"], include_in_schema=False)
    )
    core_logger.info("[MCP] per-client transport mounted at %s", MCP_PATH)

    return app


__all__ = ["create_app", "status_for_code", "BundleTransportEndpoint", "CLIENT_ID_HEADER"]
