"""Core framework components for dyntools.

Modules:
  errors: Exception hierarchy and stable error codes.
  logging: Logger factory (stream + optional file sink) and log sanitizing.
  cache: Bounded, time-expiring resource cache with release-on-eviction.
  catalog: Toolset/capability definitions and lazy module resolution.
  registry: Per-bundle capability name registry with namespacing.
  policy: Exposure policy (allowlist, denylist, max active toolsets).
  activation: Toolset activation state machine feeding a registration sink.
  permissions: Per-client toolset permissions from headers or config.
  session_context: Per-session loader context from query parameters.
  mode: STATIC / DYNAMIC mode resolution from args and env.
  meta_tools: Capabilities that let clients manage their own toolsets.
  orchestrator: Wires resolver, registry, manager and meta tools per sink.
  bundles: Per-client bundles cached in a ResourceCache.
  sink: Registration sinks (in-memory recorder, fastmcp server adapter).
  config_loader: Parse YAML/Python catalogs and permission/policy files.
  utils: Helper functions (hashing, entry-point imports).
"""

from .errors import ErrorCode, ToolingError  # noqa: F401
from .cache import ResourceCache, CacheConfig  # noqa: F401
from .registry import CapabilityRegistry  # noqa: F401
from .activation import ToolsetActivationManager  # noqa: F401
from .permissions import PermissionResolver, PermissionConfig  # noqa: F401
from .bundles import ClientBundleManager  # noqa: F401
