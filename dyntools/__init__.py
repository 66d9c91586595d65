"""
dyntools

Per-client dynamic toolset exposure for MCP servers: clients get their own
bundle of registered capabilities, gated by permissions and an exposure
policy, cached with LRU + TTL eviction that releases session resources.
"""

from .core.errors import (
    ErrorCode,
    ToolingError,
    ValidationError,
    PolicyDeniedError,
    CollisionError,
    LoaderError,
    ConfigError,
)
from .core.cache import ResourceCache, CacheConfig
from .core.catalog import CapabilityDefinition, ToolsetDefinition, ModuleResolver
from .core.registry import CapabilityRegistry
from .core.policy import ExposurePolicy
from .core.activation import ToolsetActivationManager, ActivationResult
from .core.permissions import PermissionConfig, PermissionResolver
from .core.session_context import SessionContextConfig, SessionContextResolver
from .core.orchestrator import ServerOrchestrator
from .core.bundles import ClientBundleManager, ResourceBundle

__all__ = [
    "ErrorCode",
    "ToolingError",
    "ValidationError",
    "PolicyDeniedError",
    "CollisionError",
    "LoaderError",
    "ConfigError",
    "ResourceCache",
    "CacheConfig",
    "CapabilityDefinition",
    "ToolsetDefinition",
    "ModuleResolver",
    "CapabilityRegistry",
    "ExposurePolicy",
    "ToolsetActivationManager",
    "ActivationResult",
    "PermissionConfig",
    "PermissionResolver",
    "SessionContextConfig",
    "SessionContextResolver",
    "ServerOrchestrator",
    "ClientBundleManager",
    "ResourceBundle",
]
