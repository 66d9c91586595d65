"""Per-client toolset permissions.

Resolution chain (first hit wins), memoized per client id until
invalidate_cache/clear_cache:

  headers mode:  configured header (case-insensitive), comma separated
  config mode:   resolver(client_id) -> static_map[client_id] -> default_permissions

Resolution never raises. Any unexpected failure is logged and yields an
empty list, so a broken config denies rather than grants.
"""
from __future__ import annotations
import threading
from typing import Any, Callable, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, ValidationError as PydanticValidationError, field_validator, model_validator

from .errors import ConfigError
from .logging import get_logger, sanitize_for_log

logger = get_logger("dyntools.core.permissions")

DEFAULT_HEADER_NAME = "mcp-toolset-permissions"

PermissionFn = Callable[[str], List[str]]


class PermissionConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: Literal["headers", "config"]
    header_name: str = DEFAULT_HEADER_NAME
    static_map: Optional[Dict[str, list]] = None
    resolver: Optional[PermissionFn] = None
    default_permissions: List[Any] = []

    @field_validator("header_name")
    @classmethod
    def _header_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("header_name must be a non-empty string")
        return v

    @model_validator(mode="after")
    def _config_source_needs_lookup(self) -> "PermissionConfig":
        if self.source == "config" and self.static_map is None and self.resolver is None:
            raise ValueError("Config-based permissions require at least one of: static_map or resolver function")
        return self


def validate_permission_config(config: Any) -> PermissionConfig:
    """Validate a raw mapping (or pass through a model), raising ConfigError."""
    if isinstance(config, PermissionConfig):
        return config
    if not isinstance(config, Mapping):
        raise ConfigError("Permission configuration is required")
    try:
        return PermissionConfig(**dict(config))
    except (PydanticValidationError, ValueError, TypeError) as e:
        raise ConfigError(f"Invalid permission configuration: {e}") from e


def _clean(values: Any) -> List[str]:
    if not isinstance(values, (list, tuple)):
        return []
    return [v for v in values if isinstance(v, str) and v.strip()]


class PermissionResolver:
    def __init__(self, config: PermissionConfig):
        self.config = config
        self._header_key = config.header_name.lower()
        self._cache: Dict[str, List[str]] = {}
        self._lock = threading.Lock()

    def resolve_permissions(self, client_id: str, headers: Optional[Mapping[str, Any]] = None) -> List[str]:
        """Return the toolsets ``client_id`` may activate. Never raises."""
        try:
            with self._lock:
                cached = self._cache.get(client_id)
            if cached is not None:
                return list(cached)
            if self.config.source == "headers":
                permissions = self._parse_header_permissions(headers)
            else:
                permissions = self._resolve_config_permissions(client_id)
            if not isinstance(permissions, list):
                logger.warning(
                    "permission resolution returned non-list for client %s, using empty permissions",
                    sanitize_for_log(client_id),
                )
                permissions = []
            permissions = _clean(permissions)
        except Exception:  # noqa: BLE001
            logger.exception("unexpected error resolving permissions for client %s", sanitize_for_log(client_id))
            permissions = []
        try:
            with self._lock:
                self._cache[client_id] = permissions
        except TypeError:
            # unhashable client id; nothing sensible to memoize under
            logger.warning("client id %s is not cacheable", sanitize_for_log(client_id))
        return list(permissions)

    def invalidate_cache(self, client_id: str):
        with self._lock:
            self._cache.pop(client_id, None)

    def clear_cache(self):
        with self._lock:
            self._cache.clear()

    def cached_clients(self) -> List[str]:
        with self._lock:
            return list(self._cache.keys())

    # ------------------------------------------------------------------
    def _parse_header_permissions(self, headers: Optional[Mapping[str, Any]]) -> List[str]:
        if not headers:
            return []
        value = self._find_header(headers)
        if not value:
            return []
        if not isinstance(value, str):
            logger.warning("permission header '%s' is not a string", self._header_key)
            return []
        return [s.strip() for s in value.split(",") if s.strip()]

    def _find_header(self, headers: Mapping[str, Any]) -> Any:
        # fast path: ASGI frameworks already lowercase header names
        if self._header_key in headers:
            return headers[self._header_key]
        for key, value in headers.items():
            if isinstance(key, str) and key.lower() == self._header_key:
                return value
        return None

    def _resolve_config_permissions(self, client_id: str) -> List[str]:
        if self.config.resolver is not None:
            result = self._try_resolver(client_id)
            if result is not None:
                return result
        if self.config.static_map is not None and client_id in self.config.static_map:
            entry = self.config.static_map[client_id]
            return list(entry) if isinstance(entry, list) else []
        return list(self.config.default_permissions or [])

    def _try_resolver(self, client_id: str) -> Optional[List[str]]:
        try:
            result = self.config.resolver(client_id)  # type: ignore[misc]
        except Exception as e:  # noqa: BLE001
            logger.warning(
                "permission resolver declined client %s (%s), trying fallback", sanitize_for_log(client_id), e
            )
            return None
        if isinstance(result, (list, tuple)):
            return _clean(result)
        logger.warning("permission resolver returned non-list for client %s, using fallback", sanitize_for_log(client_id))
        return None


__all__ = ["PermissionConfig", "PermissionResolver", "validate_permission_config", "DEFAULT_HEADER_NAME"]
