"""Per-session context resolution from request query parameters.

A client may pass extra loader context (tokens, user ids) through a query
parameter, encoded as base64 JSON or plain JSON. Keys are filtered against an
allowlist and merged into the server's base context. Bundles built from
different session configs must not share a cache entry, so each result also
carries a cache key suffix derived from the filtered config.

Parsing is fail-secure: undecodable or non-object payloads are treated as an
empty config.
"""
from __future__ import annotations
import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from .logging import get_logger
from .utils import stable_hash

logger = get_logger("dyntools.core.session_context")

DEFAULT_SUFFIX = "default"

ContextFn = Callable[[Mapping[str, Any], Any, Dict[str, Any]], Any]


class SessionContextConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    query_param: str = "config"
    encoding: Literal["base64", "json"] = "base64"
    allowed_keys: Optional[List[str]] = None
    merge: Literal["shallow", "deep"] = "shallow"
    context_resolver: Optional[ContextFn] = None


@dataclass
class SessionContextResult:
    context: Any
    cache_key_suffix: str = DEFAULT_SUFFIX


class SessionContextResolver:
    def __init__(self, config: Optional[SessionContextConfig] = None):
        self.config = config or SessionContextConfig()

    def resolve(self, request: Mapping[str, Any], base_context: Any) -> SessionContextResult:
        """Resolve context for ``request`` ({"client_id", "headers", "query"})."""
        if not self.config.enabled:
            return SessionContextResult(base_context)
        parsed = self.parse_query_config(request.get("query") or {})
        if self.config.context_resolver is not None:
            try:
                ctx = self.config.context_resolver(request, base_context, parsed)
            except Exception as e:  # noqa: BLE001
                logger.warning("session context resolver failed, using base context: %s", e)
                return SessionContextResult(base_context)
            return SessionContextResult(ctx, self.cache_key_suffix(parsed))
        return SessionContextResult(self.merge_contexts(base_context, parsed), self.cache_key_suffix(parsed))

    def parse_query_config(self, query: Mapping[str, Any]) -> Dict[str, Any]:
        raw = query.get(self.config.query_param)
        if not raw or not isinstance(raw, str):
            return {}
        try:
            if self.config.encoding == "base64":
                text = base64.b64decode(raw, validate=False).decode("utf-8")
            else:
                text = raw
            parsed = json.loads(text)
        except (binascii.Error, UnicodeDecodeError, ValueError):
            return {}
        if not isinstance(parsed, dict):
            return {}
        if self.config.allowed_keys is None:
            return parsed
        return {k: parsed[k] for k in self.config.allowed_keys if k in parsed}

    def merge_contexts(self, base_context: Any, session_config: Dict[str, Any]) -> Any:
        if not session_config:
            return base_context
        if not isinstance(base_context, dict):
            return dict(session_config)
        if self.config.merge == "deep":
            return _deep_merge(base_context, session_config)
        return {**base_context, **session_config}

    @staticmethod
    def cache_key_suffix(session_config: Dict[str, Any]) -> str:
        if not session_config:
            return DEFAULT_SUFFIX
        return stable_hash([json.dumps(session_config, sort_keys=True, separators=(",", ":"), default=str)])


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        current = result.get(key)
        if isinstance(value, dict) and isinstance(current, dict):
            result[key] = _deep_merge(current, value)
        else:
            result[key] = value
    return result


__all__ = ["SessionContextConfig", "SessionContextResolver", "SessionContextResult"]
