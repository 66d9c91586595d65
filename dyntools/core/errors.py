"""Centralized exception hierarchy for toolset activation and permissions."""
from __future__ import annotations
from typing import Any, Dict, Optional


class ErrorCode:
    VALIDATION = "E_VALIDATION"
    ALREADY_ACTIVE = "E_ALREADY_ACTIVE"
    NOT_ACTIVE = "E_NOT_ACTIVE"
    POLICY_DENIED = "E_POLICY_DENIED"
    POLICY_MAX_ACTIVE = "E_POLICY_MAX_ACTIVE"
    TOOL_NAME_CONFLICT = "E_TOOL_NAME_CONFLICT"
    LOADER = "E_LOADER"
    NOTIFY_FAILED = "E_NOTIFY_FAILED"
    INTERNAL = "E_INTERNAL"
    CONFIG = "E_CONFIG"


class ToolingError(Exception):
    """Base class for all toolset related errors."""

    default_code = ErrorCode.INTERNAL

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(ToolingError):  # unknown / malformed names, state preconditions
    default_code = ErrorCode.VALIDATION


class PolicyDeniedError(ToolingError):
    default_code = ErrorCode.POLICY_DENIED


class CollisionError(ToolingError):
    default_code = ErrorCode.TOOL_NAME_CONFLICT


class LoaderError(ToolingError):
    default_code = ErrorCode.LOADER


class InternalError(ToolingError):
    pass


class ConfigError(ToolingError):
    default_code = ErrorCode.CONFIG


__all__ = [
    "ErrorCode",
    "ToolingError",
    "ValidationError",
    "PolicyDeniedError",
    "CollisionError",
    "LoaderError",
    "InternalError",
    "ConfigError",
]
