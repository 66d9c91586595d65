"""Identity-independent exposure policy for toolset activation.

Config schema (YAML/JSON -> dict):
{
  "max_active_toolsets": 3,
  "allowlist": ["core", "search"],
  "denylist": ["experimental"],
  "namespace_capabilities_with_toolset_key": true
}

Rules, evaluated in order before any capability resolution:
 1. allowlist set and toolset absent -> denied.
 2. denylist set and toolset present -> denied.
 3. activating would exceed max_active_toolsets -> denied, and
    on_limit_exceeded(attempted, currently_active) is called once.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from .errors import ErrorCode
from .logging import get_logger

logger = get_logger("dyntools.core.policy")

LimitHook = Callable[[List[str], List[str]], None]


class ExposurePolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_active_toolsets: Optional[int] = Field(default=None, ge=0)
    allowlist: Optional[List[str]] = None
    denylist: Optional[List[str]] = None
    namespace_capabilities_with_toolset_key: bool = True
    on_limit_exceeded: Optional[LimitHook] = None


@dataclass
class PolicyDecision:
    allowed: bool
    reason: str = ""
    code: Optional[str] = None


def evaluate_policy(policy: Optional[ExposurePolicy], toolset: str, active: Sequence[str]) -> PolicyDecision:
    if policy is None:
        return PolicyDecision(True)
    if policy.allowlist is not None and toolset not in policy.allowlist:
        return PolicyDecision(False, f"Toolset '{toolset}' is not allowed by policy.", ErrorCode.POLICY_DENIED)
    if policy.denylist is not None and toolset in policy.denylist:
        return PolicyDecision(False, f"Toolset '{toolset}' is denied by policy.", ErrorCode.POLICY_DENIED)
    if policy.max_active_toolsets is not None and len(active) + 1 > policy.max_active_toolsets:
        if policy.on_limit_exceeded is not None:
            try:
                policy.on_limit_exceeded([toolset], list(active))
            except Exception:  # noqa: BLE001
                logger.exception("on_limit_exceeded callback failed toolset=%s", toolset)
        return PolicyDecision(
            False,
            f"Activation exceeds max_active_toolsets ({policy.max_active_toolsets}).",
            ErrorCode.POLICY_MAX_ACTIVE,
        )
    return PolicyDecision(True)


def sanitize_exposure_policy_for_permissions(policy: Optional[ExposurePolicy]) -> Optional[ExposurePolicy]:
    """Strip options that conflict with per-client permissions.

    Permission-based servers decide which toolsets a client gets, so only the
    namespacing flag survives; every other field is dropped with a warning.
    """
    if policy is None:
        return None
    for fld, hint in (
        ("allowlist", "Allowed toolsets are determined by client permissions."),
        ("denylist", "Use permission configuration to control toolset access."),
        ("max_active_toolsets", "Toolset count is determined by client permissions."),
        ("on_limit_exceeded", "No toolset limits are enforced."),
    ):
        if getattr(policy, fld) is not None:
            logger.warning("Permission-based servers: exposure policy %s is ignored. %s", fld, hint)
    return ExposurePolicy(namespace_capabilities_with_toolset_key=policy.namespace_capabilities_with_toolset_key)


__all__ = ["ExposurePolicy", "PolicyDecision", "evaluate_policy", "sanitize_exposure_policy_for_permissions"]
