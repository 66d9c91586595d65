from dyntools.core.errors import ErrorCode
from dyntools.core.policy import ExposurePolicy, evaluate_policy, sanitize_exposure_policy_for_permissions


def test_no_policy_allows():
    assert evaluate_policy(None, "core", []).allowed


def test_rules_in_order():
    pol = ExposurePolicy(allowlist=["a", "b"], denylist=["b"], max_active_toolsets=1)
    assert evaluate_policy(pol, "c", []).code == ErrorCode.POLICY_DENIED
    assert evaluate_policy(pol, "b", []).code == ErrorCode.POLICY_DENIED
    assert evaluate_policy(pol, "a", ["x"]).code == ErrorCode.POLICY_MAX_ACTIVE
    assert evaluate_policy(pol, "a", []).allowed


def test_sanitize_keeps_only_namespacing():
    pol = ExposurePolicy(
        allowlist=["a"],
        denylist=["b"],
        max_active_toolsets=1,
        namespace_capabilities_with_toolset_key=False,
        on_limit_exceeded=lambda a, c: None,
    )
    clean = sanitize_exposure_policy_for_permissions(pol)
    assert clean.allowlist is None
    assert clean.denylist is None
    assert clean.max_active_toolsets is None
    assert clean.on_limit_exceeded is None
    assert clean.namespace_capabilities_with_toolset_key is False
    assert sanitize_exposure_policy_for_permissions(None) is None
