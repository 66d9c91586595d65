import pytest

from dyntools.core.errors import CollisionError, ErrorCode
from dyntools.core.registry import CapabilityRegistry

from conftest import make_cap


def test_qualify_namespacing():
    reg = CapabilityRegistry()
    assert reg.qualify("core", "ping") == "core.ping"
    # already prefixed names pass through
    assert reg.qualify("core", "core.ping") == "core.ping"
    flat = CapabilityRegistry(namespace_with_toolset=False)
    assert flat.qualify("core", "ping") == "ping"


def test_add_collision():
    reg = CapabilityRegistry()
    reg.add("x")
    with pytest.raises(CollisionError) as ei:
        reg.add("x")
    assert ei.value.code == ErrorCode.TOOL_NAME_CONFLICT


def test_validate_names_is_pure():
    reg = CapabilityRegistry()
    names = reg.validate_names("core", [make_cap("a"), make_cap("b")])
    assert names == ["core.a", "core.b"]
    assert len(reg) == 0
    assert not reg.has("core.a")


def test_validate_names_detects_existing_and_batch_duplicates():
    reg = CapabilityRegistry()
    reg.commit("core", "core.a")
    with pytest.raises(CollisionError):
        reg.validate_names("core", [make_cap("a")])
    with pytest.raises(CollisionError):
        reg.validate_names("other", [make_cap("dup"), make_cap("dup")])
    assert reg.list() == ["core.a"]


def test_namespacing_avoids_cross_toolset_collisions():
    reg = CapabilityRegistry()
    for ts in ("a", "b"):
        for name in reg.validate_names(ts, [make_cap("run")]):
            reg.commit(ts, name)
    assert reg.list() == ["a.run", "b.run"]
    assert reg.list_by_toolset() == {"a": ["a.run"], "b": ["b.run"]}

    flat = CapabilityRegistry(namespace_with_toolset=False)
    flat.commit("a", flat.validate_names("a", [make_cap("run")])[0])
    with pytest.raises(CollisionError):
        flat.validate_names("b", [make_cap("run")])
