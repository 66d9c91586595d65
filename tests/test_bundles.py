import asyncio
import base64
import json

import pytest

from dyntools.core.bundles import ClientBundleManager
from dyntools.core.cache import CacheConfig
from dyntools.core.errors import PolicyDeniedError, ValidationError
from dyntools.core.permissions import PermissionConfig, PermissionResolver
from dyntools.core.policy import ExposurePolicy
from dyntools.core.session_context import SessionContextConfig, SessionContextResolver
from dyntools.core.sink import RecordingSink

from conftest import FakeAsyncSession, FakeSession


def _manager(catalog, static_map=None, mode="STATIC", cache_config=None, **kwargs):
    perms = PermissionConfig(source="config", static_map=static_map or {"alice": ["core"], "bob": ["search", "nope"]})
    return ClientBundleManager(
        catalog=catalog,
        permission_resolver=PermissionResolver(perms),
        cache_config=cache_config or CacheConfig(prune_interval_ms=0),
        sink_factory=lambda client_id: RecordingSink(),
        mode=mode,
        **kwargs,
    )


def test_static_bundle_enables_permitted_toolsets(catalog):
    mgr = _manager(catalog)

    async def main():
        bundle = await mgr.get_or_create("alice")
        again = await mgr.get_or_create("alice")
        return bundle, again

    bundle, again = asyncio.run(main())
    assert bundle is again
    assert bundle.cache_key == "alice:default"
    assert bundle.allowed_toolsets == ["core"]
    assert bundle.manager.get_active_toolsets() == ["core"]
    assert set(bundle.sink.tools) == {"list_tools", "core.ping", "core.echo"}


def test_partial_failure_still_builds(catalog):
    bundle = asyncio.run(_manager(catalog).get_or_create("bob"))
    assert bundle.allowed_toolsets == ["search"]
    assert bundle.failed_toolsets == ["nope"]


def test_all_failed_raises(catalog):
    mgr = _manager(catalog, static_map={"eve": ["ghost"]})
    with pytest.raises(PolicyDeniedError) as ei:
        asyncio.run(mgr.get_or_create("eve"))
    assert "ghost" in ei.value.message
    assert len(mgr.cache) == 0


def test_no_permissions_builds_empty_bundle(catalog):
    bundle = asyncio.run(_manager(catalog).get_or_create("stranger"))
    assert bundle.allowed_toolsets == []
    assert bundle.manager.get_active_toolsets() == []


def test_blank_client_id_rejected(catalog):
    with pytest.raises(ValidationError):
        asyncio.run(_manager(catalog).get_or_create("  "))


def test_static_mode_ignores_policy_restrictions(catalog):
    mgr = _manager(catalog, exposure_policy=ExposurePolicy(denylist=["core"], max_active_toolsets=0))
    bundle = asyncio.run(mgr.get_or_create("alice"))
    assert bundle.manager.get_active_toolsets() == ["core"]


def test_dynamic_mode_permissions_become_allowlist(catalog):
    mgr = _manager(catalog, mode="DYNAMIC", exposure_policy=ExposurePolicy(max_active_toolsets=5))

    async def main():
        bundle = await mgr.get_or_create("alice")
        assert bundle.manager.get_active_toolsets() == []
        denied = await bundle.sink.call("enable_toolset", {"name": "search"})
        allowed = await bundle.sink.call("enable_toolset", {"name": "core"})
        return bundle, denied, allowed

    bundle, denied, allowed = asyncio.run(main())
    assert denied["code"] == "E_POLICY_DENIED"
    assert allowed["success"] is True
    assert bundle.manager.exposure_policy.max_active_toolsets == 5
    assert "enable_toolset" in bundle.sink.tools


def test_eviction_closes_sessions(catalog):
    mgr = _manager(catalog, cache_config=CacheConfig(max_size=1, prune_interval_ms=0))

    async def main():
        await mgr.get_or_create("alice")
        sync_s, async_s, broken = FakeSession(), FakeAsyncSession(), FakeSession(fail=True)
        mgr.attach_session("alice", "s1", sync_s)
        mgr.attach_session("alice", "s2", broken)
        mgr.attach_session("alice", "s3", async_s)
        # second client pushes alice out of the single-slot cache
        await mgr.get_or_create("bob")
        await mgr.cache.drain()
        return sync_s, async_s

    sync_s, async_s = asyncio.run(main())
    assert sync_s.closed and async_s.closed
    assert mgr.cache.keys() == ["bob:default"]


def test_user_evict_hook_and_explicit_evict(catalog):
    evicted = []
    cfg = CacheConfig(prune_interval_ms=0, on_evict=lambda k, b: evicted.append(k))
    mgr = _manager(catalog, cache_config=cfg)

    async def main():
        await mgr.get_or_create("alice")
        await mgr.get_or_create("bob")
        removed = mgr.evict("alice")
        await mgr.cache.drain()
        return removed

    assert asyncio.run(main()) == 1
    assert evicted == ["alice:default"]
    assert mgr.evict("alice") == 0


def test_session_config_gets_own_bundle(catalog):
    seen = []

    def loader(ctx):
        seen.append(ctx)
        return []

    from conftest import make_catalog

    lazy_catalog = make_catalog({"core": {"caps": ["ping"], "modules": ["m"]}})
    mgr = _manager(
        lazy_catalog,
        module_loaders={"m": loader},
        base_context={"env": "prod"},
        session_context=SessionContextResolver(SessionContextConfig(allowed_keys=["token"])),
    )
    cfg = base64.b64encode(json.dumps({"token": "abc"}).encode()).decode()

    async def main():
        plain = await mgr.get_or_create("alice")
        custom = await mgr.get_or_create("alice", query={"config": cfg})
        return plain, custom

    plain, custom = asyncio.run(main())
    assert plain is not custom
    assert plain.cache_key == "alice:default"
    assert custom.cache_key.startswith("alice:") and custom.cache_key != "alice:default"
    assert seen == [{"env": "prod"}, {"env": "prod", "token": "abc"}]
    # evicting a client drops every session variant
    assert mgr.evict("alice") == 2


def test_concurrent_get_or_create_builds_once(catalog):
    built = []
    mgr = _manager(catalog, notify_factory=None)
    original = mgr._build

    async def counting_build(*args, **kwargs):
        built.append(args[0])
        await asyncio.sleep(0.01)
        return await original(*args, **kwargs)

    mgr._build = counting_build

    async def main():
        return await asyncio.gather(*(mgr.get_or_create("alice") for _ in range(3)))

    bundles = asyncio.run(main())
    assert built == ["alice"]
    assert bundles[0] is bundles[1] is bundles[2]


def test_invalidate_permissions_rebuilds(catalog):
    static = {"alice": ["core"]}
    mgr = _manager(catalog, static_map=static)

    async def main():
        first = await mgr.get_or_create("alice")
        assert mgr.invalidate_permissions("alice") == 1
        second = await mgr.get_or_create("alice")
        return first, second

    first, second = asyncio.run(main())
    assert first is not second
    assert mgr.permission_resolver.cached_clients() == ["alice"]


def test_aclose_releases_everything(catalog):
    mgr = _manager(catalog)

    async def main():
        await mgr.get_or_create("alice")
        session = FakeAsyncSession()
        mgr.attach_session("alice", "s", session)
        await mgr.aclose()
        return session

    session = asyncio.run(main())
    assert session.closed
    assert len(mgr.cache) == 0


def test_list_bundles(catalog):
    mgr = _manager(catalog)
    asyncio.run(mgr.get_or_create("alice"))
    [summary] = mgr.list_bundles()
    assert summary["client_id"] == "alice"
    assert summary["active_toolsets"] == ["core"]
    assert summary["mode"] == "STATIC"
