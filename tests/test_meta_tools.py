import asyncio

from dyntools.core.orchestrator import ServerOrchestrator
from dyntools.core.sink import RecordingSink


def test_dynamic_mode_meta_tools(catalog):
    sink = RecordingSink()
    orch = ServerOrchestrator(sink, catalog, mode="DYNAMIC")
    assert orch.meta_tools == ["enable_toolset", "disable_toolset", "list_toolsets", "describe_toolset", "list_tools"]

    res = asyncio.run(sink.call("enable_toolset", {"name": "core"}))
    assert res["success"] is True
    assert "core.ping" in sink.tools

    listing = asyncio.run(sink.call("list_toolsets"))
    by_key = {t["key"]: t for t in listing["toolsets"]}
    assert by_key["core"]["active"] is True
    assert by_key["core"]["tools"] == ["core.ping", "core.echo"]
    assert by_key["search"]["active"] is False
    assert by_key["search"]["definition"]["name"] == "Search"

    described = asyncio.run(sink.call("describe_toolset", {"name": "nope"}))
    assert "error" in described

    tools = asyncio.run(sink.call("list_tools"))
    assert tools["tools"] == ["core.ping", "core.echo"]

    res = asyncio.run(sink.call("disable_toolset", {"name": "core"}))
    assert res["success"] is True
    res = asyncio.run(sink.call("disable_toolset", {"name": "core"}))
    assert res["code"] == "E_NOT_ACTIVE"


def test_static_mode_only_lists(catalog):
    sink = RecordingSink()
    orch = ServerOrchestrator(sink, catalog, mode="STATIC")
    assert orch.meta_tools == ["list_tools"]
    assert set(sink.tools) == {"list_tools"}


def test_start_all_and_subset(catalog):
    orch = ServerOrchestrator(RecordingSink(), catalog, register_meta=False)
    assert orch.meta_tools == []
    assert asyncio.run(orch.start()) is None
    result = asyncio.run(orch.start(["core", "bogus"]))
    assert [r.success for r in result.results] == [True, False]
    result = asyncio.run(orch.start("ALL"))
    assert orch.manager.get_active_toolsets() == ["core", "search", "extra"]
