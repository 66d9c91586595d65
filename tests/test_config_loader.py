import asyncio
import textwrap

import pytest

from dyntools.core.config_loader import load_catalog, load_exposure_policy, load_permission_config, parse_catalog
from dyntools.core.catalog import ModuleResolver
from dyntools.core.errors import ConfigError
from dyntools.core.permissions import PermissionResolver


CATALOG_YAML = textwrap.dedent(
    """
    toolsets:
      core:
        name: Core
        description: Basic tools
        decision_criteria: always useful
        capabilities:
          - name: ping
            description: Ping
            handler: sample_handlers:ping
          - name: add
            handler: sample_handlers:add
            schema:
              type: object
              properties:
                a: {type: integer}
                b: {type: integer}
        modules: [extra]
      search:
        description: Search tools
    module_loaders:
      extra: sample_handlers:load_extra
    """
)


def test_yaml_catalog(tmp_path):
    p = tmp_path / "catalog.yaml"
    p.write_text(CATALOG_YAML)
    catalog, loaders = load_catalog(p)
    assert list(catalog) == ["core", "search"]
    core = catalog["core"]
    assert core.name == "Core"
    assert [c.name for c in core.capabilities] == ["ping", "add"]
    assert core.capabilities[0].handler() == "pong"
    assert core.capabilities[1].schema["properties"]["a"]["type"] == "integer"
    assert core.describe()["decision_criteria"] == "always useful"
    assert catalog["search"].name == "search"
    caps = asyncio.run(ModuleResolver(catalog, loaders).resolve_capabilities(["core"]))
    assert [c.name for c in caps] == ["ping", "add", "extra_tool"]


def test_python_catalog(tmp_path):
    p = tmp_path / "catalog_conf.py"
    p.write_text(
        textwrap.dedent(
            """
            def get_config():
                return {"toolsets": {"core": {"capabilities": [{"name": "ping", "handler": lambda: "pong"}]}}}
            """
        )
    )
    catalog, loaders = load_catalog(p)
    assert catalog["core"].capabilities[0].handler() == "pong"
    assert loaders == {}


@pytest.mark.parametrize(
    "data",
    [
        {},
        {"toolsets": []},
        {"toolsets": {"core": "nope"}},
        {"toolsets": {"core": {"capabilities": [{"description": "no name"}]}}},
        {"toolsets": {"core": {"capabilities": [{"name": "x"}]}}},
        {"toolsets": {"core": {"capabilities": [{"name": "x", "handler": "sample_handlers:missing"}]}}},
        {"toolsets": {"core": {"capabilities": [{"name": "x", "handler": "sample_handlers:NOT_CALLABLE"}]}}},
        {"toolsets": {"core": {}}, "module_loaders": ["x"]},
    ],
)
def test_invalid_catalogs(data):
    with pytest.raises(ConfigError):
        parse_catalog(data)


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        load_catalog(tmp_path / "absent.yaml")


def test_permission_and_policy_files(tmp_path):
    perms = tmp_path / "perms.yaml"
    perms.write_text("source: config\nresolver: sample_handlers:allow_admins\ndefault_permissions: [core]\n")
    resolver = PermissionResolver(load_permission_config(perms))
    assert resolver.resolve_permissions("admin-1") == ["core", "search"]

    policy = tmp_path / "policy.yaml"
    policy.write_text("max_active_toolsets: 2\ndenylist: [experimental]\n")
    pol = load_exposure_policy(policy)
    assert pol.max_active_toolsets == 2
    assert pol.denylist == ["experimental"]
    assert pol.namespace_capabilities_with_toolset_key is True

    bad = tmp_path / "bad_policy.yaml"
    bad.write_text("max_active_toolsets: -1\n")
    with pytest.raises(ConfigError):
        load_exposure_policy(bad)

    bad_perms = tmp_path / "bad_perms.yaml"
    bad_perms.write_text("source: config\n")
    with pytest.raises(ConfigError):
        load_permission_config(bad_perms)
