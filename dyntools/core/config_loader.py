"""Catalog, permission and policy configuration loading.

Catalog files are YAML or Python. A Python file must expose get_config()
returning the same dict shape, or a CATALOG dict of toolsets.

YAML shape:

  toolsets:
    search:
      name: Search
      description: Web and document search
      decision_criteria: when the user asks to look something up
      capabilities:
        - name: query
          description: Run a search query
          handler: myapp.search:query
          schema: {type: object, properties: {q: {type: string}}}
      modules: [search_extra]
  module_loaders:
    search_extra: myapp.search:load_extra

Handler and loader references are "module:attr" entries imported at load time.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Tuple
import runpy
import yaml

from pydantic import ValidationError as PydanticValidationError

from .catalog import CapabilityDefinition, ModuleLoader, ToolsetDefinition
from .errors import ConfigError
from .permissions import PermissionConfig, validate_permission_config
from .policy import ExposurePolicy
from .utils import import_entry

DEFAULT_SCHEMA = {"type": "object", "properties": {}, "additionalProperties": True}


def _read_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top-level YAML value must be a mapping")
    return data


def _read_py(path: Path) -> Dict[str, Any]:
    ns = runpy.run_path(str(path))
    if "get_config" in ns:
        cfg = ns["get_config"]()
    elif "CATALOG" in ns:
        cfg = {"toolsets": ns["CATALOG"], "module_loaders": ns.get("MODULE_LOADERS", {})}
    else:
        raise ConfigError("Python config must expose get_config() or CATALOG")
    if not isinstance(cfg, dict):
        raise ConfigError("Python config entry must return dict")
    return cfg


def read_config_file(path: Path) -> Dict[str, Any]:
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    return _read_yaml(path) if path.suffix in (".yml", ".yaml") else _read_py(path)


def _resolve_callable(ref: Any, what: str):
    if callable(ref):
        return ref
    if not isinstance(ref, str):
        raise ConfigError(f"{what} must be a callable or 'module:attr' string")
    try:
        obj = import_entry(ref)
    except (ImportError, AttributeError, ValueError) as e:
        raise ConfigError(f"Cannot import {what} '{ref}': {e}") from e
    if not callable(obj):
        raise ConfigError(f"{what} '{ref}' is not callable")
    return obj


def _parse_capability(toolset_key: str, raw: Any) -> CapabilityDefinition:
    if isinstance(raw, CapabilityDefinition):
        return raw
    if not isinstance(raw, dict):
        raise ConfigError(f"toolset '{toolset_key}': capability entries must be mappings")
    name = raw.get("name")
    if not name or not isinstance(name, str):
        raise ConfigError(f"toolset '{toolset_key}': capability missing name")
    if "handler" not in raw:
        raise ConfigError(f"toolset '{toolset_key}': capability '{name}' missing handler")
    schema = raw.get("schema") or dict(DEFAULT_SCHEMA)
    if not isinstance(schema, dict):
        raise ConfigError(f"toolset '{toolset_key}': capability '{name}' schema must be a mapping")
    return CapabilityDefinition(
        name=name,
        description=raw.get("description", ""),
        schema=schema,
        handler=_resolve_callable(raw["handler"], f"handler for '{toolset_key}.{name}'"),
    )


def _ensure_list(val) -> List[Any]:
    if val is None:
        return []
    if isinstance(val, list):
        return val
    return [val]


def parse_catalog(data: Dict[str, Any]) -> Tuple[Dict[str, ToolsetDefinition], Dict[str, ModuleLoader]]:
    toolsets = data.get("toolsets")
    if not isinstance(toolsets, dict) or not toolsets:
        raise ConfigError("catalog must define a non-empty 'toolsets' mapping")
    catalog: Dict[str, ToolsetDefinition] = {}
    for key, raw in toolsets.items():
        if not isinstance(key, str) or not key.strip():
            raise ConfigError(f"invalid toolset key: {key!r}")
        if isinstance(raw, ToolsetDefinition):
            catalog[key] = raw
            continue
        if not isinstance(raw, dict):
            raise ConfigError(f"toolset '{key}' must be a mapping")
        catalog[key] = ToolsetDefinition(
            key=key,
            name=raw.get("name", key),
            description=raw.get("description", ""),
            capabilities=[_parse_capability(key, c) for c in _ensure_list(raw.get("capabilities"))],
            modules=[str(m) for m in _ensure_list(raw.get("modules"))],
            decision_criteria=raw.get("decision_criteria"),
        )
    loaders_raw = data.get("module_loaders") or {}
    if not isinstance(loaders_raw, dict):
        raise ConfigError("'module_loaders' must be a mapping")
    loaders = {k: _resolve_callable(v, f"module loader '{k}'") for k, v in loaders_raw.items()}
    return catalog, loaders


def load_catalog(path: Path) -> Tuple[Dict[str, ToolsetDefinition], Dict[str, ModuleLoader]]:
    return parse_catalog(read_config_file(path))


def load_permission_config(path: Path) -> PermissionConfig:
    data = dict(read_config_file(path))
    if data.get("resolver") is not None:
        data["resolver"] = _resolve_callable(data["resolver"], "permission resolver")
    return validate_permission_config(data)


def load_exposure_policy(path: Path) -> ExposurePolicy:
    data = dict(read_config_file(path))
    if data.get("on_limit_exceeded") is not None:
        data["on_limit_exceeded"] = _resolve_callable(data["on_limit_exceeded"], "on_limit_exceeded")
    try:
        return ExposurePolicy(**data)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid exposure policy: {e}") from e


__all__ = [
    "read_config_file",
    "parse_catalog",
    "load_catalog",
    "load_permission_config",
    "load_exposure_policy",
    "ConfigError",
]
