"""Misc helper utilities (hashing, entry-point imports)."""
from __future__ import annotations
import hashlib
from importlib import import_module
from typing import Any, Iterable


def stable_hash(parts: Iterable[str]) -> str:
    h = hashlib.sha256()
    for p in parts:
        h.update(p.encode())
    return h.hexdigest()[:16]


def import_entry(entry: str) -> Any:
    """Import ``"package.module:attr"`` and return the attribute."""
    if ":" not in entry:
        raise ValueError(f"entry must be 'module:attr', got {entry!r}")
    module_name, attr = entry.split(":", 1)
    mod = import_module(module_name)
    obj = mod
    for part in attr.split("."):
        obj = getattr(obj, part)
    return obj


__all__ = ["stable_hash", "import_entry"]
