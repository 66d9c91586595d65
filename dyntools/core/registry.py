"""In-memory capability name registry (one per client bundle)."""
from __future__ import annotations
from typing import Dict, List, Sequence
import threading

from .catalog import CapabilityDefinition
from .errors import CollisionError


class CapabilityRegistry:
    def __init__(self, namespace_with_toolset: bool = True):
        self.namespace_with_toolset = namespace_with_toolset
        self._lock = threading.RLock()
        self._names: Dict[str, None] = {}  # insertion ordered set
        self._by_toolset: Dict[str, List[str]] = {}

    def qualify(self, toolset_key: str, name: str) -> str:
        if not self.namespace_with_toolset:
            return name
        if name.startswith(f"{toolset_key}."):
            return name
        return f"{toolset_key}.{name}"

    def has(self, name: str) -> bool:
        return name in self._names

    def add(self, name: str):
        with self._lock:
            if name in self._names:
                raise CollisionError(f"Tool name collision: '{name}' already registered", details={"name": name})
            self._names[name] = None

    def validate_names(self, toolset_key: str, capabilities: Sequence[CapabilityDefinition]) -> List[str]:
        """Return the qualified names for ``capabilities`` without registering them.

        Raises CollisionError if any name is already registered or repeats
        within the batch.
        """
        qualified: List[str] = []
        seen = set()
        with self._lock:
            for cap in capabilities:
                safe = self.qualify(toolset_key, cap.name)
                if safe in self._names or safe in seen:
                    raise CollisionError(
                        f"Tool name collision for '{safe}'",
                        details={"name": safe, "toolset": toolset_key},
                    )
                seen.add(safe)
                qualified.append(safe)
        return qualified

    def commit(self, toolset_key: str, qualified_name: str):
        with self._lock:
            self.add(qualified_name)
            self._by_toolset.setdefault(toolset_key, []).append(qualified_name)

    def list(self) -> List[str]:
        return list(self._names.keys())

    def list_by_toolset(self) -> Dict[str, List[str]]:
        with self._lock:
            return {k: list(v) for k, v in self._by_toolset.items()}

    def __len__(self) -> int:
        return len(self._names)


__all__ = ["CapabilityRegistry"]
