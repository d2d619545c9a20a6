from __future__ import annotations

import copy
import threading
from typing import Iterable

from nodeidentity.errors import ConflictError, NotFoundError, not_found_message
from nodeidentity.models import Node
from nodeidentity.registry.base import apply_merge_patch


class MemoryNodeRegistry:
    """In-process node store with resourceVersion preconditions on patch."""

    def __init__(self, nodes: Iterable[Node | dict] = ()) -> None:
        self._lock = threading.Lock()
        self._objects: dict[str, dict] = {}
        self._version = 0
        for node in nodes:
            self.add(node)

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def add(self, node: Node | dict) -> Node:
        payload = node.to_dict() if isinstance(node, Node) else copy.deepcopy(node)
        parsed = Node.from_dict(payload)
        with self._lock:
            payload.setdefault("metadata", {})["resourceVersion"] = self._next_version()
            self._objects[parsed.name] = payload
            return Node.from_dict(copy.deepcopy(payload))

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._objects)

    def get(self, name: str, timeout_s: float | None = None) -> Node:
        with self._lock:
            payload = self._objects.get(name)
            if payload is None:
                raise NotFoundError(not_found_message(name))
            return Node.from_dict(copy.deepcopy(payload))

    def patch(self, name: str, patch: dict, timeout_s: float | None = None) -> Node:
        with self._lock:
            current = self._objects.get(name)
            if current is None:
                raise NotFoundError(not_found_message(name))
            patch = copy.deepcopy(patch)
            metadata_patch = patch.get("metadata")
            expected = None
            if isinstance(metadata_patch, dict):
                expected = metadata_patch.pop("resourceVersion", None)
            if expected is not None and str(expected) != current["metadata"].get("resourceVersion"):
                raise ConflictError(
                    f'Operation cannot be fulfilled on nodes "{name}": the object has been modified; '
                    "please apply your changes to the latest version and try again"
                )
            merged = apply_merge_patch(current, patch)
            merged.setdefault("metadata", {})["resourceVersion"] = self._next_version()
            self._objects[name] = merged
            return Node.from_dict(copy.deepcopy(merged))
