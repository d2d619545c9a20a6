"""Node registry interface and request context."""

from __future__ import annotations

import copy
import threading
import time
from dataclasses import dataclass, field
from typing import Protocol

from nodeidentity.errors import TransientError
from nodeidentity.models import Node

DEFAULT_TIMEOUT_S = 20.0


class NodeRegistry(Protocol):
    def get(self, name: str, timeout_s: float | None = None) -> Node:
        ...

    def patch(self, name: str, patch: dict, timeout_s: float | None = None) -> Node:
        ...


@dataclass
class RequestContext:
    """Caller-owned deadline and cancellation for registry calls."""

    deadline: float | None = None
    cancel_event: threading.Event = field(default_factory=threading.Event)

    @classmethod
    def with_timeout(cls, timeout_s: float = DEFAULT_TIMEOUT_S) -> RequestContext:
        return cls(deadline=time.monotonic() + timeout_s)

    def cancel(self) -> None:
        self.cancel_event.set()

    def remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def check(self) -> None:
        if self.cancel_event.is_set():
            raise TransientError("context canceled")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise TransientError("context deadline exceeded")


def apply_merge_patch(target: object, patch: object) -> object:
    """Apply an RFC 7386 JSON merge patch, returning the merged document."""
    if not isinstance(patch, dict):
        return copy.deepcopy(patch)
    result = copy.deepcopy(target) if isinstance(target, dict) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = apply_merge_patch(result.get(key), value)
    return result
