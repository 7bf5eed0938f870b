# controller/connectors/store.py
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Dict, List, Optional, Protocol


class StoreError(Exception):
    """Any store failure other than NotFound. Callers treat it as transient."""


class StoreCancelled(StoreError):
    """The call was cancelled or ran past its deadline before completing."""


@dataclass(frozen=True, order=True)
class ResourceKey:
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def parse(cls, raw: str) -> "ResourceKey":
        ns, sep, name = raw.partition("/")
        if not sep or not ns or not name or "/" in name:
            raise ValueError(f"resource key must look like 'namespace/name', got {raw!r}")
        return cls(namespace=ns, name=name)


@dataclass(frozen=True)
class ExpirableResource:
    """
    Minimal immutable view of a resource needed for TTL decisions.

    reference_time is when the content was last computed (report.updateTimestamp),
    not the object's creation time. The reconciler never writes it.
    """
    namespace: str
    name: str
    annotations: Dict[str, str] = field(default_factory=dict)
    reference_time: Optional[datetime] = None
    deletion_timestamp: Optional[datetime] = None

    @property
    def key(self) -> ResourceKey:
        return ResourceKey(self.namespace, self.name)


class CancelToken:
    """
    Cancellation + deadline signal handed down from the dispatcher.

    The event is shared by every in-flight call (set on shutdown); the deadline
    is per call and measured on the monotonic clock.
    """

    def __init__(self, event: Optional[threading.Event] = None, deadline: Optional[float] = None) -> None:
        self.event = event or threading.Event()
        self.deadline = deadline

    def cancel(self) -> None:
        self.event.set()

    def cancelled(self) -> bool:
        if self.event.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def raise_if_cancelled(self) -> None:
        if self.event.is_set():
            raise StoreCancelled("cancelled")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise StoreCancelled("deadline exceeded")

    def with_timeout(self, seconds: float) -> "CancelToken":
        """Child token sharing the cancel event, with a deadline no later than ours."""
        deadline = time.monotonic() + seconds
        if self.deadline is not None:
            deadline = min(deadline, self.deadline)
        return CancelToken(self.event, deadline)

    def remaining_timeout(self, default: float) -> float:
        if self.deadline is None:
            return default
        return max(0.0, min(default, self.deadline - time.monotonic()))


class ResourceStore(Protocol):
    """
    get    -> resource, or None when it does not exist
    delete -> True when deleted, False when it did not exist
    Anything else raises StoreError.
    """

    def get(self, key: ResourceKey, *, cancel: Optional[CancelToken] = None) -> Optional[ExpirableResource]:
        ...

    def delete(self, key: ResourceKey, *, cancel: Optional[CancelToken] = None) -> bool:
        ...


# -----------------------------------------------------------------------------
# In-memory store
# -----------------------------------------------------------------------------

Listener = Callable[[str, ExpirableResource], None]


class InMemoryResourceStore:
    """
    Lock-protected in-process store. Used by the HTTP surface when no cluster
    is configured, and by tests.

    Listeners are called outside the lock with ("upsert" | "delete", resource).
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: Dict[ResourceKey, ExpirableResource] = {}
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def _notify(self, event: str, res: ExpirableResource) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for fn in listeners:
            fn(event, res)

    def put(self, res: ExpirableResource) -> ExpirableResource:
        stored = replace(res, annotations=dict(res.annotations))
        with self._lock:
            self._items[stored.key] = stored
        self._notify("upsert", stored)
        return stored

    def list(self) -> List[ExpirableResource]:
        with self._lock:
            return [self._items[k] for k in sorted(self._items)]

    def get(self, key: ResourceKey, *, cancel: Optional[CancelToken] = None) -> Optional[ExpirableResource]:
        if cancel is not None:
            cancel.raise_if_cancelled()
        with self._lock:
            return self._items.get(key)

    def delete(self, key: ResourceKey, *, cancel: Optional[CancelToken] = None) -> bool:
        if cancel is not None:
            cancel.raise_if_cancelled()
        with self._lock:
            res = self._items.pop(key, None)
        if res is None:
            return False
        self._notify("delete", res)
        return True
