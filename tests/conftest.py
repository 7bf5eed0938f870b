from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest

from connectors.store import CancelToken, ExpirableResource, ResourceKey, StoreError

TTL_KEY = "starboard.aquasecurity.github.io/report-ttl"
REF = datetime(2023, 1, 1, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = REF) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kw: Any) -> None:
        self.now = self.now + timedelta(**kw)


class RecordingLog:
    def __init__(self) -> None:
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def __call__(self, event: str, **fields: Any) -> None:
        self.events.append((event, fields))

    def names(self) -> List[str]:
        return [e for e, _ in self.events]


class FakeStore:
    """
    Scriptable ResourceStore. get_error / delete_error raise on the next call;
    calls are recorded so tests can assert on read/delete counts.
    """

    def __init__(self, *resources: ExpirableResource) -> None:
        self.items: Dict[ResourceKey, ExpirableResource] = {r.key: r for r in resources}
        self.get_error: Optional[Exception] = None
        self.delete_error: Optional[Exception] = None
        self.delete_reports_missing = False
        self.gets: List[ResourceKey] = []
        self.deletes: List[ResourceKey] = []

    def get(self, key: ResourceKey, *, cancel: Optional[CancelToken] = None) -> Optional[ExpirableResource]:
        self.gets.append(key)
        if cancel is not None:
            cancel.raise_if_cancelled()
        if self.get_error is not None:
            raise self.get_error
        return self.items.get(key)

    def delete(self, key: ResourceKey, *, cancel: Optional[CancelToken] = None) -> bool:
        self.deletes.append(key)
        if cancel is not None:
            cancel.raise_if_cancelled()
        if self.delete_error is not None:
            raise self.delete_error
        if self.delete_reports_missing:
            self.items.pop(key, None)
            return False
        return self.items.pop(key, None) is not None


def make_report(
    name: str = "replicaset-nginx",
    namespace: str = "default",
    ttl: Optional[str] = "1h",
    reference_time: Optional[datetime] = REF,
    **annotations: str,
) -> ExpirableResource:
    ann = dict(annotations)
    if ttl is not None:
        ann[TTL_KEY] = ttl
    return ExpirableResource(namespace=namespace, name=name, annotations=ann, reference_time=reference_time)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def events() -> RecordingLog:
    return RecordingLog()


@pytest.fixture
def boom() -> StoreError:
    return StoreError("etcdserver: request timed out")
