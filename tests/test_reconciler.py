import threading
from datetime import timedelta

from conftest import REF, TTL_KEY, FakeStore, make_report
from connectors.store import CancelToken, ResourceKey, StoreCancelled
from domain.ttl.outcome import Deleted, NoOp, PermanentError, RequeueAfter, TransientError
from lifecycle.reconciler import TTLReconciler

KEY = ResourceKey("default", "replicaset-nginx")


def _reconciler(store, clock, events):
    return TTLReconciler(store, annotation_key=TTL_KEY, clock=clock, log=events)


def test_missing_resource_is_noop(clock, events):
    store = FakeStore()
    out = _reconciler(store, clock, events).reconcile(KEY)
    assert out == NoOp(reason="not_found")
    assert store.deletes == []


def test_fetch_failure_is_transient(clock, events, boom):
    store = FakeStore(make_report())
    store.get_error = boom
    out = _reconciler(store, clock, events).reconcile(KEY)
    assert isinstance(out, TransientError)
    assert out.reason == "fetch_failed"
    assert "request timed out" in out.detail
    assert store.deletes == []


def test_unexpected_fetch_exception_is_transient(clock, events):
    store = FakeStore(make_report())
    store.get_error = RuntimeError("connection reset")
    out = _reconciler(store, clock, events).reconcile(KEY)
    assert isinstance(out, TransientError)


def test_no_annotation_is_never_deleted(clock, events):
    store = FakeStore(make_report(ttl=None, reference_time=REF - timedelta(days=3650)))
    clock.advance(days=10000)
    out = _reconciler(store, clock, events).reconcile(KEY)
    assert out == NoOp(reason="no_ttl_annotation")
    assert store.deletes == []
    assert KEY in store.items


def test_other_annotations_do_not_count(clock, events):
    store = FakeStore(make_report(ttl=None, **{"example.com/ttl": "1s"}))
    clock.advance(hours=5)
    assert _reconciler(store, clock, events).reconcile(KEY) == NoOp(reason="no_ttl_annotation")


def test_malformed_ttl_is_permanent_and_not_deleted(clock, events):
    store = FakeStore(make_report(ttl="bad"))
    clock.advance(days=365)
    out = _reconciler(store, clock, events).reconcile(KEY)
    assert isinstance(out, PermanentError)
    assert out.reason == "invalid_ttl_annotation"
    assert TTL_KEY in out.detail and "'bad'" in out.detail
    assert store.deletes == []
    assert "ttl_annotation_invalid" in events.names()


def test_empty_ttl_is_permanent_not_absent(clock, events):
    store = FakeStore(make_report(ttl=""))
    out = _reconciler(store, clock, events).reconcile(KEY)
    assert isinstance(out, PermanentError)


def test_missing_reference_time_is_permanent(clock, events):
    store = FakeStore(make_report(reference_time=None))
    out = _reconciler(store, clock, events).reconcile(KEY)
    assert isinstance(out, PermanentError)
    assert out.reason == "missing_reference_time"
    assert store.deletes == []


def test_not_expired_requeues_for_remaining(clock, events):
    store = FakeStore(make_report(ttl="1h"))
    clock.advance(minutes=30)
    out = _reconciler(store, clock, events).reconcile(KEY)
    assert out == RequeueAfter(delay=timedelta(minutes=30))
    assert store.deletes == []


def test_requeue_is_idempotent_without_elapsed_time(clock, events):
    store = FakeStore(make_report(ttl="90m"))
    clock.advance(minutes=10)
    r = _reconciler(store, clock, events)
    assert r.reconcile(KEY) == r.reconcile(KEY) == RequeueAfter(delay=timedelta(minutes=80))


def test_exactly_at_expiry_still_requeues(clock, events):
    store = FakeStore(make_report(ttl="1h"))
    clock.advance(hours=1)
    out = _reconciler(store, clock, events).reconcile(KEY)
    assert out == RequeueAfter(delay=timedelta(0))
    assert store.deletes == []


def test_expired_is_deleted(clock, events):
    store = FakeStore(make_report(ttl="1h"))
    clock.advance(hours=1, seconds=1)
    out = _reconciler(store, clock, events).reconcile(KEY)
    assert out == Deleted(already_gone=False)
    assert store.deletes == [KEY]
    assert KEY not in store.items
    assert "ttl_expired_deleted" in events.names()


def test_delete_not_found_counts_as_deleted(clock, events):
    store = FakeStore(make_report(ttl="1s"))
    store.delete_reports_missing = True
    clock.advance(minutes=1)
    out = _reconciler(store, clock, events).reconcile(KEY)
    assert out == Deleted(already_gone=True)
    assert not out.is_error


def test_delete_failure_is_transient(clock, events, boom):
    store = FakeStore(make_report(ttl="1s"))
    store.delete_error = boom
    clock.advance(minutes=1)
    out = _reconciler(store, clock, events).reconcile(KEY)
    assert isinstance(out, TransientError)
    assert out.reason == "delete_failed"
    assert out.retryable


def test_at_most_one_read_and_one_delete(clock, events):
    store = FakeStore(make_report(ttl="1s"))
    clock.advance(minutes=1)
    _reconciler(store, clock, events).reconcile(KEY)
    assert len(store.gets) == 1
    assert len(store.deletes) == 1


def test_annotations_and_timestamp_untouched(clock, events):
    original = make_report(ttl="1h")
    store = FakeStore(original)
    clock.advance(minutes=5)
    _reconciler(store, clock, events).reconcile(KEY)
    assert store.items[KEY] is original
    assert original.annotations == {TTL_KEY: "1h"}
    assert original.reference_time == REF


def test_cancelled_before_fetch_is_transient(clock, events):
    store = FakeStore(make_report())
    token = CancelToken(threading.Event())
    token.cancel()
    out = _reconciler(store, clock, events).reconcile(KEY, token)
    assert isinstance(out, TransientError)
    assert out.reason == "fetch_cancelled"


def test_cancelled_during_delete_is_transient(clock, events):
    store = FakeStore(make_report(ttl="1s"))
    store.delete_error = StoreCancelled("deadline exceeded")
    clock.advance(minutes=1)
    out = _reconciler(store, clock, events).reconcile(KEY)
    assert isinstance(out, TransientError)
    assert out.reason == "delete_cancelled"
    assert not isinstance(out, PermanentError)


def test_scenario_requeue_then_delete(clock, events):
    store = FakeStore(make_report(ttl="1h"))
    r = _reconciler(store, clock, events)

    clock.advance(minutes=30)
    assert r.reconcile(KEY) == RequeueAfter(delay=timedelta(minutes=30))

    clock.advance(minutes=30, seconds=1)
    assert r.reconcile(KEY) == Deleted(already_gone=False)

    # Redelivery after deletion is harmless.
    assert r.reconcile(KEY) == NoOp(reason="not_found")
