from datetime import datetime, timedelta, timezone

import pytest

from domain.ttl.expiry import ExpiryVerdict, evaluate

REF = datetime(2023, 1, 1, tzinfo=timezone.utc)


def test_not_expired_reports_exact_remaining():
    v = evaluate(timedelta(hours=1), REF, REF + timedelta(minutes=30))
    assert v == ExpiryVerdict(expired=False, remaining=timedelta(minutes=30))


def test_boundary_is_not_expired():
    v = evaluate(timedelta(hours=1), REF, REF + timedelta(hours=1))
    assert v.expired is False
    assert v.remaining == timedelta(0)


def test_one_microsecond_past_is_expired():
    v = evaluate(timedelta(hours=1), REF, REF + timedelta(hours=1, microseconds=1))
    assert v == ExpiryVerdict(expired=True, remaining=timedelta(0))


def test_scenario_one_hour_ttl():
    ttl = timedelta(hours=1)
    assert evaluate(ttl, REF, datetime(2023, 1, 1, 0, 30, tzinfo=timezone.utc)) == ExpiryVerdict(
        False, timedelta(minutes=30)
    )
    assert evaluate(ttl, REF, datetime(2023, 1, 1, 1, 0, 1, tzinfo=timezone.utc)).expired is True


def test_zero_ttl_expires_right_after_reference():
    assert evaluate(timedelta(0), REF, REF).expired is False
    assert evaluate(timedelta(0), REF, REF + timedelta(microseconds=1)).expired is True


def test_now_before_reference_time_counts_full_window():
    v = evaluate(timedelta(hours=1), REF, REF - timedelta(minutes=10))
    assert v == ExpiryVerdict(False, timedelta(minutes=70))


def test_remaining_strictly_decreases_then_expires():
    ttl = timedelta(minutes=5)
    last = None
    for step in range(0, 301, 30):
        v = evaluate(ttl, REF, REF + timedelta(seconds=step))
        assert v.expired is False
        if last is not None:
            assert v.remaining < last
        last = v.remaining
    assert evaluate(ttl, REF, REF + timedelta(seconds=301)).expired is True


def test_offsets_are_compared_as_instants():
    plus_two = timezone(timedelta(hours=2))
    now = datetime(2023, 1, 1, 2, 30, tzinfo=plus_two)  # 00:30Z
    assert evaluate(timedelta(hours=1), REF, now) == ExpiryVerdict(False, timedelta(minutes=30))


def test_naive_datetimes_rejected():
    with pytest.raises(ValueError):
        evaluate(timedelta(hours=1), datetime(2023, 1, 1), REF)
    with pytest.raises(ValueError):
        evaluate(timedelta(hours=1), REF, datetime(2023, 1, 1))
