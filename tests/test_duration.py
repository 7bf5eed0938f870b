from datetime import timedelta

import pytest

from domain.ttl.duration import DurationParseError, format_duration, parse_duration


@pytest.mark.parametrize(
    "text,expected",
    [
        ("1h", timedelta(hours=1)),
        ("30m", timedelta(minutes=30)),
        ("45s", timedelta(seconds=45)),
        ("250ms", timedelta(milliseconds=250)),
        ("10us", timedelta(microseconds=10)),
        ("10µs", timedelta(microseconds=10)),
        ("10μs", timedelta(microseconds=10)),
        ("1h30m15s", timedelta(hours=1, minutes=30, seconds=15)),
        ("1m1ms", timedelta(minutes=1, milliseconds=1)),
        ("0s", timedelta(0)),
        ("168h", timedelta(days=7)),
        ("2h2h", timedelta(hours=4)),
    ],
)
def test_parse_valid(text, expected):
    assert parse_duration(text) == expected


def test_nanoseconds_accumulate_before_truncation():
    assert parse_duration("1500ns") == timedelta(microseconds=1)
    assert parse_duration("999ns") == timedelta(0)
    assert parse_duration("500ns500ns") == timedelta(microseconds=1)


@pytest.mark.parametrize(
    "text",
    ["", "bad", "1", "h", "1d", "1.5h", "-1h", "+1h", " 1h", "1h ", "1h30", "1H", "1hx", "1 h"],
)
def test_parse_invalid(text):
    with pytest.raises(DurationParseError) as exc:
        parse_duration(text)
    assert exc.value.text == text
    assert isinstance(exc.value, ValueError)


def test_parse_rejects_non_string():
    with pytest.raises(DurationParseError):
        parse_duration(None)  # type: ignore[arg-type]


@pytest.mark.parametrize(
    "d,expected",
    [
        (timedelta(0), "0s"),
        (timedelta(hours=1), "1h0m0s"),
        (timedelta(minutes=30), "30m0s"),
        (timedelta(seconds=1, milliseconds=500), "1.5s"),
        (timedelta(milliseconds=250), "250ms"),
        (timedelta(microseconds=7), "7µs"),
        (timedelta(hours=26, seconds=5), "26h0m5s"),
        (timedelta(seconds=-90), "-1m30s"),
    ],
)
def test_format_duration(d, expected):
    assert format_duration(d) == expected
