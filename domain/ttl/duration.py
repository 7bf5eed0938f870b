# controller/domain/ttl/duration.py
from __future__ import annotations

import re
from datetime import timedelta
from typing import Dict

# Unit -> nanoseconds. Longest suffixes must be tried first ("ms" before "m").
_UNIT_NS: Dict[str, int] = {
    "h": 3600 * 10**9,
    "m": 60 * 10**9,
    "s": 10**9,
    "ms": 10**6,
    "us": 10**3,
    "µs": 10**3,  # micro sign
    "μs": 10**3,  # greek small letter mu
    "ns": 1,
}

_PAIR = re.compile(r"([0-9]+)(ns|us|µs|μs|ms|s|m|h)")


class DurationParseError(ValueError):
    """
    Raised when a TTL string does not match the duration grammar.
    This is a configuration problem, retrying will not fix it.
    """

    def __init__(self, text: str, reason: str) -> None:
        super().__init__(f"invalid duration {text!r}: {reason}")
        self.text = text
        self.reason = reason


def parse_duration(text: str) -> timedelta:
    """
    Parse a duration like "1h", "90m", "1h30m15s" or "250ms".

    Grammar: one or more <unsigned int><unit> pairs, no separators.
    Units: h, m, s, ms, us/µs, ns.
    """
    if not isinstance(text, str):
        raise DurationParseError(repr(text), "not a string")
    if text == "":
        raise DurationParseError(text, "empty")

    total_ns = 0
    pos = 0
    while pos < len(text):
        m = _PAIR.match(text, pos)
        if m is None:
            raise DurationParseError(text, f"unexpected {text[pos:]!r} at offset {pos}")
        total_ns += int(m.group(1)) * _UNIT_NS[m.group(2)]
        pos = m.end()

    # timedelta has microsecond resolution; sub-microsecond remainder is dropped.
    try:
        return timedelta(microseconds=total_ns // 1000)
    except OverflowError:
        raise DurationParseError(text, "out of range") from None


def format_duration(d: timedelta) -> str:
    """Render a timedelta the way the annotation grammar reads: 1h0m0s, 30m0s, 1.5s, 250ms."""
    us = (d.days * 86400 + d.seconds) * 10**6 + d.microseconds
    sign = ""
    if us < 0:
        sign, us = "-", -us
    if us == 0:
        return "0s"
    if us < 10**6:
        if us % 1000 == 0:
            return f"{sign}{us // 1000}ms"
        return f"{sign}{us}µs"

    secs, frac = divmod(us, 10**6)
    hours, rem = divmod(secs, 3600)
    minutes, secs = divmod(rem, 60)

    s = f"{secs}"
    if frac:
        s += "." + f"{frac:06d}".rstrip("0")
    s += "s"
    if hours:
        return f"{sign}{hours}h{minutes}m{s}"
    if minutes:
        return f"{sign}{minutes}m{s}"
    return f"{sign}{s}"
