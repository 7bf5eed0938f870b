# controller/domain/ttl/expiry.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

_ZERO = timedelta(0)


@dataclass(frozen=True)
class ExpiryVerdict:
    expired: bool
    remaining: timedelta


def _require_aware(label: str, ts: datetime) -> None:
    if ts.tzinfo is None or ts.utcoffset() is None:
        raise ValueError(f"{label} must be timezone-aware, got naive {ts.isoformat()}")


def evaluate(ttl: timedelta, reference_time: datetime, now: datetime) -> ExpiryVerdict:
    """
    Pure domain logic. No clock reads, no I/O.

    Rules:
      - expires_at = reference_time + ttl
      - expired only once now is strictly after expires_at
      - expired => remaining is zero, otherwise remaining = expires_at - now
    """
    _require_aware("reference_time", reference_time)
    _require_aware("now", now)

    expires_at = reference_time + ttl
    if now > expires_at:
        return ExpiryVerdict(expired=True, remaining=_ZERO)
    return ExpiryVerdict(expired=False, remaining=expires_at - now)
