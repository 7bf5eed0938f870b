# controller/lifecycle/reconciler.py
#
# One key in, one Outcome out.
#
# Fetch -> annotation? -> parse -> evaluate -> delete | requeue.
# No timers, no retries, no state kept between calls.

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from connectors.store import CancelToken, ResourceKey, ResourceStore, StoreCancelled, StoreError
from domain.ttl.duration import DurationParseError, format_duration, parse_duration
from domain.ttl.expiry import evaluate
from domain.ttl.outcome import Deleted, NoOp, Outcome, PermanentError, RequeueAfter, TransientError
from domain.ttl.policy import TTL_REPORT_ANNOTATION
from lifecycle.lifecycle_log import LogSink, lifecycle


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TTLReconciler:
    """
    Per-key TTL decision procedure.

    Dependencies are injected and treated as read-only:
      store  - get/delete against the authoritative store
      clock  - returns the current tz-aware time
      log    - structured event sink, lifecycle(event, **fields) shaped

    Safe to call concurrently for different keys. The dispatcher guarantees a
    single in-flight call per key; nothing here enforces it.
    """

    def __init__(
        self,
        store: ResourceStore,
        *,
        annotation_key: str = TTL_REPORT_ANNOTATION,
        clock: Callable[[], datetime] = utc_now,
        log: LogSink = lifecycle,
    ) -> None:
        self.store = store
        self.annotation_key = annotation_key
        self.clock = clock
        self.log = log

    def reconcile(self, key: ResourceKey, cancel: Optional[CancelToken] = None) -> Outcome:
        fields = {"resource": str(key)}

        # 1) Fetch
        try:
            res = self.store.get(key, cancel=cancel)
        except StoreCancelled as e:
            self.log("ttl_fetch_cancelled", level=logging.WARNING, error=str(e), **fields)
            return TransientError(reason="fetch_cancelled", detail=str(e))
        except StoreError as e:
            self.log("ttl_fetch_failed", level=logging.WARNING, error=str(e), **fields)
            return TransientError(reason="fetch_failed", detail=f"getting report from store: {e}")
        except Exception as e:
            self.log("ttl_fetch_failed", level=logging.ERROR, error=repr(e), **fields)
            return TransientError(reason="fetch_failed", detail=repr(e))

        if res is None:
            self.log("ttl_ignored", level=logging.DEBUG, reason="not_found", **fields)
            return NoOp(reason="not_found")

        # 2) Annotation
        raw_ttl = res.annotations.get(self.annotation_key)
        if raw_ttl is None:
            self.log("ttl_ignored", level=logging.DEBUG, reason="no_ttl_annotation", **fields)
            return NoOp(reason="no_ttl_annotation")

        # 3) Parse
        try:
            ttl = parse_duration(raw_ttl)
        except DurationParseError as e:
            self.log(
                "ttl_annotation_invalid",
                level=logging.ERROR,
                annotation=self.annotation_key,
                value=raw_ttl,
                error=str(e),
                **fields,
            )
            return PermanentError(
                reason="invalid_ttl_annotation",
                detail=f"failed parsing {self.annotation_key} with value {raw_ttl!r}: {e.reason}",
            )

        if res.reference_time is None:
            self.log("ttl_reference_time_missing", level=logging.ERROR, **fields)
            return PermanentError(
                reason="missing_reference_time",
                detail="resource has a TTL annotation but no update timestamp",
            )

        # 4) Evaluate
        now = self.clock()
        try:
            verdict = evaluate(ttl, res.reference_time, now)
        except (ValueError, OverflowError) as e:
            self.log("ttl_evaluate_failed", level=logging.ERROR, error=str(e), **fields)
            return PermanentError(reason="unevaluable_ttl", detail=str(e))

        # Not due yet: ask to be called again when it is.
        if not verdict.expired:
            self.log(
                "ttl_requeue",
                level=logging.DEBUG,
                ttl=format_duration(ttl),
                reference_time=res.reference_time.isoformat(),
                remaining=format_duration(verdict.remaining),
                **fields,
            )
            return RequeueAfter(delay=verdict.remaining)

        # Expired: delete. NotFound here means someone beat us to it.
        try:
            found = self.store.delete(key, cancel=cancel)
        except StoreCancelled as e:
            self.log("ttl_delete_cancelled", level=logging.WARNING, error=str(e), **fields)
            return TransientError(reason="delete_cancelled", detail=str(e))
        except StoreError as e:
            self.log("ttl_delete_failed", level=logging.WARNING, error=str(e), **fields)
            return TransientError(reason="delete_failed", detail=str(e))
        except Exception as e:
            self.log("ttl_delete_failed", level=logging.ERROR, error=repr(e), **fields)
            return TransientError(reason="delete_failed", detail=repr(e))

        self.log(
            "ttl_expired_deleted",
            ttl=format_duration(ttl),
            reference_time=res.reference_time.isoformat(),
            already_gone=not found,
            **fields,
        )
        return Deleted(already_gone=not found)
