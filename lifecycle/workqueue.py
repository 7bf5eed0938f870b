# controller/lifecycle/workqueue.py
#
# Delivers keys to the reconciler.
#
# One in-flight call per key.
# Requeue-after honored on the monotonic clock.
# Transient failures back off per key.

from __future__ import annotations

import heapq
import itertools
import logging
import random
import threading
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, Hashable, List, Optional, Set, Tuple

from connectors.store import CancelToken, ResourceKey
from domain.ttl.outcome import Deleted, NoOp, Outcome, RequeueAfter
from lifecycle.lifecycle_log import LogSink, lifecycle
from lifecycle.reconciler import TTLReconciler

RECENT_OUTCOMES_MAX = 1000
MAX_BACKOFF_EXPONENT = 62
MAX_IDLE_WAIT_S = 3600.0


class RequeueQueue:
    """
    Deduplicating work queue with delayed adds.

    Invariants:
      - a key is in the ready queue at most once
      - a key handed out by get() is not handed out again until done(key)
      - a key added while processing is redelivered after done(key)
      - add_after keeps the earliest pending ready time per key
    """

    def __init__(
        self,
        *,
        backoff_base_s: float = 0.5,
        backoff_max_s: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.backoff_base_s = float(backoff_base_s)
        self.backoff_max_s = float(backoff_max_s)
        self._clock = clock

        self._cond = threading.Condition()
        self._queue: Deque[Hashable] = deque()
        self._dirty: Set[Hashable] = set()
        self._processing: Set[Hashable] = set()

        # (ready_at, seq, key); stale entries are skipped via _waiting_at.
        self._waiting: List[Tuple[float, int, Hashable]] = []
        self._waiting_at: Dict[Hashable, float] = {}
        self._seq = itertools.count()

        self._failures: Dict[Hashable, int] = {}
        self._shutting_down = False

    # -------------------------------------------------------------------------
    # Adding
    # -------------------------------------------------------------------------

    def add(self, key: Hashable) -> None:
        with self._cond:
            self._add_locked(key)

    def _add_locked(self, key: Hashable) -> None:
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._cond.notify()

    def add_after(self, key: Hashable, delay_s: float) -> None:
        if delay_s <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutting_down:
                return
            ready_at = self._clock() + delay_s
            existing = self._waiting_at.get(key)
            if existing is not None and existing <= ready_at:
                return
            self._waiting_at[key] = ready_at
            heapq.heappush(self._waiting, (ready_at, next(self._seq), key))
            self._cond.notify()

    def rate_limited_add(self, key: Hashable) -> float:
        """Requeue after base * 2^failures (capped). Returns the delay used."""
        with self._cond:
            n = self._failures.get(key, 0)
            self._failures[key] = n + 1
        # Exponent clamped so float conversion cannot overflow on long outages.
        delay = min(self.backoff_base_s * (2.0 ** min(n, MAX_BACKOFF_EXPONENT)), self.backoff_max_s)
        self.add_after(key, delay)
        return delay

    def forget(self, key: Hashable) -> None:
        with self._cond:
            self._failures.pop(key, None)

    def num_requeues(self, key: Hashable) -> int:
        with self._cond:
            return self._failures.get(key, 0)

    # -------------------------------------------------------------------------
    # Consuming
    # -------------------------------------------------------------------------

    def _promote_ready_locked(self, now: float) -> None:
        while self._waiting and self._waiting[0][0] <= now:
            ready_at, _, key = heapq.heappop(self._waiting)
            if self._waiting_at.get(key) != ready_at:
                continue
            del self._waiting_at[key]
            self._add_locked(key)

    def get(self, timeout: Optional[float] = None) -> Optional[Hashable]:
        """
        Block until a key is ready. Returns None on shutdown or when timeout
        elapses with nothing ready. timeout=0 polls.
        """
        deadline = None if timeout is None else self._clock() + timeout
        with self._cond:
            while True:
                if self._shutting_down:
                    return None

                now = self._clock()
                self._promote_ready_locked(now)
                if self._queue:
                    key = self._queue.popleft()
                    self._dirty.discard(key)
                    self._processing.add(key)
                    return key

                wait: Optional[float] = None
                if self._waiting:
                    wait = max(0.0, self._waiting[0][0] - now)
                if deadline is not None:
                    left = deadline - now
                    if left <= 0:
                        return None
                    wait = left if wait is None else min(wait, left)
                # Condition.wait overflows on far-future deadlines; long waits just loop.
                if wait is not None:
                    wait = min(wait, MAX_IDLE_WAIT_S)
                self._cond.wait(wait)

    def claim(self, key: Hashable) -> bool:
        """
        Mark a key as processing outside get(), for synchronous callers.
        False when a worker already holds it. A queued copy is pulled back and
        redelivered by done(key), so workers never run alongside the claimant.
        """
        with self._cond:
            if key in self._processing:
                return False
            if key in self._dirty:
                self._queue.remove(key)
            self._processing.add(key)
            return True

    def done(self, key: Hashable) -> None:
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def shutdown(self) -> None:
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def stats(self) -> Dict[str, int]:
        with self._cond:
            return {
                "ready": len(self._queue),
                "processing": len(self._processing),
                "waiting": len(self._waiting_at),
                "failing": len(self._failures),
            }

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)


class Dispatcher:
    """
    Worker pool that pops keys, runs the reconciler, and applies the outcome:

      RequeueAfter(d)  -> add_after(d, plus up to `jitter` * d)
      NoOp / Deleted   -> forget (reset backoff)
      TransientError   -> rate_limited_add
      PermanentError   -> forget; stays parked until the resource changes

    stop() cancels in-flight store calls and shuts the queue down.
    """

    def __init__(
        self,
        queue: RequeueQueue,
        reconciler: TTLReconciler,
        *,
        workers: int = 2,
        jitter: float = 0.1,
        request_timeout_s: float = 10.0,
        log: LogSink = lifecycle,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.queue = queue
        self.reconciler = reconciler
        self.workers = int(workers)
        self.jitter = float(jitter)
        self.request_timeout_s = float(request_timeout_s)
        self.log = log
        self.cancel = CancelToken()
        self._rng = rng or random.Random()

        self._threads: List[threading.Thread] = []
        self._last_lock = threading.Lock()
        self._last: Dict[str, Dict[str, Any]] = {}

    def enqueue(self, key: ResourceKey) -> None:
        self.queue.add(key)

    def start(self) -> None:
        if self._threads:
            return
        for i in range(self.workers):
            t = threading.Thread(target=self._worker, name=f"ttl-worker-{i}", daemon=True)
            t.start()
            self._threads.append(t)
        self.log("dispatcher_started", workers=self.workers, jitter=self.jitter)

    def stop(self, timeout: float = 5.0) -> None:
        self.cancel.cancel()
        self.queue.shutdown()
        for t in self._threads:
            t.join(timeout)
        self._threads = []
        self.log("dispatcher_stopped")

    def _worker(self) -> None:
        while self.process_next():
            pass

    def process_next(self, timeout: Optional[float] = None) -> bool:
        """Handle one key. False when the queue is shut down or timeout elapsed."""
        key = self.queue.get(timeout)
        if key is None:
            return False
        try:
            outcome = self.reconciler.reconcile(key, self.cancel.with_timeout(self.request_timeout_s))
            self.apply(key, outcome)
        except Exception as e:
            # Worker threads never die on a bad key.
            self.log("dispatcher_worker_error", level=logging.ERROR, resource=str(key), error=repr(e))
            self.queue.rate_limited_add(key)
        finally:
            self.queue.done(key)
        return True

    def apply(self, key: ResourceKey, outcome: Outcome) -> None:
        record: Dict[str, Any] = outcome.to_dict()

        if isinstance(outcome, RequeueAfter):
            self.queue.forget(key)
            delay_s = outcome.delay.total_seconds()
            if self.jitter > 0 and delay_s > 0:
                delay_s += delay_s * self._rng.uniform(0.0, self.jitter)
            self.queue.add_after(key, delay_s)
            record["scheduled_in_s"] = delay_s
        elif outcome.retryable:
            record["retry_in_s"] = self.queue.rate_limited_add(key)
            record["attempts"] = self.queue.num_requeues(key)
        elif outcome.is_error:
            self.queue.forget(key)
            self.log(
                "ttl_permanent_error",
                level=logging.ERROR,
                resource=str(key),
                reason=outcome.reason,
                detail=outcome.detail,
            )
        elif isinstance(outcome, (NoOp, Deleted)):
            self.queue.forget(key)
        else:
            raise TypeError(f"unknown outcome {outcome!r}")

        record["ts"] = time.time()
        with self._last_lock:
            self._last.pop(str(key), None)
            self._last[str(key)] = record
            # Ring buffer trim, oldest first.
            while len(self._last) > RECENT_OUTCOMES_MAX:
                del self._last[next(iter(self._last))]

    def recent_outcomes(self) -> Dict[str, Dict[str, Any]]:
        with self._last_lock:
            return {k: dict(v) for k, v in self._last.items()}
