# controller/lifecycle/watch.py
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, List, Optional

from kubernetes import watch
from kubernetes.client.rest import ApiException

from connectors.kube_store import resource_from_object
from connectors.store import ExpirableResource, InMemoryResourceStore, ResourceKey
from domain.ttl.policy import TTLControllerConfig
from lifecycle.lifecycle_log import LogSink, lifecycle
from lifecycle.predicates import Predicate

Enqueue = Callable[[ResourceKey], None]


class StoreWatchSource:
    """Feeds InMemoryResourceStore upserts through the predicate into the queue."""

    def __init__(self, store: InMemoryResourceStore, enqueue: Enqueue, predicate: Predicate) -> None:
        self.store = store
        self.enqueue = enqueue
        self.predicate = predicate

    def start(self) -> None:
        self.store.subscribe(self._on_change)
        # Initial list: everything already present gets one pass.
        for res in self.store.list():
            self._on_change("upsert", res)

    def stop(self) -> None:
        pass

    def _on_change(self, event: str, res: ExpirableResource) -> None:
        if event != "upsert":
            return
        if self.predicate(res):
            self.enqueue(res.key)


class KubeWatchSource:
    """
    Streams custom object events and enqueues admitted keys.
    One thread per watched namespace (or one cluster-wide thread).
    Reconnects after errors; a 410 Gone drops the resourceVersion and relists.
    """

    def __init__(
        self,
        api: Any,
        cfg: TTLControllerConfig,
        enqueue: Enqueue,
        predicate: Predicate,
        *,
        log: LogSink = lifecycle,
        timeout_seconds: int = 300,
        retry_delay_s: float = 5.0,
    ) -> None:
        self.api = api
        self.cfg = cfg
        self.enqueue = enqueue
        self.predicate = predicate
        self.log = log
        self.timeout_seconds = timeout_seconds
        self.retry_delay_s = retry_delay_s

        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []
        self._watchers: List[watch.Watch] = []
        self._lock = threading.Lock()

    def start(self) -> None:
        namespaces: List[Optional[str]] = list(self.cfg.target_namespaces) or [None]
        for ns in namespaces:
            t = threading.Thread(target=self._run, args=(ns,), name=f"ttl-watch-{ns or 'all'}", daemon=True)
            t.start()
            self._threads.append(t)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        with self._lock:
            watchers = list(self._watchers)
        for w in watchers:
            w.stop()
        for t in self._threads:
            t.join(timeout)
        self._threads = []

    def _stream(self, w: watch.Watch, namespace: Optional[str], resource_version: Optional[str]):
        kwargs = {
            "group": self.cfg.resource_group,
            "version": self.cfg.resource_version,
            "plural": self.cfg.resource_plural,
            "timeout_seconds": self.timeout_seconds,
        }
        if resource_version:
            kwargs["resource_version"] = resource_version
        if namespace is None:
            return w.stream(self.api.list_cluster_custom_object, **kwargs)
        return w.stream(self.api.list_namespaced_custom_object, namespace=namespace, **kwargs)

    def _run(self, namespace: Optional[str]) -> None:
        resource_version: Optional[str] = None
        scope = namespace or "*"
        self.log("watch_started", namespace=scope)

        while not self._stop.is_set():
            w = watch.Watch()
            with self._lock:
                self._watchers.append(w)
            try:
                for ev in self._stream(w, namespace, resource_version):
                    if self._stop.is_set():
                        break
                    obj = ev.get("object") or {}
                    resource_version = (obj.get("metadata") or {}).get("resourceVersion") or resource_version
                    self.handle_event(ev.get("type", ""), obj)
            except ApiException as e:
                if e.status == 410:
                    resource_version = None
                    continue
                self.log("watch_failed", level=logging.WARNING, namespace=scope, status=e.status, error=str(e))
                self._stop.wait(self.retry_delay_s)
            except Exception as e:
                self.log("watch_failed", level=logging.WARNING, namespace=scope, error=repr(e))
                self._stop.wait(self.retry_delay_s)
            finally:
                with self._lock:
                    if w in self._watchers:
                        self._watchers.remove(w)

        self.log("watch_stopped", namespace=scope)

    def handle_event(self, event_type: str, obj: Any) -> bool:
        """Returns True when the object's key was enqueued."""
        if event_type not in ("ADDED", "MODIFIED") or not isinstance(obj, dict):
            return False
        try:
            res = resource_from_object(obj)
        except ValueError as e:
            self.log("watch_decode_failed", level=logging.WARNING, error=str(e))
            return False
        if not res.namespace or not res.name or not self.predicate(res):
            return False
        self.enqueue(res.key)
        return True
