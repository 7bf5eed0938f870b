# controller/lifecycle/runtime.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, Union

from connectors.kube_store import KubeReportStore, load_kube_config
from connectors.store import InMemoryResourceStore, ResourceStore
from domain.ttl.policy import TTLControllerConfig
from lifecycle.lifecycle_log import lifecycle
from lifecycle.predicates import default_predicate
from lifecycle.reconciler import TTLReconciler, utc_now
from lifecycle.watch import KubeWatchSource, StoreWatchSource
from lifecycle.workqueue import Dispatcher, RequeueQueue


@dataclass
class ControllerRuntime:
    """
    Everything the controller runs, wired once at startup.
    No FastAPI imports; the API layer only holds a reference.
    """
    config: TTLControllerConfig
    store: ResourceStore
    reconciler: TTLReconciler
    queue: RequeueQueue
    dispatcher: Dispatcher
    source: Union[StoreWatchSource, KubeWatchSource]

    def start(self) -> None:
        self.dispatcher.start()
        self.source.start()
        lifecycle(
            "controller_started",
            store_backend=self.config.store_backend,
            install_mode=self.config.install_mode,
            target_namespaces=list(self.config.target_namespaces),
            annotation=self.config.annotation_key,
        )

    def stop(self) -> None:
        self.source.stop()
        self.dispatcher.stop()
        lifecycle("controller_stopped")


def build_runtime(
    cfg: TTLControllerConfig,
    *,
    clock: Callable[[], datetime] = utc_now,
    kube_api: Optional[Any] = None,
) -> ControllerRuntime:
    queue = RequeueQueue(backoff_base_s=cfg.backoff_base_s, backoff_max_s=cfg.backoff_max_s)
    predicate = default_predicate(cfg)

    if cfg.store_backend == "kube":
        if kube_api is None:
            from kubernetes import client

            load_kube_config()
            kube_api = client.CustomObjectsApi()
        store: ResourceStore = KubeReportStore(kube_api, cfg)
    else:
        store = InMemoryResourceStore()

    reconciler = TTLReconciler(store, annotation_key=cfg.annotation_key, clock=clock)
    dispatcher = Dispatcher(
        queue,
        reconciler,
        workers=cfg.workers,
        jitter=cfg.requeue_jitter,
        request_timeout_s=cfg.request_timeout_s,
    )

    if isinstance(store, InMemoryResourceStore):
        source: Union[StoreWatchSource, KubeWatchSource] = StoreWatchSource(store, dispatcher.enqueue, predicate)
    else:
        source = KubeWatchSource(kube_api, cfg, dispatcher.enqueue, predicate)

    return ControllerRuntime(
        config=cfg,
        store=store,
        reconciler=reconciler,
        queue=queue,
        dispatcher=dispatcher,
        source=source,
    )
