# controller/domain/ttl/policy.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

TTL_REPORT_ANNOTATION = "starboard.aquasecurity.github.io/report-ttl"

INSTALL_MODE_ALL_NAMESPACES = "AllNamespaces"
INSTALL_MODE_OWN_NAMESPACE = "OwnNamespace"
INSTALL_MODE_SINGLE_NAMESPACE = "SingleNamespace"
INSTALL_MODE_MULTI_NAMESPACE = "MultiNamespace"

STORE_BACKENDS = ("memory", "kube")


@dataclass(frozen=True)
class TTLControllerConfig:
    annotation_key: str = TTL_REPORT_ANNOTATION

    # Custom resource the TTL applies to.
    resource_group: str = "aquasecurity.github.io"
    resource_version: str = "v1alpha1"
    resource_plural: str = "vulnerabilityreports"

    operator_namespace: str = "starboard-operator"
    # Empty => watch all namespaces.
    target_namespaces: Tuple[str, ...] = field(default_factory=tuple)

    store_backend: str = "memory"
    workers: int = 2
    request_timeout_s: float = 10.0

    # Transient-error backoff (per key, exponential).
    backoff_base_s: float = 0.5
    backoff_max_s: float = 300.0
    # Requeue spreading: a RequeueAfter(d) is redelivered within [d, d * (1 + jitter)].
    requeue_jitter: float = 0.1

    def __post_init__(self) -> None:
        if not self.annotation_key:
            raise ValueError("annotation_key must not be empty")
        if self.store_backend not in STORE_BACKENDS:
            raise ValueError(f"store_backend must be one of {STORE_BACKENDS}, got {self.store_backend!r}")
        if self.workers < 1:
            raise ValueError(f"workers must be >= 1, got {self.workers}")
        if self.request_timeout_s <= 0:
            raise ValueError(f"request_timeout_s must be > 0, got {self.request_timeout_s}")
        if self.backoff_base_s <= 0 or self.backoff_max_s < self.backoff_base_s:
            raise ValueError(
                f"backoff must satisfy 0 < base <= max, got base={self.backoff_base_s} max={self.backoff_max_s}"
            )
        if self.requeue_jitter < 0:
            raise ValueError(f"requeue_jitter must be >= 0, got {self.requeue_jitter}")

    @property
    def install_mode(self) -> str:
        """
        Same derivation the operator uses for its install mode:
          no targets                 -> AllNamespaces
          [operator ns]              -> OwnNamespace
          [one other ns]             -> SingleNamespace
          [several]                  -> MultiNamespace
        """
        targets = self.target_namespaces
        if not targets:
            return INSTALL_MODE_ALL_NAMESPACES
        if len(targets) == 1:
            if targets[0] == self.operator_namespace:
                return INSTALL_MODE_OWN_NAMESPACE
            return INSTALL_MODE_SINGLE_NAMESPACE
        return INSTALL_MODE_MULTI_NAMESPACE

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "TTLControllerConfig":
        """
        Build config from TTL_* environment variables. Unset vars keep defaults.
        Bad values raise ValueError so the process fails at startup, not mid-run.
        """
        e = os.environ if env is None else env
        d = cls()

        raw_targets = e.get("TTL_TARGET_NAMESPACES", "")
        targets = tuple(ns.strip() for ns in raw_targets.split(",") if ns.strip())

        return cls(
            annotation_key=e.get("TTL_ANNOTATION_KEY", d.annotation_key),
            resource_group=e.get("TTL_RESOURCE_GROUP", d.resource_group),
            resource_version=e.get("TTL_RESOURCE_VERSION", d.resource_version),
            resource_plural=e.get("TTL_RESOURCE_PLURAL", d.resource_plural),
            operator_namespace=e.get("TTL_OPERATOR_NAMESPACE", d.operator_namespace),
            target_namespaces=targets,
            store_backend=e.get("TTL_STORE_BACKEND", d.store_backend).strip().lower(),
            workers=int(e.get("TTL_WORKERS", str(d.workers))),
            request_timeout_s=float(e.get("TTL_REQUEST_TIMEOUT_S", str(d.request_timeout_s))),
            backoff_base_s=float(e.get("TTL_BACKOFF_BASE_S", str(d.backoff_base_s))),
            backoff_max_s=float(e.get("TTL_BACKOFF_MAX_S", str(d.backoff_max_s))),
            requeue_jitter=float(e.get("TTL_REQUEUE_JITTER", str(d.requeue_jitter))),
        )
