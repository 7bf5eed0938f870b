# controller/connectors/kube_store.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import urllib3
from kubernetes import client, config
from kubernetes.client.rest import ApiException

from connectors.store import CancelToken, ExpirableResource, ResourceKey, StoreCancelled, StoreError
from domain.ttl.policy import TTLControllerConfig

log = logging.getLogger(__name__)


def parse_k8s_time(raw: Any) -> Optional[datetime]:
    """
    RFC 3339 as the API server writes it ("2023-01-01T00:00:00Z").
    The python client sometimes hands back datetimes already; accept both.
    """
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw if raw.tzinfo is not None else raw.replace(tzinfo=timezone.utc)
    if not isinstance(raw, str):
        raise ValueError(f"unsupported timestamp {raw!r}")
    s = raw.strip()
    if s.endswith("Z") or s.endswith("z"):
        s = s[:-1] + "+00:00"
    ts = datetime.fromisoformat(s)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def resource_from_object(obj: Dict[str, Any]) -> ExpirableResource:
    """
    Map a VulnerabilityReport-shaped custom object to an ExpirableResource.
    The TTL window starts at report.updateTimestamp, not metadata.creationTimestamp.
    """
    meta = obj.get("metadata") or {}
    report = obj.get("report") or {}
    return ExpirableResource(
        namespace=meta.get("namespace", ""),
        name=meta.get("name", ""),
        annotations=dict(meta.get("annotations") or {}),
        reference_time=parse_k8s_time(report.get("updateTimestamp")),
        deletion_timestamp=parse_k8s_time(meta.get("deletionTimestamp")),
    )


def load_kube_config() -> None:
    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()


class KubeReportStore:
    """
    ResourceStore over CustomObjectsApi.

    404 => NotFound (None / False). Any other ApiException or transport error
    => StoreError. Cancellation is checked before each call and the remaining
    deadline is passed as the request timeout.
    """

    def __init__(self, api: Any, cfg: TTLControllerConfig) -> None:
        self.api = api
        self.cfg = cfg

    def _timeout(self, cancel: Optional[CancelToken]) -> float:
        if cancel is None:
            return self.cfg.request_timeout_s
        cancel.raise_if_cancelled()
        t = cancel.remaining_timeout(self.cfg.request_timeout_s)
        if t <= 0:
            raise StoreCancelled("deadline exceeded")
        return t

    def _crd_args(self, key: ResourceKey) -> Dict[str, str]:
        return {
            "group": self.cfg.resource_group,
            "version": self.cfg.resource_version,
            "namespace": key.namespace,
            "plural": self.cfg.resource_plural,
            "name": key.name,
        }

    def get(self, key: ResourceKey, *, cancel: Optional[CancelToken] = None) -> Optional[ExpirableResource]:
        timeout = self._timeout(cancel)
        try:
            obj = self.api.get_namespaced_custom_object(_request_timeout=timeout, **self._crd_args(key))
        except ApiException as e:
            if e.status == 404:
                return None
            raise StoreError(f"getting {key} failed: status={e.status} reason={e.reason}") from e
        except urllib3.exceptions.HTTPError as e:
            if cancel is not None and cancel.cancelled():
                raise StoreCancelled(f"getting {key} interrupted: {e}") from e
            raise StoreError(f"getting {key} failed: {e}") from e

        try:
            return resource_from_object(obj)
        except ValueError as e:
            raise StoreError(f"decoding {key} failed: {e}") from e

    def delete(self, key: ResourceKey, *, cancel: Optional[CancelToken] = None) -> bool:
        timeout = self._timeout(cancel)
        try:
            self.api.delete_namespaced_custom_object(
                body=client.V1DeleteOptions(),
                _request_timeout=timeout,
                **self._crd_args(key),
            )
        except ApiException as e:
            if e.status == 404:
                return False
            raise StoreError(f"deleting {key} failed: status={e.status} reason={e.reason}") from e
        except urllib3.exceptions.HTTPError as e:
            if cancel is not None and cancel.cancelled():
                raise StoreCancelled(f"deleting {key} interrupted: {e}") from e
            raise StoreError(f"deleting {key} failed: {e}") from e
        return True
