# controller/api/v1/reports.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from api.v1.state import get_runtime
from connectors.store import ExpirableResource, InMemoryResourceStore, ResourceKey, StoreError
from lifecycle.lifecycle_log import lifecycle

router = APIRouter(prefix="/reports", tags=["reports"])


class ReportUpsert(BaseModel):
    """
    Report as a producer (scanner) would write it.

    update_timestamp is when the report content was computed; the TTL window
    starts there. Naive timestamps are taken as UTC.
    """
    annotations: Dict[str, str] = Field(default_factory=dict)
    update_timestamp: Optional[datetime] = None


def _report_dict(res: ExpirableResource) -> Dict[str, Any]:
    return {
        "namespace": res.namespace,
        "name": res.name,
        "annotations": dict(res.annotations),
        "update_timestamp": res.reference_time.isoformat() if res.reference_time else None,
        "deletion_timestamp": res.deletion_timestamp.isoformat() if res.deletion_timestamp else None,
    }


def _memory_store() -> InMemoryResourceStore:
    store = get_runtime().store
    if not isinstance(store, InMemoryResourceStore):
        raise HTTPException(status_code=409, detail="reports are managed by the cluster, not this API")
    return store


@router.get("")
def list_reports() -> Dict[str, Any]:
    store = _memory_store()
    items = [_report_dict(r) for r in store.list()]
    return {"reports": items, "count": len(items)}


@router.put("/{namespace}/{name}")
def upsert_report(namespace: str, name: str, req: ReportUpsert) -> Dict[str, Any]:
    store = _memory_store()

    ts = req.update_timestamp or datetime.now(timezone.utc)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)

    res = store.put(
        ExpirableResource(
            namespace=namespace,
            name=name,
            annotations=dict(req.annotations),
            reference_time=ts,
        )
    )
    lifecycle("report_upserted", resource=str(res.key), update_timestamp=ts.isoformat())
    return {"ok": True, "report": _report_dict(res)}


@router.get("/{namespace}/{name}")
def get_report(namespace: str, name: str) -> Dict[str, Any]:
    rt = get_runtime()
    key = ResourceKey(namespace, name)
    try:
        res = rt.store.get(key)
    except StoreError as e:
        raise HTTPException(status_code=502, detail=str(e))
    if res is None:
        raise HTTPException(status_code=404, detail=f"report {key} not found")
    return _report_dict(res)


@router.delete("/{namespace}/{name}")
def delete_report(namespace: str, name: str) -> Dict[str, Any]:
    """
    Idempotent delete.
    - not found: ok=true, deleted=false
    - found:     ok=true, deleted=true
    """
    store = _memory_store()
    key = ResourceKey(namespace, name)
    deleted = store.delete(key)
    lifecycle("report_delete_requested", resource=str(key), deleted=deleted)
    return {"ok": True, "deleted": deleted}
