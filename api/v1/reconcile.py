# controller/api/v1/reconcile.py
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, HTTPException

from api.v1.state import get_runtime
from connectors.store import ResourceKey

router = APIRouter()


@router.post("/reconcile/{namespace}/{name}")
def reconcile_now(namespace: str, name: str) -> Dict[str, Any]:
    """
    Run the TTL decision for one report synchronously and report the outcome.

    The key is claimed on the work queue for the duration of the call, so it
    never overlaps a worker on the same key; 409 when a worker holds it.
    Does not schedule anything: a RequeueAfter here is informational only.
    """
    rt = get_runtime()
    key = ResourceKey(namespace, name)
    if not rt.queue.claim(key):
        raise HTTPException(status_code=409, detail=f"reconcile of {key} already in progress")
    try:
        outcome = rt.reconciler.reconcile(key, rt.dispatcher.cancel.with_timeout(rt.config.request_timeout_s))
    finally:
        rt.queue.done(key)
    return {"resource": str(key), "outcome": outcome.to_dict()}


@router.get("/queue")
def queue_status() -> Dict[str, Any]:
    rt = get_runtime()
    return {
        "stats": rt.queue.stats(),
        "workers": rt.dispatcher.workers,
        "recent": rt.dispatcher.recent_outcomes(),
    }
