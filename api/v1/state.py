# controller/api/v1/state.py
from typing import Optional

from fastapi import HTTPException

from lifecycle.runtime import ControllerRuntime

# Canonical runtime for v1 (set by app startup, cleared on shutdown)
_RUNTIME: Optional[ControllerRuntime] = None


def set_runtime(rt: Optional[ControllerRuntime]) -> None:
    global _RUNTIME
    _RUNTIME = rt


def get_runtime() -> ControllerRuntime:
    if _RUNTIME is None:
        raise HTTPException(status_code=503, detail="controller not started")
    return _RUNTIME
