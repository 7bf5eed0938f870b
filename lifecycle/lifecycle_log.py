import logging
from typing import Any, Callable, Dict

log = logging.getLogger("lifecycle")

# LogRecord attributes; passing these through `extra=` raises KeyError.
_RESERVED = frozenset(
    vars(logging.LogRecord("x", logging.INFO, "x", 0, "", None, None)).keys()
) | {"message", "asctime"}

LogSink = Callable[..., None]


def lifecycle(event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    payload: Dict[str, Any] = {"event": event}
    for k, v in fields.items():
        payload[f"f_{k}" if k in _RESERVED else k] = v
    log.log(level, event, extra=payload)
