# controller/observability/logging_config.py
#
# One JSON object per line on stdout.
# lifecycle() events arrive with their fields in `extra`; they land top-level.

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import IO, Any, Dict, Optional

# Attributes every LogRecord carries; anything else on the record came from `extra`.
_STANDARD_ATTRS = frozenset(
    vars(logging.LogRecord("x", logging.INFO, "x", 0, "", None, None)).keys()
) | {"message", "asctime"}

# Loggers that are too chatty at the controller's level.
_QUIET_LOGGERS = {
    "uvicorn.access": "UVICORN_ACCESS_LEVEL",
    "kubernetes": "KUBE_CLIENT_LOG_LEVEL",
    "urllib3": "KUBE_CLIENT_LOG_LEVEL",
}


class JsonFormatter(logging.Formatter):
    """
    Fixed envelope (ts, level, service, env, logger, msg) followed by the
    record's extra fields. Extra fields never overwrite the envelope.
    Values json can't encode (datetimes, timedeltas, keys) are str()'d.
    """

    def __init__(self, service: Optional[str] = None, env: Optional[str] = None) -> None:
        super().__init__()
        self.service = service or os.getenv("SERVICE_NAME", "ttl-controller")
        self.env = env or os.getenv("ENV", "dev")

    def envelope(self, record: logging.LogRecord) -> Dict[str, Any]:
        return {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service,
            "env": self.env,
            "logger": record.name,
            "msg": record.getMessage(),
        }

    def format(self, record: logging.LogRecord) -> str:
        line = self.envelope(record)
        for k, v in vars(record).items():
            if k.startswith("_") or k in _STANDARD_ATTRS:
                continue
            line.setdefault(k, v)

        if record.exc_info:
            line["exception"] = self.formatException(record.exc_info)

        return json.dumps(line, ensure_ascii=False, default=str)


def configure_logging(level: Optional[str] = None, stream: Optional[IO[str]] = None) -> logging.Handler:
    """
    Route everything through a single JSON handler on the root logger.
    Returns the handler so callers (and tests) can inspect or detach it.
    """
    lvl = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    root = logging.getLogger()
    root.setLevel(lvl)

    # uvicorn installs its own handlers; drop them so lines aren't doubled.
    root.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(lvl)
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)

    for name, env_var in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(os.getenv(env_var, "WARNING"))
    logging.getLogger("uvicorn.error").setLevel(lvl)
    return handler
