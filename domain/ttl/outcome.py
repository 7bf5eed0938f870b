# controller/domain/ttl/outcome.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, ClassVar, Dict, Optional

from domain.ttl.duration import format_duration


@dataclass(frozen=True)
class Outcome:
    """
    Result of one reconcile() call. The dispatcher switches on the concrete type:

      NoOp            -> nothing to do for this trigger
      RequeueAfter    -> redeliver the key no earlier than now + delay
      Deleted         -> resource removed (or already gone at delete time)
      TransientError  -> apply retry/backoff and redeliver
      PermanentError  -> do not retry, needs an operator fix
    """
    kind: ClassVar[str] = "outcome"
    is_error: ClassVar[bool] = False
    retryable: ClassVar[bool] = False

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind}


@dataclass(frozen=True)
class NoOp(Outcome):
    kind: ClassVar[str] = "noop"

    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "reason": self.reason}


@dataclass(frozen=True)
class RequeueAfter(Outcome):
    kind: ClassVar[str] = "requeue_after"

    delay: timedelta = timedelta(0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "delay_s": self.delay.total_seconds(),
            "delay": format_duration(self.delay),
        }


@dataclass(frozen=True)
class Deleted(Outcome):
    kind: ClassVar[str] = "deleted"

    # True when the delete call reported NotFound.
    already_gone: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "already_gone": self.already_gone}


@dataclass(frozen=True)
class TransientError(Outcome):
    kind: ClassVar[str] = "transient_error"
    is_error: ClassVar[bool] = True
    retryable: ClassVar[bool] = True

    reason: str = ""
    detail: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "reason": self.reason, "detail": self.detail}


@dataclass(frozen=True)
class PermanentError(Outcome):
    kind: ClassVar[str] = "permanent_error"
    is_error: ClassVar[bool] = True

    reason: str = ""
    detail: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "reason": self.reason, "detail": self.detail}
