from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


@dataclass(frozen=True)
class ErrorInfo:
    type: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_iso)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type, "message": self.message, "timestamp": self.timestamp}
        out.update(self.details)
        return out


@dataclass(frozen=True)
class Result:
    """Tagged success/failure value returned by every fallible operation."""

    ok: bool
    value: Any = None
    error: ErrorInfo | None = None

    @classmethod
    def success(cls, value: Any = None) -> "Result":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, type: str, message: str, **details: Any) -> "Result":  # noqa: A002
        return cls(ok=False, error=ErrorInfo(type=type, message=message, details=details))

    @property
    def error_type(self) -> str | None:
        return self.error.type if self.error is not None else None

    def tool_error(self) -> dict[str, Any]:
        # Shape returned to agents for any failed tool call.
        err = self.error or ErrorInfo(type="unknown_error", message="unknown error")
        return {"error": err.message, "type": err.type}
