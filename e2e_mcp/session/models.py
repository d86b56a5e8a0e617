from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


LogType = Literal["stdout", "stderr", "combined"]
LOG_TYPES: tuple[str, ...] = ("stdout", "stderr", "combined")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# --- Command protocol (JSON printed by the dev-server command) ---


class _CommandResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class LogPathsModel(_CommandResponse):
    stdout: str = Field(..., min_length=1)
    stderr: str = Field(..., min_length=1)
    combined: str = Field(..., min_length=1)


class ServerStartResponse(_CommandResponse):
    status: str  # ready|already_running
    url: str = Field(..., min_length=1)
    port: int = Field(..., ge=1, le=65535)
    pid: int
    started_at: datetime = Field(..., alias="startedAt")
    logs: LogPathsModel
    message: str | None = None


class ServerRestartResponse(_CommandResponse):
    status: str  # restarted|started
    url: str = Field(..., min_length=1)
    port: int = Field(..., ge=1, le=65535)
    pid: int
    previous_pid: int | None = Field(None, alias="previousPid")
    previous_port: int | None = Field(None, alias="previousPort")
    started_at: datetime = Field(..., alias="startedAt")
    message: str | None = None


class ServerStatusResponse(_CommandResponse):
    status: str  # running|stopped|unhealthy
    url: str | None = None
    port: int | None = None
    pid: int | None = None
    started_at: datetime | None = Field(None, alias="startedAt")
    uptime: float | None = None
    healthy: bool | None = None
    logs: LogPathsModel | None = None
    message: str | None = None


class ServerShutdownResponse(_CommandResponse):
    status: str  # stopped|already_stopped|force_stopped
    previous_pid: int | None = Field(None, alias="previousPid")
    previous_port: int | None = Field(None, alias="previousPort")
    stopped_at: datetime | None = Field(None, alias="stoppedAt")
    uptime: float | None = None
    message: str | None = None


# --- Session record ---


@dataclass(frozen=True)
class LogPaths:
    stdout: str
    stderr: str
    combined: str

    def get(self, log_type: str) -> str:
        return getattr(self, log_type)

    def to_dict(self) -> dict[str, str]:
        return {"stdout": self.stdout, "stderr": self.stderr, "combined": self.combined}


@dataclass(frozen=True)
class ServerInfo:
    url: str
    port: int
    pid: int
    started_at: datetime
    logs: LogPaths

    @classmethod
    def from_start_response(cls, resp: ServerStartResponse) -> "ServerInfo":
        return cls(
            url=resp.url,
            port=resp.port,
            pid=resp.pid,
            started_at=resp.started_at,
            logs=LogPaths(stdout=resp.logs.stdout, stderr=resp.logs.stderr, combined=resp.logs.combined),
        )


@dataclass(frozen=True)
class SessionInfo:
    session_id: str
    server_info: ServerInfo
    # Exclusively owned by this session; released together with registry removal.
    browser: Any = None
    # Current page; may be replaced at any time, never outlives the browser.
    page: Any = None
    created_at: datetime = field(default_factory=utc_now)
    last_activity: datetime = field(default_factory=utc_now)

    def summary(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "url": self.server_info.url,
            "port": self.server_info.port,
            "pid": self.server_info.pid,
            "logs": self.server_info.logs.to_dict(),
            "createdAt": self.created_at.isoformat(),
            "lastActivity": self.last_activity.isoformat(),
            "browser": self.browser is not None,
        }
