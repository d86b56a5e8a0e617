"""
In-memory session registry.

One instance per process, constructed by the server entry point and passed to
everything that needs session lookups. Records are immutable; every mutation
swaps in a new record under the lock, so readers never see a partial update.
"""

from __future__ import annotations

import dataclasses
import threading
import uuid
from typing import Any

from e2e_mcp.result import Result
from e2e_mcp.session.models import ServerInfo, SessionInfo, utc_now


_UNSET: Any = object()


def _not_found(session_id: str) -> Result:
    return Result.failure("session_not_found", f"Session not found: {session_id}", session_id=session_id)


class SessionStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._sessions: dict[str, SessionInfo] = {}

    def create(self, server_info: ServerInfo) -> SessionInfo:
        now = utc_now()
        with self._lock:
            session_id = str(uuid.uuid4())
            while session_id in self._sessions:
                session_id = str(uuid.uuid4())
            info = SessionInfo(
                session_id=session_id,
                server_info=server_info,
                browser=None,
                page=None,
                created_at=now,
                last_activity=now,
            )
            self._sessions[session_id] = info
        return info

    def get(self, session_id: str) -> Result:
        with self._lock:
            info = self._sessions.get(session_id)
        if info is None:
            return _not_found(session_id)
        return Result.success(info)

    def update(self, session_id: str, *, browser: Any = _UNSET, page: Any = _UNSET) -> Result:
        """Merge the given fields and refresh ``last_activity``."""
        changes: dict[str, Any] = {}
        if browser is not _UNSET:
            changes["browser"] = browser
        if page is not _UNSET:
            changes["page"] = page
        with self._lock:
            current = self._sessions.get(session_id)
            if current is None:
                return _not_found(session_id)
            changes["last_activity"] = max(current.last_activity, utc_now())
            updated = dataclasses.replace(current, **changes)
            self._sessions[session_id] = updated
        return Result.success(updated)

    def delete(self, session_id: str) -> Result:
        # Not idempotent: a second delete reports session_not_found.
        with self._lock:
            removed = self._sessions.pop(session_id, None)
        if removed is None:
            return _not_found(session_id)
        return Result.success(removed)

    def list(self) -> list[SessionInfo]:
        with self._lock:
            return list(self._sessions.values())

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions
