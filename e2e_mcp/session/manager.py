"""
Session lifecycle: dev-server command + registry record + browser + idle timer.

    starting -> active -> stopping -> terminated
                active -----------------> terminated   (idle timer expired)

Idle timers live here, not in the session record: one asyncio task per session
that sleeps for the idle timeout and then tears the session down. Touching a
session cancels its task and schedules a fresh one.

A timer may fire while a tool call for the same session is in flight, so a
``session_not_found`` from the store is a benign race outcome everywhere except
the initiating call of ``start_session``.
"""

from __future__ import annotations

import asyncio
import functools
from typing import Any, Awaitable, Callable, Sequence

import structlog
from pydantic import BaseModel, ValidationError

from e2e_mcp.browser.driver import close_browser, launch_browser
from e2e_mcp.devserver.command import CommandExecutor
from e2e_mcp.devserver.logs import read_log_file
from e2e_mcp.result import Result
from e2e_mcp.security.command import validate_command_path
from e2e_mcp.session.models import (
    LOG_TYPES,
    ServerInfo,
    ServerShutdownResponse,
    ServerStartResponse,
    ServerStatusResponse,
)
from e2e_mcp.session.store import SessionStore
from e2e_mcp.settings import Settings


logger = structlog.get_logger(__name__)

BrowserLauncher = Callable[[], Awaitable[Any]]

def _shape_error(model: type[BaseModel], payload: Any, exc: ValidationError) -> Result:
    return Result.failure(
        "invalid_json",
        f"Command output does not match the {model.__name__} shape",
        stdout=payload if isinstance(payload, str) else repr(payload),
        parse_error=str(exc),
    )


class SessionManager:
    def __init__(
        self,
        store: SessionStore,
        *,
        settings: Settings | None = None,
        executor: CommandExecutor | None = None,
        browser_launcher: BrowserLauncher | None = None,
    ) -> None:
        self.store = store
        self.settings = settings if settings is not None else Settings()
        self.session_timeout_ms = int(self.settings.session_timeout_ms)
        self.command_timeout_ms = int(self.settings.command_timeout_ms)
        self.allowed_command_path = self.settings.server_command_path
        self.log_allowed_dir = self.settings.log_allowed_dir
        self.executor = executor if executor is not None else CommandExecutor(default_timeout_ms=self.command_timeout_ms)
        self._launch_browser = browser_launcher or functools.partial(
            launch_browser,
            headless=self.settings.browser_headless,
            timeout_ms=self.settings.browser_timeout_ms,
        )
        self._timers: dict[str, asyncio.Task] = {}

    # --- helpers ---

    def _validate_command(self, command_path: str) -> Result:
        return validate_command_path(
            command_path,
            allowed_path=self.allowed_command_path,
            check_exists=True,
            check_executable=True,
        )

    async def _run_command(self, command_path: str, args: Sequence[str], model: type[BaseModel]) -> Result:
        checked = self._validate_command(command_path)
        if not checked.ok:
            return checked
        executed = await self.executor.execute(checked.value, list(args), timeout_ms=self.command_timeout_ms)
        if not executed.ok:
            return executed
        try:
            return Result.success(model.model_validate(executed.value))
        except ValidationError as exc:
            return _shape_error(model, executed.value, exc)

    # --- idle timers ---

    def _arm_timer(self, session_id: str) -> None:
        self._cancel_timer(session_id)
        delay = self.session_timeout_ms / 1000.0
        self._timers[session_id] = asyncio.create_task(self._expire_after(session_id, delay))

    def _cancel_timer(self, session_id: str) -> None:
        task = self._timers.pop(session_id, None)
        if task is not None and not task.done():
            task.cancel()

    def has_timer(self, session_id: str) -> bool:
        task = self._timers.get(session_id)
        return task is not None and not task.done()

    async def _expire_after(self, session_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        # Detach from the timer map first so a concurrent touch/stop cannot cancel
        # the teardown half-way.
        if self._timers.get(session_id) is asyncio.current_task():
            del self._timers[session_id]
        logger.info("session_idle_timeout", session_id=session_id)
        await self._teardown(session_id)

    async def _teardown(self, session_id: str) -> None:
        removed = self.store.delete(session_id)
        if not removed.ok:
            # Already gone: an explicit stop won the race.
            return
        closed = await close_browser(removed.value.browser)
        if not closed.ok:
            logger.warning("browser_close_failed", session_id=session_id, error=closed.error.message)

    # --- operations ---

    async def start_session(self, command_path: str, args: Sequence[str]) -> Result:
        started = await self._run_command(command_path, args, ServerStartResponse)
        if not started.ok:
            logger.warning("session_start_failed", command=command_path, error_type=started.error_type)
            return started

        server_info = ServerInfo.from_start_response(started.value)
        session = self.store.create(server_info)
        log = logger.bind(session_id=session.session_id)

        try:
            browser = await self._launch_browser()
        except Exception as exc:
            self.store.delete(session.session_id)
            log.error("browser_launch_failed", error=str(exc))
            return Result.failure(
                "browser_launch_failed",
                f"Failed to launch browser: {exc}",
                session_id=session.session_id,
            )

        attached = self.store.update(session.session_id, browser=browser)
        if not attached.ok:
            await close_browser(browser)
            return attached

        self._arm_timer(session.session_id)
        log.info("session_started", url=server_info.url, port=server_info.port, pid=server_info.pid)
        return Result.success(attached.value)

    async def stop_session(self, session_id: str, command_path: str, args: Sequence[str]) -> Result:
        found = self.store.get(session_id)
        if not found.ok:
            return found
        checked = self._validate_command(command_path)
        if not checked.ok:
            return checked

        self._cancel_timer(session_id)
        stopped = await self._run_command(checked.value, args, ServerShutdownResponse)
        if not stopped.ok:
            # The record stays so the caller can retry; the timer is not re-armed.
            logger.warning("session_stop_failed", session_id=session_id, error_type=stopped.error_type)
            return stopped

        await self._teardown(session_id)
        logger.info("session_stopped", session_id=session_id)
        return Result.success(stopped.value.to_dict())

    def get_session(self, session_id: str) -> Result:
        return self.store.get(session_id)

    def list_sessions(self) -> list:
        return self.store.list()

    async def get_session_status(self, session_id: str, command_path: str, args: Sequence[str]) -> Result:
        found = self.store.get(session_id)
        if not found.ok:
            return found

        status = await self._run_command(command_path, args, ServerStatusResponse)
        if not status.ok:
            return status

        # Any successful interaction counts as activity.
        self.update_session_activity(session_id)
        return Result.success(status.value.to_dict())

    def update_session_activity(self, session_id: str) -> Result:
        found = self.store.get(session_id)
        if not found.ok:
            return found
        self._arm_timer(session_id)
        return self.store.update(session_id)

    async def read_session_logs(
        self,
        session_id: str,
        log_type: str = "combined",
        *,
        lines: int | None = None,
        offset: int | None = None,
    ) -> Result:
        found = self.store.get(session_id)
        if not found.ok:
            return found
        if log_type not in LOG_TYPES:
            return Result.failure(
                "invalid_log_type",
                f"Unknown log type: {log_type} (expected one of {', '.join(LOG_TYPES)})",
                log_type=log_type,
            )

        log_path = found.value.server_info.logs.get(log_type)
        read = await asyncio.to_thread(
            read_log_file,
            log_path,
            lines=lines,
            offset=offset,
            allowed_dir=self.log_allowed_dir,
        )
        if not read.ok:
            return read

        self.update_session_activity(session_id)
        return read

    async def cleanup(self) -> None:
        """Tear everything down; used at process shutdown."""
        sessions = self.store.list()
        for session_id in list(self._timers):
            self._cancel_timer(session_id)
        for session in sessions:
            closed = await close_browser(session.browser)
            if not closed.ok:
                logger.warning("browser_close_failed", session_id=session.session_id, error=closed.error.message)
        self.store.clear()
        await self.executor.shutdown()
        logger.info("sessions_cleaned_up", count=len(sessions))
