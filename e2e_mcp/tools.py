"""
Tool implementations behind the MCP surface.

Each tool is a plain coroutine taking a ``ToolContext`` and returning a JSON
object: ``{"result": "success", ...}`` or ``{"error": message, "type": kind}``.
The ``_tool`` wrapper applies the rate limiters and records timing for every
call, so the functions below only deal with their own semantics.
"""

from __future__ import annotations

import functools
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import structlog

from e2e_mcp.browser import actions
from e2e_mcp.devserver.logs import DEFAULT_LOG_LINES, validate_log_path
from e2e_mcp.errors import build_structured_error
from e2e_mcp.health import HealthMonitor, MetricsCollector
from e2e_mcp.result import Result
from e2e_mcp.security.rate_limit import SESSION_CREATE, TOOL_CALL, RateLimiter
from e2e_mcp.session.manager import SessionManager
from e2e_mcp.session.store import SessionStore
from e2e_mcp.settings import Settings


logger = structlog.get_logger(__name__)

DEFAULT_CALLER = "stdio"
START_ARGS = ["--start"]
STATUS_ARGS = ["--status"]
SHUTDOWN_ARGS = ["--shutdown"]


@dataclass
class ToolContext:
    settings: Settings
    store: SessionStore
    manager: SessionManager
    session_limiter: RateLimiter
    tool_limiter: RateLimiter
    metrics: MetricsCollector
    monitor: HealthMonitor


def build_context(
    settings: Settings,
    *,
    store: SessionStore | None = None,
    manager: SessionManager | None = None,
    clock: Callable[[], float] | None = None,
) -> ToolContext:
    store = store if store is not None else SessionStore()
    manager = manager if manager is not None else SessionManager(store, settings=settings)
    limiter_kwargs = {"clock": clock} if clock is not None else {}
    return ToolContext(
        settings=settings,
        store=store,
        manager=manager,
        session_limiter=RateLimiter(
            settings.rate_limit_session_max, settings.rate_limit_session_window_ms, **limiter_kwargs
        ),
        tool_limiter=RateLimiter(settings.rate_limit_tool_max, settings.rate_limit_tool_window_ms, **limiter_kwargs),
        metrics=MetricsCollector(),
        monitor=HealthMonitor(lambda: len(store)),
    )


def success(**fields: Any) -> dict[str, Any]:
    out: dict[str, Any] = {"result": "success"}
    out.update(fields)
    return out


def _admit(ctx: ToolContext, caller_id: str, session_create: bool) -> Result:
    admitted = ctx.tool_limiter.check_limit(TOOL_CALL, caller_id)
    if admitted.ok and session_create:
        admitted = ctx.session_limiter.check_limit(SESSION_CREATE, caller_id)
    return admitted


def _tool(name: str, *, session_create: bool = False):
    def decorate(fn: Callable[..., Awaitable[dict[str, Any]]]):
        @functools.wraps(fn)
        async def wrapper(ctx: ToolContext, *args: Any, caller_id: str = DEFAULT_CALLER, **kwargs: Any) -> dict[str, Any]:
            log = logger.bind(tool=name, caller_id=caller_id)
            started = time.perf_counter()
            admitted = _admit(ctx, caller_id, session_create)
            if not admitted.ok:
                log.warning("rate_limited", **admitted.error.details)
                payload = admitted.tool_error()
            else:
                try:
                    payload = await fn(ctx, *args, **kwargs)
                except Exception as exc:
                    # Protocol boundary: the agent always gets a JSON answer.
                    log.exception("tool_failed")
                    payload = {"error": str(exc) or type(exc).__name__, "type": "internal_error"}
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            ok = "error" not in payload
            ctx.metrics.record_tool_call(name, ok, elapsed_ms)
            log.debug("tool_call", ok=ok, elapsed_ms=round(elapsed_ms, 3))
            return payload

        return wrapper

    return decorate


def _touch(ctx: ToolContext, session_id: str) -> None:
    # An idle timer may have reaped the session mid-call; that is not an error here.
    ctx.manager.update_session_activity(session_id)


async def _page_for(ctx: ToolContext, session_id: str) -> Result:
    return await actions.current_page(ctx.store, session_id)


# Failures raised by the page itself; these get a debug document attached.
_PAGE_FAILURES = frozenset({"timeout", "element_not_found", "navigation_failed", "script_error", "screenshot_failed"})


def _browser_failure(ctx: ToolContext, session_id: str, tool: str, failed: Result, **args: Any) -> dict[str, Any]:
    payload = failed.tool_error()
    if failed.error_type not in _PAGE_FAILURES:
        return payload

    stderr_path = None
    found = ctx.store.get(session_id)
    if found.ok:
        checked = validate_log_path(found.value.server_info.logs.stderr, ctx.settings.log_allowed_dir)
        if checked.ok:
            stderr_path = checked.value

    payload["debug"] = build_structured_error(
        failed.error,
        {"sessionId": session_id, "tool": tool, "args": args},
        screenshot=failed.error.details.get("screenshot"),
        stderr_path=stderr_path,
        max_log_lines=DEFAULT_LOG_LINES,
    )
    return payload


# --- session tools ---


@_tool("startSession", session_create=True)
async def start_session(ctx: ToolContext, command_path: str, args: list[str] | None = None) -> dict[str, Any]:
    started = await ctx.manager.start_session(command_path, list(args) if args else list(START_ARGS))
    if not started.ok:
        return started.tool_error()
    return success(**started.value.summary())


@_tool("stopSession")
async def stop_session(
    ctx: ToolContext, session_id: str, command_path: str, args: list[str] | None = None
) -> dict[str, Any]:
    stopped = await ctx.manager.stop_session(session_id, command_path, list(args) if args else list(SHUTDOWN_ARGS))
    if not stopped.ok:
        return stopped.tool_error()
    return success(sessionId=session_id, shutdown=stopped.value)


@_tool("getSessionStatus")
async def get_session_status(
    ctx: ToolContext, session_id: str, command_path: str, args: list[str] | None = None
) -> dict[str, Any]:
    status = await ctx.manager.get_session_status(session_id, command_path, list(args) if args else list(STATUS_ARGS))
    if not status.ok:
        return status.tool_error()
    return success(sessionId=session_id, status=status.value)


@_tool("readLogs")
async def read_logs(
    ctx: ToolContext, session_id: str, log_type: str = "combined", lines: int = DEFAULT_LOG_LINES
) -> dict[str, Any]:
    read = await ctx.manager.read_session_logs(session_id, log_type, lines=lines)
    if not read.ok:
        return read.tool_error()
    return success(sessionId=session_id, logType=log_type, logs=read.value)


@_tool("listSessions")
async def list_sessions(ctx: ToolContext) -> dict[str, Any]:
    sessions = [s.summary() for s in ctx.manager.list_sessions()]
    return success(count=len(sessions), sessions=sessions)


@_tool("healthCheck")
async def health_check(ctx: ToolContext) -> dict[str, Any]:
    return success(health=ctx.monitor.get_health(), metrics=ctx.metrics.get_metrics())


# --- browser tools ---


@_tool("navigate")
async def navigate(ctx: ToolContext, session_id: str, url: str, wait_until: str = "load") -> dict[str, Any]:
    nav = await actions.navigate_with_session(
        ctx.store,
        session_id,
        url,
        wait_until=wait_until,
        timeout_ms=ctx.settings.browser_timeout_ms,
        allowed_hosts=ctx.settings.allowed_hosts or None,
    )
    if not nav.ok:
        return _browser_failure(ctx, session_id, "navigate", nav, url=url, waitUntil=wait_until)
    _touch(ctx, session_id)
    return success(sessionId=session_id, **nav.value)


@_tool("click")
async def click(ctx: ToolContext, session_id: str, selector: str, timeout: int | None = None) -> dict[str, Any]:
    page = await _page_for(ctx, session_id)
    if not page.ok:
        return page.tool_error()
    timeout_ms = timeout or ctx.settings.browser_timeout_ms
    clicked = await actions.click_element(page.value, selector, timeout_ms=timeout_ms)
    if not clicked.ok:
        return _browser_failure(ctx, session_id, "click", clicked, selector=selector, timeout=timeout_ms)
    _touch(ctx, session_id)
    return success(sessionId=session_id, selector=selector)


@_tool("fill")
async def fill(ctx: ToolContext, session_id: str, selector: str, text: str) -> dict[str, Any]:
    page = await _page_for(ctx, session_id)
    if not page.ok:
        return page.tool_error()
    filled = await actions.fill_text(page.value, selector, text, timeout_ms=ctx.settings.browser_timeout_ms)
    if not filled.ok:
        return _browser_failure(ctx, session_id, "fill", filled, selector=selector)
    _touch(ctx, session_id)
    return success(sessionId=session_id, selector=selector)


@_tool("type")
async def type_text(
    ctx: ToolContext, session_id: str, selector: str, text: str, delay: float = 0
) -> dict[str, Any]:
    page = await _page_for(ctx, session_id)
    if not page.ok:
        return page.tool_error()
    typed = await actions.type_text(
        page.value, selector, text, timeout_ms=ctx.settings.browser_timeout_ms, delay_ms=delay
    )
    if not typed.ok:
        return _browser_failure(ctx, session_id, "type", typed, selector=selector)
    _touch(ctx, session_id)
    return success(sessionId=session_id, selector=selector)


@_tool("waitForSelector")
async def wait_for_selector(
    ctx: ToolContext, session_id: str, selector: str, state: str = "visible", timeout: int | None = None
) -> dict[str, Any]:
    page = await _page_for(ctx, session_id)
    if not page.ok:
        return page.tool_error()
    timeout_ms = timeout or ctx.settings.browser_timeout_ms
    waited = await actions.wait_for_element(page.value, selector, timeout_ms=timeout_ms, state=state)
    if not waited.ok:
        return _browser_failure(
            ctx, session_id, "waitForSelector", waited, selector=selector, state=state, timeout=timeout_ms
        )
    _touch(ctx, session_id)
    return success(sessionId=session_id, selector=selector, state=state)


@_tool("screenshot")
async def screenshot(ctx: ToolContext, session_id: str, full_page: bool = False) -> dict[str, Any]:
    page = await _page_for(ctx, session_id)
    if not page.ok:
        return page.tool_error()
    shot = await actions.capture_screenshot(page.value, full_page=bool(full_page))
    if not shot.ok:
        return _browser_failure(ctx, session_id, "screenshot", shot, fullPage=bool(full_page))
    _touch(ctx, session_id)
    return success(sessionId=session_id, mimeType="image/png", screenshot=shot.value)


@_tool("evaluate")
async def evaluate(ctx: ToolContext, session_id: str, script: str) -> dict[str, Any]:
    page = await _page_for(ctx, session_id)
    if not page.ok:
        return page.tool_error()
    evaluated = await actions.execute_script(page.value, script)
    if not evaluated.ok:
        return _browser_failure(ctx, session_id, "evaluate", evaluated, script=script)
    _touch(ctx, session_id)
    return success(sessionId=session_id, value=evaluated.value)


@_tool("getContent")
async def get_content(ctx: ToolContext, session_id: str) -> dict[str, Any]:
    page = await _page_for(ctx, session_id)
    if not page.ok:
        return page.tool_error()
    content = await actions.get_page_content(page.value)
    if not content.ok:
        return _browser_failure(ctx, session_id, "getContent", content)
    _touch(ctx, session_id)
    return success(sessionId=session_id, content=content.value)
