"""
Thin pass-throughs to Playwright page operations.

Every function returns a ``Result`` instead of raising. Element operations
attach a best-effort base64 screenshot to their failures so an agent can see
what the page looked like when the selector did not resolve.
"""

from __future__ import annotations

import base64
from typing import Any
from urllib.parse import urljoin, urlsplit

import structlog

from e2e_mcp.browser.driver import get_or_create_page, is_browser_healthy
from e2e_mcp.errors import classify_browser_error
from e2e_mcp.result import Result
from e2e_mcp.security.url import canonical_host, validate_url
from e2e_mcp.session.store import SessionStore


logger = structlog.get_logger(__name__)

DEFAULT_ACTION_TIMEOUT_MS = 30_000
WAIT_UNTIL_VALUES = ("load", "domcontentloaded", "networkidle", "commit")
WAIT_STATES = ("attached", "detached", "visible", "hidden")


async def _failure_screenshot(page: Any) -> str | None:
    try:
        raw = await page.screenshot(type="png")
    except Exception as exc:
        logger.debug("failure_screenshot_unavailable", error=str(exc))
        return None
    return base64.b64encode(raw).decode("ascii")


async def _element_failure(page: Any, exc: Exception, selector: str, timeout_ms: int) -> Result:
    screenshot = await _failure_screenshot(page)
    if classify_browser_error(exc) == "timeout":
        return Result.failure(
            "timeout",
            str(exc),
            selector=selector,
            timeout=timeout_ms,
            screenshot=screenshot,
            exception=type(exc).__name__,
        )
    return Result.failure(
        "element_not_found", str(exc), selector=selector, screenshot=screenshot, exception=type(exc).__name__
    )


def _origin(url: str) -> tuple[str, str, int | None] | None:
    parts = urlsplit(url)
    try:
        port = parts.port
        host = canonical_host(parts.hostname or "")
    except ValueError:
        return None
    scheme = (parts.scheme or "").lower()
    if port is None:
        port = {"http": 80, "https": 443}.get(scheme)
    return scheme, host, port


def resolve_navigation_url(url: str, server_url: str, *, allowed_hosts=None) -> Result:
    """
    Gate a navigation target.

    Paths ("/login") resolve against the session's dev server. Targets on the
    dev server's own origin are allowed even though it is usually localhost;
    anything else has to pass the SSRF validator.
    """
    raw = (url or "").strip()
    if not raw:
        return Result.failure("invalid_url", "URL is empty", url=url)
    if raw.startswith("/") and not raw.startswith("//"):
        raw = urljoin(server_url, raw)
    origin = _origin(raw)
    if origin is not None and origin == _origin(server_url):
        return Result.success(raw)
    return validate_url(raw, allowed_hosts=allowed_hosts)


async def current_page(store: SessionStore, session_id: str) -> Result:
    """Return the session's page, opening one if it has none yet."""
    found = store.get(session_id)
    if not found.ok:
        return found
    session = found.value

    if session.browser is None or not is_browser_healthy(session.browser):
        return Result.failure(
            "browser_not_initialized",
            "Browser is not initialized or unhealthy",
            session_id=session_id,
        )

    page = await get_or_create_page(session.browser, session.page)
    if not page.ok:
        return page
    if page.value is not session.page:
        updated = store.update(session_id, page=page.value)
        if not updated.ok:
            return updated
    return page


async def navigate_to_url(
    page: Any,
    url: str,
    *,
    wait_until: str = "load",
    timeout_ms: int = DEFAULT_ACTION_TIMEOUT_MS,
    referer: str | None = None,
) -> Result:
    try:
        response = await page.goto(url, wait_until=wait_until, timeout=timeout_ms, referer=referer)
    except Exception as exc:
        kind = classify_browser_error(exc)
        if kind == "timeout":
            return Result.failure("timeout", str(exc), url=url, timeout=timeout_ms, exception=type(exc).__name__)
        return Result.failure("navigation_failed", str(exc), url=url, reason=str(exc), exception=type(exc).__name__)
    status = response.status if response is not None else None
    return Result.success({"url": page.url, "status": status})


async def navigate_with_session(
    store: SessionStore,
    session_id: str,
    url: str,
    *,
    wait_until: str = "load",
    timeout_ms: int = DEFAULT_ACTION_TIMEOUT_MS,
    allowed_hosts=None,
) -> Result:
    found = store.get(session_id)
    if not found.ok:
        return found
    if wait_until not in WAIT_UNTIL_VALUES:
        return Result.failure(
            "navigation_failed",
            f"Unsupported waitUntil value: {wait_until}",
            url=url,
            reason="invalid_wait_until",
        )

    target = resolve_navigation_url(url, found.value.server_info.url, allowed_hosts=allowed_hosts)
    if not target.ok:
        logger.warning("navigation_blocked", session_id=session_id, url=url, error_type=target.error_type)
        return target

    page = await current_page(store, session_id)
    if not page.ok:
        return page
    return await navigate_to_url(page.value, target.value, wait_until=wait_until, timeout_ms=timeout_ms)


async def wait_for_element(
    page: Any,
    selector: str,
    *,
    timeout_ms: int = DEFAULT_ACTION_TIMEOUT_MS,
    state: str = "visible",
) -> Result:
    if state not in WAIT_STATES:
        return Result.failure("invalid_state", f"Unsupported state: {state}", selector=selector, state=state)
    try:
        await page.wait_for_selector(selector, timeout=timeout_ms, state=state)
    except Exception as exc:
        return await _element_failure(page, exc, selector, timeout_ms)
    return Result.success(None)


async def click_element(
    page: Any,
    selector: str,
    *,
    timeout_ms: int = DEFAULT_ACTION_TIMEOUT_MS,
    click_count: int = 1,
    button: str = "left",
    delay_ms: float | None = None,
) -> Result:
    try:
        await page.click(selector, timeout=timeout_ms, click_count=click_count, button=button, delay=delay_ms)
    except Exception as exc:
        return await _element_failure(page, exc, selector, timeout_ms)
    return Result.success(None)


async def fill_text(page: Any, selector: str, text: str, *, timeout_ms: int = DEFAULT_ACTION_TIMEOUT_MS) -> Result:
    try:
        await page.fill(selector, text, timeout=timeout_ms)
    except Exception as exc:
        return await _element_failure(page, exc, selector, timeout_ms)
    return Result.success(None)


async def type_text(
    page: Any,
    selector: str,
    text: str,
    *,
    timeout_ms: int = DEFAULT_ACTION_TIMEOUT_MS,
    delay_ms: float = 0,
) -> Result:
    # Key-by-key, unlike fill_text which replaces the value at once.
    try:
        await page.type(selector, text, timeout=timeout_ms, delay=delay_ms)
    except Exception as exc:
        return await _element_failure(page, exc, selector, timeout_ms)
    return Result.success(None)


async def capture_screenshot(page: Any, *, full_page: bool = False, image_type: str = "png") -> Result:
    try:
        raw = await page.screenshot(full_page=full_page, type=image_type)
    except Exception as exc:
        return Result.failure("screenshot_failed", str(exc), reason=str(exc), exception=type(exc).__name__)
    return Result.success(base64.b64encode(raw).decode("ascii"))


async def get_page_content(page: Any) -> Result:
    try:
        html = await page.content()
    except Exception as exc:
        return Result.failure(
            "navigation_failed", str(exc), url=page.url, reason=str(exc), exception=type(exc).__name__
        )
    return Result.success(html)


async def get_element_text(page: Any, selector: str, *, timeout_ms: int = DEFAULT_ACTION_TIMEOUT_MS) -> Result:
    try:
        text = await page.text_content(selector, timeout=timeout_ms)
    except Exception as exc:
        if classify_browser_error(exc) == "timeout":
            return Result.failure("timeout", str(exc), selector=selector, timeout=timeout_ms)
        return Result.failure("element_not_found", str(exc), selector=selector)
    return Result.success(text or "")


async def execute_script(page: Any, script: str, arg: Any = None) -> Result:
    """Evaluate a JS expression or function source in the page."""
    try:
        if arg is None:
            value = await page.evaluate(script)
        else:
            value = await page.evaluate(script, arg)
    except Exception as exc:
        return Result.failure("script_error", str(exc), script=script, exception=type(exc).__name__)
    return Result.success(value)
