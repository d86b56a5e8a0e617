from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import structlog
from playwright.async_api import Browser, Page, Playwright, async_playwright

from e2e_mcp.result import Result


logger = structlog.get_logger(__name__)

CHROMIUM_ARGS = [
    "--no-sandbox",
    "--disable-gpu",
    "--disable-extensions",
    "--disable-background-networking",
    "--disable-sync",
    "--metrics-recording-only",
    "--no-first-run",
    "--no-default-browser-check",
]


def find_chromium_executable() -> str | None:
    env_path = os.getenv("CHROMIUM_PATH")
    if env_path and Path(env_path).exists():
        return env_path

    candidates = [
        "/usr/bin/chromium",
        "/usr/bin/chromium-browser",
        "/usr/bin/google-chrome",
        "/usr/bin/google-chrome-stable",
        "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
    ]
    for path in candidates:
        if Path(path).exists():
            return path
    return None


def _shm_is_small() -> bool:
    try:
        st = os.statvfs("/dev/shm")
        shm_bytes = int(st.f_frsize) * int(st.f_blocks)
    except Exception:
        return False
    return bool(shm_bytes) and shm_bytes < 512 * 1024 * 1024


class ManagedBrowser:
    """A Chromium instance together with the Playwright driver that launched it."""

    def __init__(self, playwright: Playwright, browser: Browser, *, default_timeout_ms: int = 30_000) -> None:
        self.playwright = playwright
        self.browser = browser
        self.default_timeout_ms = int(default_timeout_ms)
        self._closed = False

    def is_connected(self) -> bool:
        return not self._closed and self.browser.is_connected()

    async def new_page(self) -> Page:
        page = await self.browser.new_page()
        page.set_default_timeout(self.default_timeout_ms)
        page.set_default_navigation_timeout(self.default_timeout_ms)
        return page

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            if self.browser.is_connected():
                await self.browser.close()
        finally:
            await self.playwright.stop()


async def launch_browser(*, headless: bool = True, timeout_ms: int = 30_000, args: list[str] | None = None) -> ManagedBrowser:
    """Start a Playwright driver and a Chromium instance; raises on failure."""
    launch_args = list(CHROMIUM_ARGS) + list(args or [])
    if _shm_is_small():
        # Avoid renderer crashes when /dev/shm is tiny.
        launch_args.append("--disable-dev-shm-usage")

    options: dict[str, Any] = {"headless": headless, "timeout": timeout_ms, "args": launch_args}
    executable = find_chromium_executable()
    if executable:
        options["executable_path"] = executable

    playwright = await async_playwright().start()
    try:
        browser = await playwright.chromium.launch(**options)
    except Exception:
        await playwright.stop()
        raise
    logger.info("browser_launched", headless=headless, executable=executable or "bundled")
    return ManagedBrowser(playwright, browser, default_timeout_ms=timeout_ms)


def is_browser_healthy(browser: Any) -> bool:
    if browser is None:
        return False
    try:
        return bool(browser.is_connected())
    except Exception:
        return False


async def get_or_create_page(browser: Any, existing_page: Any) -> Result:
    try:
        if existing_page is not None and not existing_page.is_closed():
            return Result.success(existing_page)
        page = await browser.new_page()
        return Result.success(page)
    except Exception as exc:
        return Result.failure("navigation_failed", str(exc), url="page-creation", reason=str(exc))


async def close_browser(browser: Any) -> Result:
    """Close a session browser. Never raises; the failure is reported instead."""
    if browser is None:
        return Result.success(True)
    try:
        await browser.close()
        return Result.success(True)
    except Exception as exc:
        return Result.failure("browser_close_failed", str(exc))
