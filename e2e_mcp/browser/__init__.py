"""Per-session Chromium instances and page pass-throughs."""

from e2e_mcp.browser.driver import (
    ManagedBrowser,
    close_browser,
    find_chromium_executable,
    get_or_create_page,
    is_browser_healthy,
    launch_browser,
)

__all__ = [
    "ManagedBrowser",
    "close_browser",
    "find_chromium_executable",
    "get_or_create_page",
    "is_browser_healthy",
    "launch_browser",
]
