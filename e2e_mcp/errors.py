"""
Structured error documents for agents.

Playwright raises a handful of exception types with free-form messages; agents
get more out of a small fixed vocabulary plus whatever context we have at hand
(the page URL, a screenshot, the tail of the dev server's stderr log).
"""

from __future__ import annotations

import base64
from pathlib import Path
from typing import Any

from e2e_mcp.devserver.logs import select_lines
from e2e_mcp.result import ErrorInfo, utc_iso


# Renderer crashes and a dead driver transport are resource pressure on our
# side, not a failure of the app under test.
_INFRA_MARKERS = (
    "browser has been closed",
    "page crashed",
    "target crashed",
    "connection closed while reading from the driver",
    "connection closed while writing to the driver",
    "pipe closed by peer",
)

_ELEMENT_MARKERS = ("no element matches", "failed to find element", "element is not attached")


def classify_browser_error(exc: BaseException) -> str:
    """Map a Playwright (or asyncio) exception to an error kind."""
    name = type(exc).__name__
    msg = str(exc or "").lower()

    if name == "TimeoutError" or ("timeout" in msg and "exceeded" in msg):
        return "timeout"
    if any(marker in msg for marker in _ELEMENT_MARKERS):
        return "element_not_found"
    if name == "TargetClosedError" or any(marker in msg for marker in _INFRA_MARKERS):
        return "browser_infra_error"
    return "playwright_error"


def _tail_file(path: str, max_lines: int) -> list[str] | None:
    try:
        text = Path(path).read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None
    return select_lines(text.splitlines(), lines=max_lines)


def build_structured_error(
    error: BaseException | ErrorInfo,
    context: dict[str, Any] | None = None,
    *,
    screenshot: bytes | str | None = None,
    stderr_path: str | None = None,
    max_log_lines: int = 100,
) -> dict[str, Any]:
    """
    Build the debug document attached to a failed browser operation.

    ``error`` is either the raw exception or the ``ErrorInfo`` of a failed
    ``Result``; the latter keeps its own kind and timestamp. A screenshot may
    be raw PNG bytes or already base64-encoded text.
    """
    if isinstance(error, ErrorInfo):
        doc: dict[str, Any] = {
            "type": error.type,
            "message": error.message,
            "exception": error.details.get("exception"),
            "timestamp": error.timestamp,
        }
    else:
        doc = {
            "type": classify_browser_error(error),
            "message": str(error) or type(error).__name__,
            "exception": type(error).__name__,
            "timestamp": utc_iso(),
        }
    doc["context"] = dict(context or {})

    if screenshot:
        if isinstance(screenshot, str):
            doc["screenshot"] = screenshot
        else:
            doc["screenshot"] = base64.b64encode(screenshot).decode("ascii")
    if stderr_path:
        tail = _tail_file(stderr_path, max_log_lines)
        if tail is not None:
            doc["serverLogs"] = {"stderr": tail}
    return doc
