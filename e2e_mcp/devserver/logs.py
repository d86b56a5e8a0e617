from __future__ import annotations

import os
import re
from pathlib import Path

from e2e_mcp.result import Result


DEFAULT_LOG_LINES = 100

_SEGMENT_SPLIT_RE = re.compile(r"[\\/]+")


def _has_traversal_segment(raw: str) -> bool:
    return any(part == ".." for part in _SEGMENT_SPLIT_RE.split(raw))


def validate_log_path(log_path: str, allowed_dir: str | None = None) -> Result:
    """Containment check; runs before any file-system access. Returns the resolved path."""
    raw = str(log_path or "")
    if not raw.strip():
        return Result.failure("invalid_path", "Log path cannot be empty", path=raw)
    if _has_traversal_segment(raw):
        return Result.failure("invalid_path", "Path contains traversal sequences", path=raw)

    resolved = Path(os.path.abspath(raw))
    if allowed_dir:
        root = Path(os.path.abspath(allowed_dir))
        if resolved != root and root not in resolved.parents:
            return Result.failure(
                "invalid_path",
                f"Path is outside allowed directory: {allowed_dir}",
                path=raw,
            )
    return Result.success(str(resolved))


def select_lines(all_lines: list[str], *, lines: int | None = None, offset: int | None = None) -> list[str]:
    count = DEFAULT_LOG_LINES if lines is None else max(0, int(lines))
    if offset is None:
        return all_lines[-count:] if count else []
    start = max(0, int(offset))
    return all_lines[start : start + count]


def read_log_file(
    log_path: str,
    *,
    lines: int | None = None,
    offset: int | None = None,
    allowed_dir: str | None = None,
) -> Result:
    """
    Read a slice of a newline-delimited log file.

    Without ``offset`` the last ``lines`` lines (default 100) are returned; with
    an explicit ``offset`` the window is ``[offset, offset + lines)`` counted
    from the start of the file.
    """
    checked = validate_log_path(log_path, allowed_dir)
    if not checked.ok:
        return checked
    resolved = checked.value

    if not os.path.isfile(resolved) or not os.access(resolved, os.R_OK):
        return Result.failure(
            "file_not_found",
            f"Log file not found or not readable: {resolved}",
            path=log_path,
        )

    try:
        content = Path(resolved).read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        return Result.failure("read_error", "Failed to read log file", path=log_path, error=str(exc))

    selected = select_lines(content.splitlines(), lines=lines, offset=offset)
    return Result.success("\n".join(selected))
