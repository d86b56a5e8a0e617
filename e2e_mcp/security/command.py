from __future__ import annotations

import os

from e2e_mcp.result import Result


# Shell metacharacters that could enable command injection if the path ever
# reached a shell. Checked before anything else.
DANGEROUS_CHARS: tuple[str, ...] = (";", "|", "&", "$", "`", "(", ")", "<", ">", "\n", "\r")


def _canonical(path: str) -> str:
    return os.path.normpath(os.path.abspath(path))


def validate_command_path(
    path: str,
    *,
    allowed_path: str | None = None,
    check_exists: bool = False,
    check_executable: bool = False,
) -> Result:
    """
    Validate a caller-supplied command path before it is executed.

    Returns the canonical absolute path on success. Existence/executable checks
    are opt-in so dry validation never touches the file system.
    """
    if not path or not str(path).strip():
        return Result.failure("empty_path", "Command path cannot be empty")

    path = str(path)
    found = [ch for ch in DANGEROUS_CHARS if ch in path]
    if found:
        shown = ", ".join(repr(ch) if ch in {"\n", "\r"} else ch for ch in found)
        return Result.failure(
            "invalid_characters",
            f"Command path contains dangerous characters: {shown}",
            path=path,
            invalid_chars=found,
        )

    if not os.path.isabs(path):
        return Result.failure("relative_path", "Command path must be absolute", path=path)

    normalized = _canonical(path)

    if allowed_path:
        allowed = _canonical(allowed_path)
        if normalized != allowed:
            return Result.failure(
                "path_not_allowed",
                f"Command path not allowed. Only {allowed_path} is permitted",
                path=normalized,
                allowed_path=allowed_path,
            )

    if check_exists:
        if not os.path.isfile(normalized):
            return Result.failure("file_not_found", f"Command file not found: {normalized}", path=normalized)
        if check_executable and not os.access(normalized, os.X_OK):
            return Result.failure("not_executable", f"Command file is not executable: {normalized}", path=normalized)

    return Result.success(normalized)
