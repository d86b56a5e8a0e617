"""Dev-server collaborator: command execution and log access."""

from e2e_mcp.devserver.command import CommandExecutor
from e2e_mcp.devserver.logs import DEFAULT_LOG_LINES, read_log_file, validate_log_path

__all__ = ["CommandExecutor", "DEFAULT_LOG_LINES", "read_log_file", "validate_log_path"]
