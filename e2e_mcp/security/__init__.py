"""Input gates applied before any process is spawned or URL is fetched."""

from e2e_mcp.security.command import DANGEROUS_CHARS, validate_command_path
from e2e_mcp.security.rate_limit import SESSION_CREATE, TOOL_CALL, RateLimiter
from e2e_mcp.security.url import is_private_host, validate_url

__all__ = [
    "DANGEROUS_CHARS",
    "SESSION_CREATE",
    "TOOL_CALL",
    "RateLimiter",
    "is_private_host",
    "validate_command_path",
    "validate_url",
]
