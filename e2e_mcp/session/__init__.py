"""Session registry and lifecycle management."""

from e2e_mcp.session.manager import SessionManager
from e2e_mcp.session.models import LOG_TYPES, LogPaths, ServerInfo, SessionInfo
from e2e_mcp.session.store import SessionStore

__all__ = ["LOG_TYPES", "LogPaths", "ServerInfo", "SessionInfo", "SessionManager", "SessionStore"]
