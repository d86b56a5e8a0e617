"""MCP server that pairs a dev-server process with a dedicated browser per E2E session."""

__version__ = "0.1.0"
