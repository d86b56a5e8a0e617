"""
MCP entry point.

Tools are exposed under camelCase names; their parameters are camelCase as
well because that is the schema agents see.
"""

from __future__ import annotations

import argparse
import asyncio
from typing import Any

import structlog
from mcp.server.fastmcp import Context, FastMCP
from starlette.responses import JSONResponse

from e2e_mcp import tools
from e2e_mcp.health_app import build_uvicorn_server, create_app
from e2e_mcp.logging_setup import configure_logging
from e2e_mcp.settings import Settings, SettingsError, load_settings


logger = structlog.get_logger(__name__)

INSTRUCTIONS = (
    "E2E session server. Call startSession with the absolute path of your project's "
    "dev-server command to boot the app and get a dedicated headless browser. "
    "Drive the page with navigate, click, fill, type, waitForSelector, screenshot, evaluate "
    "and getContent. Inspect server output with readLogs and always finish with stopSession."
)


def _caller_id(mcp_ctx: Context | None) -> str:
    if mcp_ctx is None:
        return tools.DEFAULT_CALLER
    try:
        client_id = mcp_ctx.client_id
    except ValueError:
        # Outside of a request.
        return tools.DEFAULT_CALLER
    return client_id or tools.DEFAULT_CALLER


def build_server(
    settings: Settings,
    *,
    ctx: tools.ToolContext | None = None,
    host: str = "127.0.0.1",
    port: int = 8000,
) -> tuple[FastMCP, tools.ToolContext]:
    ctx = ctx if ctx is not None else tools.build_context(settings)
    mcp = FastMCP(name="e2e-mcp-server", instructions=INSTRUCTIONS, host=host, port=port)

    @mcp.tool(name="startSession", description="Start the dev server via its command and launch a browser for it.")
    async def start_session(commandPath: str, args: list[str] | None = None, mcp_ctx: Context = None) -> dict[str, Any]:  # noqa: N803
        return await tools.start_session(ctx, commandPath, args, caller_id=_caller_id(mcp_ctx))

    @mcp.tool(name="stopSession", description="Shut the dev server down and release the session's browser.")
    async def stop_session(
        sessionId: str, commandPath: str, args: list[str] | None = None, mcp_ctx: Context = None  # noqa: N803
    ) -> dict[str, Any]:
        return await tools.stop_session(ctx, sessionId, commandPath, args, caller_id=_caller_id(mcp_ctx))

    @mcp.tool(name="getSessionStatus", description="Run the dev server's status command for a session.")
    async def get_session_status(
        sessionId: str, commandPath: str, args: list[str] | None = None, mcp_ctx: Context = None  # noqa: N803
    ) -> dict[str, Any]:
        return await tools.get_session_status(ctx, sessionId, commandPath, args, caller_id=_caller_id(mcp_ctx))

    @mcp.tool(name="readLogs", description="Read the last lines of the dev server's stdout, stderr or combined log.")
    async def read_logs(
        sessionId: str, logType: str = "combined", lines: int = 100, mcp_ctx: Context = None  # noqa: N803
    ) -> dict[str, Any]:
        return await tools.read_logs(ctx, sessionId, logType, lines, caller_id=_caller_id(mcp_ctx))

    @mcp.tool(name="navigate", description="Navigate the session's page to a URL or a path on the dev server.")
    async def navigate(
        sessionId: str, url: str, waitUntil: str = "load", mcp_ctx: Context = None  # noqa: N803
    ) -> dict[str, Any]:
        return await tools.navigate(ctx, sessionId, url, waitUntil, caller_id=_caller_id(mcp_ctx))

    @mcp.tool(name="click", description="Click the element matching a CSS selector.")
    async def click(
        sessionId: str, selector: str, timeout: int | None = None, mcp_ctx: Context = None  # noqa: N803
    ) -> dict[str, Any]:
        return await tools.click(ctx, sessionId, selector, timeout, caller_id=_caller_id(mcp_ctx))

    @mcp.tool(name="fill", description="Replace the value of an input matching a CSS selector.")
    async def fill(sessionId: str, selector: str, text: str, mcp_ctx: Context = None) -> dict[str, Any]:  # noqa: N803
        return await tools.fill(ctx, sessionId, selector, text, caller_id=_caller_id(mcp_ctx))

    @mcp.tool(name="type", description="Type text key by key into the element matching a CSS selector.")
    async def type_text(
        sessionId: str, selector: str, text: str, delay: float = 0, mcp_ctx: Context = None  # noqa: N803
    ) -> dict[str, Any]:
        return await tools.type_text(ctx, sessionId, selector, text, delay, caller_id=_caller_id(mcp_ctx))

    @mcp.tool(
        name="waitForSelector",
        description="Wait until an element is attached, detached, visible or hidden.",
    )
    async def wait_for_selector(
        sessionId: str,  # noqa: N803
        selector: str,
        state: str = "visible",
        timeout: int | None = None,
        mcp_ctx: Context = None,
    ) -> dict[str, Any]:
        return await tools.wait_for_selector(ctx, sessionId, selector, state, timeout, caller_id=_caller_id(mcp_ctx))

    @mcp.tool(name="screenshot", description="Capture a PNG screenshot (base64) of the session's page.")
    async def screenshot(sessionId: str, fullPage: bool = False, mcp_ctx: Context = None) -> dict[str, Any]:  # noqa: N803
        return await tools.screenshot(ctx, sessionId, fullPage, caller_id=_caller_id(mcp_ctx))

    @mcp.tool(name="evaluate", description="Evaluate a JavaScript expression or function in the page.")
    async def evaluate(sessionId: str, script: str, mcp_ctx: Context = None) -> dict[str, Any]:  # noqa: N803
        return await tools.evaluate(ctx, sessionId, script, caller_id=_caller_id(mcp_ctx))

    @mcp.tool(name="getContent", description="Return the page's current HTML.")
    async def get_content(sessionId: str, mcp_ctx: Context = None) -> dict[str, Any]:  # noqa: N803
        return await tools.get_content(ctx, sessionId, caller_id=_caller_id(mcp_ctx))

    @mcp.tool(name="listSessions", description="List live sessions.")
    async def list_sessions(mcp_ctx: Context = None) -> dict[str, Any]:
        return await tools.list_sessions(ctx, caller_id=_caller_id(mcp_ctx))

    @mcp.tool(name="healthCheck", description="Server health and tool-call metrics.")
    async def health_check(mcp_ctx: Context = None) -> dict[str, Any]:
        return await tools.health_check(ctx, caller_id=_caller_id(mcp_ctx))

    # Served on the MCP port in streamable-http mode.
    @mcp.custom_route("/health", methods=["GET"])
    async def _health(request):
        return JSONResponse(ctx.monitor.get_health())

    @mcp.custom_route("/metrics", methods=["GET"])
    async def _metrics(request):
        return JSONResponse(ctx.metrics.get_metrics())

    return mcp, ctx


async def serve(
    settings: Settings,
    *,
    transport: str = "stdio",
    host: str = "127.0.0.1",
    port: int = 8000,
    health: bool = False,
) -> None:
    mcp, ctx = build_server(settings, host=host, port=port)

    health_server = None
    health_task: asyncio.Task | None = None
    if health:
        app = create_app(ctx.monitor, ctx.metrics)
        health_server = build_uvicorn_server(app, settings.health_host, settings.health_port, settings.log_level)
        health_task = asyncio.create_task(health_server.serve())
        logger.info("health_app_started", host=settings.health_host, port=settings.health_port)

    logger.info("server_starting", transport=transport)
    try:
        if transport == "stdio":
            await mcp.run_stdio_async()
        else:
            await mcp.run_streamable_http_async()
    finally:
        await ctx.manager.cleanup()
        if health_server is not None and health_task is not None:
            health_server.should_exit = True
            await health_task
        logger.info("server_stopped")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="e2e-mcp-server", description="MCP server for dev-server E2E sessions")
    parser.add_argument("--transport", choices=["stdio", "streamable-http"], default="stdio")
    parser.add_argument("--host", default="127.0.0.1", help="bind address for streamable-http")
    parser.add_argument("--port", type=int, default=8000, help="port for streamable-http")
    parser.add_argument("--log-level", default=None, help="overrides LOG_LEVEL")
    parser.add_argument("--health", action="store_true", help="also serve /health and /metrics on HEALTH_HOST:HEALTH_PORT")
    args = parser.parse_args(argv)

    try:
        settings = load_settings()
    except SettingsError as exc:
        parser.error(str(exc))

    configure_logging((args.log_level or settings.log_level).upper(), settings.log_format)
    try:
        asyncio.run(serve(settings, transport=args.transport, host=args.host, port=args.port, health=args.health))
    except KeyboardInterrupt:
        logger.info("server_interrupted")


if __name__ == "__main__":
    main()
