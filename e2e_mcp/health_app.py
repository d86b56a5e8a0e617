from __future__ import annotations

from typing import Any

import uvicorn
from fastapi import FastAPI

from e2e_mcp.health import HealthMonitor, MetricsCollector
from e2e_mcp.settings import load_settings


def create_app(monitor: HealthMonitor | None = None, metrics: MetricsCollector | None = None) -> FastAPI:
    app = FastAPI(title="E2E MCP Server", version="0.1.0")
    app.state.monitor = monitor if monitor is not None else HealthMonitor()
    app.state.metrics = metrics if metrics is not None else MetricsCollector()

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return app.state.monitor.get_health()

    @app.get("/metrics")
    async def metrics_endpoint() -> dict[str, Any]:
        return app.state.metrics.get_metrics()

    @app.get("/")
    async def root() -> dict[str, Any]:
        return {"name": "e2e-mcp-server", "endpoints": ["/health", "/metrics"]}

    return app


def build_uvicorn_server(app: FastAPI, host: str, port: int, log_level: str = "info") -> uvicorn.Server:
    # Embedded next to the MCP transport in the same event loop.
    config = uvicorn.Config(app, host=host, port=port, log_level=log_level.lower(), access_log=False)
    return uvicorn.Server(config)


def main() -> None:
    settings = load_settings()
    app = create_app()
    uvicorn.run(app, host=settings.health_host, port=settings.health_port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
