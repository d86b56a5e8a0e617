from __future__ import annotations

import httpx
import pytest

from e2e_mcp.health import HealthMonitor, MetricsCollector
from e2e_mcp.health_app import create_app


class _Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_health_reports_sessions_and_uptime() -> None:
    clock = _Clock()
    count = {"n": 2}
    monitor = HealthMonitor(lambda: count["n"], clock=clock)
    clock.now += 12.5

    h = monitor.get_health()
    assert h["status"] == "healthy"
    assert h["activeSessions"] == 2
    assert h["uptime"] == 12.5
    assert h["memory"]["rss"] > 0
    assert h["memory"]["maxRss"] > 0

    count["n"] = 0
    assert monitor.get_health()["activeSessions"] == 0


def test_metrics_empty() -> None:
    m = MetricsCollector().get_metrics()
    assert m["toolCalls"]["total"] == 0
    assert m["toolCalls"]["successRate"] == 0.0
    assert m["byTool"] == {}


def test_metrics_aggregate_per_tool() -> None:
    metrics = MetricsCollector()
    metrics.record_tool_call("navigate", True, 100)
    metrics.record_tool_call("navigate", False, 300)
    metrics.record_tool_call("click", True, 20)

    m = metrics.get_metrics()
    overall = m["toolCalls"]
    assert overall["total"] == 3
    assert overall["successful"] == 2
    assert overall["failed"] == 1
    assert overall["successRate"] == pytest.approx(2 / 3)
    assert overall["minResponseTime"] == 20
    assert overall["maxResponseTime"] == 300
    assert overall["averageResponseTime"] == pytest.approx(140)

    nav = m["byTool"]["navigate"]
    assert nav["total"] == 2
    assert nav["errorRate"] == 0.5
    assert nav["averageResponseTime"] == 200

    metrics.reset()
    assert metrics.get_metrics()["toolCalls"]["total"] == 0


@pytest.mark.asyncio
async def test_health_app_routes() -> None:
    metrics = MetricsCollector()
    metrics.record_tool_call("startSession", True, 50)
    app = create_app(HealthMonitor(lambda: 1), metrics)

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        health = await client.get("/health")
        assert health.status_code == 200
        assert health.json()["activeSessions"] == 1

        m = await client.get("/metrics")
        assert m.json()["byTool"]["startSession"]["total"] == 1

        root = await client.get("/")
        assert "/health" in root.json()["endpoints"]
