"""Unit tests for health check endpoints."""

import json
from unittest.mock import MagicMock

import pytest
from aiohttp import web

from relay.health import HealthCheckHandler, setup_health_routes
from relay.metrics import RelayMetrics
from relay.registry import SessionRegistry


def _body(response: web.Response) -> dict:
    assert response.body is not None
    return json.loads(response.body)


@pytest.mark.asyncio
async def test_health_reports_sessions() -> None:
    registry = SessionRegistry()
    registry.register("a")
    registry.register("b")
    handler = HealthCheckHandler(registry, RelayMetrics(), MagicMock(is_running=True))

    response = await handler.health_check(MagicMock())

    assert response.status == 200
    body = _body(response)
    assert body["status"] == "healthy"
    assert body["sessions"] == 2
    assert body["transport"] is True


@pytest.mark.asyncio
async def test_health_unhealthy_when_transport_stopped() -> None:
    handler = HealthCheckHandler(SessionRegistry(), RelayMetrics(), MagicMock(is_running=False))

    response = await handler.health_check(MagicMock())

    assert response.status == 503
    assert _body(response)["status"] == "unhealthy"


@pytest.mark.asyncio
async def test_liveness() -> None:
    handler = HealthCheckHandler(SessionRegistry(), RelayMetrics())

    response = await handler.liveness_check(MagicMock())

    assert response.status == 200
    assert _body(response)["status"] == "alive"


@pytest.mark.asyncio
async def test_metrics_endpoint() -> None:
    metrics = RelayMetrics()
    metrics.record_session_open()
    handler = HealthCheckHandler(SessionRegistry(), metrics)

    response = await handler.metrics_endpoint(MagicMock())

    assert response.status == 200
    assert response.text is not None
    assert "relay_connections_total 1.0" in response.text


@pytest.mark.asyncio
async def test_metrics_endpoint_export_failure() -> None:
    metrics = MagicMock()
    metrics.export_prometheus.side_effect = RuntimeError("boom")
    handler = HealthCheckHandler(SessionRegistry(), metrics)

    response = await handler.metrics_endpoint(MagicMock())

    assert response.status == 500


@pytest.mark.asyncio
async def test_metrics_summary() -> None:
    handler = HealthCheckHandler(SessionRegistry(), RelayMetrics())

    response = await handler.metrics_summary(MagicMock())

    body = _body(response)
    assert body["status"] == "ok"
    assert body["metrics"]["active_sessions"] == 0


def test_setup_health_routes() -> None:
    app = web.Application()
    setup_health_routes(app, SessionRegistry(), RelayMetrics())

    paths = {resource.canonical for resource in app.router.resources()}
    assert paths == {"/health", "/liveness", "/metrics", "/metrics/summary"}
