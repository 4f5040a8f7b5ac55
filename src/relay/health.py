"""Health check endpoints for the relay.

Provides HTTP health, liveness and metrics endpoints on a side port for load
balancers, monitoring systems and orchestration tools. These routes are
operational only; participants never talk to them.
"""

import logging
import time
from typing import Any

from aiohttp import web

from relay.metrics import RelayMetrics
from relay.registry import SessionRegistry

logger = logging.getLogger(__name__)


class HealthCheckHandler:
    """Health check handler for the relay.

    Reports transport state and the number of registered sessions, and
    exposes the relay metrics for scraping.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        metrics: RelayMetrics,
        transport: Any = None,
    ) -> None:
        """Initialize health check handler.

        Args:
            registry: Session registry to report on
            metrics: Metrics collector to export
            transport: Transport whose ``is_running`` gates health (optional)
        """
        self.registry = registry
        self.metrics = metrics
        self.transport = transport
        self.start_time = time.time()

    async def health_check(self, request: web.Request) -> web.Response:
        """Health check endpoint.

        Returns:
            200 OK: Transport is accepting connections
            503 Service Unavailable: Transport is not running

        Response format:
        {
            "status": "healthy" | "unhealthy",
            "uptime_seconds": float,
            "transport": bool,
            "sessions": int
        }
        """
        transport_ok = self.transport is None or bool(self.transport.is_running)
        status_code = 200 if transport_ok else 503

        response_data = {
            "status": "healthy" if transport_ok else "unhealthy",
            "uptime_seconds": time.time() - self.start_time,
            "transport": transport_ok,
            "sessions": len(self.registry),
        }

        logger.debug("Health check performed", extra={"status": response_data["status"]})

        return web.json_response(response_data, status=status_code)

    async def liveness_check(self, request: web.Request) -> web.Response:
        """Liveness check endpoint.

        Returns OK if the process is running, regardless of transport state.
        """
        return web.json_response(
            {
                "status": "alive",
                "uptime_seconds": time.time() - self.start_time,
            },
            status=200,
        )

    async def metrics_endpoint(self, request: web.Request) -> web.Response:
        """Prometheus metrics endpoint.

        Returns:
            200 OK: Metrics in Prometheus text format
        """
        try:
            metrics_text = self.metrics.export_prometheus()

            return web.Response(
                text=metrics_text,
                content_type="text/plain",
                status=200,
            )

        except Exception as e:
            logger.error(
                "Failed to export metrics",
                extra={"error": str(e)},
                exc_info=True,
            )
            return web.Response(
                text=f"# Error exporting metrics: {e}\n",
                content_type="text/plain",
                status=500,
            )

    async def metrics_summary(self, request: web.Request) -> web.Response:
        """Metrics summary endpoint in JSON format."""
        return web.json_response(
            {
                "status": "ok",
                "uptime_seconds": time.time() - self.start_time,
                "metrics": self.metrics.get_summary(),
            },
            status=200,
        )


def setup_health_routes(
    app: web.Application,
    registry: SessionRegistry,
    metrics: RelayMetrics,
    transport: Any = None,
) -> None:
    """Set up health check routes on application.

    Args:
        app: aiohttp Application instance
        registry: Session registry
        metrics: Metrics collector
        transport: Transport instance (optional)
    """
    handler = HealthCheckHandler(registry=registry, metrics=metrics, transport=transport)

    app.router.add_get("/health", handler.health_check)
    app.router.add_get("/liveness", handler.liveness_check)
    app.router.add_get("/metrics", handler.metrics_endpoint)
    app.router.add_get("/metrics/summary", handler.metrics_summary)

    logger.info("Health check endpoints configured: /health, /liveness, /metrics, /metrics/summary")
