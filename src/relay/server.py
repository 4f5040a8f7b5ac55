"""Relay server with WebSocket transport.

Composition root that:
1. Builds the session registry, broadcast engine, router and metrics
2. Starts the WebSocket transport on the participant route
3. Provides HTTP health check endpoints on a side port
4. Accepts connections and runs one ConnectionHandler task per session
"""

import argparse
import asyncio
import logging
from pathlib import Path

from aiohttp.web import Application, AppRunner, TCPSite

from relay.broadcast import BroadcastEngine
from relay.config import RelayConfig
from relay.health import setup_health_routes
from relay.metrics import RelayMetrics
from relay.registry import SessionRegistry
from relay.router import MessageRouter
from relay.session import ConnectionHandler
from relay.transport.websocket_transport import WebSocketTransport

logger = logging.getLogger(__name__)


class RelayServer:
    """Owns the shared registry and every per-connection task.

    Thread-safety: This class is NOT thread-safe. Use from a single event loop.
    """

    def __init__(self, config: RelayConfig) -> None:
        """Initialize relay server.

        Args:
            config: Server configuration
        """
        self.config = config
        self.metrics = RelayMetrics()
        self.registry = SessionRegistry()
        self.broadcaster = BroadcastEngine(self.registry, self.metrics)
        self.router = MessageRouter(self.registry, self.broadcaster, self.metrics)

        ws_config = config.transport.websocket
        self.transport = WebSocketTransport(
            host=ws_config.host,
            port=ws_config.port,
            route=ws_config.route,
            max_connections=ws_config.max_connections,
            max_message_size=ws_config.max_message_size,
            outbound_queue_size=ws_config.outbound_queue_size,
            send_timeout_s=ws_config.send_timeout_s,
        )

        self._accept_task: asyncio.Task[None] | None = None
        self._session_tasks: set[asyncio.Task[None]] = set()
        self._health_runner: AppRunner | None = None

    @property
    def address(self) -> tuple[str, int]:
        """Bound (host, port) of the WebSocket transport."""
        return self.transport.address

    @property
    def session_count(self) -> int:
        return len(self.registry)

    async def start(self) -> None:
        """Start transport, health server and accept loop.

        Raises:
            OSError: If a port cannot be bound
            RuntimeError: If the transport fails to start
        """
        await self.transport.start()

        if self.config.health.enabled:
            await self._start_health_server()

        self._accept_task = asyncio.create_task(self._accept_loop(), name="relay-accept")

        host, port = self.address
        logger.info(
            "Relay server ready",
            extra={"host": host, "port": port, "route": self.config.transport.websocket.route},
        )

    async def stop(self) -> None:
        """Stop accepting, close every connection and wait for handlers."""
        logger.info("Shutting down relay server")

        if self._accept_task is not None:
            self._accept_task.cancel()
            try:
                await self._accept_task
            except asyncio.CancelledError:
                pass
            self._accept_task = None

        # Closing the server closes every connection; handlers then run
        # their own close sequence.
        await self.transport.stop()

        if self._session_tasks:
            logger.info(
                "Waiting for sessions to complete", extra={"count": len(self._session_tasks)}
            )
            _, pending = await asyncio.wait(
                set(self._session_tasks), timeout=self.config.graceful_shutdown_timeout_s
            )
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        if self._health_runner is not None:
            await self._health_runner.cleanup()
            self._health_runner = None
            logger.info("Health check server stopped")

        logger.info("Relay server stopped")

    async def _start_health_server(self) -> None:
        health_app = Application()
        setup_health_routes(health_app, self.registry, self.metrics, self.transport)

        runner = AppRunner(health_app)
        await runner.setup()
        site = TCPSite(runner, self.config.health.host, self.config.health.port)
        await site.start()
        self._health_runner = runner
        logger.info("Health check server started", extra={"port": self.config.health.port})

    async def _accept_loop(self) -> None:
        while True:
            channel = await self.transport.accept_session()
            handler = ConnectionHandler(
                channel,
                self.registry,
                self.broadcaster,
                self.router,
                metrics=self.metrics,
            )
            task = asyncio.create_task(
                handler.run(), name=f"relay-session-{handler.session_id}"
            )
            self._session_tasks.add(task)
            task.add_done_callback(self._on_session_done)

    def _on_session_done(self, task: asyncio.Task[None]) -> None:
        self._session_tasks.discard(task)
        if task.cancelled():
            return
        if (error := task.exception()) is not None:
            logger.error(
                "Session task failed",
                extra={"task": task.get_name(), "error": str(error)},
            )


async def run_server(config_path: Path | None = None) -> None:
    """Load configuration and serve until cancelled.

    Args:
        config_path: YAML configuration file; defaults are used if it is
            missing
    """
    config = RelayConfig.from_yaml_with_defaults(config_path)

    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info("Loaded configuration", extra={"config_path": str(config_path)})

    server = RelayServer(config)
    await server.start()
    try:
        await asyncio.Event().wait()
    except asyncio.CancelledError:
        logger.info("Server loop cancelled")
        raise
    finally:
        await server.stop()


def main() -> None:
    """Entry point for the relay server."""
    parser = argparse.ArgumentParser(description="Spatial state relay server")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("configs") / "relay.yaml",
        help="Path to relay config YAML file",
    )
    args = parser.parse_args()

    try:
        asyncio.run(run_server(args.config))
    except KeyboardInterrupt:
        logger.info("Relay server interrupted")


if __name__ == "__main__":
    main()
