"""WebSocket transport implementation.

Serves the single relay upgrade route and wraps each accepted connection in
a WebSocketChannel with a bounded outbound queue.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from http import HTTPStatus
from typing import Any

import websockets
from websockets.asyncio.server import ServerConnection, serve
from websockets.http11 import Request, Response
from websockets.protocol import State

from relay.transport.base import PeerChannel, Transport

logger = logging.getLogger(__name__)


class WebSocketChannel(PeerChannel):
    """WebSocket-backed participant channel.

    Outbound frames go through a bounded queue drained by a single writer
    task, so ``send`` never blocks the caller and frames reach the peer in
    the order they were queued. A socket write that fails or exceeds the
    send timeout closes the connection with code 1011.
    """

    def __init__(
        self,
        websocket: ServerConnection,
        queue_size: int = 256,
        send_timeout_s: float = 5.0,
    ) -> None:
        """Initialize WebSocket channel.

        Args:
            websocket: Accepted server-side connection
            queue_size: Maximum number of outbound frames waiting for the socket
            send_timeout_s: Upper bound on a single socket write
        """
        self._websocket = websocket
        self._send_timeout_s = send_timeout_s
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=queue_size)
        self._writer_task: asyncio.Task[None] | None = None
        self._connected = True
        self._closed = False

    @property
    def remote(self) -> str:
        """Printable remote address."""
        address = self._websocket.remote_address
        if isinstance(address, tuple) and len(address) >= 2:
            return f"{address[0]}:{address[1]}"
        return str(address)

    @property
    def is_connected(self) -> bool:
        """Check if the channel can still deliver frames."""
        return self._connected and self._websocket.state == State.OPEN

    @property
    def pending(self) -> int:
        """Number of outbound frames not yet written to the socket."""
        return self._queue.qsize()

    def send(self, message: str) -> None:
        """Queue a frame for delivery.

        Raises:
            ConnectionError: If the connection is closed or the outbound
                queue is full
        """
        if not self.is_connected:
            raise ConnectionError("WebSocket connection is closed")

        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull as e:
            raise ConnectionError(
                f"Outbound queue full ({self._queue.maxsize} frames pending)"
            ) from e

    async def start(self) -> None:
        """Start the writer task."""
        if self._writer_task is None:
            self._writer_task = asyncio.create_task(
                self._writer_loop(), name=f"relay-writer-{self.remote}"
            )

    async def _writer_loop(self) -> None:
        """Drain the outbound queue onto the socket."""
        while True:
            message = await self._queue.get()
            try:
                await asyncio.wait_for(
                    self._websocket.send(message), timeout=self._send_timeout_s
                )
            except websockets.exceptions.ConnectionClosed:
                self._connected = False
                return
            except TimeoutError:
                logger.warning(
                    "WebSocket send timed out, closing connection",
                    extra={"remote": self.remote, "timeout_s": self._send_timeout_s},
                )
                await self._abort("send timeout")
                return
            except Exception as e:
                logger.error(
                    "WebSocket send failed, closing connection",
                    extra={"remote": self.remote, "error": str(e)},
                )
                await self._abort("send failure")
                return

    async def _abort(self, reason: str) -> None:
        """Close after a failed write so the receive loop ends."""
        self._connected = False
        try:
            await self._websocket.close(code=1011, reason=reason)
        except Exception as e:
            logger.warning(
                "Error closing WebSocket after send failure",
                extra={"remote": self.remote, "error": str(e)},
            )

    async def receive(self) -> AsyncIterator[str | bytes]:
        """Yield inbound frames until the peer closes.

        Raises:
            ConnectionError: If the connection fails for a reason other than
                a close handshake
        """
        try:
            async for raw_message in self._websocket:
                yield raw_message
        except websockets.exceptions.ConnectionClosed as e:
            logger.info(
                "WebSocket connection closed",
                extra={"remote": self.remote, "code": e.rcvd.code if e.rcvd else None},
            )
        except Exception as e:
            raise ConnectionError(f"WebSocket receive error: {e}") from e
        finally:
            self._connected = False

    async def close(self) -> None:
        """Stop the writer and close the socket."""
        if self._closed:
            return
        self._closed = True
        self._connected = False

        if self._writer_task is not None:
            self._writer_task.cancel()
            try:
                await self._writer_task
            except asyncio.CancelledError:
                pass
            self._writer_task = None

        try:
            await self._websocket.close()
        except Exception as e:
            logger.warning(
                "Error during WebSocket close",
                extra={"remote": self.remote, "error": str(e)},
            )


class WebSocketTransport(Transport):
    """WebSocket transport server.

    Accepts upgrades on one route and queues a WebSocketChannel per
    connection for the relay's accept loop.
    """

    def __init__(
        self,
        host: str = "0.0.0.0",  # noqa: S104
        port: int = 8080,
        route: str = "/api/ws",
        max_connections: int = 100,
        max_message_size: int = 2**20,
        outbound_queue_size: int = 256,
        send_timeout_s: float = 5.0,
    ) -> None:
        """Initialize WebSocket transport.

        Args:
            host: Bind host address
            port: Bind port
            route: Only path accepted for the upgrade
            max_connections: Maximum concurrent connections
            max_message_size: Largest inbound frame in bytes
            outbound_queue_size: Per-connection outbound queue bound
            send_timeout_s: Per-write timeout for outbound frames
        """
        self._host = host
        self._port = port
        self._route = route
        self._max_connections = max_connections
        self._max_message_size = max_message_size
        self._outbound_queue_size = outbound_queue_size
        self._send_timeout_s = send_timeout_s
        self._server: Any = None  # websockets Server
        self._running = False
        self._session_queue: asyncio.Queue[WebSocketChannel] = asyncio.Queue()
        self._open_channels: set[WebSocketChannel] = set()

        logger.info(
            "WebSocket transport initialized",
            extra={"host": host, "port": port, "route": route},
        )

    @property
    def transport_type(self) -> str:
        """Transport type identifier."""
        return "websocket"

    @property
    def is_running(self) -> bool:
        """Check if the transport server is currently running."""
        return self._running

    @property
    def connection_count(self) -> int:
        """Number of connections currently held open by the transport."""
        return len(self._open_channels)

    @property
    def address(self) -> tuple[str, int]:
        """Bound (host, port), resolved from the listening socket when running."""
        if self._server is not None and self._server.sockets:
            sockname = self._server.sockets[0].getsockname()
            return sockname[0], sockname[1]
        return self._host, self._port

    async def start(self) -> None:
        """Start the WebSocket server.

        Raises:
            RuntimeError: If the transport is already running or fails to start
            OSError: If port binding fails
        """
        if self._running:
            raise RuntimeError("WebSocket transport is already running")

        logger.info(
            "Starting WebSocket server", extra={"host": self._host, "port": self._port}
        )

        try:
            self._server = await serve(
                self._handle_connection,
                self._host,
                self._port,
                process_request=self._process_request,
                max_size=self._max_message_size,
            )
            self._running = True

            logger.info(
                "WebSocket server started",
                extra={"host": self._host, "port": self._port, "route": self._route},
            )

        except OSError as e:
            logger.error(
                "Failed to bind WebSocket server",
                extra={"host": self._host, "port": self._port, "error": str(e)},
            )
            raise
        except Exception as e:
            logger.error("Failed to start WebSocket server", extra={"error": str(e)})
            raise RuntimeError(f"Failed to start WebSocket transport: {e}") from e

    async def stop(self) -> None:
        """Stop the WebSocket server and close open connections."""
        if not self._running:
            return

        logger.info("Stopping WebSocket server")

        self._running = False

        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        logger.info("WebSocket server stopped")

    async def accept_session(self) -> PeerChannel:
        """Wait for the next accepted connection.

        Raises:
            RuntimeError: If the transport is not running
        """
        if not self._running:
            raise RuntimeError("WebSocket transport is not running")

        return await self._session_queue.get()

    def _process_request(
        self, connection: ServerConnection, request: Request
    ) -> Response | None:
        """Reject upgrades on other paths or beyond the connection limit."""
        path = request.path.split("?", 1)[0]
        if path != self._route:
            logger.info("Rejected upgrade on unknown path", extra={"path": path})
            return connection.respond(HTTPStatus.NOT_FOUND, "Not Found\n")

        if len(self._open_channels) >= self._max_connections:
            logger.warning(
                "Rejected upgrade, connection limit reached",
                extra={"max_connections": self._max_connections},
            )
            return connection.respond(
                HTTPStatus.SERVICE_UNAVAILABLE, "Too many connections\n"
            )

        return None

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        """Queue the connection and keep it alive until it closes.

        Args:
            websocket: WebSocket connection
        """
        channel = WebSocketChannel(
            websocket,
            queue_size=self._outbound_queue_size,
            send_timeout_s=self._send_timeout_s,
        )
        self._open_channels.add(channel)

        logger.info("New WebSocket connection", extra={"remote": channel.remote})

        try:
            await self._session_queue.put(channel)
            await websocket.wait_closed()
        except Exception as e:
            logger.error(
                "Error in connection handler",
                extra={"remote": channel.remote, "error": str(e)},
            )
        finally:
            self._open_channels.discard(channel)
