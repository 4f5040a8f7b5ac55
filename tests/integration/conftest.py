"""Integration test fixtures and utilities.

Provides a relay server on an ephemeral port and helpers for real
WebSocket participants.
"""

import asyncio
import json
import logging
import socket
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

import pytest_asyncio
import websockets
from websockets.asyncio.client import ClientConnection

from relay.config import HealthConfig, RelayConfig, TransportConfig, WebSocketConfig
from relay.server import RelayServer

logger = logging.getLogger(__name__)


def get_free_port() -> int:
    """Get a free TCP port for binding.

    Notes:
        The port is freed immediately after discovery, so there's a small
        race condition window, but this is acceptable for tests.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        s.listen(1)
        port: int = s.getsockname()[1]
    return port


async def recv_json(ws: ClientConnection, timeout_s: float = 2.0) -> dict[str, Any]:
    """Receive and decode the next frame."""
    raw = await asyncio.wait_for(ws.recv(), timeout=timeout_s)
    data: dict[str, Any] = json.loads(raw)
    return data


async def assert_silent(ws: ClientConnection, timeout_s: float = 0.2) -> None:
    """Assert no frame arrives within ``timeout_s``."""
    try:
        raw = await asyncio.wait_for(ws.recv(), timeout=timeout_s)
    except TimeoutError:
        return
    raise AssertionError(f"Unexpected frame: {raw!r}")


async def wait_for_sessions(server: RelayServer, count: int, timeout_s: float = 2.0) -> None:
    """Wait until the registry holds exactly ``count`` sessions."""
    deadline = asyncio.get_running_loop().time() + timeout_s
    while server.session_count != count:
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError(
                f"Expected {count} sessions, registry has {server.session_count}"
            )
        await asyncio.sleep(0.01)


@pytest_asyncio.fixture
async def relay_server() -> AsyncIterator[RelayServer]:
    """Start a relay server with the health side port disabled."""
    config = RelayConfig(
        transport=TransportConfig(
            websocket=WebSocketConfig(
                host="127.0.0.1",
                port=get_free_port(),
                max_connections=10,
                send_timeout_s=1.0,
            )
        ),
        health=HealthConfig(enabled=False),
        graceful_shutdown_timeout_s=2,
    )
    server = RelayServer(config)
    await server.start()
    logger.info(f"Relay server ready at {server.address}")

    try:
        yield server
    finally:
        await server.stop()


@pytest_asyncio.fixture
async def connect(
    relay_server: RelayServer,
) -> AsyncIterator[Callable[[], Awaitable[tuple[ClientConnection, dict[str, Any]]]]]:
    """Factory that opens a participant and returns it with its init frame."""
    host, port = relay_server.address
    url = f"ws://{host}:{port}{relay_server.config.transport.websocket.route}"
    opened: list[ClientConnection] = []

    async def _connect() -> tuple[ClientConnection, dict[str, Any]]:
        ws = await websockets.connect(url)
        opened.append(ws)
        init = await recv_json(ws)
        assert init["type"] == "init"
        return ws, init

    yield _connect

    for ws in opened:
        await ws.close()
