"""Unit tests for WebSocket transport implementation.

Tests the outbound queue and writer of WebSocketChannel, inbound frame
iteration, and upgrade request filtering of WebSocketTransport.
"""

import asyncio
from collections.abc import AsyncIterator
from http import HTTPStatus
from unittest.mock import AsyncMock, MagicMock

import pytest
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK
from websockets.frames import Close
from websockets.protocol import State

from relay.transport.websocket_transport import WebSocketChannel, WebSocketTransport
from tests.helpers.channels import wait_until


class FakeServerConnection:
    """Stand-in for websockets.asyncio.server.ServerConnection."""

    def __init__(self, frames: list[str | bytes] | None = None, error: Exception | None = None):
        self.state = State.OPEN
        self.remote_address = ("127.0.0.1", 12345)
        self.send = AsyncMock()
        self.close = AsyncMock()
        self.wait_closed = AsyncMock()
        self._frames = frames or []
        self._error = error

    async def __aiter__(self) -> AsyncIterator[str | bytes]:
        for frame in self._frames:
            yield frame
        if self._error is not None:
            raise self._error


class TestWebSocketChannel:
    """Test WebSocket channel implementation."""

    def test_initial_state(self) -> None:
        channel = WebSocketChannel(FakeServerConnection())  # type: ignore[arg-type]

        assert channel.is_connected is True
        assert channel.remote == "127.0.0.1:12345"
        assert channel.pending == 0

    def test_not_connected_when_socket_closing(self) -> None:
        ws = FakeServerConnection()
        channel = WebSocketChannel(ws)  # type: ignore[arg-type]

        ws.state = State.CLOSING

        assert channel.is_connected is False
        with pytest.raises(ConnectionError, match="closed"):
            channel.send("{}")

    @pytest.mark.asyncio
    async def test_frames_written_in_order(self) -> None:
        ws = FakeServerConnection()

        async with WebSocketChannel(ws) as channel:  # type: ignore[arg-type]
            for i in range(3):
                channel.send(f'{{"n": {i}}}')
            await wait_until(lambda: ws.send.await_count == 3)

        assert [call.args[0] for call in ws.send.await_args_list] == [
            '{"n": 0}',
            '{"n": 1}',
            '{"n": 2}',
        ]

    @pytest.mark.asyncio
    async def test_queue_full_fails_fast(self) -> None:
        channel = WebSocketChannel(FakeServerConnection(), queue_size=2)  # type: ignore[arg-type]

        channel.send("1")
        channel.send("2")
        with pytest.raises(ConnectionError, match="Outbound queue full"):
            channel.send("3")
        assert channel.pending == 2

    @pytest.mark.asyncio
    async def test_write_failure_closes_connection(self) -> None:
        ws = FakeServerConnection()
        ws.send.side_effect = OSError("broken pipe")

        async with WebSocketChannel(ws) as channel:  # type: ignore[arg-type]
            channel.send("{}")
            await wait_until(lambda: ws.close.await_count >= 1)

            assert channel.is_connected is False
            ws.close.assert_any_await(code=1011, reason="send failure")
            with pytest.raises(ConnectionError):
                channel.send("{}")

    @pytest.mark.asyncio
    async def test_write_timeout_closes_connection(self) -> None:
        ws = FakeServerConnection()

        async def stalled_send(message: str) -> None:
            await asyncio.sleep(10)

        ws.send.side_effect = stalled_send

        async with WebSocketChannel(ws, send_timeout_s=0.05) as channel:  # type: ignore[arg-type]
            channel.send("{}")
            await wait_until(lambda: ws.close.await_count >= 1)

            ws.close.assert_any_await(code=1011, reason="send timeout")

    @pytest.mark.asyncio
    async def test_peer_closed_during_write_stops_writer(self) -> None:
        ws = FakeServerConnection()
        ws.send.side_effect = ConnectionClosedOK(Close(1000, ""), Close(1000, ""), True)

        async with WebSocketChannel(ws) as channel:  # type: ignore[arg-type]
            channel.send("{}")
            await wait_until(lambda: not channel.is_connected)

    @pytest.mark.asyncio
    async def test_receive_yields_frames_until_close(self) -> None:
        ws = FakeServerConnection(
            frames=["a", b"b"],
            error=ConnectionClosedOK(Close(1000, ""), Close(1000, ""), True),
        )
        channel = WebSocketChannel(ws)  # type: ignore[arg-type]

        frames = [frame async for frame in channel.receive()]

        assert frames == ["a", b"b"]
        assert channel.is_connected is False

    @pytest.mark.asyncio
    async def test_receive_abnormal_close_ends_quietly(self) -> None:
        ws = FakeServerConnection(
            frames=["a"],
            error=ConnectionClosedError(Close(1006, ""), None, None),
        )
        channel = WebSocketChannel(ws)  # type: ignore[arg-type]

        frames = [frame async for frame in channel.receive()]

        assert frames == ["a"]

    @pytest.mark.asyncio
    async def test_receive_other_error_raises_connection_error(self) -> None:
        ws = FakeServerConnection(error=RuntimeError("bad"))
        channel = WebSocketChannel(ws)  # type: ignore[arg-type]

        with pytest.raises(ConnectionError, match="WebSocket receive error"):
            async for _ in channel.receive():
                pass

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self) -> None:
        ws = FakeServerConnection()
        channel = WebSocketChannel(ws)  # type: ignore[arg-type]
        await channel.start()

        await channel.close()
        await channel.close()

        ws.close.assert_awaited_once()
        assert channel.is_connected is False

    @pytest.mark.asyncio
    async def test_close_tolerates_socket_errors(self) -> None:
        ws = FakeServerConnection()
        ws.close.side_effect = OSError("already gone")
        channel = WebSocketChannel(ws)  # type: ignore[arg-type]

        await channel.close()

        assert channel.is_connected is False


class TestWebSocketTransport:
    """Test WebSocket transport server."""

    def test_transport_properties(self) -> None:
        transport = WebSocketTransport(host="127.0.0.1", port=9001)

        assert transport.transport_type == "websocket"
        assert transport.is_running is False
        assert transport.address == ("127.0.0.1", 9001)
        assert transport.connection_count == 0

    @pytest.mark.asyncio
    async def test_accept_requires_running(self) -> None:
        transport = WebSocketTransport()

        with pytest.raises(RuntimeError, match="not running"):
            await transport.accept_session()

    @pytest.mark.asyncio
    async def test_stop_when_not_running_is_noop(self) -> None:
        await WebSocketTransport().stop()

    @pytest.mark.parametrize("path", ["/", "/api", "/api/ws/extra", "/ws"])
    def test_unknown_path_rejected(self, path: str) -> None:
        transport = WebSocketTransport(route="/api/ws")
        connection = MagicMock()

        response = transport._process_request(connection, MagicMock(path=path))

        connection.respond.assert_called_once_with(HTTPStatus.NOT_FOUND, "Not Found\n")
        assert response is connection.respond.return_value

    @pytest.mark.parametrize("path", ["/api/ws", "/api/ws?room=1"])
    def test_route_accepted(self, path: str) -> None:
        transport = WebSocketTransport(route="/api/ws")
        connection = MagicMock()

        assert transport._process_request(connection, MagicMock(path=path)) is None
        connection.respond.assert_not_called()

    def test_connection_limit(self) -> None:
        transport = WebSocketTransport(max_connections=1)
        transport._open_channels.add(MagicMock())
        connection = MagicMock()

        transport._process_request(connection, MagicMock(path="/api/ws"))

        connection.respond.assert_called_once_with(
            HTTPStatus.SERVICE_UNAVAILABLE, "Too many connections\n"
        )

    @pytest.mark.asyncio
    async def test_handle_connection_queues_channel(self) -> None:
        transport = WebSocketTransport(outbound_queue_size=4)
        ws = FakeServerConnection()

        await transport._handle_connection(ws)  # type: ignore[arg-type]

        channel = transport._session_queue.get_nowait()
        assert isinstance(channel, WebSocketChannel)
        ws.wait_closed.assert_awaited_once()
        assert transport.connection_count == 0
