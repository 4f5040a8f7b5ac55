"""Base transport abstraction for participant connections.

Defines the interface the relay core uses to reach a single participant, so
the connection lifecycle, router and broadcast engine never touch socket
objects directly.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from types import TracebackType


class PeerChannel(ABC):
    """One participant's bidirectional message stream.

    Used as an async context manager: entering starts any background
    delivery machinery, exiting releases the connection on every exit path.
    """

    @abstractmethod
    def send(self, message: str) -> None:
        """Queue a text frame for delivery without waiting for the socket.

        Args:
            message: Serialized JSON frame

        Raises:
            ConnectionError: If the channel is closed or cannot accept more
                outbound frames
        """
        pass

    @abstractmethod
    async def receive(self) -> AsyncIterator[str | bytes]:
        """Yield inbound frames until the peer closes the connection.

        Yields:
            Raw frame payload

        Raises:
            ConnectionError: If the connection fails abnormally
        """
        # Using yield to make this an async generator
        if False:
            yield ""

    @abstractmethod
    async def close(self) -> None:
        """Close the connection and release its resources. Idempotent."""
        pass

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Check if the channel can still deliver frames."""
        pass

    @property
    @abstractmethod
    def remote(self) -> str:
        """Printable remote address for logging."""
        pass

    async def start(self) -> None:
        """Start background delivery. Default is a no-op."""

    async def __aenter__(self) -> "PeerChannel":
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()


class Transport(ABC):
    """Base transport implementation.

    Manages the lifecycle of a listening server and hands each accepted
    connection to the relay as a PeerChannel.
    """

    @abstractmethod
    async def start(self) -> None:
        """Start the transport server.

        Raises:
            RuntimeError: If the transport fails to start
            OSError: If port binding fails
        """
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop accepting connections and close the listening socket."""
        pass

    @abstractmethod
    async def accept_session(self) -> PeerChannel:
        """Wait for the next accepted connection.

        Raises:
            RuntimeError: If the transport is not running
        """
        pass

    @property
    @abstractmethod
    def transport_type(self) -> str:
        """Transport type identifier (e.g., 'websocket')."""
        pass

    @property
    @abstractmethod
    def is_running(self) -> bool:
        """Check if the transport server is currently running."""
        pass
