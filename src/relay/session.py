"""Per-connection lifecycle management.

Each participant connection is driven by one ConnectionHandler task that
owns its receive loop and performs registry updates and announcements as
ordered steps: register, send init, announce join, route frames, then on
close remove, announce departure and release the connection.
"""

import logging
import uuid
from enum import Enum

from relay.broadcast import BroadcastEngine
from relay.metrics import RelayMetrics
from relay.protocol import InitMessage, PlayerJoinedMessage, PlayerLeftMessage
from relay.registry import SessionRecord, SessionRegistry
from relay.router import MessageRouter
from relay.transport.base import PeerChannel

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Connection state machine states.

    State Transitions:
    - CONNECTING → OPEN (handshake complete, session registered)
    - CONNECTING → CLOSING (connection lost before registration)
    - OPEN → CLOSING (client close, transport error, or own send failure)
    - CLOSING → CLOSED (session removed, departure announced, socket released)
    """

    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


# Valid state transitions
VALID_TRANSITIONS: dict[ConnectionState, set[ConnectionState]] = {
    ConnectionState.CONNECTING: {ConnectionState.OPEN, ConnectionState.CLOSING},
    ConnectionState.OPEN: {ConnectionState.CLOSING},
    ConnectionState.CLOSING: {ConnectionState.CLOSED},
    ConnectionState.CLOSED: set(),  # Terminal state
}


def new_session_id() -> str:
    """Generate a server-side session id."""
    return str(uuid.uuid4())


class ConnectionHandler:
    """Drives a single participant connection from accept to close."""

    def __init__(
        self,
        channel: PeerChannel,
        registry: SessionRegistry,
        broadcaster: BroadcastEngine,
        router: MessageRouter,
        metrics: RelayMetrics | None = None,
        session_id: str | None = None,
    ) -> None:
        """Initialize connection handler.

        Args:
            channel: The accepted connection
            registry: Shared session registry
            broadcaster: Fan-out engine for announcements
            router: Router for inbound frames
            metrics: Optional metrics collector
            session_id: Fixed id for this session (generated when omitted)
        """
        self.channel = channel
        self.session_id = session_id or new_session_id()
        self.state = ConnectionState.CONNECTING
        self._registry = registry
        self._broadcaster = broadcaster
        self._router = router
        self._metrics = metrics
        self._registered = False

    def transition_state(self, new_state: ConnectionState) -> None:
        """Transition to a new state with validation.

        Raises:
            ValueError: If transition is invalid
        """
        if new_state not in VALID_TRANSITIONS.get(self.state, set()):
            raise ValueError(
                f"Invalid state transition: {self.state.value} → {new_state.value}"
            )

        old_state = self.state
        self.state = new_state

        logger.debug(
            "Connection state transition",
            extra={
                "session_id": self.session_id,
                "from_state": old_state.value,
                "to_state": new_state.value,
            },
        )

    async def run(self) -> None:
        """Run the connection until it closes.

        Never raises for connection-level failures; the close sequence runs
        on every exit path, including cancellation.
        """
        try:
            async with self.channel:
                try:
                    record = self._open()
                    self._send_init()
                    self._broadcaster.fan_out(
                        self.session_id,
                        PlayerJoinedMessage(
                            client_id=self.session_id,
                            position=record.position,
                            rotation=record.rotation,
                        ),
                    )

                    async for raw in self.channel.receive():
                        self._handle_frame(raw)

                except ConnectionError as e:
                    logger.info(
                        "Connection lost",
                        extra={"session_id": self.session_id, "error": str(e)},
                    )
                except Exception:
                    logger.exception(
                        "Unexpected error in connection handler",
                        extra={"session_id": self.session_id},
                    )
                finally:
                    self._begin_close()
        finally:
            if self.state is ConnectionState.CONNECTING:
                self.transition_state(ConnectionState.CLOSING)
            self.transition_state(ConnectionState.CLOSED)
            logger.info("Client disconnected", extra={"session_id": self.session_id})

    def _open(self) -> SessionRecord:
        record = self._registry.register(self.session_id, self.channel)
        self._registered = True
        self.transition_state(ConnectionState.OPEN)
        if self._metrics is not None:
            self._metrics.record_session_open()

        logger.info(
            "Client connected",
            extra={"session_id": self.session_id, "remote": self.channel.remote},
        )
        return record

    def _send_init(self) -> None:
        """Send the snapshot of every other live session to this connection."""
        clients = [
            record.to_snapshot()
            for record in self._registry.snapshot()
            if record.session_id != self.session_id
        ]
        init = InitMessage(clients=clients, your_id=self.session_id)
        self.channel.send(init.to_json())

    def _handle_frame(self, raw: str | bytes) -> None:
        # A frame that cannot be relayed is dropped; only receive errors end
        # the connection.
        try:
            self._router.handle_frame(self.session_id, raw)
        except Exception:
            logger.exception(
                "Failed to handle frame", extra={"session_id": self.session_id}
            )

    def _begin_close(self) -> None:
        """Remove the session and announce its departure."""
        self.transition_state(ConnectionState.CLOSING)
        if not self._registered:
            return

        self._registry.remove(self.session_id)
        self._registered = False
        if self._metrics is not None:
            self._metrics.record_session_close()

        self._broadcaster.fan_out(
            self.session_id, PlayerLeftMessage(client_id=self.session_id)
        )
