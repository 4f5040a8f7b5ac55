"""Inbound frame routing.

Decodes a participant frame, applies the matching registry mutation and
hands the resulting announcement to the broadcast engine. The sender id is
always the one bound to the connection; any ``clientId`` in the frame is
ignored.
"""

import logging

from relay.broadcast import BroadcastEngine
from relay.metrics import RelayMetrics
from relay.protocol import (
    InteractionMessage,
    MalformedFrameError,
    PlayerInteractionMessage,
    PlayerMovedMessage,
    PlayerRotatedMessage,
    PositionMessage,
    RotationMessage,
    ServerMessage,
    parse_client_message,
)
from relay.registry import SessionRegistry

logger = logging.getLogger(__name__)


class MessageRouter:
    """Maps client frames to registry updates and broadcasts."""

    def __init__(
        self,
        registry: SessionRegistry,
        broadcaster: BroadcastEngine,
        metrics: RelayMetrics | None = None,
    ) -> None:
        self._registry = registry
        self._broadcaster = broadcaster
        self._metrics = metrics

    def handle_frame(self, sender_id: str, raw: str | bytes) -> ServerMessage | None:
        """Process one inbound frame from ``sender_id``.

        Malformed frames, unknown frame types and frames from a sender that
        is not registered are discarded without raising.

        Args:
            sender_id: Session id bound to the originating connection
            raw: Frame payload

        Returns:
            The message that was broadcast, or None if the frame was discarded
        """
        if self._metrics is not None:
            self._metrics.record_frame_received()

        try:
            message = parse_client_message(raw)
        except MalformedFrameError as e:
            if self._metrics is not None:
                self._metrics.record_frame_malformed()
            logger.warning(
                "Discarding malformed frame",
                extra={"session_id": sender_id, "error": str(e)},
            )
            return None

        if message is None:
            self._drop(sender_id, "unknown message type")
            return None

        if self._registry.get(sender_id) is None:
            self._drop(sender_id, "unknown sender")
            return None

        outbound: ServerMessage
        if isinstance(message, PositionMessage):
            self._registry.set_position(sender_id, message.data)
            outbound = PlayerMovedMessage(client_id=sender_id, position=message.data)
        elif isinstance(message, RotationMessage):
            self._registry.set_rotation(sender_id, message.data)
            outbound = PlayerRotatedMessage(client_id=sender_id, rotation=message.data)
        elif isinstance(message, InteractionMessage):
            outbound = PlayerInteractionMessage(client_id=sender_id, data=message.data)
        else:  # pragma: no cover - parse_client_message only yields the above
            self._drop(sender_id, "unhandled message type")
            return None

        logger.debug(
            "Routing frame",
            extra={"session_id": sender_id, "type": message.type},
        )
        self._broadcaster.fan_out(sender_id, outbound)
        return outbound

    def _drop(self, sender_id: str, reason: str) -> None:
        if self._metrics is not None:
            self._metrics.record_frame_dropped()
        logger.debug("Dropping frame", extra={"session_id": sender_id, "reason": reason})
