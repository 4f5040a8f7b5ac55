"""Fan-out of relay messages to every session except the originator."""

import logging

from relay.metrics import RelayMetrics
from relay.protocol import ServerMessage
from relay.registry import SessionRegistry

logger = logging.getLogger(__name__)


class BroadcastEngine:
    """Delivers one outbound message to all other registered sessions.

    Delivery is fire-and-forget. A failed send to one recipient is logged and
    skipped; it neither aborts the fan-out nor removes the recipient from the
    registry. A recipient whose connection is dead stays registered until its
    own connection handler detects the close.
    """

    def __init__(
        self, registry: SessionRegistry, metrics: RelayMetrics | None = None
    ) -> None:
        self._registry = registry
        self._metrics = metrics

    def fan_out(self, sender_id: str, message: ServerMessage) -> int:
        """Send ``message`` to every session except ``sender_id``.

        Args:
            sender_id: Originating session, excluded from delivery
            message: Message to deliver

        Returns:
            Number of recipients the message was queued for
        """
        payload = message.to_json()
        delivered = 0
        failures = 0

        for session_id, channel in self._registry.channels():
            if session_id == sender_id:
                continue
            try:
                channel.send(payload)
                delivered += 1
            except Exception as e:
                failures += 1
                logger.warning(
                    "Failed to send to session",
                    extra={
                        "session_id": session_id,
                        "type": message.type,
                        "error": str(e),
                    },
                )

        if self._metrics is not None:
            self._metrics.record_broadcast(failures=failures)

        logger.debug(
            "Broadcast",
            extra={
                "sender_id": sender_id,
                "type": message.type,
                "delivered": delivered,
                "failures": failures,
            },
        )
        return delivered
