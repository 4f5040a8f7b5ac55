"""In-memory session registry.

Holds one transform record per open connection, keyed by session id. The
registry performs no locking of its own: every method is synchronous, so
callers on a single event loop get single-writer access by construction.
Callers on other threads must serialize access themselves.
"""

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field

from relay.protocol import ClientSnapshot, Vector3
from relay.transport.base import PeerChannel

logger = logging.getLogger(__name__)


@dataclass
class SessionRecord:
    """Transform state of one session.

    ``channel`` is the session's own outbound channel; it is attached by the
    connection handler and only used to deliver frames to that session.
    """

    session_id: str
    position: Vector3 = field(default_factory=Vector3)
    rotation: Vector3 = field(default_factory=Vector3)
    channel: PeerChannel | None = field(default=None, repr=False, compare=False)

    def to_snapshot(self) -> ClientSnapshot:
        """Wire representation used in ``init`` messages."""
        return ClientSnapshot(
            id=self.session_id,
            position=self.position.model_copy(),
            rotation=self.rotation.model_copy(),
        )


class SessionRegistry:
    """Unordered keyed store of live session records."""

    def __init__(self) -> None:
        self._records: dict[str, SessionRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._records

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._records))

    def register(
        self, session_id: str, channel: PeerChannel | None = None
    ) -> SessionRecord:
        """Insert a zero-transform record.

        Args:
            session_id: Server-generated session id
            channel: The session's own outbound channel

        Returns:
            The new record

        Raises:
            KeyError: If the id is already registered
        """
        if session_id in self._records:
            raise KeyError(f"Session already registered: {session_id}")

        record = SessionRecord(session_id=session_id, channel=channel)
        self._records[session_id] = record
        logger.debug(
            "Session registered",
            extra={"session_id": session_id, "sessions": len(self._records)},
        )
        return record

    def get(self, session_id: str) -> SessionRecord | None:
        """Return the record for ``session_id`` or None."""
        return self._records.get(session_id)

    def set_position(self, session_id: str, position: Vector3) -> None:
        """Replace a session's stored position.

        Raises:
            KeyError: If the session is not registered
        """
        self._require(session_id).position = position.model_copy()

    def set_rotation(self, session_id: str, rotation: Vector3) -> None:
        """Replace a session's stored orientation.

        Raises:
            KeyError: If the session is not registered
        """
        self._require(session_id).rotation = rotation.model_copy()

    def remove(self, session_id: str) -> SessionRecord | None:
        """Remove a session. Removing an absent id is a no-op."""
        record = self._records.pop(session_id, None)
        if record is not None:
            logger.debug(
                "Session removed",
                extra={"session_id": session_id, "sessions": len(self._records)},
            )
        return record

    def snapshot(self) -> tuple[SessionRecord, ...]:
        """Point-in-time copy of every record.

        Returned records are detached copies; later mutations of the registry
        are not visible through them.
        """
        return tuple(
            SessionRecord(
                session_id=record.session_id,
                position=record.position.model_copy(),
                rotation=record.rotation.model_copy(),
                channel=record.channel,
            )
            for record in self._records.values()
        )

    def channels(self) -> list[tuple[str, PeerChannel]]:
        """Point-in-time list of (session_id, channel) for sessions with a channel."""
        return [
            (session_id, record.channel)
            for session_id, record in self._records.items()
            if record.channel is not None
        ]

    def _require(self, session_id: str) -> SessionRecord:
        record = self._records.get(session_id)
        if record is None:
            raise KeyError(f"Unknown session: {session_id}")
        return record
