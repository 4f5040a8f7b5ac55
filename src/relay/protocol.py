"""WebSocket message protocol definitions.

Defines Pydantic models for the relay wire format. Every frame is a UTF-8
JSON object carrying a ``type`` discriminator; field names on the wire are
camelCase (``clientId``, ``yourId``).
"""

import json
import math
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel


class MalformedFrameError(ValueError):
    """Inbound frame could not be decoded into a client message."""


class WireModel(BaseModel):
    """Base model that maps snake_case attributes to camelCase wire names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> str:
        """Serialize using wire (camelCase) field names."""
        return self.model_dump_json(by_alias=True)


class Vector3(WireModel):
    """Three-component float vector used for both position and orientation."""

    model_config = ConfigDict(allow_inf_nan=False, strict=True)

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


class ClientSnapshot(WireModel):
    """One entry of the ``init`` client list."""

    id: str
    position: Vector3
    rotation: Vector3


# ---------------------------------------------------------------------------
# Client → Server
# ---------------------------------------------------------------------------


class PositionMessage(WireModel):
    """Client → Server: full replacement of the sender's position."""

    type: Literal["position"] = "position"
    client_id: Any = Field(
        default=None, description="Sender id as claimed by the client (ignored)"
    )
    data: Vector3


class RotationMessage(WireModel):
    """Client → Server: full replacement of the sender's orientation."""

    type: Literal["rotation"] = "rotation"
    client_id: Any = Field(
        default=None, description="Sender id as claimed by the client (ignored)"
    )
    data: Vector3


class InteractionMessage(WireModel):
    """Client → Server: opaque interaction event.

    ``data`` is relayed untouched; no schema is applied to it.
    """

    type: Literal["interaction"] = "interaction"
    client_id: Any = Field(
        default=None, description="Sender id as claimed by the client (ignored)"
    )
    data: Any = None


# ---------------------------------------------------------------------------
# Server → Client
# ---------------------------------------------------------------------------


class InitMessage(WireModel):
    """Server → Client: snapshot of every other live session plus own id."""

    type: Literal["init"] = "init"
    clients: list[ClientSnapshot] = Field(default_factory=list)
    your_id: str


class PlayerJoinedMessage(WireModel):
    """Server → Client: a new session opened."""

    type: Literal["playerJoined"] = "playerJoined"
    client_id: str
    position: Vector3 = Field(default_factory=Vector3)
    rotation: Vector3 = Field(default_factory=Vector3)


class PlayerLeftMessage(WireModel):
    """Server → Client: a session closed."""

    type: Literal["playerLeft"] = "playerLeft"
    client_id: str


class PlayerMovedMessage(WireModel):
    """Server → Client: another session's new position."""

    type: Literal["playerMoved"] = "playerMoved"
    client_id: str
    position: Vector3


class PlayerRotatedMessage(WireModel):
    """Server → Client: another session's new orientation."""

    type: Literal["playerRotated"] = "playerRotated"
    client_id: str
    rotation: Vector3


class PlayerInteractionMessage(WireModel):
    """Server → Client: another session's interaction payload, verbatim."""

    type: Literal["playerInteraction"] = "playerInteraction"
    client_id: str
    data: Any = None


# Union type for all server → client messages
ServerMessage = (
    InitMessage
    | PlayerJoinedMessage
    | PlayerLeftMessage
    | PlayerMovedMessage
    | PlayerRotatedMessage
    | PlayerInteractionMessage
)

# Union type for all client → server messages
ClientMessage = PositionMessage | RotationMessage | InteractionMessage

CLIENT_MESSAGE_TYPES: dict[str, type[ClientMessage]] = {
    "position": PositionMessage,
    "rotation": RotationMessage,
    "interaction": InteractionMessage,
}

# Outbound serialization has a recursion limit; frames nested deeper than
# this could be decoded but not relayed.
MAX_FRAME_DEPTH = 128


def _reject_constant(name: str) -> Any:
    raise ValueError(f"Non-finite number {name} is not allowed")


def _parse_finite_float(text: str) -> float:
    value = float(text)
    if math.isinf(value):
        raise ValueError(f"Number out of range: {text}")
    return value


def _nesting_depth(value: Any) -> int:
    """Return the deepest container nesting of a decoded JSON value."""
    if not isinstance(value, (dict, list)):
        return 0
    depth = 0
    stack = [(value, 1)]
    while stack:
        node, level = stack.pop()
        children = node.values() if isinstance(node, dict) else node
        depth = max(depth, level)
        stack.extend(
            (child, level + 1) for child in children if isinstance(child, (dict, list))
        )
    return depth


def parse_client_message(raw: str | bytes) -> ClientMessage | None:
    """Decode one inbound frame.

    Args:
        raw: Frame payload as received from the socket

    Returns:
        The decoded message, or None if its ``type`` is not one the relay
        handles (such frames are dropped by the caller)

    Raises:
        MalformedFrameError: If the payload is not UTF-8 JSON, is not an
            object, has no string ``type``, or carries invalid ``data``
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedFrameError(f"Frame is not valid UTF-8: {e}") from e

    try:
        payload = json.loads(
            raw, parse_constant=_reject_constant, parse_float=_parse_finite_float
        )
    except (ValueError, RecursionError) as e:
        raise MalformedFrameError(f"Invalid JSON: {e}") from e

    if _nesting_depth(payload) > MAX_FRAME_DEPTH:
        raise MalformedFrameError(f"Frame nesting exceeds {MAX_FRAME_DEPTH} levels")

    if not isinstance(payload, dict):
        raise MalformedFrameError(
            f"Expected a JSON object, got {type(payload).__name__}"
        )

    message_type = payload.get("type")
    if not isinstance(message_type, str):
        raise MalformedFrameError("Frame has no string 'type' field")

    model = CLIENT_MESSAGE_TYPES.get(message_type)
    if model is None:
        return None

    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise MalformedFrameError(
            f"Invalid '{message_type}' frame: {e.error_count()} validation error(s)"
        ) from e
