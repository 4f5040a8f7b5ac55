"""WebSocket CLI client for exercising the relay.

Joins the shared space, prints every relay event as one JSON line, and can
send a position, rotation and/or interaction once the ``init`` snapshot
has arrived.

Usage:
    relay-client --url ws://localhost:8080/api/ws
    relay-client --position 1 2 3 --rotation 0 1.57 0 --duration 5
    relay-client --interaction '{"type": "cubeClick"}'
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

import websockets
from websockets.asyncio.client import ClientConnection

from relay.protocol import (
    InteractionMessage,
    PositionMessage,
    RotationMessage,
    Vector3,
)

logger = logging.getLogger(__name__)


def build_client_message(message_type: str, client_id: str | None, data: Any) -> str:
    """Serialize one participant → relay frame.

    Args:
        message_type: "position", "rotation" or "interaction"
        client_id: The id assigned by the relay in ``init``
        data: Vector components (mapping) or an opaque interaction payload

    Returns:
        JSON frame

    Raises:
        ValueError: If the type is unknown or vector data is invalid
    """
    message: PositionMessage | RotationMessage | InteractionMessage
    if message_type == "position":
        message = PositionMessage(client_id=client_id, data=Vector3.model_validate(data))
    elif message_type == "rotation":
        message = RotationMessage(client_id=client_id, data=Vector3.model_validate(data))
    elif message_type == "interaction":
        message = InteractionMessage(client_id=client_id, data=data)
    else:
        raise ValueError(f"Unknown message type: {message_type}")
    return message.to_json()


class CLIClient:
    """WebSocket CLI client for relay communication."""

    def __init__(
        self,
        server_url: str,
        position: tuple[float, float, float] | None = None,
        rotation: tuple[float, float, float] | None = None,
        interaction: Any = None,
        duration_s: float = 0.0,
    ) -> None:
        """Initialize CLI client.

        Args:
            server_url: WebSocket URL including the relay route
            position: Position to send after init
            rotation: Rotation to send after init
            interaction: Interaction payload to send after init
            duration_s: Seconds to keep listening (0 = until closed)
        """
        self.server_url = server_url
        self.position = position
        self.rotation = rotation
        self.interaction = interaction
        self.duration_s = duration_s
        self.client_id: str | None = None

    def _outbound_frames(self) -> list[str]:
        frames = []
        if self.position is not None:
            x, y, z = self.position
            frames.append(build_client_message("position", self.client_id, {"x": x, "y": y, "z": z}))
        if self.rotation is not None:
            x, y, z = self.rotation
            frames.append(build_client_message("rotation", self.client_id, {"x": x, "y": y, "z": z}))
        if self.interaction is not None:
            frames.append(build_client_message("interaction", self.client_id, self.interaction))
        return frames

    async def handle_message(self, websocket: ClientConnection, message_data: str | bytes) -> None:
        """Print one relay event and react to ``init``."""
        try:
            data = json.loads(message_data)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to decode message: {e}")
            return

        print(json.dumps(data), flush=True)

        if isinstance(data, dict) and data.get("type") == "init":
            self.client_id = data.get("yourId")
            logger.info(f"Joined as {self.client_id} ({len(data.get('clients', []))} others)")
            for frame in self._outbound_frames():
                await websocket.send(frame)

    async def receive_messages(self, websocket: ClientConnection) -> None:
        try:
            async for message in websocket:
                await self.handle_message(websocket, message)
        except websockets.exceptions.ConnectionClosed:
            logger.info("Connection closed by server")

    async def run(self) -> None:
        """Run the CLI client."""
        async with websockets.connect(self.server_url) as websocket:
            logger.info(f"Connected to {self.server_url}")
            receiver = self.receive_messages(websocket)
            if self.duration_s > 0:
                try:
                    await asyncio.wait_for(receiver, timeout=self.duration_s)
                except TimeoutError:
                    logger.info("Listen duration elapsed, disconnecting")
            else:
                await receiver


def main() -> None:
    """Entry point for the relay CLI client."""
    parser = argparse.ArgumentParser(description="Relay CLI client")
    parser.add_argument(
        "--url",
        default="ws://localhost:8080/api/ws",
        help="Relay WebSocket URL",
    )
    parser.add_argument("--position", type=float, nargs=3, metavar=("X", "Y", "Z"))
    parser.add_argument("--rotation", type=float, nargs=3, metavar=("X", "Y", "Z"))
    parser.add_argument("--interaction", help="Interaction payload as JSON")
    parser.add_argument(
        "--duration",
        type=float,
        default=0.0,
        help="Seconds to listen before disconnecting (0 = until closed)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )

    interaction = None
    if args.interaction is not None:
        try:
            interaction = json.loads(args.interaction)
        except json.JSONDecodeError as e:
            parser.error(f"--interaction is not valid JSON: {e}")

    client = CLIClient(
        args.url,
        position=tuple(args.position) if args.position else None,
        rotation=tuple(args.rotation) if args.rotation else None,
        interaction=interaction,
        duration_s=args.duration,
    )

    try:
        asyncio.run(client.run())
    except KeyboardInterrupt:
        logger.info("Client interrupted")
    except OSError as e:
        logger.error(f"Connection failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
