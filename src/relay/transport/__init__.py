"""Transport layer for participant connections.

Provides the channel abstraction used by the relay core and its WebSocket
implementation.
"""

from relay.transport.base import PeerChannel, Transport
from relay.transport.websocket_transport import WebSocketChannel, WebSocketTransport

__all__ = [
    "PeerChannel",
    "Transport",
    "WebSocketChannel",
    "WebSocketTransport",
]
