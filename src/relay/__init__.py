"""Real-time spatial state relay.

Keeps a shared, in-memory registry of participant transforms and relays
position, rotation and interaction updates between WebSocket connections.
"""

__version__ = "0.1.0"
