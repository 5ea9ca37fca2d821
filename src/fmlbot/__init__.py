"""FML3 keepalive bot

Keeps one synthetic player logged in to a Forge server:
- a small VarInt/string codec
- a pure handshake response builder (inbound frame -> reply frame)
- an adapter that intercepts the client's login traffic
- a reconnect state machine that owns the connection lifecycle

The game client itself is an external collaborator supplied by a factory.
"""

__all__ = []
