"""WebSocket, HTTP and raw TCP clients driven by a background service thread."""

__version__ = "0.1.0"

__all__ = [
    "affinity",
    "app",
    "callback",
    "http_client",
    "ring_buffer",
    "service",
    "socket_client",
    "websocket_client",
]