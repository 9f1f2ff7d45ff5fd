"""Callback interface through which connection events are delivered."""

from __future__ import annotations

from abc import ABC, abstractmethod


class ClientCallback(ABC):
    """Receives the lifecycle and data events of a client connection."""

    @abstractmethod
    def on_connected(self) -> None:
        """Called once the connection has been established."""

    @abstractmethod
    def on_disconnected(self) -> None:
        """Called once the connection has been closed."""

    @abstractmethod
    def on_error(self, message: bytes) -> None:
        """Called when an error occurred; ``message`` may be empty."""

    @abstractmethod
    def on_data(self, data: bytes, remaining: int) -> None:
        """Called with a chunk of received data.

        ``remaining`` is how many bytes of the current message are still to come.
        """