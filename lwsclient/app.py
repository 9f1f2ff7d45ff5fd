"""Command that subscribes to a market data feed and logs what arrives."""

from __future__ import annotations

import argparse
import json
import logging
import time
from typing import Sequence

from .callback import ClientCallback
from .websocket_client import WebSocketClient

_log = logging.getLogger(__name__)

DEFAULT_URL = "ws-feed.pro.coinbase.com"

SUBSCRIBE_MESSAGE = json.dumps(
    {
        "type": "subscribe",
        "product_ids": ["ETH-USD", "ETH-EUR"],
        "channels": [
            "level2",
            "heartbeat",
            {"name": "ticker", "product_ids": ["ETH-BTC", "ETH-USD"]},
        ],
    }
)


class FeedClient(WebSocketClient, ClientCallback):
    """Feed client that subscribes on connect and logs every message."""

    def __init__(self, url: str = DEFAULT_URL) -> None:
        super().__init__(self, url)
        self._run = True
        self.is_connected = False
        self.last_error: bytes | None = None
        self.messages_received = 0

    def working(self) -> bool:
        return self._run

    def on_connected(self) -> None:
        _log.info("client connected")
        self.is_connected = True
        self.send(SUBSCRIBE_MESSAGE)

    def on_disconnected(self) -> None:
        _log.info("client disconnected")
        self.is_connected = False

    def on_error(self, message: bytes) -> None:
        _log.info("client error")
        self.last_error = message
        self.is_connected = False

    def on_data(self, data: bytes, remaining: int) -> None:
        self.messages_received += 1
        _log.info("data from server: %s", data.decode("utf-8", errors="replace"))


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Log messages from a WebSocket feed.")
    parser.add_argument("url", nargs="?", default=DEFAULT_URL, help="feed URL")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(message)s")
    client = FeedClient(args.url)
    try:
        client.connect()
        while client.working():
            time.sleep(0.1)
    except KeyboardInterrupt:
        pass
    finally:
        client.close()
    return 0