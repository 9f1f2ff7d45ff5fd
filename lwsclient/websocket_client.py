"""WebSocket client whose connection runs on a socket service thread."""

from __future__ import annotations

import logging
import ssl
from typing import NamedTuple

import websocket

from .callback import ClientCallback
from .service import RequestInfo, RequestType, SocketService, global_service

_log = logging.getLogger(__name__)

_CONNECT_TIMEOUT = 10.0


class WsEndpoint(NamedTuple):
    """Parts of a WebSocket URL."""

    scheme: str
    address: str
    port: int
    path: str


def parse_ws_url(url: str) -> WsEndpoint:
    """Split a WebSocket URL into scheme, host, port and path.

    The scheme defaults to ``wss``; the port defaults to 80 for ``ws`` and
    443 otherwise; the path defaults to ``/``.
    """
    scheme = "wss"
    rest = url
    head, sep, tail = url.partition("://")
    if sep:
        scheme, rest = head, tail

    slash = rest.find("/")
    if slash < 0:
        address, path = rest, "/"
    else:
        address, path = rest[:slash], rest[slash:]

    host, colon, port_text = address.partition(":")
    if not host:
        raise ValueError(f"no host in url {url!r}")
    if colon:
        if not (port_text.isascii() and port_text.isdigit()):
            raise ValueError(f"invalid port in url {url!r}")
        port = int(port_text)
        if not 0 < port <= 65535:
            raise ValueError(f"port out of range in url {url!r}")
    else:
        port = 80 if scheme == "ws" else 443
    return WsEndpoint(scheme, host, port, path)


class _WsConnection:
    """Open WebSocket whose events are delivered to the request's callback."""

    def __init__(self, req: RequestInfo, ws: websocket.WebSocket) -> None:
        self._req = req
        self._ws = ws
        self._closed = False

    def fileno(self) -> int:
        return self._ws.sock.fileno()

    def pending(self) -> int:
        sock = self._ws.sock
        if isinstance(sock, ssl.SSLSocket):
            return sock.pending()
        return 0

    def handle_read(self, req: RequestInfo) -> None:
        info = req.socket_info
        if info.shutdown.is_set():
            self.close()
            return
        try:
            opcode, frame = self._ws.recv_data_frame(True)
        except (websocket.WebSocketException, OSError) as exc:
            _log.info("%s:%d receive failed: %s", req.address, req.port, exc)
            self.close()
            return
        if opcode == websocket.ABNF.OPCODE_CLOSE:
            self.close()
            return
        if opcode in (websocket.ABNF.OPCODE_TEXT, websocket.ABNF.OPCODE_BINARY):
            data = frame.data
            if isinstance(data, str):
                data = data.encode()
            info.callback.on_data(bytes(data), 0)

    def handle_write(self, req: RequestInfo) -> None:
        message = req.socket_info.sending_buffer.read()
        if not message:
            return
        try:
            self._ws.send(message, websocket.ABNF.OPCODE_TEXT)
        except (websocket.WebSocketException, OSError) as exc:
            _log.info("%s:%d send failed: %s", req.address, req.port, exc)
            self.close()
            return
        req.want_write = True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._ws.close(timeout=0)
        except (websocket.WebSocketException, OSError):
            pass
        self._ws.shutdown()
        req = self._req
        if req.connection is self:
            req.connection = None
        info = req.socket_info
        if not info.shutdown.is_set() and not info.disconnect_callback_invoked:
            _log.info("%s:%d disconnected.", req.address, req.port)
            info.callback.on_disconnected()
            info.disconnect_callback_invoked = True


def _open_ws(req: RequestInfo) -> None:
    info = req.socket_info
    scheme = "wss" if req.use_ssl else "ws"
    url = f"{scheme}://{req.address}:{req.port}{req.path}"
    sslopt: dict[str, object] = {}
    if req.use_ssl and req.service is not None and req.service.ca_file_path:
        sslopt["ca_certs"] = req.service.ca_file_path
    ws = websocket.WebSocket(sslopt=sslopt)
    options: dict[str, object] = {"timeout": _CONNECT_TIMEOUT}
    if req.origin:
        options["origin"] = req.origin
    try:
        ws.connect(url, **options)
    except (websocket.WebSocketException, OSError) as exc:
        _log.info("%s:%d Connection error occurred. %s", req.address, req.port, exc)
        ws.shutdown()
        req.connection = None
        if not info.shutdown.is_set():
            info.callback.on_error(str(exc).encode())
        return
    ws.settimeout(None)
    if info.shutdown.is_set():
        ws.shutdown()
        req.connection = None
        return
    req.connection = _WsConnection(req, ws)
    _log.info("%s:%d connected.", req.address, req.port)
    info.sending_buffer.reset()
    info.callback.on_connected()
    info.disconnect_callback_invoked = False


class WebSocketClient:
    """WebSocket client reporting its events to a :class:`ClientCallback`."""

    def __init__(
        self,
        callback: ClientCallback,
        url: str,
        origin: str = "",
        ca_file_path: str = "",
        cpu_affinity: int = -1,
        use_global_service: bool = False,
    ) -> None:
        self._endpoint = parse_ws_url(url)
        self._callback = callback
        self._url = url
        self._origin = origin
        self._request: RequestInfo | None = None
        self._service: SocketService = (
            global_service(ca_file_path, cpu_affinity)
            if use_global_service
            else SocketService(ca_file_path, cpu_affinity)
        )

    def __enter__(self) -> WebSocketClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def url(self) -> str:
        return self._url

    def connect(self) -> bool:
        """Start connecting, dropping any earlier connection.

        Returns False if the service can take no more requests.
        """
        if self._request is not None:
            self._request.socket_info.shutdown.set()
            self._request = None
            self._service.wakeup()

        req = self._service.get_request_info(RequestType.WS)
        if req is None:
            return False
        endpoint = self._endpoint
        req.address = endpoint.address
        req.host = endpoint.address
        req.port = endpoint.port
        req.path = endpoint.path
        req.origin = self._origin
        req.use_ssl = endpoint.port == 443
        req.protocol = "wss" if req.use_ssl else "ws"
        req.connector = _open_ws
        info = req.socket_info
        info.callback = self._callback
        info.sending_buffer.reset()
        info.shutdown.clear()
        self._request = req
        self._service.request(req)
        return True

    def stop(self) -> None:
        """Close the connection without reporting a disconnect."""
        req = self._request
        if req is not None:
            req.socket_info.shutdown.set()
            req.want_write = True
            self._request = None
            self._service.wakeup()

    def send(self, msg: bytes | bytearray | memoryview | str) -> bool:
        """Queue a text message; False if not connected or it could not be queued."""
        req = self._request
        if req is None or req.connection is None:
            return False
        if req.socket_info.sending_buffer.write(msg):
            req.want_write = True
            self._service.wakeup()
            return True
        return False

    def close(self) -> None:
        """Stop the client and, unless shared, its service."""
        self.stop()
        if not self._service.is_global():
            self._service.close()