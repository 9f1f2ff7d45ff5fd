"""Client for raw TCP connections driven by a service thread."""

from __future__ import annotations

import logging
import socket

from .callback import ClientCallback
from .service import RequestInfo, RequestType, SocketService, global_service

_log = logging.getLogger(__name__)

_RECV_SIZE = 65536
_CONNECT_TIMEOUT = 10.0


class _RawConnection:
    """Raw socket whose events are delivered to the request's callback."""

    def __init__(self, req: RequestInfo, sock: socket.socket) -> None:
        self._req = req
        self._sock = sock
        self._closed = False

    def fileno(self) -> int:
        return self._sock.fileno()

    def handle_read(self, req: RequestInfo) -> None:
        try:
            data = self._sock.recv(_RECV_SIZE)
        except (BlockingIOError, InterruptedError):
            return
        except OSError as exc:
            _log.info("%s:%d receive failed: %s", req.address, req.port, exc)
            data = b""
        if not data:
            self.close()
            return
        req.socket_info.callback.on_data(data, 0)

    def handle_write(self, req: RequestInfo) -> None:
        message = req.socket_info.sending_buffer.read()
        if not message:
            return
        try:
            self._sock.sendall(message)
        except OSError as exc:
            _log.info("%s:%d send failed: %s", req.address, req.port, exc)
            self.close()
            return
        req.want_write = True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._sock.close()
        req = self._req
        if req.connection is self:
            req.connection = None
        info = req.socket_info
        if not info.disconnect_callback_invoked:
            _log.info("%s:%d disconnected.", req.address, req.port)
            info.callback.on_disconnected()
            info.disconnect_callback_invoked = True


def _open_raw(req: RequestInfo) -> None:
    info = req.socket_info
    try:
        sock = socket.create_connection((req.address, req.port), timeout=_CONNECT_TIMEOUT)
    except OSError as exc:
        _log.info("%s:%d Connection error occurred. %s", req.address, req.port, exc)
        req.connection = None
        info.callback.on_error(str(exc).encode())
        return
    sock.settimeout(None)
    req.connection = _RawConnection(req, sock)
    _log.info("%s:%d connected.", req.address, req.port)
    info.sending_buffer.reset()
    info.callback.on_connected()
    info.disconnect_callback_invoked = False


class SocketClient:
    """Raw TCP client reporting its events to a :class:`ClientCallback`."""

    def __init__(
        self,
        callback: ClientCallback,
        address: str,
        port: int,
        cpu_affinity: int = -1,
        use_global_thread: bool = False,
    ) -> None:
        self._service: SocketService = (
            global_service("", cpu_affinity)
            if use_global_thread
            else SocketService("", cpu_affinity)
        )
        self._address = address
        self._port = port
        self._callback = callback
        self._request: RequestInfo | None = None

    def __enter__(self) -> SocketClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def connect(self) -> bool:
        """Start connecting; False if the service can take no more requests."""
        if self._request is not None:
            return True
        req = self._service.get_request_info(RequestType.SOCKET)
        if req is None:
            return False
        req.address = self._address
        req.port = self._port
        req.host = self._address
        req.origin = self._address
        req.protocol = "raw_socket"
        req.method = "RAW"
        req.connector = _open_raw
        info = req.socket_info
        info.callback = self._callback
        info.sending_buffer.reset()
        info.shutdown.clear()
        self._request = req
        self._service.request(req)
        return True

    def stop(self) -> None:
        """Close the connection and forget the request."""
        req = self._request
        if req is not None:
            req.socket_info.shutdown.set()
            self._request = None
            self._service.wakeup()

    def send(self, msg: bytes | bytearray | memoryview | str) -> bool:
        """Queue a message; False if not connected or it could not be queued."""
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