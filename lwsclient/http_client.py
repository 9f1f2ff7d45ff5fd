"""HTTP client whose requests run on a socket service thread."""

from __future__ import annotations

import logging
import re
import socket
import ssl
from dataclasses import dataclass
from typing import Callable

from .service import HttpInfo, RequestInfo, RequestType, SocketService, global_service

_log = logging.getLogger(__name__)

_RECV_SIZE = 65536
_CONNECT_TIMEOUT = 10.0
_BODY_LIMIT = 8192
_USER_AGENT = "libwebsocket"
_NO_SERVICE = "Failed to create lws_context"

_SCHEMES = (("https://", 443), ("http://", 80))


class HttpRequest:
    """Headers and body to send with a request."""

    def __init__(self) -> None:
        self._body = ""
        self._content_type = ""
        self._headers: dict[str, str] = {}

    def add_header(self, key: str, value: str) -> None:
        """Add a header; the name gets a trailing ':' and the first value wins."""
        if not key.endswith(":"):
            key += ":"
        self._headers.setdefault(key, value)

    def add_body(self, body: str, content_type: str) -> None:
        self._body = body
        self._content_type = content_type

    def headers(self) -> dict[str, str]:
        return dict(self._headers)

    def body(self) -> str:
        return self._body

    def content_type(self) -> str:
        return self._content_type


@dataclass(frozen=True)
class HttpResponse:
    """Outcome of a request; a status of 0 means no response was received."""

    status: int
    content_type: str
    response_text: str


def parse_http_address(address: str) -> tuple[str, int]:
    """Split an ``http://`` or ``https://`` address into host and port.

    The port defaults to 443 for https and 80 otherwise.
    """
    rest = address
    default_port = 80
    for scheme, port in _SCHEMES:
        if address.startswith(scheme):
            rest = address[len(scheme):]
            default_port = port
            break
    host, sep, port_text = rest.partition(":")
    if not host:
        raise ValueError(f"no host in address {address!r}")
    if not sep:
        return host, default_port
    match = re.match(r"\d+", port_text)
    if match is None:
        raise ValueError(f"invalid port in address {address!r}")
    port = int(match.group())
    if not 0 < port <= 65535:
        raise ValueError(f"port out of range in address {address!r}")
    return host, port


class _ResponseParser:
    """Incremental parser of an HTTP/1.x response."""

    def __init__(self, method: str) -> None:
        self._method = method.upper()
        self._buffer = bytearray()
        self.status = 0
        self.headers: dict[str, str] = {}
        self.body = bytearray()
        self.header_done = False
        self.complete = False
        self._chunked = False
        self._content_length: int | None = None

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")

    def feed(self, data: bytes) -> None:
        if self.complete:
            return
        self._buffer.extend(data)
        while not self.header_done:
            end = self._buffer.find(b"\r\n\r\n")
            if end < 0:
                return
            head = bytes(self._buffer[:end]).decode("latin-1")
            del self._buffer[: end + 4]
            self._parse_head(head)
        self._advance()

    def finish(self) -> None:
        """Mark the end of input; a body without framing ends here."""
        if self.header_done and not self.complete:
            if not self._chunked and self._content_length is None:
                self.body = bytearray(self._buffer)
            self.complete = True

    def _parse_head(self, head: str) -> None:
        status_line, *lines = head.split("\r\n")
        parts = status_line.split(None, 2)
        if len(parts) < 2 or not parts[0].startswith("HTTP/") or not parts[1].isdigit():
            raise ValueError(f"malformed status line {status_line!r}")
        status = int(parts[1])
        if 100 <= status < 200:
            return
        headers: dict[str, str] = {}
        for line in lines:
            name, sep, value = line.partition(":")
            if sep:
                headers[name.strip().lower()] = value.strip()
        self.status = status
        self.headers = headers
        self.header_done = True
        self._chunked = "chunked" in headers.get("transfer-encoding", "").lower()
        length = headers.get("content-length")
        if length is not None and not self._chunked:
            self._content_length = int(length)
        if self._method == "HEAD" or status in (204, 304):
            self.complete = True

    def _advance(self) -> None:
        if self.complete:
            return
        if self._chunked:
            self._decode_chunks()
        elif self._content_length is not None:
            if len(self._buffer) >= self._content_length:
                self.body = bytearray(self._buffer[: self._content_length])
                self.complete = True

    def _decode_chunks(self) -> None:
        while True:
            line_end = self._buffer.find(b"\r\n")
            if line_end < 0:
                return
            size_text = bytes(self._buffer[:line_end]).split(b";")[0].strip()
            size = int(size_text, 16)
            if size == 0:
                self.complete = True
                return
            start = line_end + 2
            if len(self._buffer) < start + size + 2:
                return
            self.body.extend(self._buffer[start : start + size])
            del self._buffer[: start + size + 2]


class _HttpConnection:
    """Socket carrying one request; closes itself once the response is in."""

    def __init__(self, req: RequestInfo, sock: socket.socket, payload: bytes = b"") -> None:
        self._req = req
        self._sock = sock
        self._parser = _ResponseParser(req.method)
        self._outgoing = bytearray(payload)
        self._closed = False

    def fileno(self) -> int:
        return self._sock.fileno()

    def pending(self) -> int:
        if isinstance(self._sock, ssl.SSLSocket):
            return self._sock.pending()
        return 0

    def handle_read(self, req: RequestInfo) -> None:
        try:
            data = self._sock.recv(_RECV_SIZE)
        except (BlockingIOError, InterruptedError, ssl.SSLWantReadError, ssl.SSLWantWriteError):
            return
        except OSError as exc:
            _fail(req, f"error occurred. {exc}")
            self.close()
            return
        try:
            if data:
                self._parser.feed(data)
            else:
                self._parser.finish()
        except ValueError as exc:
            _fail(req, f"error occurred. {exc}")
            self.close()
            return
        if self._parser.complete:
            self._store(req)
            self.close()
        elif not data:
            _fail(req, "error occurred. connection closed before response")
            self.close()

    def handle_write(self, req: RequestInfo) -> None:
        """Send as much of the pending request as the socket accepts."""
        while self._outgoing and not self._closed:
            try:
                sent = self._sock.send(self._outgoing)
            except (BlockingIOError, InterruptedError, ssl.SSLWantReadError, ssl.SSLWantWriteError):
                return
            except OSError as exc:
                _fail(req, f"failed to write body. {exc}")
                self.close()
                return
            if sent <= 0:
                return
            del self._outgoing[:sent]

    def _store(self, req: RequestInfo) -> None:
        info = req.http_info
        info.status = self._parser.status
        info.content_type = self._parser.content_type
        info.response = bytearray(self._parser.body)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._sock.close()
        finally:
            if self._req.connection is self:
                self._req.connection = None


def _fail(req: RequestInfo, reason: str) -> None:
    req.http_info.response.extend(f"{req.path} {reason}".encode())


def _build_request(req: RequestInfo) -> bytes:
    path = req.path or "/"
    host = req.host if req.port in (80, 443) else f"{req.host}:{req.port}"
    lines = [
        f"{req.method} {path} HTTP/1.1",
        f"Host: {host}",
        f"User-Agent: {_USER_AGENT}",
    ]
    if req.origin:
        lines.append(f"Origin: {req.origin}")
    lines.append("Connection: close")
    body = b""
    request: HttpRequest | None = req.http_info.request
    if request is not None:
        lines.extend(f"{key} {value}" for key, value in request.headers().items())
        if request.content_type():
            lines.append(f"Content-Type: {request.content_type()}")
        body = request.body().encode()
        if body:
            lines.append(f"Content-Length: {len(body)}")
    return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1") + body


def _body_fits(req: RequestInfo) -> bool:
    request: HttpRequest | None = req.http_info.request
    return request is None or len(request.body().encode()) + 1 <= _BODY_LIMIT


def _open_http(req: RequestInfo) -> None:
    if not _body_fits(req):
        _fail(req, "body exceeds buffer size")
        req.connection = None
        return
    payload = _build_request(req)
    try:
        sock = socket.create_connection((req.address, req.port), timeout=_CONNECT_TIMEOUT)
        if req.use_ssl:
            ca_file = req.service.ca_file_path if req.service is not None else ""
            context = ssl.create_default_context(cafile=ca_file or None)
            sock = context.wrap_socket(sock, server_hostname=req.host)
        sock.setblocking(False)
    except OSError as exc:
        _log.info("%s:%d Connection error occurred. %s", req.address, req.port, exc)
        _fail(req, f"error occurred. {exc}")
        req.connection = None
        return
    connection = _HttpConnection(req, sock, payload)
    req.connection = connection
    connection.handle_write(req)


def _to_response(info: HttpInfo) -> HttpResponse:
    return HttpResponse(
        info.status, info.content_type, bytes(info.response).decode("utf-8", errors="replace")
    )


class HttpClient:
    """HTTP/1.1 client for one server address."""

    def __init__(
        self,
        address: str,
        origin: str = "",
        ca_file_path: str = "",
        cpu_affinity: int = -1,
        use_global_thread: bool = False,
    ) -> None:
        self._host, self._port = parse_http_address(address)
        self._origin = origin
        self._service: SocketService = (
            global_service(ca_file_path, cpu_affinity)
            if use_global_thread
            else SocketService(ca_file_path, cpu_affinity)
        )

    def __enter__(self) -> HttpClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def address(self) -> str:
        return self._host

    def port(self) -> int:
        return self._port

    def request(
        self,
        method: str,
        path: str,
        request: HttpRequest | None = None,
        callback: Callable[[HttpResponse], None] | None = None,
    ) -> HttpResponse | None:
        """Send a request.

        Without ``callback`` this waits and returns the response; with one it
        returns at once and the callback later gets the response on the
        service thread.
        """
        req = self._service.get_request_info(RequestType.HTTP)
        if req is None:
            response = HttpResponse(500, "", _NO_SERVICE)
            if callback is None:
                return response
            callback(response)
            return None

        req.path = path
        req.address = self._host
        req.host = self._host
        req.port = self._port
        req.origin = self._origin if callback is None else self._host
        req.protocol = "http"
        req.method = method
        req.use_ssl = self._port == 443
        req.connector = _open_http
        info = req.http_info
        info.request = request

        if callback is not None:
            info.callback = lambda done: callback(_to_response(done))
            self._service.request(req)
            return None

        info.callback = None
        self._service.request(req)
        info.completed.wait()
        response = _to_response(info)
        self._service.release_request(req)
        return response

    def close(self) -> None:
        """Stop the client's service unless it is shared."""
        if not self._service.is_global():
            self._service.close()