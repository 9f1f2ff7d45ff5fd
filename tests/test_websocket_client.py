import base64
import hashlib
import socket
import struct
import threading

import pytest

from lwsclient.callback import ClientCallback
from lwsclient.websocket_client import WebSocketClient, parse_ws_url

_GUID = b"258EAFA5-E914-47DA-95CA-C5AB0DC85B11"
_WAIT = 5.0


def _recv_exact(conn, size):
    data = bytearray()
    while len(data) < size:
        chunk = conn.recv(size - len(data))
        if not chunk:
            raise ConnectionError("peer closed")
        data.extend(chunk)
    return bytes(data)


def _handshake(conn):
    request = bytearray()
    while b"\r\n\r\n" not in request:
        chunk = conn.recv(1024)
        if not chunk:
            raise ConnectionError("peer closed")
        request.extend(chunk)
    headers = {}
    for line in request.decode("latin-1").split("\r\n")[1:]:
        name, sep, value = line.partition(":")
        if sep:
            headers[name.strip().lower()] = value.strip()
    key = headers["sec-websocket-key"].encode()
    accept = base64.b64encode(hashlib.sha1(key + _GUID).digest()).decode()
    conn.sendall(
        (
            "HTTP/1.1 101 Switching Protocols\r\n"
            "Upgrade: websocket\r\n"
            "Connection: Upgrade\r\n"
            f"Sec-WebSocket-Accept: {accept}\r\n\r\n"
        ).encode()
    )
    return headers


def _read_frame(conn):
    b0, b1 = _recv_exact(conn, 2)
    opcode = b0 & 0x0F
    length = b1 & 0x7F
    if length == 126:
        (length,) = struct.unpack("!H", _recv_exact(conn, 2))
    elif length == 127:
        (length,) = struct.unpack("!Q", _recv_exact(conn, 8))
    mask = _recv_exact(conn, 4) if b1 & 0x80 else bytes(4)
    payload = bytes(b ^ mask[i % 4] for i, b in enumerate(_recv_exact(conn, length)))
    return opcode, payload


def _frame(opcode, payload):
    header = bytes([0x80 | opcode])
    if len(payload) < 126:
        header += bytes([len(payload)])
    elif len(payload) < 65536:
        header += bytes([126]) + struct.pack("!H", len(payload))
    else:
        header += bytes([127]) + struct.pack("!Q", len(payload))
    return header + payload


class _Server:
    def __init__(self, hang_up=False):
        self.listener = socket.create_server(("127.0.0.1", 0))
        self.port = self.listener.getsockname()[1]
        self.hang_up = hang_up
        self.headers = {}
        self.received = []
        self.thread = threading.Thread(target=self._run, daemon=True)
        self.thread.start()

    @property
    def url(self):
        return f"ws://127.0.0.1:{self.port}/"

    def _run(self):
        try:
            conn, _ = self.listener.accept()
        except OSError:
            return
        with conn:
            try:
                self.headers = _handshake(conn)
            except (ConnectionError, OSError):
                return
            if self.hang_up:
                return
            while True:
                try:
                    opcode, payload = _read_frame(conn)
                    if opcode == 0x8:
                        conn.sendall(_frame(0x8, payload[:2]))
                        return
                    if opcode == 0x1:
                        self.received.append(payload)
                        conn.sendall(_frame(0x1, payload))
                except (ConnectionError, OSError):
                    return

    def close(self):
        self.listener.close()
        self.thread.join(timeout=_WAIT)


class _Recorder(ClientCallback):
    def __init__(self):
        self.connected = threading.Event()
        self.disconnected = threading.Event()
        self.errored = threading.Event()
        self.got_data = threading.Event()
        self.errors = []
        self.data = []

    def on_connected(self):
        self.connected.set()

    def on_disconnected(self):
        self.disconnected.set()

    def on_error(self, message):
        self.errors.append(message)
        self.errored.set()

    def on_data(self, data, remaining):
        self.data.append((data, remaining))
        self.got_data.set()


@pytest.fixture
def server():
    srv = _Server()
    yield srv
    srv.close()


@pytest.fixture
def hangup_server():
    srv = _Server(hang_up=True)
    yield srv
    srv.close()


def _closed_port():
    with socket.create_server(("127.0.0.1", 0)) as probe:
        return probe.getsockname()[1]


def test_parse_defaults_to_wss():
    assert parse_ws_url("ws-feed.pro.coinbase.com") == (
        "wss",
        "ws-feed.pro.coinbase.com",
        443,
        "/",
    )


def test_parse_ws_scheme_defaults_to_port_80():
    endpoint = parse_ws_url("ws://example.com/stream")
    assert endpoint.scheme == "ws"
    assert endpoint.address == "example.com"
    assert endpoint.port == 80
    assert endpoint.path == "/stream"


def test_parse_explicit_port_and_query():
    endpoint = parse_ws_url("wss://example.com:9443/a/b?x=1")
    assert endpoint.address == "example.com"
    assert endpoint.port == 9443
    assert endpoint.path == "/a/b?x=1"


def test_parse_without_scheme_keeps_path():
    endpoint = parse_ws_url("example.com/feed")
    assert endpoint.scheme == "wss"
    assert endpoint.port == 443
    assert endpoint.path == "/feed"


@pytest.mark.parametrize(
    "url", ["ws://example.com:abc/", "ws://:8080/", "ws://example.com:0/", "ws://example.com:70000"]
)
def test_parse_rejects_bad_urls(url):
    with pytest.raises(ValueError):
        parse_ws_url(url)


def test_constructor_rejects_bad_url():
    with pytest.raises(ValueError):
        WebSocketClient(_Recorder(), "ws://example.com:port/")


def test_url_is_kept():
    with WebSocketClient(_Recorder(), "ws://example.com/feed") as client:
        assert client.url() == "ws://example.com/feed"


def test_send_before_connect_fails():
    with WebSocketClient(_Recorder(), "ws://example.com/feed") as client:
        assert client.send(b"hello") is False


def test_echo_round_trip(server):
    recorder = _Recorder()
    with WebSocketClient(recorder, server.url) as client:
        assert client.connect() is True
        assert recorder.connected.wait(_WAIT)
        assert client.send(b"hello") is True
        assert recorder.got_data.wait(_WAIT)
        assert recorder.data == [(b"hello", 0)]
    assert server.received == [b"hello"]


def test_origin_header_is_sent(server):
    recorder = _Recorder()
    with WebSocketClient(recorder, server.url, origin="http://example.com") as client:
        client.connect()
        assert recorder.connected.wait(_WAIT)
    assert server.headers["origin"] == "http://example.com"


def test_connection_error_reports_error():
    recorder = _Recorder()
    with WebSocketClient(recorder, f"ws://127.0.0.1:{_closed_port()}/") as client:
        assert client.connect() is True
        assert recorder.errored.wait(_WAIT)
        assert len(recorder.errors) == 1
        assert len(recorder.errors[0]) > 0
        assert recorder.connected.is_set() is False


def test_server_hang_up_reports_disconnect(hangup_server):
    recorder = _Recorder()
    with WebSocketClient(recorder, hangup_server.url) as client:
        client.connect()
        assert recorder.connected.wait(_WAIT)
        assert recorder.disconnected.wait(_WAIT)
        assert client.send(b"late") is False


def test_stop_closes_without_disconnect_callback(server):
    recorder = _Recorder()
    with WebSocketClient(recorder, server.url) as client:
        client.connect()
        assert recorder.connected.wait(_WAIT)
        client.stop()
        assert client.send(b"after stop") is False
        assert recorder.disconnected.wait(0.5) is False


def test_connect_fails_after_close():
    client = WebSocketClient(_Recorder(), "ws://example.com/feed")
    client.close()
    assert client.connect() is False