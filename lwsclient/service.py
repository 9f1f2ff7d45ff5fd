"""Service thread that owns client connections and dispatches their events."""

from __future__ import annotations

import atexit
import enum
import logging
import select
import socket
import threading
from dataclasses import dataclass, field, fields
from typing import Any, Callable

from .affinity import set_cpu_affinity
from .callback import ClientCallback
from .ring_buffer import ObjectPool, RingBuffer, RingStringBuffer

_log = logging.getLogger(__name__)

_QUEUE_SIZE = 65536
_POOL_SIZE = 64
_SENDING_BUFFER_SIZE = 8192
_POLL_INTERVAL = 0.05


class RequestType(enum.Enum):
    """Kind of connection a request drives."""

    HTTP = "http"
    WS = "ws"
    SOCKET = "socket"


@dataclass(eq=False)
class HttpInfo:
    """State of an HTTP exchange.

    ``callback``, when set, is called on the service thread with this object
    once the exchange is over.
    """

    status: int = 0
    request: Any = None
    callback: Callable[[HttpInfo], None] | None = None
    response: bytearray = field(default_factory=bytearray)
    content_type: str = ""
    completed: threading.Event = field(default_factory=threading.Event)


@dataclass(eq=False)
class SocketInfo:
    """State of a long-lived socket or WebSocket connection."""

    callback: ClientCallback | None = None
    sending_buffer: RingStringBuffer = field(
        default_factory=lambda: RingStringBuffer(_SENDING_BUFFER_SIZE)
    )
    shutdown: threading.Event = field(default_factory=threading.Event)
    disconnect_callback_invoked: bool = False


@dataclass(eq=False)
class RequestInfo:
    """A connection request handed to a :class:`SocketService`.

    ``connector`` is called on the service thread with the request; it opens
    the connection and stores it in ``connection``, or leaves ``connection``
    as None on failure. A connection object provides ``fileno()``,
    ``handle_read(req)``, ``handle_write(req)`` and ``close()``, and may
    provide ``pending()`` for data buffered outside the socket. Setting
    ``want_write`` asks for one ``handle_write`` call once the socket is
    writable.
    """

    type: RequestType = RequestType.HTTP
    address: str = ""
    port: int = 0
    path: str = ""
    host: str = ""
    origin: str = ""
    protocol: str = ""
    method: str = ""
    use_ssl: bool = False
    connector: Callable[[RequestInfo], None] | None = None
    connection: Any = None
    want_write: bool = False
    service: SocketService | None = None
    http_info: HttpInfo = field(default_factory=HttpInfo)
    socket_info: SocketInfo = field(default_factory=SocketInfo)


def _prepare(req: RequestInfo, request_type: RequestType) -> None:
    fresh = RequestInfo(type=request_type)
    for f in fields(RequestInfo):
        setattr(req, f.name, getattr(fresh, f.name))


class SocketService:
    """Runs one thread that connects requests and services their sockets."""

    def __init__(
        self, ca_file_path: str = "", cpu_affinity: int = -1, is_global: bool = False
    ) -> None:
        self.ca_file_path = ca_file_path
        self._is_global = is_global
        self._pool: ObjectPool[RequestInfo] = ObjectPool(_POOL_SIZE, RequestInfo)
        self._queue: RingBuffer[RequestInfo] = RingBuffer(_QUEUE_SIZE)
        self._cursor = 0
        self._requests: set[RequestInfo] = set()
        self._lock = threading.Lock()
        self._running = threading.Event()
        self._running.set()
        self._wake_r, self._wake_w = socket.socketpair()
        self._wake_r.setblocking(False)
        self._wake_w.setblocking(False)
        self._thread = threading.Thread(
            target=self._serve, args=(cpu_affinity,), name="socket-service", daemon=True
        )
        self._thread.start()

    def __enter__(self) -> SocketService:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def is_global(self) -> bool:
        return self._is_global

    def get_request_info(self, request_type: RequestType) -> RequestInfo | None:
        """Take a clean request of the given type, or None once closed."""
        if not self._running.is_set():
            return None
        req = self._pool.get_obj()
        _prepare(req, request_type)
        return req

    def release_request(self, req: RequestInfo) -> None:
        self._pool.release_obj(req)

    def request(self, req: RequestInfo) -> None:
        """Queue a request for the service thread to connect."""
        slot = self._queue.reserve()
        slot[0] = req
        slot.publish()
        self.wakeup()

    def wakeup(self) -> None:
        """Interrupt the service thread's wait."""
        try:
            self._wake_w.send(b"\0")
        except OSError:
            pass

    def notify_all(self) -> None:
        """Ask every open connection for a write callback."""
        with self._lock:
            snapshot = list(self._requests)
        for req in snapshot:
            if req.connection is not None:
                req.want_write = True
        self.wakeup()

    def close(self) -> None:
        """Stop the service thread; a global service's thread is not waited for."""
        if not self._running.is_set():
            return
        self._running.clear()
        self.wakeup()
        if not self._is_global and threading.current_thread() is not self._thread:
            self._thread.join()

    def _serve(self, cpu_affinity: int) -> None:
        set_cpu_affinity(cpu_affinity)
        try:
            while self._running.is_set():
                self._accept_new()
                self._poll()
                self._sweep()
        finally:
            self._close_all()
            self._wake_r.close()
            self._wake_w.close()

    def _accept_new(self) -> None:
        while self._cursor != self._queue.available():
            req = self._queue[self._cursor]
            self._cursor += 1
            req.service = self
            with self._lock:
                self._requests.add(req)
            _log.info("Connecting to %s:%d%s", req.address, req.port, req.path)
            if req.connector is None:
                continue
            try:
                req.connector(req)
            except Exception:
                _log.exception("Connecting to %s:%d failed", req.address, req.port)
                req.connection = None

    def _poll(self) -> None:
        with self._lock:
            active = [req for req in self._requests if req.connection is not None]
        readers: list[Any] = [self._wake_r]
        writers: list[Any] = []
        owners: dict[int, RequestInfo] = {}
        buffered: list[Any] = []
        for req in active:
            conn = req.connection
            if conn is None:
                continue
            owners[id(conn)] = req
            readers.append(conn)
            if req.want_write:
                writers.append(conn)
            pending = getattr(conn, "pending", None)
            if pending is not None and pending() > 0:
                buffered.append(conn)

        timeout = 0 if buffered else _POLL_INTERVAL
        try:
            readable, writable, _ = select.select(readers, writers, [], timeout)
        except (OSError, ValueError):
            self._drop_broken(active)
            return

        if self._wake_r in readable:
            self._drain_wakeups()

        for conn in writable:
            req = owners[id(conn)]
            if req.connection is conn:
                req.want_write = False
                self._dispatch(req, conn.handle_write)

        seen: set[int] = set()
        for conn in [*readable, *buffered]:
            if conn is self._wake_r or id(conn) in seen:
                continue
            seen.add(id(conn))
            req = owners[id(conn)]
            if req.connection is conn:
                self._dispatch(req, conn.handle_read)

    def _drain_wakeups(self) -> None:
        try:
            while self._wake_r.recv(4096):
                pass
        except (BlockingIOError, InterruptedError):
            pass
        except OSError:
            pass

    def _drop_broken(self, active: list[RequestInfo]) -> None:
        for req in active:
            conn = req.connection
            if conn is None:
                continue
            try:
                select.select([conn], [], [], 0)
            except (OSError, ValueError):
                self._close_connection(req)

    def _dispatch(self, req: RequestInfo, handler: Callable[[RequestInfo], None]) -> None:
        try:
            handler(req)
        except Exception:
            _log.exception("Connection to %s:%d failed", req.address, req.port)
            self._close_connection(req)

    def _close_connection(self, req: RequestInfo) -> None:
        conn = req.connection
        if conn is None:
            return
        try:
            conn.close()
        except Exception:
            _log.exception("Closing connection to %s:%d failed", req.address, req.port)
        req.connection = None

    def _sweep(self) -> None:
        with self._lock:
            snapshot = list(self._requests)
        for req in snapshot:
            is_stream = req.type in (RequestType.WS, RequestType.SOCKET)
            if is_stream and req.socket_info.shutdown.is_set():
                self._close_connection(req)
            if req.connection is not None:
                continue
            if req.type is RequestType.HTTP:
                info = req.http_info
                info.completed.set()
                if info.callback is not None:
                    try:
                        info.callback(info)
                    except Exception:
                        _log.exception("HTTP callback failed")
                    self._pool.release_obj(req)
                self._forget(req)
            elif req.socket_info.shutdown.is_set():
                self._pool.release_obj(req)
                self._forget(req)

    def _forget(self, req: RequestInfo) -> None:
        with self._lock:
            self._requests.discard(req)

    def _close_all(self) -> None:
        with self._lock:
            snapshot = list(self._requests)
            self._requests.clear()
        for req in snapshot:
            self._close_connection(req)


_global_lock = threading.Lock()
_global_services: dict[str, SocketService] = {}


def global_service(ca_file_path: str = "", cpu_affinity: int = -1) -> SocketService:
    """The shared service for ``ca_file_path``, started on first use."""
    with _global_lock:
        service = _global_services.get(ca_file_path)
        if service is None or not service._running.is_set():
            service = SocketService(ca_file_path, cpu_affinity, is_global=True)
            _global_services[ca_file_path] = service
        return service


@atexit.register
def _close_global_services() -> None:
    with _global_lock:
        services = list(_global_services.values())
        _global_services.clear()
    for service in services:
        service.close()