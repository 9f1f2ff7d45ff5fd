"""Bounded buffers shared between a producer thread and the service thread."""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Callable, Generic, TypeVar

T = TypeVar("T")

_log = logging.getLogger(__name__)

# Each framed message carries a one byte flag and a four byte length.
_FRAME_HEADER = 5


def _check_power_of_two(size: int) -> None:
    if size <= 0 or size & (size - 1):
        raise ValueError(f"size must be a positive power of two, got {size}")


class Slot(Generic[T]):
    """A run of reserved positions in a :class:`RingBuffer`."""

    def __init__(self, buffer: RingBuffer[T], start: int, size: int) -> None:
        self._buffer = buffer
        self._start = start
        self._size = size
        self._discarded = False

    def size(self) -> int:
        """Number of positions not yet published."""
        return self._size

    def _position(self, index: int) -> int:
        if not 0 <= index < self._size:
            raise IndexError(f"slot index {index} out of range")
        return self._start + index

    def __getitem__(self, index: int) -> T:
        return self._buffer[self._position(index)]

    def __setitem__(self, index: int, value: T) -> None:
        self._buffer[self._position(index)] = value

    def publish(self, num: int | None = None) -> None:
        """Make ``num`` positions (all by default) visible to readers.

        Blocks until every earlier reservation has been published.
        """
        if self._size <= 0:
            return
        if num is None:
            num = self._size
        self._buffer._publish(self._start, num)
        self._start += num
        self._size -= num

    def invalidate(self) -> None:
        self._discarded = True

    def valid(self) -> bool:
        return not self._discarded


class RingBuffer(Generic[T]):
    """Fixed-size ring of items published in reservation order."""

    def __init__(self, size: int) -> None:
        _check_power_of_two(size)
        self._items: list[T | None] = [None] * size
        self._capacity = size
        self._mask = size - 1
        self._cursor = 0
        self._reserved = 0
        self._cond = threading.Condition()

    def size(self) -> int:
        """Number of readable items, capped at the capacity."""
        with self._cond:
            return min(self._cursor, self._capacity)

    def capacity(self) -> int:
        return self._capacity

    def empty(self) -> bool:
        with self._cond:
            return self._cursor == 0

    def available(self) -> int:
        """Total number of items ever published."""
        with self._cond:
            return self._cursor

    def reserve(self, num: int = 1) -> Slot[T]:
        with self._cond:
            start = self._reserved
            self._reserved += num
        return Slot(self, start, num)

    def __getitem__(self, index: int) -> T:
        return self._items[index & self._mask]  # type: ignore[return-value]

    def __setitem__(self, index: int, value: T) -> None:
        self._items[index & self._mask] = value

    def _publish(self, index: int, num: int) -> None:
        with self._cond:
            self._cond.wait_for(lambda: self._cursor == index)
            self._cursor += num
            self._cond.notify_all()


class RingStringBuffer:
    """Bounded queue of byte messages that may be written in several chunks.

    A message is announced by its first chunk together with the number of
    bytes still to come; it becomes readable once its last chunk is written.
    Writers block while the buffer lacks room for a new message.
    """

    def __init__(self, size: int) -> None:
        _check_power_of_two(size)
        self._size = size
        self._cond = threading.Condition()
        self._messages: deque[bytes] = deque()
        self._used = 0
        self._reset_count = 0
        self._clear_pending()

    def _clear_pending(self) -> None:
        self._in_progress = False
        self._pending = bytearray()
        self._total = 0
        self._expected = 0
        self._skip = False
        self._invalid = False

    def write(self, msg: bytes | bytearray | memoryview | str, remaining: int = 0) -> bool:
        """Write a chunk of a message; ``remaining`` bytes of it are still to come.

        Returns False if the chunk is empty, if the message can never fit, or
        if the buffer was reset while waiting for room.
        """
        data = msg.encode() if isinstance(msg, str) else bytes(msg)
        if not data:
            return False

        with self._cond:
            if not self._in_progress:
                total = len(data) + remaining + _FRAME_HEADER
                if total >= self._size:
                    if remaining:
                        self._in_progress = True
                        self._skip = True
                        self._expected = remaining
                    return False

                reset_count = self._reset_count
                if self._used + total > self._size:
                    _log.warning(
                        "Slow consumer: need %d bytes, %d free",
                        total,
                        self._size - self._used,
                    )
                self._cond.wait_for(
                    lambda: self._used + total <= self._size
                    or self._reset_count != reset_count
                )
                if self._reset_count != reset_count:
                    return False

                self._used += total
                self._in_progress = True
                self._total = total
                self._expected = len(data) + remaining

            self._expected -= len(data)
            if not self._skip:
                if self._expected == remaining and not self._invalid:
                    self._pending.extend(data)
                else:
                    self._invalid = True

            if remaining == 0:
                if not self._skip:
                    if self._invalid:
                        _log.warning("Message chunks do not add up; message dropped")
                        self._used -= self._total
                    else:
                        self._messages.append(bytes(self._pending))
                    self._cond.notify_all()
                self._clear_pending()
            return True

    def read(self) -> bytes | None:
        """Take the oldest complete message, or None if there is none."""
        with self._cond:
            if not self._messages:
                return None
            message = self._messages.popleft()
            self._used -= len(message) + _FRAME_HEADER
            self._cond.notify_all()
            return message

    def reset(self) -> None:
        """Drop every message, including one being written."""
        with self._cond:
            self._reset_count += 1
            self._messages.clear()
            self._used = 0
            self._clear_pending()
            self._cond.notify_all()


class ObjectPool(Generic[T]):
    """Pool of pre-built objects; falls back to new objects when exhausted."""

    def __init__(self, size: int, factory: Callable[[], T]) -> None:
        _check_power_of_two(size)
        self._size = size
        self._factory = factory
        objects = [factory() for _ in range(size)]
        self._owned = {id(obj): obj for obj in objects}
        self._free: deque[T] = deque(objects)
        self._in_use: set[int] = set()
        self._lock = threading.Lock()

    def size(self) -> int:
        return self._size

    def get_obj(self) -> T:
        with self._lock:
            if self._free:
                obj = self._free.popleft()
                self._in_use.add(id(obj))
                return obj
        return self._factory()

    def release_obj(self, obj: T) -> None:
        """Return a pooled object; objects made outside the pool are dropped."""
        with self._lock:
            key = id(obj)
            if self._owned.get(key) is not obj:
                return
            if key not in self._in_use:
                raise ValueError("object released twice")
            self._in_use.remove(key)
            self._free.append(obj)