import threading

import pytest

from lwsclient.ring_buffer import ObjectPool, RingBuffer, RingStringBuffer


@pytest.mark.parametrize("cls", [RingBuffer, RingStringBuffer])
@pytest.mark.parametrize("size", [0, 3, 12, -4])
def test_size_must_be_power_of_two(cls, size):
    with pytest.raises(ValueError):
        cls(size)


def test_object_pool_size_must_be_power_of_two():
    with pytest.raises(ValueError):
        ObjectPool(6, dict)


# RingBuffer


def test_new_ring_buffer_is_empty():
    buf = RingBuffer(8)
    assert buf.empty()
    assert buf.size() == 0
    assert buf.available() == 0
    assert buf.capacity() == 8


def test_reserve_and_publish_makes_item_visible():
    buf = RingBuffer(8)
    slot = buf.reserve()
    slot[0] = "item"
    slot.publish()
    assert not buf.empty()
    assert buf.available() == 1
    assert buf[0] == "item"
    assert slot.size() == 0


def test_size_is_capped_at_capacity():
    buf = RingBuffer(4)
    for value in range(6):
        slot = buf.reserve()
        slot[0] = value
        slot.publish()
    assert buf.available() == 6
    assert buf.size() == buf.capacity()


def test_indexing_wraps_around():
    buf = RingBuffer(4)
    buf[1] = "x"
    assert buf[1 + buf.capacity()] == "x"


def test_partial_publish_advances_slot():
    buf = RingBuffer(8)
    slot = buf.reserve(3)
    for i, value in enumerate("abc"):
        slot[i] = value
    slot.publish(1)
    assert buf.available() == 1
    assert slot.size() == 2
    assert slot[0] == "b"
    slot.publish()
    assert buf.available() == 3


def test_slot_index_out_of_range():
    buf = RingBuffer(8)
    slot = buf.reserve(2)
    slot[1] = "last"
    assert slot[1] == "last"
    with pytest.raises(IndexError):
        slot[2] = "too far"
    assert slot.size() == 2


def test_invalidate_slot():
    slot = RingBuffer(8).reserve()
    assert slot.valid()
    slot.invalidate()
    assert not slot.valid()


def test_publish_waits_for_earlier_reservations():
    buf = RingBuffer(8)
    first = buf.reserve()
    second = buf.reserve()
    first[0] = "a"
    second[0] = "b"
    worker = threading.Thread(target=second.publish)
    worker.start()
    worker.join(timeout=0.1)
    assert worker.is_alive()
    assert buf.available() == 0
    first.publish()
    worker.join(timeout=2)
    assert not worker.is_alive()
    assert buf.available() == 2
    assert [buf[0], buf[1]] == ["a", "b"]


# RingStringBuffer


def test_write_then_read_round_trip():
    buf = RingStringBuffer(64)
    assert buf.write(b"hello")
    assert buf.read() == b"hello"
    assert buf.read() is None


def test_text_is_encoded():
    buf = RingStringBuffer(64)
    assert buf.write("héllo")
    assert buf.read() == "héllo".encode()


def test_empty_write_is_rejected():
    buf = RingStringBuffer(64)
    assert not buf.write(b"")
    assert buf.read() is None


def test_messages_come_out_in_order():
    buf = RingStringBuffer(64)
    for message in (b"one", b"two", b"three"):
        assert buf.write(message)
    assert [buf.read(), buf.read(), buf.read()] == [b"one", b"two", b"three"]


def test_chunked_message_is_joined():
    buf = RingStringBuffer(64)
    assert buf.write(b"ab", 3)
    assert buf.read() is None
    assert buf.write(b"cde", 0)
    assert buf.read() == b"abcde"


def test_oversized_message_is_rejected():
    buf = RingStringBuffer(16)
    assert not buf.write(b"x" * 16)
    assert buf.read() is None
    assert buf.write(b"ok")
    assert buf.read() == b"ok"


def test_oversized_chunked_message_is_discarded():
    buf = RingStringBuffer(16)
    assert not buf.write(b"x" * 8, 8)
    assert buf.write(b"y" * 8, 0)
    assert buf.read() is None
    assert buf.write(b"next")
    assert buf.read() == b"next"


def test_mismatched_chunks_drop_message():
    buf = RingStringBuffer(64)
    assert buf.write(b"ab", 3)
    assert buf.write(b"c", 0)
    assert buf.read() is None
    assert buf.write(b"fine")
    assert buf.read() == b"fine"


def test_reset_discards_messages():
    buf = RingStringBuffer(64)
    buf.write(b"stale")
    buf.write(b"part", 4)
    buf.reset()
    assert buf.read() is None
    assert buf.write(b"fresh")
    assert buf.read() == b"fresh"


def test_writer_waits_for_reader():
    buf = RingStringBuffer(16)
    assert buf.write(b"x" * 10)
    results = []
    worker = threading.Thread(target=lambda: results.append(buf.write(b"y")))
    worker.start()
    worker.join(timeout=0.1)
    assert worker.is_alive()
    assert buf.read() == b"x" * 10
    worker.join(timeout=2)
    assert results == [True]
    assert buf.read() == b"y"


def test_reset_releases_waiting_writer():
    buf = RingStringBuffer(16)
    assert buf.write(b"x" * 10)
    results = []
    worker = threading.Thread(target=lambda: results.append(buf.write(b"y")))
    worker.start()
    worker.join(timeout=0.1)
    buf.reset()
    worker.join(timeout=2)
    assert results == [False]
    assert buf.read() is None


# ObjectPool


def test_pool_hands_out_distinct_objects():
    pool = ObjectPool(4, dict)
    objects = [pool.get_obj() for _ in range(pool.size())]
    assert len({id(obj) for obj in objects}) == pool.size()


def test_pool_reuses_released_object():
    pool = ObjectPool(1, list)
    first = pool.get_obj()
    pool.release_obj(first)
    assert pool.get_obj() is first


def test_exhausted_pool_creates_new_objects():
    pool = ObjectPool(2, list)
    pooled = [pool.get_obj(), pool.get_obj()]
    extra = pool.get_obj()
    assert all(extra is not obj for obj in pooled)
    pool.release_obj(extra)
    pool.release_obj(pooled[0])
    assert pool.get_obj() is pooled[0]


def test_double_release_is_an_error():
    pool = ObjectPool(2, list)
    obj = pool.get_obj()
    pool.release_obj(obj)
    with pytest.raises(ValueError):
        pool.release_obj(obj)