import struct

import pytest

from servercore.buffers import BufferError, BufferReader, BufferWriter, RecvBuffer


def test_write_then_read_round_trip():
    buf = bytearray(16)
    writer = BufferWriter(buf)
    writer.pack("<HH", 12, 1000)
    writer.write(b"abcd")
    assert writer.write_size == struct.calcsize("<HH") + len(b"abcd")
    assert writer.free_size == writer.size - writer.write_size

    reader = BufferReader(bytes(buf[:writer.write_size]))
    assert reader.unpack("<HH") == (12, 1000)
    assert reader.read(4) == b"abcd"
    assert reader.free_size == 0


def test_unpack_single_field_returns_value():
    buf = bytearray(8)
    writer = BufferWriter(buf)
    writer.pack("<i", -5)
    assert BufferReader(buf).unpack("<i") == -5


def test_peek_does_not_advance():
    reader = BufferReader(b"hello")
    assert reader.peek(2) == b"he"
    assert reader.read_size == 0
    assert reader.read(2) == b"he"
    assert reader.read_size == 2


def test_reader_start_position():
    reader = BufferReader(b"abcdef", 2)
    assert reader.read(2) == b"cd"
    assert reader.read_size == 2 + 2


def test_read_past_end_raises_and_keeps_position():
    reader = BufferReader(b"abc")
    reader.read(1)
    with pytest.raises(BufferError):
        reader.read(3)
    assert reader.read_size == 1
    with pytest.raises(BufferError):
        reader.unpack("<I")
    assert reader.read_size == 1


def test_negative_length_rejected():
    with pytest.raises(BufferError):
        BufferReader(b"abc").peek(-1)


def test_writer_overflow_raises_and_leaves_buffer():
    buf = bytearray(3)
    writer = BufferWriter(buf)
    writer.write(b"a")
    with pytest.raises(BufferError):
        writer.write(b"xyz")
    assert writer.write_size == 1
    assert bytes(buf) == b"a\x00\x00"


def test_reserve_then_fill_header():
    buf = bytearray(16)
    writer = BufferWriter(buf)
    header = writer.reserve(4)
    writer.write(b"xy")
    size = writer.write_size
    header[:] = struct.pack("<HH", size, 7)
    reader = BufferReader(buf[:size])
    assert reader.unpack("<HH") == (size, 7)
    assert reader.read(2) == b"xy"


def test_reserve_too_large_raises():
    writer = BufferWriter(bytearray(2))
    with pytest.raises(BufferError):
        writer.reserve(3)
    assert writer.write_size == 0


def test_writer_requires_writable_buffer():
    with pytest.raises(TypeError):
        BufferWriter(b"readonly")


def test_recv_buffer_write_and_read():
    recv = RecvBuffer(4)
    initial_free = recv.free_size
    recv.writable()[:3] = b"abc"
    recv.on_write(3)
    assert bytes(recv.readable()) == b"abc"
    assert recv.data_size == 3
    assert recv.free_size == initial_free - 3
    recv.on_read(2)
    assert bytes(recv.readable()) == b"c"


def test_recv_buffer_capacity_is_ten_chunks():
    recv = RecvBuffer(4)
    assert recv.free_size == 4 * RecvBuffer.BUFFER_COUNT
    assert recv.data_size == 0


def test_recv_buffer_overflow_errors():
    recv = RecvBuffer(2)
    with pytest.raises(BufferError):
        recv.on_write(recv.free_size + 1)
    recv.on_write(1)
    with pytest.raises(BufferError):
        recv.on_read(2)
    assert recv.data_size == 1


def test_clean_resets_when_empty():
    recv = RecvBuffer(4)
    initial_free = recv.free_size
    recv.on_write(5)
    recv.on_read(5)
    recv.clean()
    assert recv.data_size == 0
    assert recv.free_size == initial_free


def test_clean_compacts_when_space_is_low():
    recv = RecvBuffer(4)
    initial_free = recv.free_size
    fill = initial_free - 2
    recv.writable()[:fill] = bytes(range(fill))
    recv.on_write(fill)
    recv.on_read(fill - 2)
    tail = bytes(recv.readable())
    recv.clean()
    assert bytes(recv.readable()) == tail
    assert recv.free_size == initial_free - len(tail)


def test_clean_keeps_data_in_place_when_room_remains():
    recv = RecvBuffer(4)
    recv.writable()[:3] = b"xyz"
    recv.on_write(3)
    recv.on_read(1)
    free_before = recv.free_size
    recv.clean()
    assert recv.free_size == free_before
    assert bytes(recv.readable()) == b"yz"