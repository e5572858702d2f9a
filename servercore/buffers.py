"""Byte buffers for building and consuming packets."""

from __future__ import annotations

import struct
from typing import Any

__all__ = ["BufferError", "BufferReader", "BufferWriter", "RecvBuffer"]


class BufferError(Exception):  # noqa: A001 - deliberately scoped to this package
    """Raised when a buffer has too little data or room for an operation."""


def _check_length(length: int) -> None:
    if length < 0:
        raise BufferError(f"negative length: {length}")


class BufferReader:
    """Sequential reader over a bytes-like object."""

    def __init__(self, buffer, pos: int = 0) -> None:
        self._buffer = memoryview(buffer).cast("B")
        if not 0 <= pos <= len(self._buffer):
            raise BufferError(f"start position {pos} outside buffer of {len(self._buffer)} bytes")
        self._pos = pos

    @property
    def size(self) -> int:
        """Total size of the underlying buffer."""
        return len(self._buffer)

    @property
    def read_size(self) -> int:
        """Number of bytes consumed so far (the cursor position)."""
        return self._pos

    @property
    def free_size(self) -> int:
        """Number of bytes still available to read."""
        return len(self._buffer) - self._pos

    def peek(self, length: int) -> bytes:
        """Return the next ``length`` bytes without advancing."""
        _check_length(length)
        if self.free_size < length:
            raise BufferError(f"cannot read {length} bytes, only {self.free_size} left")
        return bytes(self._buffer[self._pos:self._pos + length])

    def read(self, length: int) -> bytes:
        """Return the next ``length`` bytes and advance past them."""
        data = self.peek(length)
        self._pos += length
        return data

    def unpack(self, fmt: str) -> Any:
        """Read a value laid out by a :mod:`struct` format.

        A format with a single field yields that value; otherwise a tuple.
        """
        values = struct.unpack(fmt, self.read(struct.calcsize(fmt)))
        return values[0] if len(values) == 1 else values


class BufferWriter:
    """Sequential writer into a writable bytes-like object."""

    def __init__(self, buffer, pos: int = 0) -> None:
        view = memoryview(buffer)
        if view.readonly:
            raise TypeError("BufferWriter needs a writable buffer")
        self._buffer = view.cast("B")
        if not 0 <= pos <= len(self._buffer):
            raise BufferError(f"start position {pos} outside buffer of {len(self._buffer)} bytes")
        self._pos = pos

    @property
    def size(self) -> int:
        """Total size of the underlying buffer."""
        return len(self._buffer)

    @property
    def write_size(self) -> int:
        """Number of bytes written so far (the cursor position)."""
        return self._pos

    @property
    def free_size(self) -> int:
        """Room left in the buffer."""
        return len(self._buffer) - self._pos

    def write(self, data) -> None:
        """Copy ``data`` to the cursor and advance past it."""
        chunk = bytes(data)
        if self.free_size < len(chunk):
            raise BufferError(f"cannot write {len(chunk)} bytes, only {self.free_size} free")
        self._buffer[self._pos:self._pos + len(chunk)] = chunk
        self._pos += len(chunk)

    def reserve(self, length: int) -> memoryview:
        """Skip ``length`` bytes and return a view of them to fill in later."""
        _check_length(length)
        if self.free_size < length:
            raise BufferError(f"cannot reserve {length} bytes, only {self.free_size} free")
        region = self._buffer[self._pos:self._pos + length]
        self._pos += length
        return region

    def pack(self, fmt: str, *args) -> None:
        """Write ``args`` laid out by a :mod:`struct` format."""
        self.write(struct.pack(fmt, *args))


class RecvBuffer:
    """Receive buffer with separate read and write cursors.

    The storage holds several chunks of ``buffer_size`` bytes so that a
    partially received packet can stay in place while more data arrives.
    """

    BUFFER_COUNT = 10

    def __init__(self, buffer_size: int) -> None:
        if buffer_size <= 0:
            raise ValueError("buffer_size must be positive")
        self._buffer_size = buffer_size
        self._capacity = buffer_size * self.BUFFER_COUNT
        self._buffer = bytearray(self._capacity)
        self._read_pos = 0
        self._write_pos = 0

    @property
    def data_size(self) -> int:
        """Bytes received but not yet consumed."""
        return self._write_pos - self._read_pos

    @property
    def free_size(self) -> int:
        """Room left after the write cursor."""
        return self._capacity - self._write_pos

    def readable(self) -> memoryview:
        """View of the unconsumed data."""
        return memoryview(self._buffer)[self._read_pos:self._write_pos]

    def writable(self) -> memoryview:
        """View of the free space where new data is to be received."""
        return memoryview(self._buffer)[self._write_pos:]

    def clean(self) -> None:
        """Reset the cursors when empty, or move data to the front when space runs low."""
        data_size = self.data_size
        if data_size == 0:
            self._read_pos = 0
            self._write_pos = 0
        elif self.free_size < self._buffer_size:
            self._buffer[0:data_size] = self._buffer[self._read_pos:self._write_pos]
            self._read_pos = 0
            self._write_pos = data_size

    def on_read(self, num_bytes: int) -> None:
        """Mark ``num_bytes`` of data as consumed."""
        if num_bytes < 0 or num_bytes > self.data_size:
            raise BufferError(f"cannot consume {num_bytes} bytes, only {self.data_size} available")
        self._read_pos += num_bytes

    def on_write(self, num_bytes: int) -> None:
        """Mark ``num_bytes`` of free space as filled."""
        if num_bytes < 0 or num_bytes > self.free_size:
            raise BufferError(f"cannot commit {num_bytes} bytes, only {self.free_size} free")
        self._write_pos += num_bytes