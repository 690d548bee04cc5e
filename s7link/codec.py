"""
Big-endian read and write cursors used by every wire structure.

All structures of the stack implement ``byte_length()``, ``to_bytes()`` and
``from_bytes(data, offset)``; these helpers keep the offset bookkeeping in
one place.
"""

import struct

from .error import S7FrameError


class ByteWriter:
    """Append-only big-endian encoder."""

    def __init__(self) -> None:
        self._buffer = bytearray()

    def __len__(self) -> int:
        return len(self._buffer)

    def put_uint8(self, value: int) -> "ByteWriter":
        self._buffer += struct.pack(">B", value)
        return self

    def put_uint16(self, value: int) -> "ByteWriter":
        self._buffer += struct.pack(">H", value)
        return self

    def put_uint24(self, value: int) -> "ByteWriter":
        self._buffer += struct.pack(">I", value)[1:]
        return self

    def put_bytes(self, value: bytes) -> "ByteWriter":
        self._buffer += value
        return self

    def to_bytes(self) -> bytes:
        return bytes(self._buffer)


class ByteReader:
    """
    Big-endian decoder over an immutable buffer.

    The cursor only moves forward. Reading past ``limit`` raises
    :class:`S7FrameError`, so a truncated structure never yields partial data.
    """

    def __init__(self, data: bytes, offset: int = 0, limit: int = -1) -> None:
        self.data = data
        self.offset = offset
        self.limit = len(data) if limit < 0 else min(limit, len(data))

    @property
    def remaining(self) -> int:
        return self.limit - self.offset

    def _take(self, size: int) -> bytes:
        if size < 0 or self.offset + size > self.limit:
            raise S7FrameError(f"Need {size} bytes at offset {self.offset}, only {self.remaining} available")
        chunk = self.data[self.offset : self.offset + size]
        self.offset += size
        return bytes(chunk)

    def get_uint8(self) -> int:
        return self._take(1)[0]

    def get_uint16(self) -> int:
        value: int = struct.unpack(">H", self._take(2))[0]
        return value

    def get_uint24(self) -> int:
        value: int = struct.unpack(">I", b"\x00" + self._take(3))[0]
        return value

    def get_bytes(self, size: int) -> bytes:
        return self._take(size)

    def skip(self, size: int) -> None:
        self._take(size)


class WireObject:
    """
    Base class of every encodable structure.

    Instances are built once, by ``from_bytes`` or by a factory, and are not
    mutated afterwards. Two objects are equal when they encode to the same
    bytes.
    """

    def byte_length(self) -> int:
        raise NotImplementedError

    def encode(self, writer: ByteWriter) -> None:
        raise NotImplementedError

    def to_bytes(self) -> bytes:
        writer = ByteWriter()
        self.encode(writer)
        return writer.to_bytes()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, WireObject) or type(self) is not type(other):
            return NotImplemented
        return self.to_bytes() == other.to_bytes()

    def __hash__(self) -> int:
        return hash((type(self), self.to_bytes()))

    def __repr__(self) -> str:
        fields = ", ".join(f"{k}={v!r}" for k, v in vars(self).items())
        return f"{type(self).__name__}({fields})"
