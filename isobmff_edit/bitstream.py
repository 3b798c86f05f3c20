"""
Big-endian byte stream used by box writers and parsers.

BitStream wraps a growable bytearray:

- Writes always append at the end, so the write position equals len().
- Reads advance an independent read position from the start.
- sub_stream() carves a bounded copy for parsing a box body, so a child
  parser can never read past its parent's declared range.

All multi-byte fields are big-endian, as ISO/IEC 14496-12 requires.
"""

import struct


class TruncatedInputError(Exception):
    """Raised when a read needs more bytes than the stream has left."""

    def __init__(self, needed: int, available: int, position: int):
        self.needed = needed
        self.available = available
        self.position = position
        super().__init__(f"Need {needed} bytes at position {position}, only {available} available")


class BitStream:
    """Growable big-endian byte buffer with a separate read position."""

    def __init__(self, data: bytes | bytearray | memoryview = b""):
        self._data = bytearray(data)
        self._pos = 0

    def __len__(self) -> int:
        return len(self._data)

    @property
    def position(self) -> int:
        """Current read position."""
        return self._pos

    @property
    def bytes_remaining(self) -> int:
        return len(self._data) - self._pos

    def seek(self, position: int) -> None:
        if position < 0 or position > len(self._data):
            raise ValueError(f"Seek position {position} outside stream of {len(self._data)} bytes")
        self._pos = position

    def to_bytes(self) -> bytes:
        return bytes(self._data)

    # -------------------------------------------------------------------------
    # Writers
    # -------------------------------------------------------------------------

    def _pack(self, fmt: str, value: int) -> None:
        try:
            self._data.extend(struct.pack(fmt, value))
        except struct.error as e:
            raise ValueError(f"Value {value} does not fit field format {fmt!r}") from e

    def write_uint8(self, value: int) -> None:
        self._pack(">B", value)

    def write_uint16(self, value: int) -> None:
        self._pack(">H", value)

    def write_uint24(self, value: int) -> None:
        if not 0 <= value <= 0xFFFFFF:
            raise ValueError(f"Value {value} does not fit 24 bits")
        self._data.extend(value.to_bytes(3, "big"))

    def write_uint32(self, value: int) -> None:
        self._pack(">I", value)

    def write_uint64(self, value: int) -> None:
        self._pack(">Q", value)

    def write_int32(self, value: int) -> None:
        self._pack(">i", value)

    def write_int64(self, value: int) -> None:
        self._pack(">q", value)

    def write_bytes(self, data: bytes) -> None:
        self._data.extend(data)

    def write_fourcc(self, code: bytes) -> None:
        if len(code) != 4:
            raise ValueError(f"Four-character code must be 4 bytes, got {code!r}")
        self._data.extend(code)

    def set_uint32_at(self, offset: int, value: int) -> None:
        """Overwrite a previously written uint32, e.g. a box size placeholder."""
        if offset < 0 or offset + 4 > len(self._data):
            raise ValueError(f"uint32 at offset {offset} is outside stream of {len(self._data)} bytes")
        try:
            struct.pack_into(">I", self._data, offset, value)
        except struct.error as e:
            raise ValueError(f"Value {value} does not fit 32 bits") from e

    # -------------------------------------------------------------------------
    # Readers
    # -------------------------------------------------------------------------

    def _take(self, length: int) -> bytes:
        if length > self.bytes_remaining:
            raise TruncatedInputError(length, self.bytes_remaining, self._pos)
        chunk = bytes(self._data[self._pos : self._pos + length])
        self._pos += length
        return chunk

    def _unpack(self, fmt: str) -> int:
        return struct.unpack(fmt, self._take(struct.calcsize(fmt)))[0]

    def read_uint8(self) -> int:
        return self._unpack(">B")

    def read_uint16(self) -> int:
        return self._unpack(">H")

    def read_uint24(self) -> int:
        return int.from_bytes(self._take(3), "big")

    def read_uint32(self) -> int:
        return self._unpack(">I")

    def read_uint64(self) -> int:
        return self._unpack(">Q")

    def read_int32(self) -> int:
        return self._unpack(">i")

    def read_int64(self) -> int:
        return self._unpack(">q")

    def read_bytes(self, length: int) -> bytes:
        return self._take(length)

    def read_fourcc(self) -> bytes:
        return self._take(4)

    def sub_stream(self, length: int) -> "BitStream":
        """
        Split off the next `length` bytes as an independent stream.

        The parent's read position moves past the carved range.

        Raises:
            TruncatedInputError: if fewer than `length` bytes remain.
        """
        return BitStream(self._take(length))
