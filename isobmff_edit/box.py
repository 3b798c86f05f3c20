"""
Generic ISOBMFF box headers.

Box layout:    size(4) + type(4) [+ largesize(8) when size == 1] + body
Full box body: version(1) + flags(3) + payload

Writers emit a zero size placeholder, write the body, then backpatch the
real size. Parsers read the header and hand the body to the concrete box
as a sub-stream bounded to the declared size.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from isobmff_edit.bitstream import BitStream, TruncatedInputError

_BOX_HEADER_SIZE = 8
_LARGE_BOX_HEADER_SIZE = 16
_MAX_BOX_SIZE = 0xFFFFFFFF


class BoxError(Exception):
    """Base exception for box serialization and parsing failures."""
    pass


class MalformedBoxError(BoxError):
    """Declared box size or range is inconsistent with the actual content."""
    pass


class UnsupportedVersionError(BoxError):
    def __init__(self, box_type: bytes, version: int):
        self.box_type = box_type
        self.version = version
        super().__init__(f"Unsupported {box_type.decode('latin-1')} box version {version}")


@dataclass
class BoxHeader:
    """Parsed box header."""

    box_type: bytes
    size: int  # Total box size including the header
    header_size: int  # 8, or 16 with a 64-bit largesize
    offset: int  # Read position of the size field

    @property
    def body_size(self) -> int:
        return self.size - self.header_size


def read_box_header(bitstr: BitStream) -> BoxHeader:
    """
    Read a box header at the current read position.

    A size of 1 means a 64-bit largesize follows the type; a size of 0 means
    the box extends to the end of the stream.

    Raises:
        TruncatedInputError: if the header itself is cut short.
        MalformedBoxError: if the declared size cannot hold the header.
    """
    offset = bitstr.position
    size = bitstr.read_uint32()
    box_type = bitstr.read_fourcc()
    header_size = _BOX_HEADER_SIZE

    if size == 1:  # Extended size (64-bit)
        size = bitstr.read_uint64()
        header_size = _LARGE_BOX_HEADER_SIZE
    elif size == 0:  # Box extends to end of data
        size = header_size + bitstr.bytes_remaining

    if size < header_size:
        raise MalformedBoxError(
            f"Box {box_type!r} at offset {offset} declares size {size}, smaller than its {header_size}-byte header"
        )
    return BoxHeader(box_type, size, header_size, offset)


class Box(ABC):
    """Base class for a plain box with a four-character type code."""

    def __init__(self, box_type: bytes):
        if len(box_type) != 4:
            raise ValueError(f"Box type must be 4 bytes, got {box_type!r}")
        self.box_type = box_type
        self.size = 0  # Set by update_size(), or by a concrete parse_box() on success

    def write_box_header(self, bitstr: BitStream) -> int:
        """Write size placeholder and type. Returns the box start offset for update_size()."""
        start = len(bitstr)
        bitstr.write_uint32(0)  # size placeholder
        bitstr.write_fourcc(self.box_type)
        return start

    def update_size(self, bitstr: BitStream, start: int) -> None:
        """Backpatch the size field of the box that starts at `start`."""
        size = len(bitstr) - start
        if size > _MAX_BOX_SIZE:
            raise BoxError(f"Box {self.box_type!r} of {size} bytes exceeds the 32-bit size field")
        bitstr.set_uint32_at(start, size)
        self.size = size

    def parse_box_header(self, bitstr: BitStream) -> tuple[BoxHeader, BitStream]:
        """
        Read this box's header and split off its body. The box itself is not modified.

        Returns:
            (header, body) where body is bounded to the declared box size.
            The parent stream's read position ends after the whole box.

        Raises:
            MalformedBoxError: if the type code is not this box's type.
            TruncatedInputError: if the stream is shorter than the declared size.
        """
        header = read_box_header(bitstr)
        if header.box_type != self.box_type:
            raise MalformedBoxError(f"Expected {self.box_type!r} box, got {header.box_type!r}")
        body = bitstr.sub_stream(header.body_size)
        return header, body

    @abstractmethod
    def write_box(self, bitstr: BitStream) -> None:
        pass

    @abstractmethod
    def parse_box(self, bitstr: BitStream) -> None:
        pass


class FullBox(Box):
    """Box whose body starts with an 8-bit version and 24-bit flags."""

    def __init__(self, box_type: bytes, version: int = 0, flags: int = 0):
        super().__init__(box_type)
        self.version = version
        self.flags = flags

    def check_full_box_fields(self) -> None:
        """Raise ValueError if version or flags do not fit their header fields."""
        if not 0 <= self.version <= 0xFF:
            raise ValueError(f"Box {self.box_type!r} version {self.version} does not fit 8 bits")
        if not 0 <= self.flags <= 0xFFFFFF:
            raise ValueError(f"Box {self.box_type!r} flags {self.flags:#x} do not fit 24 bits")

    def write_full_box_header(self, bitstr: BitStream) -> int:
        self.check_full_box_fields()
        start = self.write_box_header(bitstr)
        bitstr.write_uint8(self.version)
        bitstr.write_uint24(self.flags)
        return start

    def parse_full_box_header(self, bitstr: BitStream) -> tuple[BoxHeader, int, int, BitStream]:
        """
        Like parse_box_header(), also consuming version and flags from the body.

        Returns:
            (header, version, flags, body). The box itself is not modified.
        """
        header, body = self.parse_box_header(bitstr)
        try:
            version = body.read_uint8()
            flags = body.read_uint24()
        except TruncatedInputError as e:
            raise MalformedBoxError(
                f"Full box {self.box_type!r} of size {header.size} has no room for version and flags"
            ) from e
        return header, version, flags, body
