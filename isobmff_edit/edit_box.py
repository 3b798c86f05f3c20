"""
Edit Box (edts) and Edit List Box (elst).

An edit list maps a track's presentation timeline onto its media timeline
without touching the samples. Each entry holds:

- segment_duration: length of the edit, in movie timescale units
- media_time: start time in media timescale units, or -1 for an empty edit
- media_rate_integer / media_rate_fraction: 16.16 playback rate

The elst full box version selects one of two entry layouts:

    version 0: segment_duration u32 + media_time i32 + rate u16 + u16  (12 bytes)
    version 1: segment_duration u64 + media_time i64 + rate u16 + u16  (20 bytes)

A store only ever holds one layout at a time; mixing them is rejected at
append time so an inconsistent box can never be serialized.
"""

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import ClassVar, Iterator

from isobmff_edit.bitstream import BitStream, TruncatedInputError
from isobmff_edit.box import Box, BoxError, FullBox, MalformedBoxError, UnsupportedVersionError, read_box_header
from isobmff_edit.configs import settings

logger = logging.getLogger(__name__)

EMPTY_EDIT_MEDIA_TIME = -1

_UINT16_MAX = 0xFFFF


class EntryLayout(IntEnum):
    """Entry layout, numerically equal to the elst version that selects it."""

    UNSET = -1
    V0 = 0  # 32-bit time fields
    V1 = 1  # 64-bit time fields


# (segment_duration max, media_time min, media_time max) per layout
_TIME_LIMITS = {
    EntryLayout.V0: (0xFFFFFFFF, -(2**31), 2**31 - 1),
    EntryLayout.V1: (0xFFFFFFFFFFFFFFFF, -(2**63), 2**63 - 1),
}

# Encoded entry size in bytes per layout
_ENTRY_SIZES = {
    EntryLayout.V0: 12,
    EntryLayout.V1: 20,
}


class LayoutConflictError(BoxError):
    """Appending an entry whose layout differs from the entries already stored."""

    def __init__(self, active: EntryLayout, requested: EntryLayout):
        self.active = active
        self.requested = requested
        super().__init__(f"Edit list holds {active.name} entries, cannot append a {requested.name} entry")


class LayoutMismatchError(BoxError):
    """A caller-supplied layout does not match the store's active layout."""

    def __init__(self, active: EntryLayout, requested: EntryLayout):
        self.active = active
        self.requested = requested
        super().__init__(f"Edit list layout is {active.name}, {requested.name} was requested")


class EntryIndexError(BoxError, IndexError):
    def __init__(self, index: int, count: int):
        self.index = index
        self.count = count
        super().__init__(f"Edit list entry index {index} out of range for {count} entries")


# =============================================================================
# Entries
# =============================================================================


class _EntryFields:
    """Validation and derived values shared by both entry layouts."""

    layout: ClassVar[EntryLayout]

    def __post_init__(self):
        max_duration, min_time, max_time = _TIME_LIMITS[self.layout]
        if not 0 <= self.segment_duration <= max_duration:
            raise ValueError(f"segment_duration {self.segment_duration} out of range for {self.layout.name} entry")
        if not min_time <= self.media_time <= max_time:
            raise ValueError(f"media_time {self.media_time} out of range for {self.layout.name} entry")
        for name in ("media_rate_integer", "media_rate_fraction"):
            value = getattr(self, name)
            if not 0 <= value <= _UINT16_MAX:
                raise ValueError(f"{name} {value} does not fit 16 bits")

    @property
    def is_empty_edit(self) -> bool:
        return self.media_time == EMPTY_EDIT_MEDIA_TIME

    @property
    def media_rate(self) -> float:
        """Playback rate as a float (16.16 fixed point)."""
        return self.media_rate_integer + self.media_rate_fraction / 65536


@dataclass(frozen=True)
class EditListEntryV0(_EntryFields):
    """Edit list entry with 32-bit time fields (elst version 0)."""

    segment_duration: int
    media_time: int
    media_rate_integer: int = 1
    media_rate_fraction: int = 0

    layout: ClassVar[EntryLayout] = EntryLayout.V0


@dataclass(frozen=True)
class EditListEntryV1(_EntryFields):
    """Edit list entry with 64-bit time fields (elst version 1)."""

    segment_duration: int
    media_time: int
    media_rate_integer: int = 1
    media_rate_fraction: int = 0

    layout: ClassVar[EntryLayout] = EntryLayout.V1


EditListEntry = EditListEntryV0 | EditListEntryV1

_ENTRY_TYPES = {
    EntryLayout.V0: EditListEntryV0,
    EntryLayout.V1: EditListEntryV1,
}


def make_entry(
    segment_duration: int,
    media_time: int,
    media_rate_integer: int = 1,
    media_rate_fraction: int = 0,
    prefer_version_0: bool | None = None,
) -> EditListEntry:
    """
    Build an edit list entry in the narrowest layout that holds the values.

    A version 0 entry is returned only when version 0 is preferred
    (settings.edit_list_prefer_version_0 unless overridden) and both time
    fields fit 32 bits; otherwise a version 1 entry is returned.
    """
    if prefer_version_0 is None:
        prefer_version_0 = settings.edit_list_prefer_version_0

    max_duration, min_time, max_time = _TIME_LIMITS[EntryLayout.V0]
    fits_v0 = 0 <= segment_duration <= max_duration and min_time <= media_time <= max_time
    entry_type = EditListEntryV0 if prefer_version_0 and fits_v0 else EditListEntryV1
    return entry_type(segment_duration, media_time, media_rate_integer, media_rate_fraction)


def _layout_for_version(version: int) -> EntryLayout:
    if version == 0:
        return EntryLayout.V0
    if version == 1:
        return EntryLayout.V1
    raise UnsupportedVersionError(b"elst", version)


# =============================================================================
# Entry store
# =============================================================================


class EditListEntryStore:
    """Ordered edit list entries, all of a single layout."""

    def __init__(self):
        self._entries: list[EditListEntry] = []
        self._layout = EntryLayout.UNSET

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[EditListEntry]:
        return iter(self._entries)

    @property
    def entries(self) -> tuple[EditListEntry, ...]:
        return tuple(self._entries)

    def append(self, entry: EditListEntry, layout: EntryLayout | None = None) -> None:
        """
        Append an entry.

        `layout`, when given, must agree with the entry's own type.

        Raises:
            LayoutMismatchError: if `layout` disagrees with the entry type.
            LayoutConflictError: if the store already holds entries of the other layout.
        """
        entry_layout = entry.layout
        if layout is not None and layout != entry_layout:
            raise LayoutMismatchError(entry_layout, layout)
        if self._entries and entry_layout != self._layout:
            raise LayoutConflictError(self._layout, entry_layout)
        self._entries.append(entry)
        self._layout = entry_layout

    def count(self) -> int:
        return len(self._entries)

    def entry_at(self, index: int, expected_layout: EntryLayout) -> EditListEntry:
        """
        Return the entry at a 0-based index.

        Raises:
            EntryIndexError: if index is negative or >= count().
            LayoutMismatchError: if expected_layout is not the active layout.
        """
        if not 0 <= index < len(self._entries):
            raise EntryIndexError(index, len(self._entries))
        if expected_layout != self._layout:
            raise LayoutMismatchError(self._layout, expected_layout)
        return self._entries[index]

    def active_layout(self) -> EntryLayout:
        return self._layout

    def clear(self) -> None:
        self._entries.clear()
        self._layout = EntryLayout.UNSET

    def write(self, bitstr: BitStream, layout: EntryLayout) -> None:
        """Write entry_count followed by every entry in `layout` field widths."""
        if layout not in _ENTRY_SIZES:
            raise ValueError(f"Cannot serialize edit list entries with layout {layout!r}")
        if self._entries and layout != self._layout:
            raise LayoutMismatchError(self._layout, layout)

        if layout == EntryLayout.V0:
            write_duration, write_media_time = bitstr.write_uint32, bitstr.write_int32
        else:
            write_duration, write_media_time = bitstr.write_uint64, bitstr.write_int64

        bitstr.write_uint32(len(self._entries))  # entry_count
        for entry in self._entries:
            write_duration(entry.segment_duration)
            write_media_time(entry.media_time)
            bitstr.write_uint16(entry.media_rate_integer)
            bitstr.write_uint16(entry.media_rate_fraction)

    def read(self, bitstr: BitStream, layout: EntryLayout) -> None:
        """
        Read entry_count followed by that many `layout` entries and append them.

        Entries are only appended once all of them have been read; on failure
        the store is unchanged.

        Raises:
            LayoutConflictError: if the store already holds entries of the other layout.
                Nothing is consumed from the stream in that case.
            TruncatedInputError: if the stream ends before all declared entries are read.
        """
        if layout not in _ENTRY_SIZES:
            raise ValueError(f"Cannot parse edit list entries with layout {layout!r}")
        if self._entries and layout != self._layout:
            raise LayoutConflictError(self._layout, layout)

        count = bitstr.read_uint32()
        needed = count * _ENTRY_SIZES[layout]
        if needed > bitstr.bytes_remaining:
            raise TruncatedInputError(needed, bitstr.bytes_remaining, bitstr.position)

        if layout == EntryLayout.V0:
            read_duration, read_media_time = bitstr.read_uint32, bitstr.read_int32
        else:
            read_duration, read_media_time = bitstr.read_uint64, bitstr.read_int64

        entry_type = _ENTRY_TYPES[layout]
        parsed = []
        for _ in range(count):
            segment_duration = read_duration()
            media_time = read_media_time()
            rate_integer = bitstr.read_uint16()
            rate_fraction = bitstr.read_uint16()
            parsed.append(entry_type(segment_duration, media_time, rate_integer, rate_fraction))

        self._entries.extend(parsed)
        if parsed:
            self._layout = layout


# =============================================================================
# elst
# =============================================================================


class EditListBox(FullBox):
    """'elst' full box. The version follows the layout of the stored entries."""

    def __init__(self):
        super().__init__(b"elst")
        self._store = EditListEntryStore()

    @property
    def layout(self) -> EntryLayout:
        return self._store.active_layout()

    @property
    def entries(self) -> tuple[EditListEntry, ...]:
        return self._store.entries

    def add_entry(self, entry: EditListEntry) -> None:
        self._store.append(entry)
        self.version = int(entry.layout)

    def num_entry(self) -> int:
        return self._store.count()

    def get_entry(self, index: int, layout: EntryLayout) -> EditListEntry:
        return self._store.entry_at(index, layout)

    def check_writable(self) -> EntryLayout:
        """
        Validate header fields against the stored entries without writing anything.

        Returns:
            The entry layout write_box() will use.

        Raises:
            UnsupportedVersionError: if the version is not 0 or 1.
            LayoutMismatchError: if the version disagrees with the stored entries.
            ValueError: if the flags do not fit 24 bits.
        """
        layout = _layout_for_version(self.version)
        if self._store.count() and layout != self._store.active_layout():
            raise LayoutMismatchError(self._store.active_layout(), layout)
        self.check_full_box_fields()
        return layout

    def write_box(self, bitstr: BitStream) -> None:
        layout = self.check_writable()
        start = self.write_full_box_header(bitstr)
        self._store.write(bitstr, layout)
        self.update_size(bitstr, start)

    def parse_box(self, bitstr: BitStream) -> None:
        """
        Parse an elst box, replacing the version, flags and entries held.

        The box is only updated once the whole box has parsed; on failure it
        keeps its previous contents.

        Raises:
            UnsupportedVersionError: if the version is not 0 or 1.
            MalformedBoxError: if the entries do not exactly fill the declared size.
            TruncatedInputError: if the stream is shorter than the declared size.
        """
        header, version, flags, body = self.parse_full_box_header(bitstr)
        layout = _layout_for_version(version)

        store = EditListEntryStore()
        try:
            store.read(body, layout)
        except TruncatedInputError as e:
            raise MalformedBoxError(f"elst entries overrun the declared box size {header.size}") from e
        if body.bytes_remaining:
            raise MalformedBoxError(
                f"elst box of size {header.size} has {body.bytes_remaining} bytes left after {store.count()} entries"
            )

        self.version = version
        self.flags = flags
        self.size = header.size
        self._store = store
        logger.debug("[edit_box] Parsed elst: version=%d entries=%d", version, store.count())


class EditListBoxView:
    """Read-only view of an EditListBox owned by an EditBox."""

    __slots__ = ("_box",)

    def __init__(self, box: EditListBox):
        self._box = box

    @property
    def version(self) -> int:
        return self._box.version

    @property
    def flags(self) -> int:
        return self._box.flags

    @property
    def layout(self) -> EntryLayout:
        return self._box.layout

    @property
    def entries(self) -> tuple[EditListEntry, ...]:
        return self._box.entries

    def num_entry(self) -> int:
        return self._box.num_entry()

    def get_entry(self, index: int, layout: EntryLayout) -> EditListEntry:
        return self._box.get_entry(index, layout)


# =============================================================================
# edts
# =============================================================================


class EditBox(Box):
    """'edts' container box holding at most one Edit List Box."""

    def __init__(self):
        super().__init__(b"edts")
        self._edit_list_box: EditListBox | None = None

    def set_edit_list_box(self, edit_list_box: EditListBox | None) -> None:
        """Take ownership of `edit_list_box`, dropping any previously held one."""
        self._edit_list_box = edit_list_box

    def get_edit_list_box(self) -> EditListBoxView | None:
        if self._edit_list_box is None:
            return None
        return EditListBoxView(self._edit_list_box)

    def write_box(self, bitstr: BitStream) -> None:
        if self._edit_list_box is not None:
            self._edit_list_box.check_writable()

        start = self.write_box_header(bitstr)
        if self._edit_list_box is not None:
            self._edit_list_box.write_box(bitstr)
        self.update_size(bitstr, start)

    def parse_box(self, bitstr: BitStream) -> None:
        """
        Parse an edts box. Only elst children are interpreted; other child
        boxes are skipped. On failure the box keeps its previous contents.

        Raises:
            MalformedBoxError: if a child header is cut short or a child
                extends past the edts range.
        """
        header, body = self.parse_box_header(bitstr)
        edit_list_box = None

        while body.bytes_remaining:
            child_start = body.position
            try:
                child = read_box_header(body)
            except TruncatedInputError as e:
                raise MalformedBoxError(f"Truncated child box header at offset {child_start} in edts") from e
            if child.size > len(body) - child_start:
                raise MalformedBoxError(
                    f"Child box {child.box_type!r} of size {child.size} exceeds edts box of size {header.size}"
                )

            body.seek(child_start)
            if child.box_type == b"elst":
                if edit_list_box is not None:
                    logger.warning("[edit_box] edts contains more than one elst, keeping the last one")
                edit_list_box = EditListBox()
                edit_list_box.parse_box(body)
            else:
                logger.debug("[edit_box] Skipping %r child (%d bytes) in edts", child.box_type, child.size)
                body.seek(child_start + child.size)

        self.size = header.size
        self.set_edit_list_box(edit_list_box)


# =============================================================================
# Builder helpers
# =============================================================================


def build_edts(entries: list[EditListEntry]) -> bytes:
    """Build an edts box holding an elst with `entries`, or an empty edts if there are none."""
    edit_box = EditBox()
    if entries:
        edit_list_box = EditListBox()
        for entry in entries:
            edit_list_box.add_entry(entry)
        edit_box.set_edit_list_box(edit_list_box)

    bitstr = BitStream()
    edit_box.write_box(bitstr)
    return bitstr.to_bytes()


def parse_edts(data: bytes) -> EditBox:
    """
    Parse a complete edts box from `data`.

    Raises:
        MalformedBoxError: if bytes remain after the box.
    """
    bitstr = BitStream(data)
    edit_box = EditBox()
    edit_box.parse_box(bitstr)
    if bitstr.bytes_remaining:
        raise MalformedBoxError(f"{bitstr.bytes_remaining} trailing bytes after edts box")
    return edit_box
