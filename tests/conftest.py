"""
Shared fixtures for edit box tests.

Expected encodings are written out as literal hex so the tests pin the
exact ISOBMFF byte layout rather than just round-tripping.
"""

import pytest

from isobmff_edit.edit_box import EditListEntryV0, EditListEntryV1


@pytest.fixture
def v0_entries():
    """A normal edit followed by an empty edit, both version 0."""
    return [
        EditListEntryV0(segment_duration=1000, media_time=0, media_rate_integer=1, media_rate_fraction=0),
        EditListEntryV0(segment_duration=500, media_time=-1, media_rate_integer=1, media_rate_fraction=0),
    ]


@pytest.fixture
def v1_entries():
    return [
        EditListEntryV1(segment_duration=0x1_0000_0000, media_time=2**40, media_rate_integer=1),
        EditListEntryV1(segment_duration=42, media_time=-1, media_rate_integer=0, media_rate_fraction=0x8000),
    ]


@pytest.fixture
def v0_elst_bytes():
    """elst version 0 holding the v0_entries fixture."""
    return bytes.fromhex(
        "00000028" "656c7374" "00" "000000"  # size=40, 'elst', version 0, flags 0
        "00000002"  # entry_count
        "000003e8" "00000000" "0001" "0000"  # 1000, 0, rate 1.0
        "000001f4" "ffffffff" "0001" "0000"  # 500, -1, rate 1.0
    )
