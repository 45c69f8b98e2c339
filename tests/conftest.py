"""Shared pytest fixtures for the Level II decoder tests."""

import io

import pytest

from tests.fixtures.archive_generator import (
    archive,
    clutter_payload,
    generic_header_payload,
    record,
)

CLUTTER_ELEVATIONS = [
    [[(0, 10), (2, 50)], [(1, 511)]],
    [[(0, 511)]],
]


@pytest.fixture
def clutter_bytes():
    """A two-elevation clutter filter map payload."""
    return clutter_payload(CLUTTER_ELEVATIONS)


@pytest.fixture
def metadata_segment(clutter_bytes):
    """Decompressed metadata segment: a clutter map and a status message."""
    return record(15, clutter_bytes, seq=2) + record(2, b"\x00\x02", seq=3)


@pytest.fixture
def radial_segment():
    """Decompressed segment holding three type 31 radials."""
    return b"".join(
        record(31, generic_header_payload(azimuth_number=num, azimuth_angle=num * 0.5), seq=10 + num)
        for num in range(1, 4)
    )


@pytest.fixture
def archive_bytes(metadata_segment, radial_segment):
    """A complete two-segment archive."""
    return archive(metadata_segment, radial_segment)


@pytest.fixture
def archive_file(archive_bytes):
    """The archive as a seekable in-memory file."""
    return io.BytesIO(archive_bytes)


@pytest.fixture
def archive_path(tmp_path, archive_bytes):
    """The archive written to disk."""
    path = tmp_path / "KTLX20130520_201643_V06"
    path.write_bytes(archive_bytes)
    return path
