"""Tests for record framing and message header decoding."""

import pytest

from decode import (
    MESSAGE_HEADER_SIZE,
    PAYLOAD_SIZE,
    RECORD_SIZE,
    MalformedHeader,
    MessageType,
    Truncated,
    UnexpectedTrailingBytes,
    UnknownMessageType,
    decode_message_type,
    frame_segment,
    read_message_header,
)
from tests.fixtures.archive_generator import message_header, record

DEFINED_CODES = list(range(1, 19)) + list(range(20, 27)) + [31]


def test_payload_window_size():
    """The payload is what is left after the frame sync and header."""
    assert PAYLOAD_SIZE == 2432 - 12 - 16


def test_frame_segment_splits_records():
    """Each record yields its offset, header window and payload window."""
    data = record(2, b"\x01\x02", seq=1) + record(5, b"\x03", seq=2)
    frames = frame_segment(data)
    assert [frame.offset for frame in frames] == [0, RECORD_SIZE]
    assert all(len(frame.header) == MESSAGE_HEADER_SIZE for frame in frames)
    assert all(len(frame.payload) == PAYLOAD_SIZE for frame in frames)
    assert frames[0].payload[:2] == b"\x01\x02"
    assert read_message_header(frames[1].header).message_type == MessageType.RDA_VOLUME_COVERAGE_PATTERN


def test_frame_segment_ignores_frame_sync():
    """The 12 leading bytes do not affect the header."""
    data = b"\xff" * 12 + record(2)[12:]
    frames = frame_segment(data)
    assert read_message_header(frames[0].header).message_type == MessageType.RDA_STATUS_DATA


def test_frame_segment_drops_zero_padding():
    """A trailing partial record of zeros is padding."""
    frames = frame_segment(record(2) + b"\x00" * 100)
    assert len(frames) == 1


def test_frame_segment_rejects_trailing_data():
    """A trailing partial record with data is an error."""
    with pytest.raises(UnexpectedTrailingBytes) as exc_info:
        frame_segment(record(2) + b"\x00" * 50 + b"\x01")
    assert exc_info.value.offset == RECORD_SIZE


def test_frame_segment_empty():
    """An empty segment holds no records."""
    assert frame_segment(b"") == []


def test_message_header_fields():
    """All eight fields decode in order."""
    hdr = read_message_header(
        message_header(15, size=1208, channel=8, seq=513, date=15846, ms=72403000, n_segments=77, segment_no=5)
    )
    assert hdr.message_size == 1208
    assert hdr.rda_redundant_channel == 8
    assert hdr.message_type is MessageType.CLUTTER_FILTER_MAP
    assert hdr.id_seq_no == 513
    assert hdr.julian_date == 15846
    assert hdr.ms_from_midnight == 72403000
    assert hdr.n_segments == 77
    assert hdr.message_segment_no == 5


def test_message_header_short():
    """Fewer than 16 bytes is a truncation."""
    with pytest.raises(Truncated):
        read_message_header(message_header(31)[:15])


@pytest.mark.parametrize("segment_no", [0, 4])
def test_segment_number_out_of_range(segment_no):
    """Multi-record messages need 1 <= segment number <= segment count."""
    with pytest.raises(MalformedHeader):
        read_message_header(message_header(15, n_segments=3, segment_no=segment_no))


def test_single_record_message_segment_number_unchecked():
    """Single-record messages carry no segment ordering."""
    hdr = read_message_header(message_header(31, n_segments=1, segment_no=0))
    assert hdr.n_segments == 1


def test_unknown_message_type_in_header():
    """An undefined type byte fails header decoding."""
    with pytest.raises(UnknownMessageType) as exc_info:
        read_message_header(message_header(29))
    assert exc_info.value.code == 29


def test_message_type_total_over_bytes():
    """Every byte maps to a distinct defined variant or fails."""
    seen = set()
    for code in range(256):
        if code in DEFINED_CODES:
            variant = decode_message_type(code)
            assert int(variant) == code
            seen.add(variant)
        else:
            with pytest.raises(UnknownMessageType):
                decode_message_type(code)
    assert len(seen) == len(DEFINED_CODES)


def test_reserved_codes_are_distinct_variants():
    """Reserved codes keep their own identity."""
    assert decode_message_type(16) is not decode_message_type(17)
    assert decode_message_type(20).name == "RESERVED_20"
    assert decode_message_type(26).name == "RESERVED_FAA_26"
