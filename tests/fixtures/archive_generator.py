"""Build synthetic NEXRAD Level II archives in memory."""

import bz2
import struct

RECORD_SIZE = 2432
FULL_MESSAGE_SIZE = 1208


def volume_header(name=b"AR2V0006.001", date=15846, time=72403000, icao=b"KTLX"):
    """Pack the 24-byte volume header."""
    return struct.pack(">12sll4s", name, date, time, icao)


def message_header(
    msg_type,
    size=FULL_MESSAGE_SIZE,
    channel=0,
    seq=1,
    date=15846,
    ms=72403000,
    n_segments=1,
    segment_no=1,
):
    """Pack a 16-byte message header."""
    return struct.pack(">HBBHHLHH", size, channel, msg_type, seq, date, ms, n_segments, segment_no)


def record(msg_type, payload=b"", **kwargs):
    """Pack one 2432-byte message record, zero padded."""
    body = b"\x00" * 12 + message_header(msg_type, **kwargs) + payload
    assert len(body) <= RECORD_SIZE
    return body.ljust(RECORD_SIZE, b"\x00")


def compressed_segment(data):
    """Compress one segment and prefix its control word."""
    comp = bz2.compress(data)
    return struct.pack(">l", len(comp)) + comp


def archive(*segments, header=None):
    """Volume header followed by one compressed block per segment."""
    if header is None:
        header = volume_header()
    return header + b"".join(compressed_segment(seg) for seg in segments)


def clutter_payload(elevations, date=15846, time=720):
    """Encode a clutter filter map from nested lists of (opcode, end_range)."""
    out = struct.pack(">HHH", date, time, len(elevations))
    for azimuths in elevations:
        out += struct.pack(">H", len(azimuths))
        for zones in azimuths:
            out += struct.pack(">H", len(zones))
            for opcode, end_range in zones:
                out += struct.pack(">HH", opcode, end_range)
    return out


def generic_header_payload(
    radar_id=b"KTLX",
    collection_time=72403000,
    date=15846,
    azimuth_number=1,
    azimuth_angle=0.5,
    elevation_number=1,
    elevation_angle=0.48,
    pointers=(0,) * 9,
    compression=0,
    radial_length=0,
):
    """Pack the 68-byte type 31 header."""
    block_count = sum(1 for ptr in pointers if ptr)
    return struct.pack(
        ">4sLHHfBxHBBBBfBBH9L",
        radar_id,
        collection_time,
        date,
        azimuth_number,
        azimuth_angle,
        compression,
        radial_length,
        1,
        0,
        elevation_number,
        1,
        elevation_angle,
        0,
        0,
        block_count,
        *pointers,
    )


def moment_block(name, gates, first_gate=2125, gate_width=250, scale=2.0, offset=66.0, word_size=8):
    """Pack a moment data block with its gate codes."""
    code = ">B" if word_size == 8 else ">H"
    hdr = struct.pack(
        ">c3sLHHHHhBBff",
        b"D",
        name,
        0,
        len(gates),
        first_gate,
        gate_width,
        100,
        16,
        0,
        word_size,
        scale,
        offset,
    )
    return hdr + b"".join(struct.pack(code, gate) for gate in gates)


def volume_block(vcp=212):
    """Pack the volume data constant block."""
    return struct.pack(
        ">c3sHBBffhHfffffHH", b"R", b"VOL", 44, 1, 0, 35.33, -97.28, 370, 20, -44.0, 700.0, 700.0, 0.1, 60.0, vcp, 0
    )


def elevation_block(atmos_atten=-12, calib_dbz0=-44.5):
    """Pack the elevation data constant block."""
    return struct.pack(">c3sHhf", b"R", b"ELV", 12, atmos_atten, calib_dbz0)


def radial_block(unamb_range=4660, noise_h=-80.0, noise_v=-79.5, nyq_vel=2838):
    """Pack the radial data constant block."""
    return struct.pack(">c3sHHffH2x", b"R", b"RAD", 20, unamb_range, noise_h, noise_v, nyq_vel)
