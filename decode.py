import bz2
from collections import namedtuple, OrderedDict
import datetime
from enum import IntEnum
from functools import partial
import gzip
import io
import logging
from struct import Struct

import numpy as np
from scipy.constants import day, milli

from _cbook import Exporter, is_path_like
from _units import gate_ranges, range_edges

exporter = Exporter(globals())

with exporter:
    from _tools import (CorruptSegment, CountOutOfRange, InvalidControlWord, MalformedHeader, NexradError, SegmentSizeMismatch, Truncated, UnexpectedTrailingBytes, UnknownMessageType)

from _tools import BoundedSegmentReader, Enum, IOBuffer, NamedStruct

log = logging.getLogger(__name__)
log.addHandler(logging.StreamHandler())
log.setLevel(logging.WARNING)

VOLUME_HEADER_SIZE = 24
CONTROL_WORD_SIZE = 4
RECORD_SIZE = 2432
CTM_HEADER_SIZE = 12
MESSAGE_HEADER_SIZE = 16
PAYLOAD_SIZE = RECORD_SIZE - CTM_HEADER_SIZE - MESSAGE_HEADER_SIZE

MAX_COUNT = 1024
DECOMPRESS_CHUNK = 65536

GZIP_MAGIC = b'\x1f\x8b'

EPOCH = datetime.datetime(1970, 1, 1)

def scaler(scale):
    def inner(val):
        return val * scale
    return inner

def ascii_text(val):
    try:
        return val.decode('ascii').rstrip('\x00 ')
    except UnicodeDecodeError:
        raise MalformedHeader('Non-ASCII bytes in text field: {!r}'.format(val))

@exporter.export
def nexrad_to_datetime(julian_date, ms_midnight):
    try:
        return EPOCH + datetime.timedelta(seconds = (julian_date - 1) * day + ms_midnight * milli)
    except OverflowError:
        raise MalformedHeader('Date {:d} time {:d} is out of range'.format(julian_date, ms_midnight))

volume_header_fmt = NamedStruct([
    ('name', '12s', ascii_text),
    ('date', 'l'),
    ('time', 'l'),
    ('icao', '4s', ascii_text)
], '>', 'VolumeHeader')

@exporter.export
def read_volume_header(source):
    if not hasattr(source, 'read'):
        source = io.BytesIO(bytes(source[:VOLUME_HEADER_SIZE]))

    try:
        return volume_header_fmt.unpack_file(source)
    except NexradError as e:
        e.add_context(offset = 0)
        raise

@exporter.export
class MessageType(IntEnum):
    DIGITAL_RADAR_DATA = 1
    RDA_STATUS_DATA = 2
    PERFORMANCE_MAINTENANCE_DATA = 3
    CONSOLE_MESSAGE_RDA = 4
    RDA_VOLUME_COVERAGE_PATTERN = 5
    RDA_CONTROL_COMMANDS = 6
    RPG_VOLUME_COVERAGE_PATTERN = 7
    CLUTTER_CENSOR_ZONES = 8
    REQUEST_FOR_DATA = 9
    CONSOLE_MESSAGE_RPG = 10
    LOOPBACK_TEST_RDA = 11
    LOOPBACK_TEST_RPG = 12
    CLUTTER_FILTER_BYPASS_MAP = 13
    SPARE_14 = 14
    CLUTTER_FILTER_MAP = 15
    RESERVED_FAA_16 = 16
    RESERVED_FAA_17 = 17
    RDA_ADAPTATION_DATA = 18
    RESERVED_20 = 20
    RESERVED_21 = 21
    RESERVED_22 = 22
    RESERVED_23 = 23
    RESERVED_FAA_24 = 24
    RESERVED_FAA_25 = 25
    RESERVED_FAA_26 = 26
    DIGITAL_RADAR_DATA_GENERIC = 31

@exporter.export
def decode_message_type(code):
    try:
        return MessageType(code)
    except ValueError:
        raise UnknownMessageType(code)

# Table II
msg_hdr_fmt = NamedStruct([
    ('message_size',          'H'),
    ('rda_redundant_channel', 'B'),
    ('message_type',          'B', decode_message_type),
    ('id_seq_no',             'H'),
    ('julian_date',           'H'),
    ('ms_from_midnight',      'L'),
    ('n_segments',            'H'),
    ('message_segment_no',    'H')
], '>', 'MessageHeader')

@exporter.export
def read_message_header(data):
    buf = data if isinstance(data, IOBuffer) else IOBuffer(data)
    hdr = buf.read_struct(msg_hdr_fmt)
    if hdr.n_segments > 1 and not 1 <= hdr.message_segment_no <= hdr.n_segments:
        raise MalformedHeader('Segment number {:d} outside 1..{:d}'.format(hdr.message_segment_no, hdr.n_segments), msg_type = int(hdr.message_type))
    return hdr

# Table XVII-A
generic_hdr_fmt = NamedStruct([
    ('radar_id',              '4s', ascii_text),
    ('collection_time',       'L'),
    ('modified_julian_date',  'H'),
    ('azimuth_number',        'H'),
    ('azimuth_angle',         'f'),
    ('compression_indicator', 'B'),
    (None,                    'x'),
    ('radial_length',         'H'),
    ('azimuth_resolution',    'B'),
    ('radial_status',         'B'),
    ('elevation_number',      'B'),
    ('cut_sector_number',     'B'),
    ('elevation_angle',       'f'),
    ('spot_blanking_status',  'B'),
    ('azimuth_indexing_mode', 'B'),
    ('data_block_count',      'H'),
    ('vol_ptr',               'L'),
    ('el_ptr',                'L'),
    ('rad_ptr',               'L'),
    ('ref_ptr',               'L'),
    ('vel_ptr',               'L'),
    ('sw_ptr',                'L'),
    ('zdr_ptr',               'L'),
    ('phi_ptr',               'L'),
    ('rho_ptr',               'L')
], '>', 'GenericRadarDataHeader')

GENERIC_HEADER_SIZE = generic_hdr_fmt.size

data_block_pointers = ('vol_ptr', 'el_ptr', 'rad_ptr', 'ref_ptr', 'vel_ptr', 'sw_ptr', 'zdr_ptr', 'phi_ptr', 'rho_ptr')

compression_types = Enum('Uncompressed', 'BZIP2', 'ZLIB')

@exporter.export
def read_generic_radar_header(buf):
    if not isinstance(buf, IOBuffer):
        buf = IOBuffer(buf)
    return buf.read_struct(generic_hdr_fmt)

# Table XVII-E
vol_consts_fmt = NamedStruct([
    ('type',              's', ascii_text),
    ('name',              '3s', ascii_text),
    ('size',              'H'),
    ('major',             'B'),
    ('minor',             'B'),
    ('lat',               'f'),
    ('lon',               'f'),
    ('site_amsl',         'h'),
    ('feedhorn_agl',      'H'),
    ('calib_dbz',         'f'),
    ('txpower_h',         'f'),
    ('txpower_v',         'f'),
    ('sys_zdr',           'f'),
    ('phidp0',            'f'),
    ('vcp_num',           'H'),
    ('processing_status', 'H')
], '>', 'VolConsts')

# Table XVII-F
el_consts_fmt = NamedStruct([
    ('type',        's', ascii_text),
    ('name',        '3s', ascii_text),
    ('size',        'H'),
    ('atmos_atten', 'h', scaler(0.001)),
    ('calib_dbz0',  'f')
], '>', 'ElConsts')

# Table XVII-H
rad_consts_fmt = NamedStruct([
    ('type',        's', ascii_text),
    ('name',        '3s', ascii_text),
    ('size',        'H'),
    ('unamb_range', 'H', scaler(0.1)),
    ('noise_h',     'f'),
    ('noise_v',     'f'),
    ('nyq_vel',     'H', scaler(0.01)),
    (None,          '2x')
], '>', 'RadConsts')

# Table XVII-B
moment_hdr_fmt = NamedStruct([
    ('type',       's', ascii_text),
    ('name',       '3s', ascii_text),
    ('reserved',   'L'),
    ('ngates',     'H'),
    ('first_gate', 'H', scaler(0.001)),
    ('gate_width', 'H', scaler(0.001)),
    ('tover',      'H', scaler(0.1)),
    ('snr_thresh', 'h', scaler(0.1)),
    ('recombined', 'B'),
    ('data_size',  'B'),
    ('scale',      'f'),
    ('offset',     'f')
], '>', 'MomentHeader')

data_block_fmts = {
    'VOL': vol_consts_fmt,
    'ELV': el_consts_fmt,
    'RAD': rad_consts_fmt
}

moment_units = {
    'REF': 'dBZ',
    'VEL': 'm/s',
    'SW':  'm/s',
    'ZDR': 'dB',
    'PHI': 'degrees',
    'RHO': '',
    'CFP': ''
}

Moment = namedtuple('Moment', 'header data ranges units')

def _read_moment(buf, name):
    hdr = buf.read_struct(moment_hdr_fmt)
    if hdr.data_size == 8:
        dtype = '>u1'
    elif hdr.data_size == 16:
        dtype = '>u2'
    else:
        raise MalformedHeader('Unsupported word size {:d} for moment {}'.format(hdr.data_size, name), offset = buf.offset)

    raw = np.frombuffer(buf.read(hdr.ngates * hdr.data_size // 8), dtype = dtype)
    if hdr.scale:
        data = (raw - hdr.offset) / hdr.scale
    else:
        data = raw.astype('float32')

    # 0 is below threshold, 1 is range folded
    data = np.ma.array(data, mask = raw < 2)
    return Moment(hdr, data, gate_ranges(hdr.first_gate, hdr.gate_width, hdr.ngates), moment_units[name])

@exporter.export
def read_data_blocks(payload, header):
    buf = IOBuffer(payload)
    start = buf.set_mark()
    blocks = OrderedDict()
    for ptr_name in data_block_pointers:
        ptr = getattr(header, ptr_name)
        if not ptr:
            continue

        buf.jump_to(start, ptr)
        name = ascii_text(buf.get_next(4)[1:])
        if name in data_block_fmts:
            blocks[name] = buf.read_struct(data_block_fmts[name])
        elif name in moment_units:
            blocks[name] = _read_moment(buf, name)
        else:
            log.warning('Unknown data block %r at pointer %d', name, ptr)
    return blocks

with exporter:
    RangeZone = namedtuple('RangeZone', 'opcode end_range')
    AzimuthSegment = namedtuple('AzimuthSegment', 'range_zones')
    ElevationSegment = namedtuple('ElevationSegment', 'azimuth_segments')
    ClutterFilterMap = namedtuple('ClutterFilterMap', 'date time elevation_segments')

clutter_opcodes = Enum('Bypass Filter', 'Bypass Map in Control', 'Force Filter')

clutter_hdr_fmt = NamedStruct([
    ('date', 'H'),
    ('time', 'H')
], '>', 'ClutterMapHeader')

range_zone_fmt = NamedStruct([
    ('opcode',    'H'),
    ('end_range', 'H')
], '>', 'RangeZone')

count_fmt = Struct('>H')

def _read_count(buf, what, max_count):
    count = buf.read_struct(count_fmt)[0]
    if count > max_count:
        raise CountOutOfRange('{} count {:d} exceeds limit {:d}'.format(what, count, max_count), offset = buf.offset - count_fmt.size)
    return count

@exporter.export
def read_clutter_filter_map(buf, max_count = MAX_COUNT):
    if not isinstance(buf, IOBuffer):
        buf = IOBuffer(buf)

    hdr = buf.read_struct(clutter_hdr_fmt)
    elevations = []
    for _ in range(_read_count(buf, 'Elevation segment', max_count)):
        azimuths = []
        for _ in range(_read_count(buf, 'Azimuth segment', max_count)):
            num_zones = _read_count(buf, 'Range zone', max_count)
            zones = [RangeZone(*buf.read_struct(range_zone_fmt)) for _ in range(num_zones)]
            azimuths.append(AzimuthSegment(tuple(zones)))
        elevations.append(ElevationSegment(tuple(azimuths)))

    return ClutterFilterMap(hdr.date, hdr.time, tuple(elevations))

@exporter.export
def write_clutter_filter_map(cfm):
    out = bytearray(clutter_hdr_fmt.pack(date = cfm.date, time = cfm.time))
    out.extend(count_fmt.pack(len(cfm.elevation_segments)))
    for elevation in cfm.elevation_segments:
        out.extend(count_fmt.pack(len(elevation.azimuth_segments)))
        for azimuth in elevation.azimuth_segments:
            out.extend(count_fmt.pack(len(azimuth.range_zones)))
            for zone in azimuth.range_zones:
                out.extend(range_zone_fmt.pack(opcode = zone.opcode, end_range = zone.end_range))
    return bytes(out)

@exporter.export
def clutter_map_grid(elevation_segment):
    azimuths = elevation_segment.azimuth_segments
    max_range = max((zone.end_range for az in azimuths for zone in az.range_zones), default = 0)
    grid = np.zeros((len(azimuths), max_range), dtype = np.uint8)

    # Each zone runs from the end of the previous one (0 km for the first)
    for row, az in zip(grid, azimuths):
        start = 0
        for zone in az.range_zones:
            row[start:zone.end_range] = zone.opcode
            start = max(start, zone.end_range)

    return grid, range_edges(max_range)

payload_decoders = {
    MessageType.DIGITAL_RADAR_DATA_GENERIC: read_generic_radar_header,
    MessageType.CLUTTER_FILTER_MAP: read_clutter_filter_map
}

@exporter.export
def decode_payload(msg_type, payload, decoders = None):
    if decoders is None:
        decoders = payload_decoders

    decoder = decoders.get(msg_type)
    if decoder is None:
        return bytes(payload)
    return decoder(IOBuffer(payload))

Segment = namedtuple('Segment', 'index offset size consumed data')

@exporter.export
class SegmentStream(object):
    ctrl_word_fmt = Struct('>l')

    def __init__(self, fobj, start = VOLUME_HEADER_SIZE, strict = False, chunk_size = DECOMPRESS_CHUNK, filename = None):
        self._fobj = fobj
        self.strict = strict
        self.chunk_size = chunk_size
        self.filename = filename if filename is not None else 'No Filename'

        fobj.seek(0, io.SEEK_END)
        self.file_length = fobj.tell()
        self.offset = start
        self.index = 0

    def __iter__(self):
        return self

    def __next__(self):
        seg = self.next_segment()
        if seg is None:
            raise StopIteration
        return seg

    def next_segment(self):
        if self.offset >= self.file_length:
            return None

        start = self.offset
        self._fobj.seek(start)
        word = self._fobj.read(CONTROL_WORD_SIZE)
        if len(word) < CONTROL_WORD_SIZE:
            raise Truncated('Control word needs {:d} bytes, only {:d} left'.format(CONTROL_WORD_SIZE, len(word)), offset = start, segment = self.index)

        size = self.ctrl_word_fmt.unpack(word)[0]
        if size < 0:
            raise InvalidControlWord('Negative control word {:d}'.format(size), offset = start, segment = self.index)

        available = self.file_length - start - CONTROL_WORD_SIZE
        if size > available:
            raise InvalidControlWord('Control word {:d} exceeds the {:d} bytes left in the file'.format(size, available), offset = start, segment = self.index)

        data, consumed = self._decompress(BoundedSegmentReader(self._fobj, size), start)
        if consumed != size:
            if self.strict:
                raise SegmentSizeMismatch('Decompressor consumed {:d} of {:d} compressed bytes'.format(consumed, size), offset = start, segment = self.index)
            log.warning('%s: segment %d consumed %d of %d compressed bytes', self.filename, self.index, consumed, size)

        log.debug('%s: segment %d at offset %d, %d compressed bytes, %d decompressed', self.filename, self.index, start, size, len(data))

        seg = Segment(self.index, start, size, consumed, bytes(data))
        self.offset = start + CONTROL_WORD_SIZE + size
        self.index += 1
        return seg

    def _decompress(self, reader, start):
        decomp = bz2.BZ2Decompressor()
        out = bytearray()
        while not decomp.eof:
            chunk = reader.read(self.chunk_size)
            if not chunk:
                raise CorruptSegment('Compressed data ended before the end of the bzip2 stream', offset = start, segment = self.index)
            try:
                out.extend(decomp.decompress(chunk))
            except (OSError, EOFError) as e:
                raise CorruptSegment('Decompression failed: {}'.format(e), offset = start, segment = self.index)

        return out, reader.consumed - len(decomp.unused_data)

Frame = namedtuple('Frame', 'offset header payload')

@exporter.export
def frame_segment(data):
    num_records, extra = divmod(len(data), RECORD_SIZE)
    if extra and any(data[num_records * RECORD_SIZE:]):
        raise UnexpectedTrailingBytes('{:d} trailing bytes after {:d} records are not zero padding'.format(extra, num_records), offset = num_records * RECORD_SIZE)

    frames = []
    for ind in range(num_records):
        start = ind * RECORD_SIZE
        hdr_start = start + CTM_HEADER_SIZE
        payload_start = hdr_start + MESSAGE_HEADER_SIZE
        frames.append(Frame(start, bytes(data[hdr_start:payload_start]), bytes(data[payload_start:start + RECORD_SIZE])))
    return frames

def _message_bytes(hdr, payload):
    size = hdr.message_size * 2 - MESSAGE_HEADER_SIZE
    if 0 <= size <= len(payload):
        return payload[:size]
    return payload

@exporter.export
def assemble_messages(records):
    pending = OrderedDict()
    for seg_index, frame, hdr in records:
        if hdr.n_segments <= 1:
            yield hdr, frame.payload, seg_index, frame.offset
            continue

        key = (hdr.message_type, hdr.id_seq_no)
        n_segments, parts = pending.setdefault(key, (hdr.n_segments, dict()))
        if hdr.n_segments != n_segments:
            raise MalformedHeader('Segment {:d} of message {:d} claims {:d} segments, earlier parts claim {:d}'.format(hdr.message_segment_no, hdr.id_seq_no, hdr.n_segments, n_segments), segment = seg_index, record = frame.offset, msg_type = hdr.message_type)
        if hdr.message_segment_no in parts:
            raise MalformedHeader('Duplicate segment {:d} of message {:d}'.format(hdr.message_segment_no, hdr.id_seq_no), segment = seg_index, record = frame.offset, msg_type = hdr.message_type)
        parts[hdr.message_segment_no] = (hdr, _message_bytes(hdr, frame.payload), seg_index, frame.offset)

        if len(parts) == n_segments:
            del pending[key]
            first, _, first_seg, first_offset = parts[1]
            data = b''.join(parts[num][1] for num in sorted(parts))
            log.debug('Reassembled message type %d sequence %d from %d records, %d bytes', first.message_type, first.id_seq_no, len(parts), len(data))
            yield first, data, first_seg, first_offset

    if pending:
        (msg_type, seq_no), (n_segments, parts) = next(iter(pending.items()))
        first = next(iter(parts.values()))
        raise Truncated('Message {:d} ended with {:d} of {:d} segments'.format(seq_no, len(parts), n_segments), segment = first[2], record = first[3], msg_type = msg_type)

Message = namedtuple('Message', 'header payload segment offset')

@exporter.export
class L2D(object):
    def __init__(self, filename, strict = False, max_count = MAX_COUNT, chunk_size = DECOMPRESS_CHUNK):
        if is_path_like(filename):
            fobj = open(filename, 'rb')
            self.filename = str(filename)
            self._owns_file = True
        else:
            fobj = filename
            self.filename = 'No Filename'
            self._owns_file = False

        self.strict = strict
        self.chunk_size = chunk_size
        self._decoders = dict(payload_decoders)
        self._decoders[MessageType.CLUTTER_FILTER_MAP] = partial(read_clutter_filter_map, max_count = max_count)

        self._fobj = fobj
        try:
            fobj.seek(0)
            if fobj.read(2) == GZIP_MAGIC:
                self._fobj = self._gunzip(fobj)

            self._fobj.seek(0)
            self.volume_header = read_volume_header(self._fobj)
            self.dt = nexrad_to_datetime(self.volume_header.date, self.volume_header.time)
        except NexradError as e:
            self.close()
            e.add_context(offset = 0)
            raise
        except Exception:
            self.close()
            raise

        self.stid = self.volume_header.icao

    def _gunzip(self, fobj):
        fobj.seek(0)
        try:
            data = gzip.GzipFile(fileobj = fobj).read()
        except (OSError, EOFError) as e:
            raise CorruptSegment('Cannot unwrap gzip archive: {}'.format(e), offset = 0)
        finally:
            if self._owns_file:
                fobj.close()

        self._owns_file = True
        return io.BytesIO(data)

    def segments(self):
        return SegmentStream(self._fobj, strict = self.strict, chunk_size = self.chunk_size, filename = self.filename)

    def _records(self):
        for seg in self.segments():
            try:
                frames = frame_segment(seg.data)
            except NexradError as e:
                e.add_context(segment = seg.index)
                raise

            for frame in frames:
                try:
                    hdr = read_message_header(frame.header)
                except NexradError as e:
                    e.add_context(segment = seg.index, record = frame.offset)
                    raise
                yield seg.index, frame, hdr

    def messages(self):
        for hdr, payload, seg_index, offset in assemble_messages(self._records()):
            try:
                data = decode_payload(hdr.message_type, payload, self._decoders)
            except NexradError as e:
                e.add_context(segment = seg_index, record = offset, msg_type = hdr.message_type)
                raise
            yield Message(hdr, data, seg_index, offset)

    def __iter__(self):
        return self.messages()

    def close(self):
        if self._owns_file:
            self._fobj.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self):
        return '{}: {} {} {}'.format(self.filename, self.volume_header.name, self.stid, self.dt)
