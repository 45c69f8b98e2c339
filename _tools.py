from collections import namedtuple
from struct import Struct

class NexradError(ValueError):
    def __init__(self, msg, offset = None, segment = None, record = None, msg_type = None):
        super(NexradError, self).__init__(msg)
        self.msg = msg
        self.offset = offset
        self.segment = segment
        self.record = record
        self.msg_type = msg_type

    def add_context(self, offset = None, segment = None, record = None, msg_type = None):
        # Innermost context wins; outer layers only fill in what is missing
        if self.offset is None:
            self.offset = offset
        if self.segment is None:
            self.segment = segment
        if self.record is None:
            self.record = record
        if self.msg_type is None and msg_type is not None:
            self.msg_type = int(msg_type)
        return self

    def __str__(self):
        context = []
        if self.segment is not None:
            context.append('segment {:d}'.format(self.segment))
        if self.record is not None:
            context.append('record at {:d}'.format(self.record))
        if self.offset is not None:
            context.append('offset {:d}'.format(self.offset))
        if self.msg_type is not None:
            context.append('message type {:d}'.format(self.msg_type))
        if context:
            return '{} ({})'.format(self.msg, ', '.join(context))
        return self.msg

class Truncated(NexradError):
    pass

class InvalidControlWord(NexradError):
    pass

class CorruptSegment(NexradError):
    pass

class SegmentSizeMismatch(NexradError):
    pass

class UnknownMessageType(NexradError):
    def __init__(self, code, **kwargs):
        kwargs.setdefault('msg_type', code)
        super(UnknownMessageType, self).__init__('Unknown message type {:d}'.format(code), **kwargs)
        self.code = code

class CountOutOfRange(NexradError):
    pass

class MalformedHeader(NexradError):
    pass

class UnexpectedTrailingBytes(NexradError):
    pass

class NamedStruct(object):
    def __init__(self, info, prefmt = '', tuple_name = None):
        if tuple_name is None:
            tuple_name = 'NamedStruct'
        names, fmts = zip(*info)
        self.converters = {}
        conv_off = 0
        for ind, i in enumerate(info):
            if len(i) > 2:
                self.converters[ind - conv_off] = i[-1]
            elif not i[0]:
                # Pad bytes produce no value
                conv_off += 1
        self._tuple = namedtuple(tuple_name, ' '.join(n for n in names if n))
        self._struct = Struct(prefmt + ''.join(f for f in fmts if f))
        self.size = self._struct.size
        self.format = self._struct.format

    def _create(self, items):
        if self.converters:
            items = list(items)
            for ind, conv in self.converters.items():
                items[ind] = conv(items[ind])
        return self.make_tuple(*items)

    def make_tuple(self, *args, **kwargs):
        return self._tuple(*args, **kwargs)

    def unpack(self, s):
        return self._create(self._struct.unpack(s))

    def unpack_from(self, buff, offset = 0):
        return self._create(self._struct.unpack_from(buff, offset))

    def unpack_file(self, fobj):
        data = fobj.read(self.size)
        if len(data) < self.size:
            raise Truncated('{} needs {:d} bytes, got {:d}'.format(self._tuple.__name__, self.size, len(data)))
        return self.unpack(data)

    def pack(self, **kwargs):
        return self._struct.pack(*self._tuple(**kwargs))

class Enum(object):
    def __init__(self, *args, **kwargs):
        self.val_map = dict()
        for ind, a in enumerate(args):
            self.val_map[ind] = a

        for k in kwargs:
            self.val_map[kwargs[k]] = k

    def __call__(self, arg):
        return self.val_map.get(arg, 'Unknown ({})'.format(arg))

class IOBuffer(object):
    def __init__(self, source):
        self._data = bytearray(source)
        self._offset = 0
        self.clear_marks()

    @property
    def offset(self):
        return self._offset

    def set_mark(self):
        self._bookmarks.append(self._offset)
        return len(self._bookmarks) - 1

    def jump_to(self, mark, offset = 0):
        self._offset = self._bookmarks[mark] + offset

    def clear_marks(self):
        self._bookmarks = []

    def _check(self, num_bytes):
        if num_bytes < 0 or self._offset + num_bytes > len(self._data):
            raise Truncated('Need {:d} bytes, only {:d} available'.format(num_bytes, max(len(self._data) - self._offset, 0)), offset = self._offset)

    def read_struct(self, struct_class):
        self._check(struct_class.size)
        struct = struct_class.unpack_from(self._data, self._offset)
        self.skip(struct_class.size)
        return struct

    def read(self, num_bytes):
        self._check(num_bytes)
        data = bytes(self._data[self._offset:self._offset + num_bytes])
        self.skip(num_bytes)
        return data

    def get_next(self, num_bytes = 1):
        self._check(num_bytes)
        return bytes(self._data[self._offset:self._offset + num_bytes])

    def skip(self, num_bytes):
        self._offset += num_bytes

class BoundedSegmentReader(object):
    def __init__(self, fobj, limit):
        if limit < 0:
            raise ValueError('Read limit must be non-negative, got {:d}'.format(limit))
        self._fobj = fobj
        self.limit = limit
        self.consumed = 0

    @property
    def remaining(self):
        return self.limit - self.consumed

    def read(self, size = -1):
        if size is None or size < 0 or size > self.remaining:
            size = self.remaining
        if not size:
            return b''
        data = self._fobj.read(size)
        self.consumed += len(data)
        return data
