"""Memcached binary protocol frame codec."""

import struct

from collections import namedtuple

from binprot.constants import *
from binprot.errors import ProtocolError, statusText

__all__ = ['Frame',
           'Header',
           'Command',
           'Response',
           'toBytes',
           'encode',
           'rawCommand',
           'packExtras',
           'recvFrame',
           'dumpFrame']


def toBytes(bytesOrStr):
    if isinstance(bytesOrStr, str):
        return bytesOrStr.encode('utf-8')
    return bytes(bytesOrStr)


class Frame(object):
    """One message as it goes over the wire."""

    def __init__(self, payload=b''):
        self.payload = bytearray(payload)

    def reset(self):
        del self.payload[:]

    def append(self, data):
        self.payload.extend(data)

    def __len__(self):
        return len(self.payload)

    def __bytes__(self):
        return bytes(self.payload)

    def __repr__(self):
        return "<Frame %d bytes>" % len(self.payload)


class Header(object):
    """The fixed header of a frame, unpacked into host integers.

    The status field only means something for responses; requests carry
    the vbucket there instead."""

    def __init__(self, hdr):
        if len(hdr) < MIN_RECV_PACKET:
            raise ProtocolError("Short header: %d bytes" % len(hdr))
        (self.magic, self.opcode, self.keylen, self.extralen, self.datatype,
         self.status, self.bodylen, self.opaque,
         self.cas) = struct.unpack(RES_PKT_FMT, bytes(hdr[:MIN_RECV_PACKET]))

    @property
    def vbucket(self):
        return self.status

    def isResponse(self):
        return self.magic == RES_MAGIC_BYTE

    def __repr__(self):
        return "<Header magic=%#x opcode=%#x keylen=%d extralen=%d bodylen=%d>" % (
            self.magic, self.opcode, self.keylen, self.extralen, self.bodylen)


class Command(namedtuple('Command', ['opcode', 'extra', 'key', 'value',
                                     'opaque', 'cas', 'vbucket',
                                     'datatype'])):
    """A request to be encoded."""

    __slots__ = ()

    def __new__(cls, opcode, extra=b'', key=b'', value=b'',
                opaque=DEFAULT_OPAQUE, cas=0, vbucket=0, datatype=0):
        extra, key, value = toBytes(extra), toBytes(key), toBytes(value)
        if len(extra) > MAX_EXTRAS_LENGTH:
            raise ProtocolError("Extras too long: %d bytes" % len(extra))
        if len(key) > MAX_KEY_LENGTH:
            raise ProtocolError("Key too long: %d bytes" % len(key))
        for name, field, limit in [('opcode', opcode, 0xff),
                                   ('datatype', datatype, 0xff),
                                   ('vbucket', vbucket, 0xffff),
                                   ('opaque', opaque, 0xffffffff),
                                   ('cas', cas, 0xffffffffffffffff)]:
            if not 0 <= field <= limit:
                raise ProtocolError("%s out of range: %r" % (name, field))
        return super(Command, cls).__new__(cls, opcode, extra, key, value,
                                           opaque, cas, vbucket, datatype)

    def toSequence(self):
        """Convert the command to a sequence for writing."""
        hdr = struct.pack(REQ_PKT_FMT, REQ_MAGIC_BYTE, self.opcode,
                          len(self.key), len(self.extra), self.datatype,
                          self.vbucket,
                          len(self.extra) + len(self.key) + len(self.value),
                          self.opaque, self.cas)
        return [hdr, self.extra, self.key, self.value]


class Response(object):
    """A decoded frame: the header plus its body split into parts."""

    def __init__(self, header, body):
        if len(body) != header.bodylen:
            raise ProtocolError("Body is %d bytes, header says %d"
                                % (len(body), header.bodylen))
        if header.extralen + header.keylen > header.bodylen:
            raise ProtocolError("Extras (%d) and key (%d) exceed body (%d)"
                                % (header.extralen, header.keylen,
                                   header.bodylen))
        self.header = header
        self.body = body
        keystart = header.extralen
        valuestart = keystart + header.keylen
        self.extra = body[:keystart]
        self.key = body[keystart:valuestart]
        self.value = body[valuestart:]

    @property
    def status(self):
        return self.header.status

    @property
    def cas(self):
        return self.header.cas


def encode(command, frame=None):
    """Encode a command into a (possibly recycled) frame."""
    if frame is None:
        frame = Frame()
    frame.reset()
    for part in command.toSequence():
        frame.append(part)
    return frame


def rawCommand(opcode, extra=b'', key=b'', value=b'', cas=0,
               opaque=DEFAULT_OPAQUE, vbucket=0, datatype=0):
    return encode(Command(opcode, extra, key, value, opaque, cas, vbucket,
                          datatype))


def packExtras(opcode, *values):
    """Pack the extras block an opcode carries, or b'' if it has none."""
    fmt = EXTRA_HDR_FMTS.get(opcode)
    if fmt is None:
        return b''
    try:
        return struct.pack(fmt, *values)
    except struct.error as e:
        raise ProtocolError("Cannot encode extras for %s: %s"
                            % (COMMAND_NAMES.get(opcode, hex(opcode)), e))


def _readExact(transport, n):
    data = transport.readExact(n)
    if len(data) != n:
        raise EOFError("Wanted %d bytes, got %d (remote died?)."
                       % (n, len(data)))
    return data


def recvFrame(transport, frame=None):
    """Read one frame from the transport.

    The fixed header is read first; its body length (at the same offset
    for requests and responses) says how much more to read.  The header
    is only unpacked once the frame holds the whole message."""
    if frame is None:
        frame = Frame()
    frame.reset()
    frame.append(_readExact(transport, MIN_RECV_PACKET))

    magic = frame.payload[0]
    if magic not in (REQ_MAGIC_BYTE, RES_MAGIC_BYTE):
        raise ProtocolError("Invalid magic received: %#x" % magic)

    (bodylen,) = struct.unpack_from(BODYLEN_FMT, frame.payload,
                                    BODYLEN_OFFSET)
    if bodylen:
        frame.append(_readExact(transport, bodylen))

    header = Header(frame.payload[:MIN_RECV_PACKET])
    return Response(header, bytes(frame.payload[MIN_RECV_PACKET:]))


def _printable(data):
    return ''.join(chr(c) if 32 <= c < 127 else '.' for c in data)


def dumpFrame(payload):
    """Describe a frame field by field, followed by a hex dump."""
    payload = bytes(payload)
    lines = []
    if len(payload) >= MIN_RECV_PACKET:
        h = Header(payload)
        if h.isResponse():
            kind, field, fieldval = "Response", "Status", statusText(h.status)
        else:
            kind, field, fieldval = "Request", "Vbucket", h.vbucket
        lines.append("%s %s (%#x)" % (
            kind, COMMAND_NAMES.get(h.opcode, "CMD_UNKNOWN"), h.opcode))
        lines.append("    Key length   (2,3):  %d" % h.keylen)
        lines.append("    Extra length (4):    %d" % h.extralen)
        lines.append("    Data type    (5):    %#x" % h.datatype)
        lines.append("    %-12s (6,7):  %s" % (field, fieldval))
        lines.append("    Total body   (8-11): %d" % h.bodylen)
        lines.append("    Opaque       (12-15): %#x" % h.opaque)
        lines.append("    CAS          (16-23): %#x" % h.cas)
    for off in range(0, len(payload), 16):
        chunk = payload[off:off + 16]
        lines.append("    %08x  %-47s  %s" % (
            off, ' '.join('%02x' % c for c in chunk), _printable(chunk)))
    return '\n'.join(lines)

