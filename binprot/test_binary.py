import struct

from zope.interface.verify import verifyObject

from twisted.trial import unittest

from binprot import binary, constants
from binprot.errors import ProtocolError
from binprot.interfaces import IFrameTransport
from binprot.testing import ScriptedTransport


class FrameTest(unittest.TestCase):

    def test_appendAndReset(self):
        frame = binary.Frame(b'abc')
        frame.append(b'def')
        self.assertEqual(b'abcdef', bytes(frame))
        self.assertEqual(6, len(frame))
        frame.reset()
        self.assertEqual(0, len(frame))


class HeaderTest(unittest.TestCase):

    def test_construction(self):
        keylen = 113
        extralen = 24
        bodylen = 81859
        opaque = 885932158
        cas = 81849958
        pkt = struct.pack(binary.REQ_PKT_FMT, binary.REQ_MAGIC_BYTE,
                          binary.CMD_STAT, keylen, extralen, 0, 5,
                          bodylen, opaque, cas)

        hdr = binary.Header(pkt)

        self.assertEqual(binary.REQ_MAGIC_BYTE, hdr.magic)
        self.assertEqual(binary.CMD_STAT, hdr.opcode)
        self.assertEqual(keylen, hdr.keylen)
        self.assertEqual(extralen, hdr.extralen)
        self.assertEqual(0, hdr.datatype)
        self.assertEqual(5, hdr.vbucket)
        self.assertEqual(bodylen, hdr.bodylen)
        self.assertEqual(opaque, hdr.opaque)
        self.assertEqual(cas, hdr.cas)
        self.assertFalse(hdr.isResponse())

    def test_short(self):
        self.assertRaises(ProtocolError, binary.Header, b'\x81' * 23)


class EncodeTest(unittest.TestCase):

    def test_layout(self):
        frame = binary.rawCommand(constants.CMD_SET, b'EXTRAS!!', 'key',
                                  b'value', cas=82385929, opaque=17,
                                  vbucket=3, datatype=constants.DATATYPE_JSON)
        expected = struct.pack(binary.REQ_PKT_FMT, binary.REQ_MAGIC_BYTE,
                               constants.CMD_SET, 3, 8,
                               constants.DATATYPE_JSON, 3, 16, 17, 82385929)
        self.assertEqual(expected + b'EXTRAS!!keyvalue', bytes(frame))

    def test_defaultOpaque(self):
        hdr = binary.Header(bytes(binary.rawCommand(constants.CMD_NOOP)))
        self.assertEqual(0xdeadbeef, hdr.opaque)
        self.assertEqual(0, hdr.bodylen)

    def test_roundTrip(self):
        frame = binary.rawCommand(constants.CMD_INCR, b'x' * 20, b'k' * 300,
                                  b'v' * 70000, cas=2**64 - 1,
                                  opaque=0xfeedface)
        res = binary.recvFrame(ScriptedTransport(bytes(frame)))
        self.assertEqual(constants.CMD_INCR, res.header.opcode)
        self.assertEqual(300, res.header.keylen)
        self.assertEqual(20, res.header.extralen)
        self.assertEqual(70320, res.header.bodylen)
        self.assertEqual(0xfeedface, res.header.opaque)
        self.assertEqual(2**64 - 1, res.header.cas)
        self.assertEqual(b'x' * 20, res.extra)
        self.assertEqual(b'k' * 300, res.key)
        self.assertEqual(b'v' * 70000, res.value)

    def test_limits(self):
        binary.rawCommand(constants.CMD_GET, b'e' * 255, b'k' * 65535)

    def test_extrasTooLong(self):
        self.assertRaises(ProtocolError, binary.rawCommand,
                          constants.CMD_GET, b'e' * 256)

    def test_keyTooLong(self):
        self.assertRaises(ProtocolError, binary.rawCommand,
                          constants.CMD_GET, b'', b'k' * 65536)

    def test_headerFieldRanges(self):
        binary.rawCommand(0xff, opaque=2**32 - 1, cas=2**64 - 1,
                          vbucket=0xffff, datatype=0xff)
        for field, value in [('opaque', 2**32), ('cas', 2**64),
                             ('cas', -1), ('vbucket', 0x10000),
                             ('datatype', 0x100)]:
            self.assertRaises(ProtocolError, binary.rawCommand,
                              constants.CMD_GET, **{field: value})
        self.assertRaises(ProtocolError, binary.rawCommand, 0x100)

    def test_commandIsImmutable(self):
        cmd = binary.Command(constants.CMD_GET, key='x')
        self.assertRaises(AttributeError, setattr, cmd, 'key', b'y')

    def test_reuseFrame(self):
        frame = binary.encode(binary.Command(constants.CMD_GET, key='long key'))
        binary.encode(binary.Command(constants.CMD_NOOP), frame)
        self.assertEqual(constants.MIN_RECV_PACKET, len(frame))


class PackExtrasTest(unittest.TestCase):

    def test_layouts(self):
        for opcode, size in constants.EXTRA_HDR_SIZES.items():
            fmt = constants.EXTRA_HDR_FMTS[opcode]
            values = [0] * len(struct.unpack(fmt, b'\0' * size))
            self.assertEqual(size, len(binary.packExtras(opcode, *values)))

    def test_set(self):
        self.assertEqual(struct.pack(">II", 7, 60),
                         binary.packExtras(constants.CMD_SET, 7, 60))

    def test_noExtras(self):
        self.assertEqual(b'', binary.packExtras(constants.CMD_APPEND, 7, 60))
        self.assertEqual(b'', binary.packExtras(constants.CMD_NOOP))

    def test_outOfRange(self):
        self.assertRaises(ProtocolError, binary.packExtras,
                          constants.CMD_INCR, -1, 0, 0)
        self.assertRaises(ProtocolError, binary.packExtras,
                          constants.CMD_SET, 2**32, 0)


class RecvFrameTest(unittest.TestCase):

    def mkRes(self, op, status=0, key=b'', extra=b'', data=b''):
        return struct.pack(binary.RES_PKT_FMT, binary.RES_MAGIC_BYTE,
                           op, len(key), len(extra), 0, status,
                           len(key) + len(extra) + len(data),
                           0, 0) + extra + key + data

    def test_response(self):
        trans = ScriptedTransport(self.mkRes(constants.CMD_GET,
                                             status=constants.ERR_NOT_FOUND,
                                             extra=b'\0\0\0\1',
                                             data=b'Not found'))
        res = binary.recvFrame(trans)
        self.assertTrue(res.header.isResponse())
        self.assertEqual(constants.ERR_NOT_FOUND, res.status)
        self.assertEqual(b'\0\0\0\1', res.extra)
        self.assertEqual(b'', res.key)
        self.assertEqual(b'Not found', res.value)
        self.assertEqual(b'', bytes(trans.pending))

    def test_readsOneFrameAtATime(self):
        trans = ScriptedTransport(self.mkRes(constants.CMD_STAT, key=b'a',
                                             data=b'1') +
                                  self.mkRes(constants.CMD_STAT))
        frame = binary.Frame()
        self.assertEqual(b'a', binary.recvFrame(trans, frame).key)
        self.assertEqual(constants.MIN_RECV_PACKET + 2, len(frame))
        self.assertEqual(0, binary.recvFrame(trans, frame).header.bodylen)
        self.assertEqual(constants.MIN_RECV_PACKET, len(frame))

    def test_badMagic(self):
        trans = ScriptedTransport(b'x' * constants.MIN_RECV_PACKET)
        self.assertRaises(ProtocolError, binary.recvFrame, trans)

    def test_shortHeader(self):
        trans = ScriptedTransport(b'\x81' * 10)
        self.assertRaises(EOFError, binary.recvFrame, trans)

    def test_shortBody(self):
        trans = ScriptedTransport(self.mkRes(constants.CMD_GET,
                                             data=b'hello')[:-1])
        self.assertRaises(EOFError, binary.recvFrame, trans)

    def test_lengthsExceedBody(self):
        pkt = struct.pack(binary.RES_PKT_FMT, binary.RES_MAGIC_BYTE,
                          constants.CMD_GET, 10, 4, 0, 0, 8, 0, 0)
        trans = ScriptedTransport(pkt + b'x' * 8)
        self.assertRaises(ProtocolError, binary.recvFrame, trans)


class ShortReadTransport(ScriptedTransport):

    def readExact(self, n):
        return ScriptedTransport.readExact(self, n)[:-1]


class TransportContractTest(unittest.TestCase):

    def test_scriptedTransport(self):
        verifyObject(IFrameTransport, ScriptedTransport())

    def test_shortRead(self):
        pkt = bytes(binary.rawCommand(constants.CMD_NOOP))
        self.assertRaises(EOFError, binary.recvFrame,
                          ShortReadTransport(pkt + b'xx'))


class DumpFrameTest(unittest.TestCase):

    def test_dumpRequest(self):
        dump = binary.dumpFrame(binary.rawCommand(constants.CMD_GET,
                                                  key='somekey').payload)
        self.assertIn("Request CMD_GET (0x0)", dump)
        self.assertIn("somekey", dump)

    def test_dumpResponse(self):
        pkt = struct.pack(binary.RES_PKT_FMT, binary.RES_MAGIC_BYTE,
                          constants.CMD_SET, 0, 0, 0, constants.ERR_EXISTS,
                          0, 0, 0)
        dump = binary.dumpFrame(pkt)
        self.assertIn("Response CMD_SET (0x1)", dump)
        self.assertIn("Data exists for key", dump)
