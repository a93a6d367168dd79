import socket
import threading

from zope.interface.verify import verifyObject

from twisted.trial import unittest

from binprot import binary, constants
from binprot.interfaces import IFrameTransport
from binprot.transport import SocketTransport


class ListenerTestCase(unittest.TestCase):

    def setUp(self):
        self.listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.listener.bind(('127.0.0.1', 0))
        self.listener.listen(1)
        self.port = self.listener.getsockname()[1]
        self.addCleanup(self.listener.close)

    def serve(self, reply, expect=0):
        """Accept one connection, read C{expect} bytes, write C{reply}."""
        got = []

        def run():
            conn, _ = self.listener.accept()
            try:
                data = b''
                while len(data) < expect:
                    chunk = conn.recv(expect - len(data))
                    if not chunk:
                        break
                    data += chunk
                got.append(data)
                for part in reply:
                    conn.sendall(part)
            finally:
                conn.close()

        t = threading.Thread(target=run)
        t.start()
        self.addCleanup(t.join)
        return got

    def connect(self):
        trans = SocketTransport('127.0.0.1', self.port, socket.AF_INET,
                                timeout=5)
        self.addCleanup(trans.close)
        return trans


class SocketTransportTest(ListenerTestCase):

    def test_interface(self):
        self.serve([])
        verifyObject(IFrameTransport, self.connect())

    def test_roundTrip(self):
        request = bytes(binary.rawCommand(constants.CMD_NOOP))
        response = bytearray(request)
        response[0] = constants.RES_MAGIC_BYTE
        # Dribble the response out a few bytes at a time.
        got = self.serve([bytes(response[:5]), bytes(response[5:])],
                         expect=len(request))
        trans = self.connect()
        trans.send(request)
        res = binary.recvFrame(trans)
        trans.close()
        self.assertEqual(constants.CMD_NOOP, res.header.opcode)
        self.assertTrue(res.header.isResponse())
        self.assertEqual([request], got)

    def test_remoteClosed(self):
        self.serve([b'\x81\x00'])
        trans = self.connect()
        self.assertRaises(EOFError, trans.readExact, constants.MIN_RECV_PACKET)

    def test_closeTwice(self):
        self.serve([])
        trans = self.connect()
        trans.close()
        trans.close()
        self.assertIdentical(None, trans.sock)

    def test_refused(self):
        self.listener.close()
        self.assertRaises(OSError, SocketTransport, '127.0.0.1', self.port,
                          socket.AF_INET, timeout=5)


class RecordingContext(object):
    """Stands in for an C{ssl.SSLContext}; hands the socket back as is."""

    def __init__(self):
        self.wrapped = []

    def wrap_socket(self, sock, server_hostname=None):
        self.wrapped.append((sock, server_hostname))
        return sock


class TLSTransportTest(ListenerTestCase):

    def test_wrapsSocket(self):
        self.serve([])
        context = RecordingContext()
        trans = SocketTransport('127.0.0.1', self.port, socket.AF_INET,
                                ssl=True, timeout=5, sslContext=context)
        self.addCleanup(trans.close)
        self.assertEqual(1, len(context.wrapped))
        sock, hostname = context.wrapped[0]
        self.assertEqual('127.0.0.1', hostname)
        self.assertIdentical(sock, trans.sock)

    def test_plainIgnoresContext(self):
        self.serve([])
        context = RecordingContext()
        trans = SocketTransport('127.0.0.1', self.port, socket.AF_INET,
                                timeout=5, sslContext=context)
        self.addCleanup(trans.close)
        self.assertEqual([], context.wrapped)
