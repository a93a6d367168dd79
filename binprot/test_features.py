import itertools
import struct

from twisted.trial import unittest

from binprot import constants, features
from binprot.errors import BinprotError, ProtocolError, statusError
from binprot.testing import Channel, DictServer, FakeServer, ServerResponse


def subsets(items):
    for n in range(len(items) + 1):
        for combo in itertools.combinations(items, n):
            yield frozenset(combo)


def codes(*feats):
    return b''.join(struct.pack(">H", f) for f in feats)


class CannedHelloServer(FakeServer):

    def __init__(self, status=constants.SUCCESS, data=b''):
        FakeServer.__init__(self)
        self.status = status
        self.data = data

    def doHello(self, req):
        if self.status != constants.SUCCESS:
            raise statusError(self.status, "Hello")
        return ServerResponse(req, data=self.data)

    handlers = {constants.CMD_HELLO: doHello}


class EncodeFeaturesTest(unittest.TestCase):

    def test_canonicalOrder(self):
        requested = set([constants.FEATURE_XATTR, constants.FEATURE_DATATYPE,
                         constants.FEATURE_MUTATION_SEQNO])
        self.assertEqual(codes(constants.FEATURE_DATATYPE,
                               constants.FEATURE_MUTATION_SEQNO,
                               constants.FEATURE_XATTR),
                         features.encodeFeatures(requested))

    def test_nothing(self):
        self.assertEqual(b'', features.encodeFeatures(set()))

    def test_unknown(self):
        self.assertRaises(ValueError, features.encodeFeatures,
                          set([constants.FEATURE_TLS]))


class DecodeFeaturesTest(unittest.TestCase):

    everything = frozenset(constants.FEATURE_ORDER)

    def test_partial(self):
        self.assertEqual(frozenset([constants.FEATURE_TCPNODELAY]),
                         features.decodeFeatures(
                             codes(constants.FEATURE_TCPNODELAY),
                             self.everything))

    def test_oddLength(self):
        self.assertRaises(ProtocolError, features.decodeFeatures,
                          codes(constants.FEATURE_DATATYPE) + b'\0',
                          self.everything)

    def test_unknownCode(self):
        self.assertRaises(ProtocolError, features.decodeFeatures,
                          codes(0x7777), self.everything)

    def test_notRequested(self):
        self.assertRaises(ProtocolError, features.decodeFeatures,
                          codes(constants.FEATURE_XATTR),
                          frozenset([constants.FEATURE_DATATYPE]))


class FeatureNegotiatorTest(unittest.TestCase):

    def test_request(self):
        server = DictServer()
        features.FeatureNegotiator(Channel(server)).negotiate(
            'agent 1.0', [constants.FEATURE_XATTR, constants.FEATURE_DATATYPE])
        req = server.requests[0]
        self.assertEqual(constants.CMD_HELLO, req.header.opcode)
        self.assertEqual(b'agent 1.0', req.key)
        self.assertEqual(codes(constants.FEATURE_DATATYPE,
                               constants.FEATURE_XATTR), req.value)

    def test_grantedIsSubsetOfRequested(self):
        for supported in subsets(constants.FEATURE_ORDER):
            for requested in subsets(constants.FEATURE_ORDER):
                server = DictServer()
                server.supportedFeatures = supported
                granted = features.FeatureNegotiator(
                    Channel(server)).negotiate('agent', requested)
                self.assertTrue(granted <= requested)
                self.assertEqual(requested & supported, granted)

    def test_failedStatus(self):
        server = CannedHelloServer(status=constants.ERR_UNKNOWN_CMD)
        self.assertRaises(BinprotError,
                          features.FeatureNegotiator(Channel(server)).negotiate,
                          'agent', [constants.FEATURE_DATATYPE])

    def test_malformedResponse(self):
        server = CannedHelloServer(data=b'\0\1\0')
        self.assertRaises(ProtocolError,
                          features.FeatureNegotiator(Channel(server)).negotiate,
                          'agent', [constants.FEATURE_DATATYPE])
