"""In-memory servers for exercising connections without a network."""

import hashlib
import hmac
import struct

from zope.interface import implementer

from twisted.python import log

from binprot import binary
from binprot.constants import *
from binprot.errors import BinprotError, statusError
from binprot.interfaces import IFrameTransport

__all__ = ['ScriptedTransport',
           'ServerResponse',
           'FakeServer',
           'DictServer',
           'Channel',
           'ServerFactory']


@implementer(IFrameTransport)
class ScriptedTransport(object):
    """Hands out canned bytes and records everything written."""

    def __init__(self, data=b''):
        self.received = []
        self.pending = bytearray(data)
        self.closed = 0

    def feed(self, data):
        self.pending.extend(data)

    def send(self, data):
        self.received.append(bytes(data))

    def readExact(self, n):
        if len(self.pending) < n:
            raise EOFError("Got empty data (remote died?).")
        data = bytes(self.pending[:n])
        del self.pending[:n]
        return data

    def close(self):
        self.closed += 1
        del self.pending[:]


class ServerResponse(object):

    def __init__(self, req, cas=0, status=0, key=b'', extra=b'', data=b'',
                 datatype=0):
        self.req = req
        self.cas = cas
        self.key = binary.toBytes(key)
        self.extra = extra
        self.status = status
        self.data = binary.toBytes(data)
        self.datatype = datatype

    def toSequence(self):
        """Convert the response to a sequence for writing."""
        hdr = struct.pack(RES_PKT_FMT, RES_MAGIC_BYTE, self.req.header.opcode,
                          len(self.key), len(self.extra), self.datatype,
                          self.status,
                          len(self.extra) + len(self.key) + len(self.data),
                          self.req.header.opaque, self.cas)
        return [hdr, self.extra, self.key, self.data]


def _toResponses(req, res):
    if res is None:
        return [ServerResponse(req)]
    if isinstance(res, ServerResponse):
        return [res]
    return list(res)


class FakeServer(ScriptedTransport):
    """Decodes each request written to it and queues the handler's answer.

    Handlers take the decoded request and return None (plain success), a
    L{ServerResponse}, or a list of them.  Raising L{BinprotError} answers
    with that status.  Requests whose extras are not the size their opcode
    calls for are answered with ERR_INVAL."""

    handlers = {}

    def __init__(self):
        ScriptedTransport.__init__(self)
        self.requests = []
        self._inbound = ScriptedTransport()

    def send(self, data):
        ScriptedTransport.send(self, data)
        self._inbound.feed(data)
        while len(self._inbound.pending) >= MIN_RECV_PACKET:
            (bodylen,) = struct.unpack_from(BODYLEN_FMT,
                                            self._inbound.pending,
                                            BODYLEN_OFFSET)
            if len(self._inbound.pending) < MIN_RECV_PACKET + bodylen:
                break
            self._completed(binary.recvFrame(self._inbound))

    def _completed(self, req):
        self.requests.append(req)
        handler = self.handlers.get(req.header.opcode,
                                     type(self).unknownCommand)
        try:
            size = EXTRA_HDR_SIZES.get(req.header.opcode)
            if size is not None and req.header.extralen != size:
                raise statusError(ERR_INVAL, "Invalid arguments")
            responses = _toResponses(req, handler(self, req))
        except BinprotError as e:
            responses = [ServerResponse(req, status=e.status, data=e.msg)]
        for res in responses:
            for part in res.toSequence():
                self.feed(part)

    def close(self):
        ScriptedTransport.close(self)
        del self._inbound.pending[:]

    def unknownCommand(self, req):
        log.msg("Got an unknown request for %s" % hex(req.header.opcode))
        raise statusError(ERR_UNKNOWN_CMD, "Unknown command")


def _requireKey(f):
    # Helper for validating keys in dict storage.
    def g(self, req):
        if req.key in self.d:
            return f(self, req)
        else:
            raise statusError(ERR_NOT_FOUND, "Not found")
    return g


class DictServer(FakeServer):
    """A small but complete server keeping documents in a dict.

    @ivar users: username -> password accepted by PLAIN and CRAM-MD5.
    @ivar supportedFeatures: what HELLO will grant.
    @ivar features: what the last HELLO granted; with mutation seqno on,
        writes return the vbucket uuid and seqno.
    @ivar ewouldblock: the last (mode, value, error, key) engine setting.
    """

    challenge = b'<1896.697170952@postoffice.example.net>'
    vbucketUUID = 0xcafef00d

    def __init__(self, users=None, buckets=None):
        FakeServer.__init__(self)
        self.d = {}
        self.users = dict(users or {})
        self.buckets = dict((binary.toBytes(b), None)
                            for b in (buckets or []))
        self.bucket = None
        self.supportedFeatures = set(FEATURE_ORDER)
        self.features = frozenset()
        self.mechanisms = 'CRAM-MD5 PLAIN'
        self.stats = [(b'pid', b'4242'), (b'version', b'1.4.0'),
                      (b'ready', b'true')]
        self.ioctls = {}
        self.ewouldblock = None
        self.cas = 0
        self.seqno = 0

    def close(self):
        # A new connection starts without negotiated features.
        FakeServer.close(self)
        self.features = frozenset()
        self.bucket = None

    def _nextCas(self):
        self.cas += 1
        return self.cas

    def _mutated(self, req, cas):
        self.seqno += 1
        extra = b''
        if FEATURE_MUTATION_SEQNO in self.features:
            extra = struct.pack(MUTATION_EXTRAS_FMT, self.vbucketUUID,
                                self.seqno)
        return ServerResponse(req, cas=cas, extra=extra)

    @_requireKey
    def doGet(self, req):
        exp, flags, cas, val, datatype = self.d[req.key]
        return ServerResponse(req, cas, extra=struct.pack(GET_RES_FMT, flags),
                              data=val, datatype=datatype)

    def _store(self, req):
        flags, exp = struct.unpack(SET_PKT_FMT, req.extra)
        cas = self._nextCas()
        self.d[req.key] = (exp, flags, cas, req.value, req.header.datatype)
        return self._mutated(req, cas)

    def doSet(self, req):
        if req.header.cas and req.key in self.d:
            if self.d[req.key][2] != req.header.cas:
                raise statusError(ERR_EXISTS, "Exists")
        return self._store(req)

    def doAdd(self, req):
        if req.key in self.d:
            raise statusError(ERR_EXISTS, "Exists")
        return self._store(req)

    def doReplace(self, req):
        if req.key not in self.d:
            raise statusError(ERR_NOT_STORED, "Not stored")
        return self._store(req)

    @_requireKey
    def doAppend(self, req):
        exp, flags, cas, olddata, datatype = self.d[req.key]
        cas = self._nextCas()
        self.d[req.key] = (exp, flags, cas, olddata + req.value, datatype)
        return self._mutated(req, cas)

    @_requireKey
    def doPrepend(self, req):
        exp, flags, cas, olddata, datatype = self.d[req.key]
        cas = self._nextCas()
        self.d[req.key] = (exp, flags, cas, req.value + olddata, datatype)
        return self._mutated(req, cas)

    def _counter(self, req, sign):
        delta, initial, exp = struct.unpack(INCRDECR_PKT_FMT, req.extra)
        if req.key in self.d:
            val = self.d[req.key][3]
            if not val.isdigit():
                raise statusError(ERR_DELTA_BADVAL, "Non-numeric value")
            value = max(0, int(val) + sign * delta) % 2**64
        elif exp == INCRDECR_SPECIAL:
            raise statusError(ERR_NOT_FOUND, "Not found")
        else:
            value = initial
        cas = self._nextCas()
        self.d[req.key] = (exp, 0, cas, str(value).encode('ascii'), 0)
        res = self._mutated(req, cas)
        res.data = struct.pack(INCRDECR_RES_FMT, value)
        return res

    def doIncr(self, req):
        return self._counter(req, 1)

    def doDecr(self, req):
        return self._counter(req, -1)

    def doStats(self, req):
        if req.key not in (b'', b'settings'):
            raise statusError(ERR_NOT_FOUND, "Not found")
        r = [ServerResponse(req, key=k, data=v) for k, v in self.stats]
        r.append(ServerResponse(req))
        return r

    def doHello(self, req):
        requested = [struct.unpack_from(FEATURE_FMT, req.value, off)[0]
                     for off in range(0, len(req.value), FEATURE_SIZE)]
        granted = [f for f in requested if f in self.supportedFeatures]
        self.features = frozenset(granted)
        return ServerResponse(req, data=b''.join(
            struct.pack(FEATURE_FMT, f) for f in granted))

    def doListMechs(self, req):
        return ServerResponse(req, data=self.mechanisms)

    def doSaslAuth(self, req):
        if req.key == b'PLAIN':
            _, user, password = req.value.split(b'\0')
            self._checkPassword(user, password)
        elif req.key == b'CRAM-MD5':
            return ServerResponse(req, status=ERR_AUTH_CONTINUE,
                                  data=self.challenge)
        else:
            raise statusError(ERR_AUTH, "Auth failure")

    def doSaslStep(self, req):
        if req.key != b'CRAM-MD5':
            raise statusError(ERR_AUTH, "Auth failure")
        user, digest = req.value.split(b' ', 1)
        password = self.users.get(user.decode('utf-8'))
        if password is None or digest != hmac.new(
                password.encode('utf-8'), self.challenge,
                hashlib.md5).hexdigest().encode('ascii'):
            raise statusError(ERR_AUTH, "Auth failure")

    def _checkPassword(self, user, password):
        if self.users.get(user.decode('utf-8')) != password.decode('utf-8'):
            raise statusError(ERR_AUTH, "Auth failure")

    def doCreateBucket(self, req):
        if req.key in self.buckets:
            raise statusError(ERR_EXISTS, "Exists")
        module, config = req.value.split(b'\0', 1)
        self.buckets[req.key] = (module, config)

    def doDeleteBucket(self, req):
        if req.key not in self.buckets:
            raise statusError(ERR_NOT_FOUND, "Not found")
        del self.buckets[req.key]

    def doSelectBucket(self, req):
        if req.key not in self.buckets:
            raise statusError(ERR_NOT_FOUND, "Not found")
        self.bucket = req.key

    def doListBuckets(self, req):
        return ServerResponse(req, data=b' '.join(sorted(self.buckets)))

    def doIoctlGet(self, req):
        if req.key not in self.ioctls:
            raise statusError(ERR_INVAL, "Invalid arguments")
        return ServerResponse(req, data=self.ioctls[req.key])

    def doIoctlSet(self, req):
        self.ioctls[req.key] = req.value

    def doEwouldblockCtl(self, req):
        mode, value, err = struct.unpack(EWOULDBLOCK_CTL_FMT, req.extra)
        self.ewouldblock = (mode, value, err, req.key)

    def doNoop(self, req):
        return ServerResponse(req)

    def doVersion(self, req):
        return ServerResponse(req, data=b'1.4.0')

    handlers = {
        CMD_GET: doGet,
        CMD_SET: doSet,
        CMD_ADD: doAdd,
        CMD_REPLACE: doReplace,
        CMD_APPEND: doAppend,
        CMD_PREPEND: doPrepend,
        CMD_INCR: doIncr,
        CMD_DECR: doDecr,
        CMD_STAT: doStats,
        CMD_HELLO: doHello,
        CMD_SASL_LIST_MECHS: doListMechs,
        CMD_SASL_AUTH: doSaslAuth,
        CMD_SASL_STEP: doSaslStep,
        CMD_CREATE_BUCKET: doCreateBucket,
        CMD_DELETE_BUCKET: doDeleteBucket,
        CMD_SELECT_BUCKET: doSelectBucket,
        CMD_LIST_BUCKETS: doListBuckets,
        CMD_IOCTL_GET: doIoctlGet,
        CMD_IOCTL_SET: doIoctlSet,
        CMD_AUDIT_CONFIG_RELOAD: doNoop,
        CMD_EWOULDBLOCK_CTL: doEwouldblockCtl,
        CMD_NOOP: doNoop,
        CMD_VERSION: doVersion,
        }


class Channel(object):
    """Just enough of a connection to drive a negotiator."""

    def __init__(self, server):
        self.server = server

    def sendFrame(self, frame):
        self.server.send(bytes(frame))

    def recvFrame(self):
        return binary.recvFrame(self.server)


class ServerFactory(object):
    """Transport factory that always connects to the same fake server.

    @ivar refuse: When set, connection attempts are recorded and then
        fail with C{ConnectionRefusedError}.
    """

    refuse = False

    def __init__(self, server):
        self.server = server
        self.connections = []

    def __call__(self, host, port, family, ssl):
        self.connections.append((host, port, family, ssl))
        if self.refuse:
            raise ConnectionRefusedError("Connection refused")
        return self.server
