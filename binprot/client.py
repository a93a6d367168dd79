"""A synchronous connection speaking the memcached binary protocol.

A connection has at most one request in flight: every operation sends its
command and then blocks until the matching response has been read.  Use
L{BinaryConnection.clone} to get an independent connection for another
thread.
"""

import os
import re
import socket
import struct

from twisted.python import log

from binprot import binary
from binprot.constants import *
from binprot.errors import BinprotError, ProtocolError, checkStatus, statusError
from binprot.features import FeatureError, FeatureNegotiator
from binprot.sasl import AuthNegotiator, SaslClient, SaslError
from binprot.transport import SocketTransport

__all__ = ['BinaryConnection',
           'Document',
           'MutationInfo',
           'parseStatValue']

DEFAULT_PORT = 11210

PACKET_DUMP = os.environ.get('BINPROT_PACKET_DUMP') is not None


class Document(object):

    def __init__(self, key, value=b'', flags=0, cas=0, expiry=0,
                 datatype=DOC_RAW, compression=COMPRESSION_NONE):
        self.key = key
        self.value = value
        self.flags = flags
        self.cas = cas
        self.expiry = expiry
        self.datatype = datatype
        self.compression = compression

    def __repr__(self):
        return "<Document %r flags=%#x cas=%#x %s/%s>" % (
            self.key, self.flags, self.cas, self.datatype, self.compression)


class MutationInfo(object):
    """What the server said about a successful write.

    Fields the server did not send hold L{UNSET}, since zero is a valid
    value for all of them."""

    def __init__(self, cas=UNSET, vbucketuuid=UNSET, seqno=UNSET):
        self.cas = cas
        self.vbucketuuid = vbucketuuid
        self.seqno = seqno

    def __eq__(self, other):
        return (isinstance(other, MutationInfo) and
                (self.cas, self.vbucketuuid, self.seqno) ==
                (other.cas, other.vbucketuuid, other.seqno))

    def __ne__(self, other):
        return not self == other

    def __repr__(self):
        return "<MutationInfo cas=%#x vbucketuuid=%#x seqno=%#x>" % (
            self.cas, self.vbucketuuid, self.seqno)


_INTEGER = re.compile(r'^[-+]?[0-9]+$')


def parseStatValue(value):
    """Give a stat value its natural type: bool, int, or left as a string."""
    if value == 'true':
        return True
    if value == 'false':
        return False
    if _INTEGER.match(value):
        number = int(value)
        if -2**63 <= number < 2**63:
            return number
    return value


class BinaryConnection(object):
    """Client connection to a single server.

    @ivar features: The frozenset of HELLO features currently enabled.
    @ivar saslMechanisms: Space separated mechanisms the server offered in
        the last L{hello}.
    @cvar packetDump: Log every frame sent and received.  Defaults to
        whether C{BINPROT_PACKET_DUMP} is set in the environment.
    """

    packetDump = PACKET_DUMP

    def __init__(self, host='127.0.0.1', port=DEFAULT_PORT,
                 family=socket.AF_INET, ssl=False,
                 transportFactory=SocketTransport):
        self.host = host
        self.port = port
        self.family = family
        self.ssl = ssl
        self.transportFactory = transportFactory
        self.transport = None
        self.features = frozenset()
        self.saslMechanisms = ''

    def __str__(self):
        if self.family == socket.AF_INET6:
            ret = "Memcached connection [%s]:%d" % (self.host, self.port)
        else:
            ret = "Memcached connection %s:%d" % (self.host, self.port)
        if self.ssl:
            ret += " ssl"
        return ret

    def connect(self):
        self.transport = self.transportFactory(self.host, self.port,
                                               self.family, self.ssl)
        return self

    def close(self):
        if self.transport is not None:
            self.transport.close()
            self.transport = None

    def reconnect(self):
        log.msg("Reconnecting %s" % self)
        self.close()
        self.features = frozenset()
        return self.connect()

    def clone(self):
        """A new, unconnected connection with the same configuration."""
        return self.__class__(self.host, self.port, self.family, self.ssl,
                              self.transportFactory)

    def sendFrame(self, frame):
        if self.transport is None:
            self.connect()
        if self.packetDump:
            log.msg("Sending:\n" + binary.dumpFrame(frame.payload))
        self.transport.send(bytes(frame.payload))

    def recvFrame(self, frame=None):
        if self.transport is None:
            raise ConnectionError("%s is not connected" % self)
        if frame is None:
            frame = binary.Frame()
        response = binary.recvFrame(self.transport, frame)
        if self.packetDump:
            log.msg("Received:\n" + binary.dumpFrame(frame.payload))
        return response

    def _doCmd(self, errmsg, opcode, key=b'', value=b'', extra=b'', cas=0,
               vbucket=0, datatype=0):
        """Send a command and return its successful response."""
        self.sendFrame(binary.rawCommand(opcode, extra, key, value, cas=cas,
                                         vbucket=vbucket, datatype=datatype))
        response = self.recvFrame()
        checkStatus(response, errmsg)
        return response

    def _decodeMutationExtras(self, response, info):
        extralen = response.header.extralen
        if extralen == MUTATION_EXTRAS_SIZE:
            info.vbucketuuid, info.seqno = struct.unpack(MUTATION_EXTRAS_FMT,
                                                         response.extra)
        elif extralen != 0:
            raise ProtocolError("Unknown extras size %d in response to %s"
                                % (extralen,
                                   COMMAND_NAMES.get(response.header.opcode)))
        return info

    # Authentication

    def authenticate(self, username, password, mech='any', provider=None):
        """Authenticate with SASL, returning the mechanism used.

        With C{mech="any"} the mechanisms the server offered in L{hello}
        (if any) are the candidates.  A failed authentication leaves the
        connection in an unknown state, so it is reconnected before the
        error is raised.  If that reconnect fails the authentication error
        is still the one raised, and the next command connects again."""
        if provider is None:
            provider = SaslClient()
        if mech.lower() == 'any' and self.saslMechanisms:
            mech = self.saslMechanisms
        try:
            return AuthNegotiator(self, provider).negotiate(username,
                                                            password, mech)
        except (SaslError, BinprotError) as e:
            log.msg("Authentication as %s failed: %s" % (username, e))
            self.close()
            self.features = frozenset()
            try:
                self.connect()
            except OSError as err:
                # The next command connects again.
                log.msg("Reconnecting %s failed: %s" % (self, err))
            raise

    def listSaslMechanisms(self):
        response = self._doCmd("Failed to fetch sasl mechanisms",
                               CMD_SASL_LIST_MECHS)
        return response.value.decode('utf-8')

    # Feature negotiation

    def setFeatures(self, agent, requested):
        """Ask for exactly C{requested}; the features granted replace the
        current set."""
        self.features = FeatureNegotiator(self).negotiate(agent, requested)
        return self.features

    def hello(self, userAgent, userAgentVersion, comment=''):
        if comment:
            log.msg("hello from %s %s: %s" % (userAgent, userAgentVersion,
                                             comment))
        self.setFeatures(userAgent + " " + userAgentVersion, self.features)
        self.saslMechanisms = self.listSaslMechanisms()

    def _setFeature(self, feature, enable):
        requested = set(self.features)
        if enable:
            requested.add(feature)
        else:
            requested.discard(feature)
        self.setFeatures("mcbp", requested)
        if enable and feature not in self.features:
            raise FeatureError("Failed to enable %s" % FEATURE_NAMES[feature])

    def setDatatypeSupport(self, enable):
        self._setFeature(FEATURE_DATATYPE, enable)

    def setMutationSeqnoSupport(self, enable):
        self._setFeature(FEATURE_MUTATION_SEQNO, enable)

    def setXattrSupport(self, enable):
        self._setFeature(FEATURE_XATTR, enable)

    # Buckets

    def createBucket(self, name, config, bucketType):
        try:
            module = BUCKET_MODULES[bucketType]
        except KeyError:
            raise ValueError("Not implemented: bucket type %r" % bucketType)
        payload = binary.toBytes(module) + b'\0' + binary.toBytes(config)
        self._doCmd("Create bucket failed", CMD_CREATE_BUCKET, name, payload)

    def deleteBucket(self, name):
        self._doCmd("Delete bucket failed", CMD_DELETE_BUCKET, name)

    def selectBucket(self, name):
        self._doCmd("Select bucket failed", CMD_SELECT_BUCKET, name)

    def listBuckets(self):
        response = self._doCmd("List bucket failed", CMD_LIST_BUCKETS)
        # Bucket names are separated by spaces.
        return response.value.decode('utf-8').split()

    # Documents

    def encodeCmdGet(self, key, vbucket=0):
        return binary.rawCommand(CMD_GET, key=key, vbucket=vbucket)

    def get(self, key, vbucket=0):
        self.sendFrame(self.encodeCmdGet(key, vbucket))
        response = self.recvFrame()
        checkStatus(response, "Failed to get: %s" % key)

        if response.header.extralen != GET_RES_SIZE:
            raise ProtocolError("Get response has %d bytes of extras, "
                                "expected %d" % (response.header.extralen,
                                                 GET_RES_SIZE))
        (flags,) = struct.unpack(GET_RES_FMT, response.extra)
        datatype = response.header.datatype
        return Document(key, response.value, flags, response.cas,
                        datatype=DOC_JSON if datatype & DATATYPE_JSON
                        else DOC_RAW,
                        compression=COMPRESSION_SNAPPY
                        if datatype & DATATYPE_COMPRESSED
                        else COMPRESSION_NONE)

    def mutate(self, document, vbucket, mutationType):
        try:
            opcode = MUTATION_OPCODES[mutationType]
        except KeyError:
            raise ValueError("Not implemented for MCBP: %r" % mutationType)

        datatype = DATATYPE_RAW
        if document.compression != COMPRESSION_NONE:
            if document.compression != COMPRESSION_SNAPPY:
                raise statusError(ERR_NOT_SUPPORTED,
                                  "Invalid compression for MCBP")
            datatype = DATATYPE_COMPRESSED
        if document.datatype != DOC_RAW:
            datatype |= DATATYPE_JSON

        # append and prepend carry no extras
        extra = binary.packExtras(opcode, document.flags, document.expiry)

        response = self._doCmd("Failed to store %s" % document.key, opcode,
                               document.key, document.value, extra,
                               cas=document.cas, vbucket=vbucket,
                               datatype=datatype)
        return self._decodeMutationExtras(response,
                                          MutationInfo(cas=response.cas))

    # Counters

    def _incrDecr(self, opcode, key, delta, initial, exptime, withInfo):
        name = 'incr' if opcode == CMD_INCR else 'decr'
        extra = binary.packExtras(opcode, delta, initial, exptime)
        response = self._doCmd('%s "%s" failed.' % (name, key), opcode, key,
                               extra=extra)
        info = self._decodeMutationExtras(response,
                                          MutationInfo(cas=response.cas))
        if len(response.value) != INCRDECR_RES_SIZE:
            raise ProtocolError("%s returned a %d byte value"
                                % (name, len(response.value)))
        (value,) = struct.unpack(INCRDECR_RES_FMT, response.value)
        if withInfo:
            return value, info
        return value

    def increment(self, key, delta, initial=0, exptime=0, withInfo=False):
        """Increment or create the named counter.

        Returns the new value, or (value, L{MutationInfo}) when C{withInfo}
        is set."""
        return self._incrDecr(CMD_INCR, key, delta, initial, exptime,
                              withInfo)

    def decrement(self, key, delta, initial=0, exptime=0, withInfo=False):
        """Decrement or create the named counter."""
        return self._incrDecr(CMD_DECR, key, delta, initial, exptime,
                              withInfo)

    # Stats

    def stats(self, subcommand=''):
        """Fetch a stat group as a dict.

        The server answers with one frame per stat and an empty frame at
        the end.  Stats without a name are numbered from 0."""
        self.sendFrame(binary.rawCommand(CMD_STAT, key=subcommand))
        ret = {}
        counter = 0
        frame = binary.Frame()
        while True:
            response = self.recvFrame(frame)
            checkStatus(response, "Stats failed")
            if response.header.bodylen == 0:
                break
            key = response.key.decode('utf-8', 'replace')
            if not key:
                key = str(counter)
                counter += 1
            ret[key] = parseStatValue(
                response.value.decode('utf-8', 'replace'))
        return ret

    # Server control

    def ioctlGet(self, key):
        response = self._doCmd('ioctl_get "%s" failed.' % key,
                               CMD_IOCTL_GET, key)
        return response.value.decode('utf-8')

    def ioctlSet(self, key, value):
        self._doCmd('ioctl_set "%s" failed.' % key, CMD_IOCTL_SET, key, value)

    def reloadAuditConfiguration(self):
        self._doCmd("Failed to reload audit configuration",
                    CMD_AUDIT_CONFIG_RELOAD)

    def configureEwouldBlockEngine(self, mode, errCode, value, key=''):
        extra = binary.packExtras(CMD_EWOULDBLOCK_CTL, mode, value, errCode)
        self._doCmd("Failed to configure ewouldblock engine",
                    CMD_EWOULDBLOCK_CTL, key, extra=extra)

    def noop(self):
        self._doCmd("Noop failed", CMD_NOOP)

    def version(self):
        return self._doCmd("Version failed",
                           CMD_VERSION).value.decode('utf-8')

    # DCP

    def encodeCmdDcpOpen(self):
        extra = binary.packExtras(CMD_DCP_OPEN, 0, DCP_OPEN_PRODUCER)
        return binary.rawCommand(CMD_DCP_OPEN, extra, key='dcp')

    def encodeCmdDcpStreamReq(self):
        # Everything from the first to the last seqno.
        extra = binary.packExtras(CMD_DCP_STREAM_REQ, 0, 0,
                                   0, UNSET, 0, 0, UNSET)
        return binary.rawCommand(CMD_DCP_STREAM_REQ, extra)
