"""HELLO feature negotiation."""

import struct

from twisted.python import log

from binprot import binary
from binprot.constants import *
from binprot.errors import ProtocolError, checkStatus

__all__ = ['FeatureError',
           'encodeFeatures',
           'decodeFeatures',
           'FeatureNegotiator']


class FeatureError(Exception):
    """The server refused a feature that was explicitly asked for."""


def encodeFeatures(requested):
    """Pack the requested features in wire order."""
    unknown = set(requested) - set(FEATURE_ORDER)
    if unknown:
        raise ValueError("Unknown features requested: %s"
                         % ', '.join('%#x' % f for f in sorted(unknown)))
    return b''.join(struct.pack(FEATURE_FMT, f)
                    for f in FEATURE_ORDER if f in requested)


def decodeFeatures(data, requested):
    """Return the frozenset of features granted by a HELLO response.

    The server may grant less than was asked for, never more."""
    if len(data) % FEATURE_SIZE:
        raise ProtocolError("Invalid HELLO response: %d bytes" % len(data))
    granted = set()
    for off in range(0, len(data), FEATURE_SIZE):
        (code,) = struct.unpack_from(FEATURE_FMT, data, off)
        if code not in FEATURE_NAMES:
            raise ProtocolError("Unsupported feature returned: %#x" % code)
        if code not in requested:
            raise ProtocolError("Server enabled %s, which was not requested"
                                % FEATURE_NAMES[code])
        granted.add(code)
    return frozenset(granted)


class FeatureNegotiator(object):

    def __init__(self, channel):
        self.channel = channel

    def negotiate(self, agent, requested):
        requested = frozenset(requested)
        self.channel.sendFrame(binary.rawCommand(CMD_HELLO, key=agent,
                                                 value=encodeFeatures(requested)))
        response = self.channel.recvFrame()
        checkStatus(response, "Failed to say hello")
        granted = decodeFeatures(response.value, requested)
        log.msg("Negotiated features: %s" % (
            ', '.join(FEATURE_NAMES[f] for f in FEATURE_ORDER if f in granted)
            or 'none'))
        return granted
