"""SASL authentication over the binary protocol."""

import base64
import binascii
import hashlib
import hmac
import os

from zope.interface import implementer

from binprot import binary
from binprot.constants import *
from binprot.errors import BinprotError, checkStatus
from binprot.interfaces import IMechanismProvider

__all__ = ['SaslError',
           'SaslClient',
           'AuthNegotiator',
           'STATE_START', 'STATE_CONTINUE', 'STATE_SUCCESS',
           'STATE_FAILED']


class SaslError(Exception):
    """The mechanism could not produce a response."""


class PlainMechanism(object):
    """RFC 4616; everything goes in the first message."""

    name = 'PLAIN'

    def __init__(self, username, secret):
        self.username = username
        self.secret = secret

    def start(self):
        return b'\0' + self.username + b'\0' + self.secret

    def step(self, challenge):
        raise SaslError("PLAIN does not take a challenge")


class CramMD5Mechanism(object):

    name = 'CRAM-MD5'

    def __init__(self, username, secret):
        self.username = username
        self.secret = secret

    def start(self):
        return b''

    def step(self, challenge):
        digest = hmac.new(self.secret, challenge, hashlib.md5).hexdigest()
        return self.username + b' ' + digest.encode('ascii'), True


class ScramMechanism(object):
    """Client side of RFC 5802 SCRAM, without channel binding."""

    name = None
    hashName = None

    def __init__(self, username, secret, nonce=None):
        self.username = username
        self.secret = secret
        if nonce is None:
            nonce = binascii.hexlify(os.urandom(12))
        self.nonce = nonce
        self.clientFirstBare = None
        self.serverSignature = None

    def _hmac(self, key, msg):
        return hmac.new(key, msg, self.hashName).digest()

    def start(self):
        user = self.username.replace(b'=', b'=3D').replace(b',', b'=2C')
        self.clientFirstBare = b'n=' + user + b',r=' + self.nonce
        return b'n,,' + self.clientFirstBare

    def step(self, challenge):
        if self.serverSignature is not None:
            raise SaslError("%s got a challenge after the final response"
                            % self.name)
        try:
            attrs = dict(item.split(b'=', 1)
                         for item in bytes(challenge).split(b','))
        except ValueError:
            raise SaslError("Malformed %s challenge: %r"
                            % (self.name, challenge))
        if b'e' in attrs:
            raise SaslError("Server error: %s"
                            % attrs[b'e'].decode('utf-8', 'replace'))
        try:
            nonce = attrs[b'r']
            salt = base64.b64decode(attrs[b's'])
            iterations = int(attrs[b'i'])
        except (KeyError, ValueError, binascii.Error):
            raise SaslError("Incomplete %s challenge: %r"
                            % (self.name, challenge))
        if not nonce.startswith(self.nonce):
            raise SaslError("Server nonce does not extend ours")

        salted = hashlib.pbkdf2_hmac(self.hashName, self.secret, salt,
                                     iterations)
        clientKey = self._hmac(salted, b'Client Key')
        storedKey = hashlib.new(self.hashName, clientKey).digest()
        withoutProof = b'c=biws,r=' + nonce
        authMessage = b','.join([self.clientFirstBare, bytes(challenge),
                                 withoutProof])
        signature = self._hmac(storedKey, authMessage)
        proof = bytes(a ^ b for a, b in zip(clientKey, signature))

        serverKey = self._hmac(salted, b'Server Key')
        self.serverSignature = self._hmac(serverKey, authMessage)
        return withoutProof + b',p=' + base64.b64encode(proof), True


class ScramSha1Mechanism(ScramMechanism):
    name = 'SCRAM-SHA1'
    hashName = 'sha1'

class ScramSha256Mechanism(ScramMechanism):
    name = 'SCRAM-SHA256'
    hashName = 'sha256'

class ScramSha512Mechanism(ScramMechanism):
    name = 'SCRAM-SHA512'
    hashName = 'sha512'


@implementer(IMechanismProvider)
class SaslClient(object):
    """Mechanism provider for the mechanisms above.

    The strongest mechanism allowed by the hint wins."""

    mechanisms = dict((m.name, m) for m in [PlainMechanism,
                                            CramMD5Mechanism,
                                            ScramSha1Mechanism,
                                            ScramSha256Mechanism,
                                            ScramSha512Mechanism])

    preference = ('SCRAM-SHA512', 'SCRAM-SHA256', 'SCRAM-SHA1',
                  'CRAM-MD5', 'PLAIN')

    def __init__(self):
        self.mechanism = None
        self._impl = None

    def choose(self, hint):
        wanted = hint.upper().split()
        if not wanted or wanted == ['ANY']:
            wanted = self.preference
        for name in self.preference:
            if name in wanted:
                return name
        raise SaslError("No supported mechanism in %r" % hint)

    def start(self, username, secret, mechanism='any'):
        self.mechanism = self.choose(mechanism)
        self._impl = self.mechanisms[self.mechanism](
            binary.toBytes(username), binary.toBytes(secret))
        return self.mechanism, self._impl.start()

    def step(self, challenge):
        if self._impl is None:
            raise SaslError("step() called before start()")
        return self._impl.step(challenge)


STATE_START = 'start'
STATE_CONTINUE = 'continue'
STATE_SUCCESS = 'success'
STATE_FAILED = 'failed'


class AuthNegotiator(object):
    """Drive one SASL exchange over a connection.

    @ivar state: One of the STATE_* values.
    @ivar rounds: How many SASL_STEP messages were sent.
    """

    def __init__(self, channel, provider):
        self.channel = channel
        self.provider = provider
        self.state = None
        self.rounds = 0

    def _roundTrip(self, opcode, mechanism, data):
        self.channel.sendFrame(binary.rawCommand(opcode, key=mechanism,
                                                 value=data))
        return self.channel.recvFrame()

    def negotiate(self, username, secret, mechanism='any'):
        """Authenticate, returning the mechanism used.

        Raises L{SaslError} or L{BinprotError}, leaving the state at
        STATE_FAILED, if the exchange does not end in success."""
        self.state = STATE_START
        self.rounds = 0
        try:
            chosen, data = self.provider.start(username, secret, mechanism)
            response = self._roundTrip(CMD_SASL_AUTH, chosen, data)
            final = False
            while response.status == ERR_AUTH_CONTINUE:
                if final:
                    raise SaslError("Server continued %s after the final "
                                    "client response" % chosen)
                self.state = STATE_CONTINUE
                data, final = self.provider.step(response.value)
                self.rounds += 1
                response = self._roundTrip(CMD_SASL_STEP, chosen, data)
            checkStatus(response, "Authentication failed")
        except (SaslError, BinprotError):
            self.state = STATE_FAILED
            raise
        self.state = STATE_SUCCESS
        return chosen
