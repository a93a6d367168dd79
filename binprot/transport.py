"""Blocking socket transport."""

import socket
import ssl as _ssl

from zope.interface import implementer

from twisted.python import log

from binprot.interfaces import IFrameTransport

__all__ = ['SocketTransport', 'DEFAULT_TIMEOUT']

DEFAULT_TIMEOUT = 30


@implementer(IFrameTransport)
class SocketTransport(object):
    """A TCP (optionally TLS) connection to a server.

    @ivar timeout: Seconds a send or read may block before C{socket.timeout}
        is raised.
    """

    def __init__(self, host, port, family=socket.AF_UNSPEC, ssl=False,
                 timeout=DEFAULT_TIMEOUT, sslContext=None):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.sock = self._connect(host, port, family)
        if ssl:
            if sslContext is None:
                sslContext = _ssl.create_default_context()
            self.sock = sslContext.wrap_socket(self.sock,
                                               server_hostname=host)

    def _connect(self, host, port, family):
        # Use the first address that accepts a connection; if none do,
        # raise the last failure.
        addrs = socket.getaddrinfo(host, port, family, socket.SOCK_STREAM)
        sockError = None
        for _family, socktype, proto, _, sockaddr in addrs:
            sock = socket.socket(_family, socktype, proto)
            try:
                sock.settimeout(self.timeout)
                sock.connect(sockaddr)
            except OSError as err:
                sock.close()
                sockError = err
                continue
            log.msg("Connected to %s:%d" % (host, port))
            return sock
        if sockError is None:
            sockError = OSError("No addresses for %s:%d" % (host, port))
        raise sockError

    def send(self, data):
        self.sock.sendall(bytes(data))

    def readExact(self, n):
        chunks = []
        remaining = n
        while remaining > 0:
            data = self.sock.recv(remaining)
            if not data:
                raise EOFError("Got empty data (remote died?).")
            chunks.append(data)
            remaining -= len(data)
        return b''.join(chunks)

    def close(self):
        if self.sock is not None:
            self.sock.close()
            self.sock = None
