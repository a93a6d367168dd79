"""Interfaces for the collaborators a connection is built from."""

from zope.interface import Interface, Attribute


class IFrameTransport(Interface):
    """A blocking byte stream to a server.

    No buffering or framing happens here; timeouts are the transport's
    business."""

    def send(data):
        """Write all of C{data}, raising C{OSError} on failure."""

    def readExact(n):
        """Return exactly C{n} bytes.

        Raises C{EOFError} if the peer closes first and C{OSError} on I/O
        failure."""

    def close():
        """Release the underlying connection."""


class IMechanismProvider(Interface):
    """Client side of a SASL mechanism."""

    mechanism = Attribute("Name of the chosen mechanism, once started.")

    def start(username, secret, mechanism):
        """Pick a mechanism and produce the initial client response.

        C{mechanism} is C{"any"} or a space separated list of acceptable
        names.  Returns C{(chosenMechanism, initialResponse)} and raises
        L{binprot.sasl.SaslError} when nothing suitable exists."""

    def step(challenge):
        """Answer a server challenge.

        Returns C{(response, isFinal)}; C{isFinal} is true when this is the
        last message the client will send.  Raises
        L{binprot.sasl.SaslError} on a bad challenge."""
