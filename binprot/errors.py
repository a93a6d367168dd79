"""Error types and the mapping from response status to error."""

from binprot.constants import *

__all__ = ['ProtocolError',
           'BinprotError',
           'statusText',
           'statusError',
           'checkStatus']


class ProtocolError(Exception):
    """The peer sent something that does not frame as the binary protocol.

    This covers bad magic, inconsistent length fields and malformed
    negotiation payloads, and is raised for commands that cannot be
    encoded at all."""


def statusText(status):
    return STATUS_TEXT.get(status, "Unknown error code")


class BinprotError(Exception):
    """A request failed with a non-success response status."""

    code = None

    def __init__(self, prefix, status):
        self.status = status
        self.prefix = prefix
        self.msg = statusText(status)
        Exception.__init__(self, "%s: %s (%d)" % (prefix, self.msg, status))

    def __repr__(self):
        return "<%s #%d ``%s''>" % (self.__class__.__name__,
                                    self.status, self.msg)

    def getReason(self):
        return self.status

    def isInvalidArguments(self):
        return self.status == ERR_INVAL

    def isAlreadyExists(self):
        return self.status == ERR_EXISTS

    def isNotFound(self):
        return self.status == ERR_NOT_FOUND

    def isNotMyVbucket(self):
        return self.status == ERR_NOT_MY_VBUCKET

    def isNotStored(self):
        return self.status == ERR_NOT_STORED

    def isAccessDenied(self):
        return self.status == ERR_EACCESS

    def isDeltaBadval(self):
        return self.status == ERR_DELTA_BADVAL

    def isAuthError(self):
        return self.status == ERR_AUTH

    def isOther(self):
        """True when the status is none of the classified ones."""
        return self.status not in CLASSIFIED


class BinprotNotFound(BinprotError):
    code = ERR_NOT_FOUND

class BinprotExists(BinprotError):
    code = ERR_EXISTS

class BinprotTooBig(BinprotError):
    code = ERR_TOOBIG

class BinprotInvalidArguments(BinprotError):
    code = ERR_INVAL

class BinprotNotStored(BinprotError):
    code = ERR_NOT_STORED

class BinprotDeltaBadval(BinprotError):
    code = ERR_DELTA_BADVAL

class BinprotNotMyVbucket(BinprotError):
    code = ERR_NOT_MY_VBUCKET

class BinprotNoBucket(BinprotError):
    code = ERR_NO_BUCKET

class BinprotAuthError(BinprotError):
    code = ERR_AUTH

class BinprotAuthContinue(BinprotError):
    code = ERR_AUTH_CONTINUE

class BinprotAccessDenied(BinprotError):
    code = ERR_EACCESS

class BinprotUnknownCommand(BinprotError):
    code = ERR_UNKNOWN_CMD

class BinprotOutOfMemory(BinprotError):
    code = ERR_ENOMEM

class BinprotNotSupported(BinprotError):
    code = ERR_NOT_SUPPORTED

class BinprotInternalError(BinprotError):
    code = ERR_EINTERNAL

class BinprotBusy(BinprotError):
    code = ERR_EBUSY

class BinprotTemporaryFailure(BinprotError):
    code = ERR_ETMPFAIL


CLASSIFIED = frozenset([ERR_INVAL, ERR_EXISTS, ERR_NOT_FOUND,
                        ERR_NOT_MY_VBUCKET, ERR_NOT_STORED, ERR_EACCESS,
                        ERR_DELTA_BADVAL, ERR_AUTH])

ERRORS = dict((cls.code, cls) for cls in BinprotError.__subclasses__())


def statusError(status, prefix):
    """Build the error for a non-success status.

    Unknown codes still produce a plain BinprotError."""
    if status == SUCCESS:
        raise ValueError("Success is not an error")
    return ERRORS.get(status, BinprotError)(prefix, status)


def checkStatus(response, prefix):
    """Raise the mapped error unless the response succeeded."""
    status = response.header.status
    if status != SUCCESS:
        raise statusError(status, prefix)
