#!/usr/bin/env python
"""

Copyright (c) 2007  Dustin Sallings <dustin@spy.net>
"""

import struct

# Command constants
CMD_GET = 0
CMD_SET = 1
CMD_ADD = 2
CMD_REPLACE = 3
CMD_DELETE = 4
CMD_INCR = 5
CMD_DECR = 6
CMD_QUIT = 7
CMD_FLUSH = 8
CMD_GETQ = 9
CMD_NOOP = 10
CMD_VERSION = 11
CMD_APPEND = 0x0e
CMD_PREPEND = 0x0f
CMD_STAT = 0x10
CMD_HELLO = 0x1f

# SASL stuff
CMD_SASL_LIST_MECHS = 0x20
CMD_SASL_AUTH = 0x21
CMD_SASL_STEP = 0x22

# Control
CMD_IOCTL_GET = 0x23
CMD_IOCTL_SET = 0x24
CMD_AUDIT_CONFIG_RELOAD = 0x28

# DCP
CMD_DCP_OPEN = 0x50
CMD_DCP_STREAM_REQ = 0x53

# Bucket management
CMD_CREATE_BUCKET = 0x85
CMD_DELETE_BUCKET = 0x86
CMD_LIST_BUCKETS = 0x87
CMD_SELECT_BUCKET = 0x89

# Test engine control
CMD_EWOULDBLOCK_CTL = 0xeb

COMMAND_NAMES = dict(((globals()[k], k) for k in globals() if k.startswith("CMD_")))

# Flags, expiration
SET_PKT_FMT=">II"

# flags
GET_RES_FMT=">I"
GET_RES_SIZE = struct.calcsize(GET_RES_FMT)

# amount, initial value, expiration
INCRDECR_PKT_FMT=">QQI"
# Special incr expiration that means do not store
INCRDECR_SPECIAL=0xffffffff
INCRDECR_RES_FMT=">Q"
INCRDECR_RES_SIZE = struct.calcsize(INCRDECR_RES_FMT)

# vbucket uuid, seqno
MUTATION_EXTRAS_FMT=">QQ"
MUTATION_EXTRAS_SIZE = struct.calcsize(MUTATION_EXTRAS_FMT)

# mode, value, inject_error
EWOULDBLOCK_CTL_FMT=">III"
EWB_MODE_NEXT_N = 0
EWB_MODE_RANDOM = 1
EWB_MODE_FIRST = 2
EWB_MODE_SEQUENCE = 3

# seqno, flags
DCP_OPEN_PKT_FMT=">II"
DCP_OPEN_PRODUCER = 1

# flags, reserved, start, end, vbucket uuid, snapshot start, snapshot end
DCP_STREAM_REQ_PKT_FMT=">IIQQQQQ"

# Feature negotiation, one code per feature
FEATURE_FMT=">H"
FEATURE_SIZE = struct.calcsize(FEATURE_FMT)

REQ_MAGIC_BYTE = 0x80
RES_MAGIC_BYTE = 0x81

# magic, opcode, keylen, extralen, datatype, vbucket, bodylen, opaque, cas
REQ_PKT_FMT=">BBHBBHIIQ"
# magic, opcode, keylen, extralen, datatype, status, bodylen, opaque, cas
RES_PKT_FMT=">BBHBBHIIQ"
# min recv packet size
MIN_RECV_PACKET = struct.calcsize(REQ_PKT_FMT)
# The header sizes don't deviate
assert struct.calcsize(REQ_PKT_FMT) == struct.calcsize(RES_PKT_FMT)

# bodylen sits at the same offset in requests and responses
BODYLEN_FMT=">I"
BODYLEN_OFFSET = 8

MAX_EXTRAS_LENGTH = 0xff
MAX_KEY_LENGTH = 0xffff

DEFAULT_OPAQUE = 0xdeadbeef

EXTRA_HDR_FMTS={
    CMD_SET: SET_PKT_FMT,
    CMD_ADD: SET_PKT_FMT,
    CMD_REPLACE: SET_PKT_FMT,
    CMD_INCR: INCRDECR_PKT_FMT,
    CMD_DECR: INCRDECR_PKT_FMT,
    CMD_EWOULDBLOCK_CTL: EWOULDBLOCK_CTL_FMT,
    CMD_DCP_OPEN: DCP_OPEN_PKT_FMT,
    CMD_DCP_STREAM_REQ: DCP_STREAM_REQ_PKT_FMT,
}

EXTRA_HDR_SIZES=dict(
    [(k, struct.calcsize(v)) for (k,v) in EXTRA_HDR_FMTS.items()])

# Datatype bits
DATATYPE_RAW = 0x00
DATATYPE_JSON = 0x01
DATATYPE_COMPRESSED = 0x02
DATATYPE_XATTR = 0x04

# HELLO features
FEATURE_DATATYPE = 0x01
FEATURE_TLS = 0x02
FEATURE_TCPNODELAY = 0x03
FEATURE_MUTATION_SEQNO = 0x04
FEATURE_TCPDELAY = 0x05
FEATURE_XATTR = 0x06

# The features this client negotiates, in the order they go on the wire.
FEATURE_ORDER = (FEATURE_DATATYPE,
                 FEATURE_TCPNODELAY,
                 FEATURE_MUTATION_SEQNO,
                 FEATURE_XATTR)

FEATURE_NAMES = {
    FEATURE_DATATYPE: "datatype",
    FEATURE_TCPNODELAY: "tcp nodelay",
    FEATURE_MUTATION_SEQNO: "mutation seqno",
    FEATURE_XATTR: "xattr",
}

# Mutation types
MUTATION_ADD = 'add'
MUTATION_SET = 'set'
MUTATION_REPLACE = 'replace'
MUTATION_APPEND = 'append'
MUTATION_PREPEND = 'prepend'

MUTATION_OPCODES = {
    MUTATION_ADD: CMD_ADD,
    MUTATION_SET: CMD_SET,
    MUTATION_REPLACE: CMD_REPLACE,
    MUTATION_APPEND: CMD_APPEND,
    MUTATION_PREPEND: CMD_PREPEND,
}

# Bucket types and the engine module each one loads
BUCKET_MEMCACHED = 'memcached'
BUCKET_EWOULDBLOCK = 'ewouldblock'
BUCKET_COUCHBASE = 'couchbase'

BUCKET_MODULES = {
    BUCKET_MEMCACHED: 'default_engine.so',
    BUCKET_EWOULDBLOCK: 'ewouldblock_engine.so',
    BUCKET_COUCHBASE: 'ep.so',
}

# Document datatype / compression
DOC_RAW = 'raw'
DOC_JSON = 'json'
COMPRESSION_NONE = 'none'
COMPRESSION_SNAPPY = 'snappy'

# Marks a MutationInfo field the server did not send
UNSET = 0xffffffffffffffff

# Response status
SUCCESS = 0x0
ERR_NOT_FOUND = 0x1
ERR_EXISTS = 0x2
ERR_TOOBIG = 0x3
ERR_INVAL = 0x4
ERR_NOT_STORED = 0x5
ERR_DELTA_BADVAL = 0x6
ERR_NOT_MY_VBUCKET = 0x7
ERR_NO_BUCKET = 0x8
ERR_AUTH_STALE = 0x1f
ERR_AUTH = 0x20
ERR_AUTH_CONTINUE = 0x21
ERR_ERANGE = 0x22
ERR_ROLLBACK = 0x23
ERR_EACCESS = 0x24
ERR_NOT_INITIALIZED = 0x25
ERR_UNKNOWN_CMD = 0x81
ERR_ENOMEM = 0x82
ERR_NOT_SUPPORTED = 0x83
ERR_EINTERNAL = 0x84
ERR_EBUSY = 0x85
ERR_ETMPFAIL = 0x86

STATUS_TEXT = {
    SUCCESS: "Success",
    ERR_NOT_FOUND: "Not found",
    ERR_EXISTS: "Data exists for key",
    ERR_TOOBIG: "Too large",
    ERR_INVAL: "Invalid arguments",
    ERR_NOT_STORED: "Not stored",
    ERR_DELTA_BADVAL: "Non-numeric server-side value for incr or decr",
    ERR_NOT_MY_VBUCKET: "I'm not responsible for this vbucket",
    ERR_NO_BUCKET: "Not connected to a bucket",
    ERR_AUTH_STALE: "Authentication stale",
    ERR_AUTH: "Auth failure",
    ERR_AUTH_CONTINUE: "Auth continue",
    ERR_ERANGE: "Outside range",
    ERR_ROLLBACK: "Rollback",
    ERR_EACCESS: "No access",
    ERR_NOT_INITIALIZED: "Node not initialized",
    ERR_UNKNOWN_CMD: "Unknown command",
    ERR_ENOMEM: "Out of memory",
    ERR_NOT_SUPPORTED: "Not supported",
    ERR_EINTERNAL: "Internal error",
    ERR_EBUSY: "Server too busy",
    ERR_ETMPFAIL: "Temporary failure",
}
