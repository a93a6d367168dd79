#!/usr/bin/env python

import os
import sys

sys.path.append("..")
sys.path.append(os.path.join(sys.path[0], '..'))

from twisted.python import log, usage

from binprot import client, constants
from binprot.errors import BinprotError


class Options(usage.Options):

    synopsis = "Usage: client.py [options] <command> [args...]"

    optParameters = [
        ['host', 'H', '127.0.0.1', "Server to connect to."],
        ['port', 'p', client.DEFAULT_PORT, "Port to connect to.", int],
        ['user', 'u', None, "Authenticate as this user."],
        ['password', 'P', '', "Password for --user."],
        ['mechanism', 'm', 'any', "SASL mechanism to use."],
        ['bucket', 'b', None, "Select this bucket first."],
        ]

    optFlags = [
        ['ssl', 's', "Connect with TLS."],
        ['dump', 'd', "Log every packet sent and received."],
        ]

    def parseArgs(self, command, *args):
        self['command'] = command
        self['args'] = args


def doGet(conn, key):
    doc = conn.get(key)
    print("%s flags=%#x cas=%#x %s" % (doc.key, doc.flags, doc.cas,
                                       doc.value.decode('utf-8', 'replace')))


def doSet(conn, key, value):
    info = conn.mutate(client.Document(key, value.encode('utf-8')), 0,
                       constants.MUTATION_SET)
    print("stored %s cas=%#x" % (key, info.cas))


def doIncr(conn, key, delta='1'):
    print(conn.increment(key, int(delta)))


def doDecr(conn, key, delta='1'):
    print(conn.decrement(key, int(delta)))


def doStats(conn, group=''):
    for k, v in sorted(conn.stats(group).items()):
        print("%s %r" % (k, v))


def doBuckets(conn):
    for name in conn.listBuckets():
        print(name)


def doVersion(conn):
    print(conn.version())


commands = {
    'get': doGet,
    'set': doSet,
    'incr': doIncr,
    'decr': doDecr,
    'stats': doStats,
    'buckets': doBuckets,
    'version': doVersion,
    }


def main(argv):
    config = Options()
    try:
        config.parseOptions(argv)
    except usage.UsageError as e:
        print("%s\n%s" % (config, e))
        return 2
    if config['command'] not in commands:
        print("Unknown command %s, try one of: %s"
              % (config['command'], ' '.join(sorted(commands))))
        return 2

    log.startLogging(sys.stderr)
    conn = client.BinaryConnection(config['host'], config['port'],
                                   ssl=config['ssl'])
    conn.packetDump = config['dump']
    try:
        conn.hello('binprot-example', '0.1')
        if config['user']:
            conn.authenticate(config['user'], config['password'],
                              config['mechanism'])
        if config['bucket']:
            conn.selectBucket(config['bucket'])
        commands[config['command']](conn, *config['args'])
    except BinprotError as e:
        print(e)
        return 1
    finally:
        conn.close()
    return 0


if __name__ == '__main__':
    sys.exit(main(sys.argv[1:]))
