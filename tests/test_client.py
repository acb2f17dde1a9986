#!/usr/bin/env python
#
#  Test the Client component and hashers of the Python memcodec module.
#
#===============
#  This is based on a skeleton test file, more information at:
#
#     https://github.com/linsomniac/python-unittest-skeleton
#
# Copyright 2013 Sean Reifschneider, tummy.com, ltd.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import unittest
from unittest import mock

from mctestsupp import FakeStream
import memcodec
from memcodec import exceptions
from memcodec.ascii import AsciiProtocol
from memcodec.connection import Connection
from memcodec.hashing import HasherCMemcache, HasherZero

SERVERS = [
        'memcache://server-a:11211?protocol=ascii',
        'memcache://server-b:11211?protocol=ascii',
        ]


def by_first_letter(key):
    '''Keys starting with "a" go to the first server, others to the
    second.'''
    return 0 if key.startswith(b'a') else 1


class FakeServers:
    '''Stands in for Connection.connect, with canned replies per server
    host.'''

    def __init__(self, **replies):
        self.replies = replies
        self.streams = {}

    def __call__(self, uri):
        stream = FakeStream(self.replies.get(uri.host.replace('-', '_'), b''))
        self.streams[uri.host] = stream
        return Connection(AsciiProtocol(stream), uri.uri)


class test_Hashers(unittest.TestCase):
    def test_HasherZero(self):
        self.assertEqual(HasherZero().hash(b'foo'), 0)
        self.assertEqual(HasherZero()(b'bar'), 0)

    def test_HasherCMemcache(self):
        hasher = HasherCMemcache()
        self.assertEqual(hasher.hash(b'foo'), hasher.hash('foo'))
        self.assertEqual(hasher(b'foo'), hasher.hash(b'foo'))
        #  crc32 of the empty string is 0, which is mapped to 1
        self.assertEqual(hasher.hash(b''), 1)
        for x in range(100):
            value = hasher.hash('key{0}'.format(x))
            self.assertGreaterEqual(value, 1)
            self.assertLessEqual(value, 0x7fff)


class test_Client(unittest.TestCase):
    def client(self, servers, **kwargs):
        patcher = mock.patch.object(Connection, 'connect', servers)
        patcher.start()
        self.addCleanup(patcher.stop)
        return memcodec.connect(
                SERVERS, hash_function=by_first_letter, **kwargs)

    def test_SingleServer(self):
        servers = FakeServers(
                server_a=b'STORED\r\nVALUE foo 0 3\r\nbar\r\nEND\r\n')
        patcher = mock.patch.object(Connection, 'connect', servers)
        patcher.start()
        self.addCleanup(patcher.stop)
        mc = memcodec.Client(SERVERS[0])
        self.assertTrue(mc.set('foo', 'bar'))
        self.assertEqual(mc.get('foo', str), 'bar')
        self.assertEqual(len(mc.pools), 1)

    def test_NoServers(self):
        with self.assertRaises(exceptions.ClientError):
            memcodec.Client([])

    def test_InvalidServer(self):
        with self.assertRaises(exceptions.UnknownProtocol):
            memcodec.Client(['redis://localhost'])

    def test_Sharding(self):
        servers = FakeServers(
                server_a=b'STORED\r\n', server_b=b'STORED\r\n')
        mc = self.client(servers)
        mc.set('apple', 'red')
        mc.set('banana', 'yellow')
        self.assertEqual(
                servers.streams['server-a'].written,
                b'set apple 0 0 3\r\nred\r\n')
        self.assertEqual(
                servers.streams['server-b'].written,
                b'set banana 0 0 6\r\nyellow\r\n')

    def test_DefaultHasher(self):
        mc = memcodec.Client(SERVERS)
        self.assertIsInstance(mc.hash_function, HasherCMemcache)
        expected = HasherCMemcache().hash(b'foo') % 2
        self.assertEqual(mc._pool_index('foo'), expected)

    def test_KeyCheckedBeforeConnecting(self):
        servers = FakeServers()
        mc = self.client(servers)
        with self.assertRaises(exceptions.KeyTooLong):
            mc.get('a' * 251)
        self.assertEqual(servers.streams, {})

    def test_Gets(self):
        servers = FakeServers(
                server_a=b'VALUE apple 0 3 1\r\nred\r\nEND\r\n',
                server_b=b'VALUE banana 0 6 2\r\nyellow\r\nEND\r\n')
        mc = self.client(servers)
        self.assertEqual(
                mc.gets(['apple', 'banana', 'cherry'], str),
                {'apple': 'red', 'banana': 'yellow'})
        self.assertEqual(
                servers.streams['server-a'].written, b'gets apple\r\n')
        self.assertEqual(
                servers.streams['server-b'].written,
                b'gets banana cherry\r\n')

    def test_VersionAndStats(self):
        servers = FakeServers(
                server_a=b'VERSION 1.6\r\nSTAT pid 1\r\nEND\r\n',
                server_b=b'VERSION 1.5\r\nSTAT pid 2\r\nEND\r\n')
        mc = self.client(servers)
        self.assertEqual(
                mc.version(),
                [(SERVERS[0], '1.6'), (SERVERS[1], '1.5')])
        self.assertEqual(
                mc.stats(),
                [(SERVERS[0], {'pid': '1'}), (SERVERS[1], {'pid': '2'})])

    def test_Flush(self):
        servers = FakeServers(
                server_a=b'OK\r\nOK\r\n', server_b=b'OK\r\nOK\r\n')
        mc = self.client(servers)
        mc.flush()
        mc.flush_with_delay(5)
        for name in ('server-a', 'server-b'):
            self.assertEqual(
                    servers.streams[name].written,
                    b'flush_all\r\nflush_all 5\r\n')

    def test_Operations(self):
        servers = FakeServers(server_a=(
                b'NOT_STORED\r\nSTORED\r\nEXISTS\r\nSTORED\r\nSTORED\r\n'
                b'NOT_FOUND\r\n11\r\n10\r\nTOUCHED\r\n'))
        mc = self.client(servers)
        self.assertFalse(mc.add('a', '1'))
        self.assertTrue(mc.replace('a', '1'))
        self.assertFalse(mc.cas('a', '1', 0, 99))
        self.assertTrue(mc.append('a', '1'))
        self.assertTrue(mc.prepend('a', '1'))
        self.assertFalse(mc.delete('a'))
        self.assertEqual(mc.increment('a', 1), 11)
        self.assertEqual(mc.decrement('a', 1), 10)
        self.assertTrue(mc.touch('a', 10))

    def test_SetMulti(self):
        servers = FakeServers(
                server_a=b'STORED\r\nSTORED\r\n', server_b=b'STORED\r\n')
        mc = self.client(servers)
        mc.set_multi({'a1': '1', 'a2': '2', 'b1': '3'}, 10)
        self.assertEqual(
                servers.streams['server-a'].written,
                b'set a1 0 10 1\r\n1\r\nset a2 0 10 1\r\n2\r\n')
        self.assertEqual(
                servers.streams['server-b'].written,
                b'set b1 0 10 1\r\n3\r\n')

    def test_DeleteMulti(self):
        servers = FakeServers(
                server_a=b'DELETED\r\n', server_b=b'NOT_FOUND\r\nDELETED\r\n')
        mc = self.client(servers)
        self.assertEqual(
                mc.delete_multi(['b1', 'a1', 'b2']), [False, True, True])

    def test_Timeouts(self):
        servers = FakeServers(
                server_a=b'VERSION 1\r\n', server_b=b'VERSION 1\r\n')
        mc = self.client(servers)
        mc.set_read_timeout(4)
        mc.set_write_timeout(5)
        mc.version()
        for stream in servers.streams.values():
            self.assertEqual(stream.read_timeout, 4)
            self.assertEqual(stream.write_timeout, 5)

    def test_Close(self):
        servers = FakeServers(
                server_a=b'VERSION 1\r\n', server_b=b'VERSION 1\r\n')
        mc = self.client(servers)
        mc.version()
        mc.close()
        for stream in servers.streams.values():
            self.assertTrue(stream.closed)


if __name__ == '__main__':
    unittest.main()
