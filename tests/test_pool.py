#!/usr/bin/env python
#
#  Test the ConnectionPool component of the Python memcodec module.
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

import threading
import time
import unittest
from unittest import mock

from mctestsupp import FakeStream
from faketcpserver import RECEIVE, CommandServer
from memcodec import exceptions
from memcodec.ascii import AsciiProtocol
from memcodec.connection import Connection
from memcodec.pool import ConnectionPool

URI = 'memcache://127.0.0.1:11211?protocol=ascii'


class FakeConnector:
    '''Stands in for Connection.connect, handing out connections over
    in-memory streams with the given replies.'''

    def __init__(self, *replies):
        self.replies = list(replies)
        self.streams = []

    def __call__(self, uri):
        stream = FakeStream(self.replies.pop(0) if self.replies else b'')
        self.streams.append(stream)
        return Connection(AsciiProtocol(stream), uri.uri)


class test_ConnectionPool(unittest.TestCase):
    def pool(self, connector, **kwargs):
        patcher = mock.patch.object(Connection, 'connect', connector)
        patcher.start()
        self.addCleanup(patcher.stop)
        return ConnectionPool(URI, **kwargs)

    def test_Reuse(self):
        connector = FakeConnector(b'VERSION 1\r\nVERSION 2\r\n')
        pool = self.pool(connector)
        with pool.get() as connection:
            self.assertEqual(connection.version(), '1')
        with pool.get() as connection:
            self.assertEqual(connection.version(), '2')
        self.assertEqual(len(connector.streams), 1)
        self.assertEqual(pool.size, 1)

    def test_LifoReuse(self):
        connector = FakeConnector()
        pool = self.pool(connector, max_size=2)
        first = pool.checkout()
        second = pool.checkout()
        pool.checkin(first)
        pool.checkin(second)
        self.assertIs(pool.checkout(), second)

    def test_DirtyConnectionDiscarded(self):
        connector = FakeConnector(b'GARBAGE\r\n', b'VERSION 2\r\n')
        pool = self.pool(connector)
        with self.assertRaises(exceptions.BadResponse):
            with pool.get() as connection:
                connection.version()
        self.assertTrue(connector.streams[0].closed)
        self.assertEqual(pool.size, 0)

        with pool.get() as connection:
            self.assertEqual(connection.version(), '2')
        self.assertEqual(len(connector.streams), 2)

    def test_RecoverableErrorKeepsConnection(self):
        connector = FakeConnector(b'NOT_FOUND\r\nVERSION 1\r\n')
        pool = self.pool(connector)
        with self.assertRaises(exceptions.KeyNotFound):
            with pool.get() as connection:
                connection.increment('foo', 1)
        with pool.get() as connection:
            self.assertEqual(connection.version(), '1')
        self.assertEqual(len(connector.streams), 1)

    def test_PoolTimeout(self):
        pool = self.pool(FakeConnector(), connection_timeout=0.1)
        with pool.get():
            start = time.monotonic()
            with self.assertRaises(exceptions.PoolTimeout):
                pool.checkout()
            self.assertGreaterEqual(time.monotonic() - start, 0.09)

    def test_ConnectTimeoutFromURI(self):
        patcher = mock.patch.object(Connection, 'connect', FakeConnector())
        patcher.start()
        self.addCleanup(patcher.stop)
        pool = ConnectionPool(URI + '&connect_timeout=0.25')
        self.assertEqual(pool.connection_timeout, 0.25)

    def test_WaitForCheckin(self):
        pool = self.pool(FakeConnector(), connection_timeout=5)
        connection = pool.checkout()
        timer = threading.Timer(0.1, pool.checkin, (connection,))
        timer.start()
        self.assertIs(pool.checkout(), connection)
        timer.join()

    def test_IdleTimeout(self):
        connector = FakeConnector()
        pool = self.pool(connector, idle_timeout=0.01)
        with pool.get():
            pass
        time.sleep(0.05)
        with pool.get():
            pass
        self.assertEqual(len(connector.streams), 2)
        self.assertTrue(connector.streams[0].closed)
        self.assertEqual(pool.size, 1)

    def test_HealthCheck(self):
        connector = FakeConnector(b'', b'VERSION 1\r\n')
        pool = self.pool(connector, health_check=True)
        with pool.get() as connection:
            self.assertIs(
                    connection.protocol.get_stream(), connector.streams[1])
        self.assertTrue(connector.streams[0].closed)
        self.assertEqual(pool.size, 1)

    def test_Timeouts(self):
        connector = FakeConnector()
        pool = self.pool(connector, read_timeout=1, write_timeout=2)
        with pool.get():
            pass
        self.assertEqual(connector.streams[0].read_timeout, 1)
        self.assertEqual(connector.streams[0].write_timeout, 2)

        pool.set_read_timeout(3)
        with pool.get():
            pass
        self.assertEqual(connector.streams[0].read_timeout, 3)

    def test_ConnectFailureReleasesSlot(self):
        def refuse(uri):
            raise exceptions.ServerDisconnect('refused')

        pool = self.pool(refuse)
        with self.assertRaises(exceptions.ServerDisconnect):
            pool.checkout()
        self.assertEqual(pool.size, 0)

    def test_UnexpectedConnectFailureReleasesSlot(self):
        def broken(uri):
            raise FileNotFoundError('/nonexistent.pem')

        pool = self.pool(broken, connection_timeout=0.2)
        for _ in range(2):
            with self.assertRaises(FileNotFoundError):
                pool.checkout()
        self.assertEqual(pool.size, 0)

    def test_Close(self):
        connector = FakeConnector()
        pool = self.pool(connector, max_size=2)
        first = pool.checkout()
        second = pool.checkout()
        pool.checkin(first)
        pool.close()
        self.assertTrue(connector.streams[0].closed)
        self.assertFalse(connector.streams[1].closed)
        self.assertEqual(pool.size, 1)
        pool.checkin(second)


class test_ConnectionPoolServer(unittest.TestCase):
    def test_RealConnection(self):
        server = CommandServer(
                [RECEIVE, 'VERSION 1\r\n', RECEIVE, 'VERSION 2\r\n'])
        pool = ConnectionPool(
                'memcache://127.0.0.1:{0}?protocol=ascii&timeout=5'
                .format(server.port))
        with pool.get() as connection:
            self.assertEqual(connection.version(), '1')
        with pool.get() as connection:
            self.assertEqual(connection.version(), '2')
        pool.close()

    def test_BadCertificateFile(self):
        pool = ConnectionPool(
                'memcache+tls://127.0.0.1:1?ca_path=/nonexistent/ca.pem',
                connection_timeout=0.2)
        for _ in range(2):
            with self.assertRaises(exceptions.TransportError):
                pool.checkout()
        self.assertEqual(pool.size, 0)


if __name__ == '__main__':
    unittest.main()
