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

import contextlib
import logging
import threading
import time

from .connection import Connection, parse_uri
from .exceptions import MemcachedException, PoolTimeout


class ConnectionPool:
    '''A bounded set of connections to one server, shared by threads.

    Example:

    >>> pool = ConnectionPool('memcache://localhost:11211', max_size=4)
    >>> with pool.get() as connection:
    ...     connection.set('foo', 'bar')
    True
    '''
    log = logging.getLogger('memcodec.pool')

    def __init__(
            self, uri, max_size=1, connection_timeout=30, idle_timeout=600,
            health_check=False, read_timeout=None, write_timeout=None):
        '''
        :param uri: URI of the server, see :py:mod:`memcodec.connection`.
            A `connect_timeout` query argument overrides
            `connection_timeout`.
        :type uri: str
        :param max_size: Most connections open at once.
        :type max_size: int
        :param connection_timeout: Seconds :py:func:`get` waits for a
            connection to be returned when `max_size` are in use.
        :type connection_timeout: float
        :param idle_timeout: Connections unused for this many seconds are
            closed instead of being handed out.  None disables this.
        :type idle_timeout: float or None
        :param health_check: If True, a "version" command is sent on every
            connection handed out, and failing connections are replaced.
        :type health_check: bool
        :param read_timeout: Socket read timeout applied to connections as
            they are handed out.  None leaves the socket as it is.
        :param write_timeout: As `read_timeout`, for writes.
        '''
        self.server_uri = parse_uri(uri)
        self.uri = uri
        self.max_size = max_size
        self.connection_timeout = connection_timeout
        if self.server_uri.connect_timeout is not None:
            self.connection_timeout = self.server_uri.connect_timeout
        self.idle_timeout = idle_timeout
        self.health_check = health_check
        self.read_timeout = read_timeout
        self.write_timeout = write_timeout

        self.idle = []
        self.size = 0
        self.lock = threading.Condition()

    def _expired(self, idle_since):
        return (self.idle_timeout is not None
                and time.monotonic() - idle_since > self.idle_timeout)

    def _discard(self, connection):
        '''INTERNAL: Close a connection and forget it.'''
        with self.lock:
            self.size -= 1
            self.lock.notify()
        connection.close()

    def _connect(self):
        '''INTERNAL: Open a connection in a slot already counted in
        `size`.'''
        try:
            return Connection.connect(self.server_uri)
        except BaseException:
            with self.lock:
                self.size -= 1
                self.lock.notify()
            raise

    def _checkout(self):
        '''INTERNAL: Take an idle connection, or reserve room for a new
        one.

        :returns: A :py:class:`~memcodec.connection.Connection`, or None if
            the caller should open one.
        :raises: :py:exc:`~memcodec.exceptions.PoolTimeout`
        '''
        deadline = time.monotonic() + self.connection_timeout
        expired = []
        try:
            with self.lock:
                while True:
                    while self.idle:
                        connection, idle_since = self.idle.pop()
                        if not self._expired(idle_since):
                            return connection
                        expired.append(connection)
                        self.size -= 1
                    if self.size < self.max_size:
                        self.size += 1
                        return None
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise PoolTimeout(
                                'No connection to {0} available after {1} '
                                'seconds'.format(
                                    self.uri, self.connection_timeout))
                    self.lock.wait(remaining)
        finally:
            for connection in expired:
                self.log.debug('Closing idle connection to %s', self.uri)
                connection.close()

    def _prepare(self, connection):
        '''INTERNAL: Apply timeouts and the health check.

        :returns: bool -- False if the connection failed the check.
        '''
        try:
            if self.read_timeout is not None:
                connection.set_read_timeout(self.read_timeout)
            if self.write_timeout is not None:
                connection.set_write_timeout(self.write_timeout)
            if self.health_check:
                connection.version()
        except (MemcachedException, OSError) as e:
            self.log.warning(
                    'Connection to %s failed health check: %s', self.uri, e)
            return False
        return True

    def checkout(self):
        '''Take a connection out of the pool.

        The connection must be given back with :py:func:`checkin`;
        :py:func:`get` does this automatically.

        :returns: :py:class:`~memcodec.connection.Connection`
        :raises: :py:exc:`~memcodec.exceptions.PoolTimeout`,
            :py:exc:`~memcodec.exceptions.TransportError`
        '''
        while True:
            connection = self._checkout()
            if connection is None:
                connection = self._connect()
            if self._prepare(connection):
                return connection
            self._discard(connection)

    def checkin(self, connection):
        '''Return a connection to the pool.

        Dirty connections are closed instead of being kept.
        '''
        if connection.is_dirty:
            self.log.warning(
                    'Dropping dirty connection to %s', self.uri)
            self._discard(connection)
            return
        with self.lock:
            self.idle.append((connection, time.monotonic()))
            self.lock.notify()

    @contextlib.contextmanager
    def get(self):
        '''Context manager lending out a connection.

        :raises: :py:exc:`~memcodec.exceptions.PoolTimeout`,
            :py:exc:`~memcodec.exceptions.TransportError`
        '''
        connection = self.checkout()
        try:
            yield connection
        finally:
            self.checkin(connection)

    def set_read_timeout(self, timeout):
        '''Set the read timeout of connections handed out from now on.'''
        self.read_timeout = timeout

    def set_write_timeout(self, timeout):
        self.write_timeout = timeout

    def close(self):
        '''Close all idle connections.'''
        with self.lock:
            idle = [x[0] for x in self.idle]
            self.idle = []
            self.size -= len(idle)
            self.lock.notify_all()
        for connection in idle:
            connection.close()

    def __repr__(self):
        return '<ConnectionPool to {0}>'.format(self.uri)
