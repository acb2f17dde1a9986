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

'''
A connection to one memcached server, configured by URI.

Supported URIs are of the form:

    * memcache://[user:password@]host[:port][?query] -- TCP, unless the
      query contains `udp=true`.  Port 11211 is used if none is given.
    * memcache+tcp://host[:port], memcache+udp://host[:port]
    * memcache+unix:///path/to/socket or memcache:///path/to/socket
    * memcache+tls://host[:port] -- TCP with TLS.

`memcached://` is accepted as a synonym of `memcache://`.  Query
arguments:

    * protocol=ascii -- Use the text protocol instead of binary.
    * tcp_nodelay=false -- Leave Nagle's algorithm on.
    * timeout=SECONDS -- Socket read and write timeout.
    * connect_timeout=SECONDS -- How long a pool waits for a connection.
    * verify_mode=none|peer, ca_path, cert_path, key_path -- TLS settings.
'''

import collections
import logging
import urllib.parse

from . import stream
from .ascii import AsciiProtocol
from .binary import BinaryProtocol
from .exceptions import InvalidURI, MemcachedException, UnknownProtocol

DEFAULT_PORT = 11211

_TRANSPORTS = {
        'memcache': None,
        'memcached': None,
        'memcache+tcp': 'tcp',
        'memcache+udp': 'udp',
        'memcache+unix': 'unix',
        'memcache+tls': 'tls',
        }

ServerURI = collections.namedtuple('ServerURI', [
        'uri', 'transport', 'host', 'port', 'path', 'username', 'password',
        'protocol', 'tcp_nodelay', 'timeout', 'connect_timeout', 'verify',
        'ca_path', 'cert_path', 'key_path'])


def _query_bool(query, name, default):
    value = query.get(name, default)
    if value in (True, 'true'):
        return True
    if value in (False, 'false'):
        return False
    raise InvalidURI(
            'Expected "true" or "false" for {0}, got {1!r}'
            .format(name, value))


def _query_seconds(query, name):
    value = query.get(name)
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        raise InvalidURI(
                'Expected a number of seconds for {0}, got {1!r}'
                .format(name, value))


def parse_uri(uri):
    '''Parse a server connection URI.

    :param uri: The URI of the server, see the module documentation.
    :type uri: str
    :returns: :py:class:`ServerURI`
    :raises: :py:exc:`~memcodec.exceptions.InvalidURI`,
        :py:exc:`~memcodec.exceptions.UnknownProtocol`
    '''
    try:
        parts = urllib.parse.urlsplit(uri)
        port = parts.port
    except ValueError as e:
        raise InvalidURI('Invalid URI {0}: {1}'.format(uri, e))
    if parts.scheme not in _TRANSPORTS:
        raise UnknownProtocol(
                'Unknown connection protocol: {0}'.format(parts.scheme))

    query = dict(urllib.parse.parse_qsl(parts.query))

    transport = _TRANSPORTS[parts.scheme]
    if transport is None:
        if _query_bool(query, 'udp', False):
            transport = 'udp'
        elif not parts.hostname and port is None:
            transport = 'unix'
        else:
            transport = 'tcp'

    path = urllib.parse.unquote(parts.path) or None
    if transport == 'unix':
        if not path:
            raise InvalidURI('No socket path in URI: {0}'.format(uri))
    elif not parts.hostname:
        raise InvalidURI('No host in URI: {0}'.format(uri))

    protocol = query.get('protocol', 'binary')
    if protocol not in ('binary', 'ascii'):
        raise InvalidURI('Unknown protocol {0!r}'.format(protocol))

    verify_mode = query.get('verify_mode', 'peer')
    if verify_mode not in ('none', 'peer'):
        raise InvalidURI(
                "unknown verify_mode, expected 'none' or 'peer'")
    cert_path = query.get('cert_path')
    key_path = query.get('key_path')
    if key_path and not cert_path:
        raise InvalidURI(
                'cert_path must be specified when key_path is specified')
    if cert_path and not key_path:
        raise InvalidURI(
                'key_path must be specified when cert_path is specified')

    username = parts.username
    password = parts.password
    if username is not None:
        username = urllib.parse.unquote(username)
    if password is not None:
        password = urllib.parse.unquote(password)

    return ServerURI(
            uri, transport, parts.hostname,
            port if port is not None else DEFAULT_PORT, path,
            username, password, protocol,
            _query_bool(query, 'tcp_nodelay', True),
            _query_seconds(query, 'timeout'),
            _query_seconds(query, 'connect_timeout'),
            verify_mode == 'peer', query.get('ca_path'), cert_path, key_path)


def open_stream(server_uri):
    '''Open the stream described by a parsed URI.

    :param server_uri: Parsed URI.
    :type server_uri: :py:class:`ServerURI`
    '''
    if server_uri.transport == 'udp':
        return stream.udp_stream(
                server_uri.host, server_uri.port, server_uri.timeout)
    if server_uri.transport == 'unix':
        return stream.unix_stream(server_uri.path, server_uri.timeout)
    if server_uri.transport == 'tls':
        return stream.tls_stream(
                server_uri.host, server_uri.port, server_uri.timeout,
                server_uri.tcp_nodelay, server_uri.verify,
                server_uri.ca_path, server_uri.cert_path, server_uri.key_path)
    return stream.tcp_stream(
            server_uri.host, server_uri.port, server_uri.timeout,
            server_uri.tcp_nodelay)


class Connection:
    '''One protocol object talking to one server.

    All :py:class:`~memcodec.protocol.ProtocolBase` operations are
    available on the connection.  If an operation fails with an
    unrecoverable exception the connection is marked dirty, and
    :py:class:`~memcodec.pool.ConnectionPool` closes it instead of
    handing it out again.

    Use :py:func:`Connection.connect` to create one from a URI.
    '''
    log = logging.getLogger('memcodec.connection')

    def __init__(self, protocol, uri=None):
        '''
        :param protocol: The protocol object, owning a connected stream.
        :type protocol: :py:class:`~memcodec.protocol.ProtocolBase`
        :param uri: URI the connection was made to, for messages.
        :type uri: str
        '''
        self.protocol = protocol
        self.uri = uri
        self.is_dirty = False

    @classmethod
    def connect(cls, uri):
        '''Connect to the server at `uri`, and authenticate if the URI
        has a user name and password.

        :param uri: URI of the server, or an already parsed
            :py:class:`ServerURI`.
        :returns: :py:class:`Connection`
        :raises: :py:exc:`~memcodec.exceptions.InvalidURI`,
            :py:exc:`~memcodec.exceptions.TransportError`,
            :py:exc:`~memcodec.exceptions.AuthenticationError`
        '''
        server_uri = uri if isinstance(uri, ServerURI) else parse_uri(uri)
        cls.log.debug('Connecting to %s', server_uri.uri)

        server_stream = open_stream(server_uri)
        if server_uri.protocol == 'ascii':
            protocol = AsciiProtocol(server_stream)
        else:
            protocol = BinaryProtocol(server_stream)
        connection = cls(protocol, server_uri.uri)

        if server_uri.username and server_uri.password is not None:
            cls.log.debug(
                    'Authenticating to %s as %s', server_uri.uri,
                    server_uri.username)
            try:
                connection.auth(server_uri.username, server_uri.password)
            except MemcachedException:
                connection.close()
                raise
        return connection

    def _run(self, name, *args):
        '''INTERNAL: Run protocol method `name`, tracking whether the
        connection is still usable.'''
        try:
            return getattr(self.protocol, name)(*args)
        except MemcachedException as e:
            if not e.recoverable:
                self.is_dirty = True
                self.log.debug(
                        'Connection to %s marked dirty: %s', self.uri, e)
            raise
        except Exception as e:
            #  a partial request may be left in the stream
            self.is_dirty = True
            self.log.warning(
                    'Connection to %s marked dirty by unexpected %s: %s',
                    self.uri, type(e).__name__, e)
            raise

    def auth(self, username, password):
        return self._run('auth', username, password)

    def version(self):
        return self._run('version')

    def flush(self):
        return self._run('flush')

    def flush_with_delay(self, delay):
        return self._run('flush_with_delay', delay)

    def get(self, key, value_type=bytes):
        return self._run('get', key, value_type)

    def gets(self, keys, value_type=bytes):
        return self._run('gets', keys, value_type)

    def set(self, key, value, expiration=0):
        return self._run('set', key, value, expiration)

    def add(self, key, value, expiration=0):
        return self._run('add', key, value, expiration)

    def replace(self, key, value, expiration=0):
        return self._run('replace', key, value, expiration)

    def cas(self, key, value, expiration, cas_id):
        return self._run('cas', key, value, expiration, cas_id)

    def append(self, key, value):
        return self._run('append', key, value)

    def prepend(self, key, value):
        return self._run('prepend', key, value)

    def delete(self, key):
        return self._run('delete', key)

    def increment(self, key, amount):
        return self._run('increment', key, amount)

    def decrement(self, key, amount):
        return self._run('decrement', key, amount)

    def touch(self, key, expiration):
        return self._run('touch', key, expiration)

    def stats(self):
        return self._run('stats')

    def set_multi(self, entries, expiration=0):
        return self._run('set_multi', entries, expiration)

    def delete_multi(self, keys):
        return self._run('delete_multi', keys)

    def set_read_timeout(self, timeout):
        '''
        :param timeout: Seconds, or None to block forever.
        :type timeout: float or None
        '''
        self.protocol.get_stream().set_read_timeout(timeout)

    def set_write_timeout(self, timeout):
        self.protocol.get_stream().set_write_timeout(timeout)

    def close(self):
        self.protocol.close()

    def __repr__(self):
        return '<Connection to {0}>'.format(self.uri)
