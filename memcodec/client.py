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

import logging

from .exceptions import ClientError, check_key
from .hashing import HasherCMemcache
from .pool import ConnectionPool


class Client:
    '''
    A memcache client for one or more servers.

    Keys are spread over the servers by the hash of the key,
    effectively "sharding" the key space.  Every server has its own
    :py:class:`~memcodec.pool.ConnectionPool`, so a client may be shared
    by threads.

    Exceptions are raised for server and connection problems, see
    :py:mod:`memcodec.exceptions`.  Misses are reported as None (for
    "get") or False (for "delete", "touch" and "cas").

    Example:

    >>> import memcodec
    >>> mc = memcodec.connect('memcache://localhost:11211?timeout=2')
    >>> mc.set('foo', 'bar')
    True
    >>> mc.get('foo', str)
    'bar'
    '''
    log = logging.getLogger('memcodec.client')

    def __init__(self, servers, pool_size=1, hash_function=None):
        '''
        :param servers: One or more server URIs, see
            :py:mod:`memcodec.connection`.
        :type servers: str or list
        :param pool_size: Most connections open at once to each server.
        :type pool_size: int
        :param hash_function: (None) Callable taking a key as `bytes` and
            returning a non-negative int.  The default is
            :py:class:`~memcodec.hashing.HasherCMemcache`.
        :raises: :py:exc:`~memcodec.exceptions.InvalidURI`,
            :py:exc:`~memcodec.exceptions.UnknownProtocol`
        '''
        if isinstance(servers, str):
            servers = [servers]
        if not servers:
            raise ClientError('At least one server is required')

        self.pools = [ConnectionPool(x, max_size=pool_size) for x in servers]
        self.hash_function = hash_function or HasherCMemcache()
        self.log.debug('Client for %d server(s)', len(self.pools))

    def _pool_index(self, key):
        '''INTERNAL: Index of the pool that `key` is stored on.'''
        return self.hash_function(check_key(key)) % len(self.pools)

    def _pool(self, key):
        return self.pools[self._pool_index(key)]

    def _keys_by_pool(self, keys):
        '''INTERNAL: Group `keys` by the index of their pool.

        :returns: dict -- Pool index to list of keys.
        '''
        grouped = {}
        for key in keys:
            grouped.setdefault(self._pool_index(key), []).append(key)
        return grouped

    def _run_all(self, function):
        '''INTERNAL: Run `function(connection)` on every server.

        :returns: list -- `(uri, result)` for each server, in the order
            the servers were given.
        '''
        results = []
        for pool in self.pools:
            with pool.get() as connection:
                results.append((pool.uri, function(connection)))
        return results

    def set_read_timeout(self, timeout):
        for pool in self.pools:
            pool.set_read_timeout(timeout)

    def set_write_timeout(self, timeout):
        for pool in self.pools:
            pool.set_write_timeout(timeout)

    def version(self):
        '''
        :returns: list -- `(uri, version)` for each server.
        '''
        return self._run_all(lambda x: x.version())

    def flush(self):
        '''Invalidate all items on all servers.'''
        self._run_all(lambda x: x.flush())

    def flush_with_delay(self, delay):
        self._run_all(lambda x: x.flush_with_delay(delay))

    def stats(self):
        '''
        :returns: list -- `(uri, stats)` for each server, where `stats` is
            a dictionary of `str` to `str`.
        '''
        return self._run_all(lambda x: x.stats())

    def get(self, key, value_type=bytes):
        '''Retrieve one key.

        :param key: The memcache key.
        :type key: str or bytes
        :param value_type: What to build the value as, see
            :py:func:`~memcodec.values.from_memcache_value`.
        :returns: The value, or None if the key was not found.
        '''
        with self._pool(key).get() as connection:
            return connection.get(key, value_type)

    def gets(self, keys, value_type=bytes):
        '''Retrieve several keys, with one request to each server
        involved.

        :returns: dict -- Found keys (as `str`) and their values.
        '''
        results = {}
        for index, server_keys in self._keys_by_pool(keys).items():
            with self.pools[index].get() as connection:
                results.update(connection.gets(server_keys, value_type))
        return results

    def set(self, key, value, expiration=0):
        with self._pool(key).get() as connection:
            return connection.set(key, value, expiration)

    def add(self, key, value, expiration=0):
        with self._pool(key).get() as connection:
            return connection.add(key, value, expiration)

    def replace(self, key, value, expiration=0):
        with self._pool(key).get() as connection:
            return connection.replace(key, value, expiration)

    def cas(self, key, value, expiration, cas_id):
        '''Store `value` if `key` is unchanged since it was read with
        `cas_id`, see :py:class:`~memcodec.values.Item`.

        :returns: bool -- False if the key changed or is gone.
        '''
        with self._pool(key).get() as connection:
            return connection.cas(key, value, expiration, cas_id)

    def append(self, key, value):
        with self._pool(key).get() as connection:
            return connection.append(key, value)

    def prepend(self, key, value):
        with self._pool(key).get() as connection:
            return connection.prepend(key, value)

    def delete(self, key):
        with self._pool(key).get() as connection:
            return connection.delete(key)

    def increment(self, key, amount):
        with self._pool(key).get() as connection:
            return connection.increment(key, amount)

    def decrement(self, key, amount):
        with self._pool(key).get() as connection:
            return connection.decrement(key, amount)

    def touch(self, key, expiration):
        with self._pool(key).get() as connection:
            return connection.touch(key, expiration)

    def set_multi(self, entries, expiration=0):
        '''Store several values, pipelined per server.

        :param entries: Keys and values to store.
        :type entries: dict or iterable of `(key, value)` pairs
        '''
        if hasattr(entries, 'items'):
            entries = entries.items()
        grouped = {}
        for key, value in entries:
            grouped.setdefault(self._pool_index(key), []).append((key, value))
        for index, server_entries in grouped.items():
            with self.pools[index].get() as connection:
                connection.set_multi(server_entries, expiration)

    def delete_multi(self, keys):
        '''Delete several keys, pipelined per server.

        :returns: list of bool -- For each key in `keys`, whether it
            existed.
        '''
        keys = list(keys)
        found = {}
        for index, server_keys in self._keys_by_pool(keys).items():
            with self.pools[index].get() as connection:
                results = connection.delete_multi(server_keys)
            found.update(zip(server_keys, results))
        return [found[x] for x in keys]

    def close(self):
        '''Close the idle connections to all servers.'''
        for pool in self.pools:
            pool.close()


def connect(servers, pool_size=1, hash_function=None):
    '''Create a :py:class:`Client`, see there for the arguments.'''
    return Client(servers, pool_size, hash_function)
