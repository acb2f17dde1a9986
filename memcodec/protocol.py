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

from .exceptions import MemcachedException


class ProtocolBase:
    '''Talk one memcached wire protocol over a stream.

    A protocol object owns exactly one stream, and every method writes a
    complete request and reads the complete response before returning.
    It is not safe to use one protocol object from several threads at
    once.

    This is an abstract base class, here largely for documentation
    purposes.  :py:class:`~memcodec.binary.BinaryProtocol` and
    :py:class:`~memcodec.ascii.AsciiProtocol` implement the methods.

    Keys may be `str` (encoded as UTF-8) or `bytes`.  Values are anything
    :py:func:`~memcodec.values.to_memcache_value` accepts.  `value_type`
    arguments are as for :py:func:`~memcodec.values.from_memcache_value`.
    '''

    def get_stream(self):
        '''Return the stream this protocol reads and writes.'''
        raise NotImplementedError('This class is only meant to be subclassed')

    def auth(self, username, password):
        '''Authenticate the connection.

        :raises: :py:exc:`~memcodec.exceptions.AuthenticationError`
        '''
        raise NotImplementedError('This class is only meant to be subclassed')

    def version(self):
        '''
        :returns: str -- The server version string.
        '''
        raise NotImplementedError('This class is only meant to be subclassed')

    def flush(self):
        '''Invalidate all items in the server immediately.'''
        raise NotImplementedError('This class is only meant to be subclassed')

    def flush_with_delay(self, delay):
        '''Invalidate all items in the server after `delay` seconds.'''
        raise NotImplementedError('This class is only meant to be subclassed')

    def get(self, key, value_type=bytes):
        '''Retrieve one key.

        :returns: The value, or None if the server has no value for `key`.
        '''
        raise NotImplementedError('This class is only meant to be subclassed')

    def gets(self, keys, value_type=bytes):
        '''Retrieve several keys in one round trip.

        :returns: dict -- Found keys (as `str`) and their values.  Keys
            the server does not have are left out.
        '''
        raise NotImplementedError('This class is only meant to be subclassed')

    def set(self, key, value, expiration=0):
        '''Store `value` under `key`.'''
        raise NotImplementedError('This class is only meant to be subclassed')

    def add(self, key, value, expiration=0):
        '''Store `value` only if the server does not hold `key`.'''
        raise NotImplementedError('This class is only meant to be subclassed')

    def replace(self, key, value, expiration=0):
        '''Store `value` only if the server already holds `key`.'''
        raise NotImplementedError('This class is only meant to be subclassed')

    def cas(self, key, value, expiration, cas_id):
        '''Store `value` only if `key` was not modified since `cas_id`
        was read.

        :returns: bool -- False if the key changed or does not exist.
        '''
        raise NotImplementedError('This class is only meant to be subclassed')

    def append(self, key, value):
        raise NotImplementedError('This class is only meant to be subclassed')

    def prepend(self, key, value):
        raise NotImplementedError('This class is only meant to be subclassed')

    def delete(self, key):
        '''
        :returns: bool -- False if the key did not exist.
        '''
        raise NotImplementedError('This class is only meant to be subclassed')

    def increment(self, key, amount):
        '''
        :returns: int -- The new value.
        :raises: :py:exc:`~memcodec.exceptions.KeyNotFound` if the key
            does not exist.  There is no sensible value to return instead.
        '''
        raise NotImplementedError('This class is only meant to be subclassed')

    def decrement(self, key, amount):
        raise NotImplementedError('This class is only meant to be subclassed')

    def touch(self, key, expiration):
        '''
        :returns: bool -- False if the key did not exist.
        '''
        raise NotImplementedError('This class is only meant to be subclassed')

    def stats(self):
        '''
        :returns: dict -- Statistic names and values, both `str`.
        '''
        raise NotImplementedError('This class is only meant to be subclassed')

    def set_multi(self, entries, expiration=0):
        '''Pipeline a "set" for every `(key, value)` pair in `entries`.

        All responses are read even if some of them are errors; the first
        error is raised afterwards, unless it left the stream unusable, in
        which case it is raised at once.
        '''
        raise NotImplementedError('This class is only meant to be subclassed')

    def delete_multi(self, keys):
        '''Pipeline a "delete" for every key.

        :returns: list of bool -- One result per key, as for
            :py:func:`delete`.
        '''
        raise NotImplementedError('This class is only meant to be subclassed')

    def close(self):
        self.get_stream().close()


def drain_responses(count, read_one):
    '''Read `count` pipelined responses with `read_one()`.

    Recoverable errors are remembered and the first one is raised after
    all responses are read, so the stream stays in sync.  Unrecoverable
    errors are raised at once.

    :returns: list -- The results of `read_one()`.
    '''
    results = []
    first_error = None
    for _ in range(count):
        try:
            results.append(read_one())
        except MemcachedException as e:
            if not e.recoverable:
                raise
            if first_error is None:
                first_error = e
    if first_error is not None:
        raise first_error
    return results
