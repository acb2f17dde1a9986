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

from binascii import crc32


class HasherBase:
    '''Turn memcache keys into numbers, for picking the server of a key.

    :py:class:`~memcodec.client.Client` takes the hash modulo the number
    of servers.  Subclasses implement :py:func:`hash`; instances are
    callable as a shortcut for it.
    '''
    def hash(self, key):
        '''Hash a key into a number.

        The same key must always give the same number, or keys will move
        between servers.

        :param key: memcache key
        :type key: bytes
        :returns: int -- Non-negative hash of `key`.
        '''
        raise NotImplementedError('This class is only meant to be subclassed')

    def __call__(self, key):
        return self.hash(key)


class HasherZero(HasherBase):
    '''Hasher that always returns 0, sending every key to the first
    server.'''
    def hash(self, key):
        return 0


class HasherCMemcache(HasherBase):
    '''Hasher compatible with the C memcache client's crc32 hash, so
    keys land on the same servers it would pick.'''
    def hash(self, key):
        if isinstance(key, str):
            key = key.encode('utf-8')
        return ((((crc32(key) & 0xffffffff) >> 16) & 0x7fff) or 1)
