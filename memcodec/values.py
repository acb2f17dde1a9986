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
Conversion between Python values and what memcached stores: a byte
string plus a 32-bit flags word.

Outgoing values are anything with `get_flags()`, `get_length()` and
`write_to(stream)`; :py:func:`to_memcache_value` wraps the builtin types.
Incoming values are built by a "value type", anything with a
`from_memcache_value(data, flags, cas)` class method; the builtins
`bytes`, `str`, `int`, `float` and `bool` are accepted as value types
too.  Numbers and booleans are stored as decimal ASCII text, so the
server's incr/decr work on them.
'''

import collections

from .exceptions import ClientError, EncodingError

FLAGS_BYTES = 0


class Raw:
    '''A byte string with explicit flags.'''

    def __init__(self, data, flags=FLAGS_BYTES):
        '''
        :param data: The value as stored in the server.
        :type data: bytes
        :param flags: Flags stored alongside the value.
        :type flags: int (32 bits)
        '''
        self.data = bytes(data)
        self.flags = flags

    def get_flags(self):
        return self.flags

    def get_length(self):
        return len(self.data)

    def write_to(self, stream):
        stream.write(self.data)

    def __eq__(self, other):
        return (isinstance(other, Raw) and self.data == other.data
                and self.flags == other.flags)

    def __repr__(self):
        return '<Raw {0!r} flags={1}>'.format(self.data, self.flags)


class Item(collections.namedtuple('Item', ['value', 'flags', 'cas'])):
    '''Value type returning everything the server sent: the raw bytes,
    the flags and the CAS unique (None when the server sent none).'''

    @classmethod
    def from_memcache_value(cls, data, flags, cas=None):
        return cls(data, flags, cas)


def _text(value):
    '''INTERNAL: Render a number or boolean as ASCII bytes.'''
    if isinstance(value, bool):
        return b'true' if value else b'false'
    return repr(value).encode('ascii')


def to_memcache_value(value):
    '''Wrap `value` so it can be written to the server.

    :param value: Object to store.  Objects that already provide
        `get_flags()`, `get_length()` and `write_to()` are returned
        unchanged.
    :type value: bytes, str, int, float, bool or a value object.
    :returns: Value object.
    :raises: :py:exc:`~memcodec.exceptions.ClientError`
    '''
    if hasattr(value, 'write_to'):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return Raw(value)
    if isinstance(value, str):
        return Raw(value.encode('utf-8'))
    if isinstance(value, (bool, int, float)):
        return Raw(_text(value))
    raise ClientError(
            'Can not store value of type {0}'.format(type(value).__name__))


def _decode_text(data):
    try:
        return data.decode('utf-8')
    except UnicodeDecodeError as e:
        raise EncodingError('Value is not valid UTF-8: {0}'.format(e))


def _decode_int(data):
    text = _decode_text(data)
    try:
        return int(text)
    except ValueError:
        raise EncodingError('Value is not an integer: {0!r}'.format(text))


def _decode_float(data):
    text = _decode_text(data)
    try:
        return float(text)
    except ValueError:
        raise EncodingError('Value is not a float: {0!r}'.format(text))


def _decode_bool(data):
    text = _decode_text(data)
    if text == 'true':
        return True
    if text == 'false':
        return False
    raise EncodingError('Value is not a boolean: {0!r}'.format(text))


_BUILTIN_DECODERS = {
        bytes: bytes,
        str: _decode_text,
        int: _decode_int,
        float: _decode_float,
        bool: _decode_bool,
        }


def from_memcache_value(value_type, data, flags, cas=None):
    '''Build a value of `value_type` from what the server returned.

    :param value_type: `bytes`, `str`, `int`, `float`, `bool`, or a class
        with a `from_memcache_value(data, flags, cas)` method, such as
        :py:class:`~memcodec.values.Item`.
    :param data: The stored bytes.
    :type data: bytes
    :param flags: The stored flags.
    :type flags: int
    :param cas: CAS unique, if the server sent one.
    :type cas: int or None
    :raises: :py:exc:`~memcodec.exceptions.EncodingError`
    '''
    decoder = _BUILTIN_DECODERS.get(value_type)
    if decoder is not None:
        return decoder(data)
    return value_type.from_memcache_value(data, flags, cas)
