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
The memcached binary protocol.

Every request and response is a 24 byte header followed by a body of
extras, key and value.  The header carries the length of each part, so
responses are framed without looking at their contents.  All integers
are big-endian.
'''

import collections
import struct

from .exceptions import (
        BadMagic, BadResponse, EncodingError, KeyExists, KeyNotFound,
        ServerDisconnect, check_key, check_status, check_uint)
from .protocol import ProtocolBase, drain_responses
from .values import from_memcache_value, to_memcache_value

REQUEST_MAGIC = 0x80
RESPONSE_MAGIC = 0x81

# magic, opcode, keylen, extralen, datatype, status/vbucket, bodylen,
# opaque, cas
HEADER_FMT = '>BBHBBHIIQ'
HEADER_SIZE = struct.calcsize(HEADER_FMT)

# flags, expiration
STORE_EXTRAS_FMT = '>II'
# amount, initial value, expiration
COUNTER_EXTRAS_FMT = '>QQI'
# flags
GET_RES_FMT = '>I'
COUNTER_RES_FMT = '>Q'
# expiration, or the delay of a flush
TIME_EXTRAS_FMT = '>I'

STATUS_OK = 0x0000

SASL_MECHANISM = b'PLAIN'


class Opcode:
    '''Binary protocol command bytes.'''
    GET = 0x00
    SET = 0x01
    ADD = 0x02
    REPLACE = 0x03
    DELETE = 0x04
    INCREMENT = 0x05
    DECREMENT = 0x06
    FLUSH = 0x08
    NOOP = 0x0a
    VERSION = 0x0b
    GETKQ = 0x0d
    APPEND = 0x0e
    PREPEND = 0x0f
    STAT = 0x10
    TOUCH = 0x1c
    START_AUTH = 0x21


class PacketHeader(collections.namedtuple('PacketHeader', [
        'magic', 'opcode', 'key_length', 'extras_length', 'data_type',
        'vbucket_id_or_status', 'total_body_length', 'opaque', 'cas'])):
    '''The fixed 24 byte header of a request or response.

    In responses `vbucket_id_or_status` is the status, see
    :py:attr:`status`.
    '''

    @classmethod
    def request(
            cls, opcode, key_length=0, extras_length=0, value_length=0,
            cas=0):
        '''Build a request header, computing the total body length.'''
        return cls(
                REQUEST_MAGIC, opcode, key_length, extras_length, 0, 0,
                extras_length + key_length + value_length, 0, cas)

    @classmethod
    def unpack(cls, data):
        '''Parse a response header.

        :param data: Exactly :py:data:`HEADER_SIZE` bytes.
        :type data: bytes
        :raises: :py:exc:`~memcodec.exceptions.BadMagic`
        '''
        header = cls(*struct.unpack(HEADER_FMT, data))
        if header.magic != RESPONSE_MAGIC:
            raise BadMagic(header.magic)
        return header

    def pack(self):
        return struct.pack(HEADER_FMT, *self)

    @property
    def status(self):
        return self.vbucket_id_or_status

    @property
    def value_length(self):
        return (self.total_body_length - self.extras_length
                - self.key_length)


Response = collections.namedtuple(
        'Response', ['header', 'key', 'extras', 'value'])


def _decode(data, what):
    '''INTERNAL: Decode UTF-8 text from a response.'''
    try:
        return data.decode('utf-8')
    except UnicodeDecodeError as e:
        raise EncodingError('{0} is not valid UTF-8: {1}'.format(what, e))


class BinaryProtocol(ProtocolBase):
    '''The memcached binary protocol.

    See :py:class:`~memcodec.protocol.ProtocolBase` for the description
    of the methods.
    '''

    def __init__(self, stream):
        '''
        :param stream: A connected stream, such as
            :py:class:`~memcodec.stream.SocketStream`.
        '''
        self.stream = stream

    def get_stream(self):
        return self.stream

    def _read_exact(self, length):
        '''INTERNAL: Read exactly `length` bytes from the stream.'''
        data = bytearray(length)
        view = memoryview(data)
        offset = 0
        while offset < length:
            count = self.stream.readinto(view[offset:])
            if not count:
                raise ServerDisconnect('Zero-length read in read_exact()')
            offset += count
        return bytes(data)

    def _write_request(self, opcode, key=b'', extras=b'', value=None, cas=0):
        '''INTERNAL: Write one request, without flushing.

        :param value: Value object, see :py:mod:`memcodec.values`.
        '''
        value_length = value.get_length() if value is not None else 0
        header = PacketHeader.request(
                opcode, len(key), len(extras), value_length, cas)
        self.stream.write(header.pack())
        if extras:
            self.stream.write(extras)
        if key:
            self.stream.write(key)
        if value is not None:
            value.write_to(self.stream)

    def _read_response(self):
        '''INTERNAL: Read one response.

        :returns: :py:class:`Response`
        :raises: :py:exc:`~memcodec.exceptions.BadMagic`,
            :py:exc:`~memcodec.exceptions.BadResponse`
        '''
        header = PacketHeader.unpack(self._read_exact(HEADER_SIZE))
        if header.value_length < 0:
            raise BadResponse(
                    'Body length {0} shorter than extras ({1}) plus key ({2})'
                    .format(
                        header.total_body_length, header.extras_length,
                        header.key_length))

        body = self._read_exact(header.total_body_length)
        key_offset = header.extras_length
        value_offset = key_offset + header.key_length
        return Response(
                header, body[key_offset:value_offset], body[:key_offset],
                body[value_offset:])

    def _read_checked(self):
        '''INTERNAL: Read a response and raise if its status is an error.'''
        response = self._read_response()
        check_status(response.header.status, response.value)
        return response

    def _command(self, opcode, key=b'', extras=b'', value=None, cas=0):
        '''INTERNAL: One request/response round trip.'''
        self._write_request(opcode, key, extras, value, cas)
        self.stream.flush()
        return self._read_checked()

    def _value(self, response, value_type):
        '''INTERNAL: Decode the value of a get response.'''
        if len(response.extras) < 4:
            raise BadResponse(
                    'Expected 4 bytes of flags, got {0}'
                    .format(len(response.extras)))
        flags = struct.unpack(GET_RES_FMT, response.extras[:4])[0]
        return from_memcache_value(
                value_type, response.value, flags, response.header.cas)

    def auth(self, username, password):
        '''Authenticate with SASL PLAIN.

        Only the single step PLAIN mechanism is supported, so there is no
        challenge/response exchange.
        '''
        credentials = b'\x00' + username.encode('utf-8') + b'\x00' \
            + password.encode('utf-8')
        self._command(
                Opcode.START_AUTH, SASL_MECHANISM,
                value=to_memcache_value(credentials))

    def version(self):
        response = self._command(Opcode.VERSION)
        return _decode(response.value, 'Version')

    def flush(self):
        self._command(Opcode.FLUSH)

    def flush_with_delay(self, delay):
        extras = struct.pack(
                TIME_EXTRAS_FMT, check_uint(delay, 32, 'Delay'))
        self._command(Opcode.FLUSH, extras=extras)

    def get(self, key, value_type=bytes):
        key = check_key(key)
        try:
            response = self._command(Opcode.GET, key)
        except KeyNotFound:
            return None
        return self._value(response, value_type)

    def gets(self, keys, value_type=bytes):
        '''Retrieve several keys with quiet gets.

        A GETKQ request is sent for every key, followed by a NOOP.  The
        server does not answer GETKQ for missing keys, so the response to
        the NOOP marks the end of the results.
        '''
        keys = [check_key(x) for x in keys]
        for key in keys:
            self._write_request(Opcode.GETKQ, key)
        self._write_request(Opcode.NOOP)
        self.stream.flush()

        results = {}
        for _ in range(len(keys) + 1):
            response = self._read_checked()
            if response.header.opcode == Opcode.NOOP:
                return results
            key = _decode(response.key, 'Key')
            results[key] = self._value(response, value_type)

        raise BadResponse('Expected end of gets response')

    def _store_args(self, key, value, expiration, cas=0):
        '''INTERNAL: Check and encode the parts of a store request.

        :returns: tuple -- `(key, extras, value)`
        :raises: :py:exc:`~memcodec.exceptions.ClientError`
        '''
        key = check_key(key)
        value = to_memcache_value(value)
        extras = struct.pack(
                STORE_EXTRAS_FMT,
                check_uint(value.get_flags(), 32, 'Flags'),
                check_uint(expiration, 32, 'Expiration'))
        check_uint(cas, 64, 'CAS unique')
        check_uint(
                len(extras) + len(key) + value.get_length(), 32,
                'Request body length')
        return key, extras, value

    def _store(self, opcode, key, value, expiration, cas=0):
        '''INTERNAL: Write a store request, without flushing.'''
        key, extras, value = self._store_args(key, value, expiration, cas)
        self._write_request(opcode, key, extras, value, cas)

    def set(self, key, value, expiration=0):
        self._store(Opcode.SET, key, value, expiration)
        self.stream.flush()
        self._read_checked()
        return True

    def add(self, key, value, expiration=0):
        '''Store `value` only if the server does not hold `key`.

        :raises: :py:exc:`~memcodec.exceptions.KeyExists` if it does.
        '''
        self._store(Opcode.ADD, key, value, expiration)
        self.stream.flush()
        self._read_checked()
        return True

    def replace(self, key, value, expiration=0):
        self._store(Opcode.REPLACE, key, value, expiration)
        self.stream.flush()
        self._read_checked()
        return True

    def cas(self, key, value, expiration, cas_id):
        self._store(Opcode.SET, key, value, expiration, cas_id)
        self.stream.flush()
        try:
            self._read_checked()
        except (KeyExists, KeyNotFound):
            return False
        return True

    def append(self, key, value):
        self._command(Opcode.APPEND, check_key(key),
                      value=to_memcache_value(value))
        return True

    def prepend(self, key, value):
        self._command(Opcode.PREPEND, check_key(key),
                      value=to_memcache_value(value))
        return True

    def _read_delete(self):
        '''INTERNAL: Read a delete response.'''
        try:
            self._read_checked()
        except KeyNotFound:
            return False
        return True

    def delete(self, key):
        self._write_request(Opcode.DELETE, check_key(key))
        self.stream.flush()
        return self._read_delete()

    def _counter(self, opcode, key, amount):
        '''INTERNAL: Increment or decrement.

        The initial value and expiration are 0, so memcached does not
        create missing keys and KeyNotFound is raised instead.
        '''
        extras = struct.pack(
                COUNTER_EXTRAS_FMT, check_uint(amount, 64, 'Amount'), 0, 0)
        response = self._command(opcode, check_key(key), extras)
        if len(response.value) != 8:
            raise BadResponse(
                    'Expected 8 byte counter value, got {0!r}'
                    .format(response.value))
        return struct.unpack(COUNTER_RES_FMT, response.value)[0]

    def increment(self, key, amount):
        return self._counter(Opcode.INCREMENT, key, amount)

    def decrement(self, key, amount):
        return self._counter(Opcode.DECREMENT, key, amount)

    def touch(self, key, expiration):
        extras = struct.pack(
                TIME_EXTRAS_FMT, check_uint(expiration, 32, 'Expiration'))
        try:
            self._command(Opcode.TOUCH, check_key(key), extras)
        except KeyNotFound:
            return False
        return True

    def stats(self):
        '''Read statistics.

        The server sends one response per statistic, and a response with
        an empty key and value at the end.
        '''
        self._write_request(Opcode.STAT)
        self.stream.flush()

        stats = {}
        while True:
            response = self._read_checked()
            if not response.key and not response.value:
                return stats
            stats[_decode(response.key, 'Stat name')] = \
                _decode(response.value, 'Stat value')

    def set_multi(self, entries, expiration=0):
        requests = [self._store_args(k, v, expiration) for k, v in entries]
        for key, extras, value in requests:
            self._write_request(Opcode.SET, key, extras, value)
        self.stream.flush()
        drain_responses(len(requests), self._read_checked)

    def delete_multi(self, keys):
        keys = [check_key(x) for x in keys]
        for key in keys:
            self._write_request(Opcode.DELETE, key)
        self.stream.flush()
        return drain_responses(len(keys), self._read_delete)
