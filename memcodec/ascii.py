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
The memcached text ("ASCII") protocol.

Commands are single lines terminated by CR+NL, store commands are
followed by the value and another CR+NL.  Replies are read through a
:py:class:`~memcodec.reader.CappedLineReader` and dispatched on their
first word.
'''

import collections

from .exceptions import (
        AuthenticationError, BadResponse, ClientErrorReply, EncodingError,
        KeyExists, KeyNotFound, MissingCas, OutOfRange, check_key,
        check_uint, classify_line)
from .protocol import ProtocolBase, drain_responses
from .reader import DEFAULT_BUFFER_SIZE, CappedLineReader
from .values import from_memcache_value, to_memcache_value

CRLF = b'\r\n'

#: Options for :py:func:`AsciiProtocol.store`.  `flags`, if not 0,
#: replaces the flags of the value.  `cas` is required by the "cas"
#: command and ignored by the others.
Options = collections.namedtuple(
        'Options', ['noreply', 'exptime', 'flags', 'cas'],
        defaults=(False, 0, 0, None))


class StoreCommand:
    '''Verbs of the storage commands.'''
    SET = b'set'
    ADD = b'add'
    REPLACE = b'replace'
    APPEND = b'append'
    PREPEND = b'prepend'
    CAS = b'cas'


ValueHeader = collections.namedtuple(
        'ValueHeader', ['key', 'flags', 'length', 'cas'])


def _reply_text(line):
    '''INTERNAL: Decode a reply line and raise if it is an error reply.'''
    try:
        text = line.decode('utf-8')
    except UnicodeDecodeError as e:
        raise EncodingError('Reply is not valid UTF-8: {0}'.format(e))
    return classify_line(text)


def _parse_int(text, what):
    '''INTERNAL: Parse an unsigned decimal field of a reply.'''
    try:
        value = int(text)
    except ValueError:
        raise EncodingError('Invalid {0}: {1!r}'.format(what, text))
    if value < 0:
        raise BadResponse('Negative {0}: {1!r}'.format(what, text))
    return value


def _value_header(has_cas):
    '''INTERNAL: Build the parser for a "VALUE" or "END" line.

    The parser returns None for "END", otherwise a :py:class:`ValueHeader`.
    '''
    def parse(line):
        text = _reply_text(line)
        if text == 'END\r\n':
            return None
        fields = text.rstrip('\r\n').split(' ')
        if fields[0] != 'VALUE' or len(fields) != (5 if has_cas else 4):
            raise BadResponse('Invalid VALUE line: {0!r}'.format(text))
        cas = _parse_int(fields[4], 'CAS unique') if has_cas else None
        return ValueHeader(
                fields[1], _parse_int(fields[2], 'flags'),
                _parse_int(fields[3], 'value length'), cas)
    return parse


def _parse_store_reply(line):
    text = _reply_text(line)
    if text == 'STORED\r\n':
        return True
    if text == 'NOT_STORED\r\n':
        return False
    raise BadResponse(text)


def _expect(expected):
    '''INTERNAL: Build a parser accepting exactly the line `expected`.'''
    def parse(line):
        text = _reply_text(line)
        if text != expected:
            raise BadResponse(text)
        return True
    return parse


class AsciiProtocol(ProtocolBase):
    '''The memcached text protocol.

    See :py:class:`~memcodec.protocol.ProtocolBase` for the description
    of the methods.  Unlike the binary protocol, "add" and "replace"
    return False when the server answers NOT_STORED.
    '''

    def __init__(self, stream, buffer_size=DEFAULT_BUFFER_SIZE):
        '''
        :param stream: A connected stream.
        :param buffer_size: Longest reply line accepted, in bytes.
        :type buffer_size: int
        '''
        self.reader = CappedLineReader(stream, buffer_size)

    def get_stream(self):
        return self.reader.get_stream()

    def _write_line(self, *words):
        '''INTERNAL: Write a command line made of `words` (bytes or int).'''
        stream = self.get_stream()
        stream.write(b' '.join(
                x if isinstance(x, bytes) else str(x).encode('ascii')
                for x in words))
        stream.write(CRLF)

    def _command(self, parse, *words):
        '''INTERNAL: Send one command line and read one reply line.'''
        self._write_line(*words)
        self.get_stream().flush()
        return self.reader.read_line(parse)

    def _read_value(self, has_cas, value_type):
        '''INTERNAL: Read one "VALUE" block, or "END".

        :returns: None at "END", else a `(key, value)` tuple.
        '''
        header = self.reader.read_line(_value_header(has_cas))
        if header is None:
            return None
        data = self.reader.read_length(header.length)
        trailer = self.reader.read_length(2)
        if trailer != CRLF:
            raise BadResponse(
                    'Expected CR+NL after value, got {0!r}'.format(trailer))
        value = from_memcache_value(
                value_type, data, header.flags, header.cas)
        return header.key, value

    def _store_args(self, command, key, value, options):
        '''INTERNAL: Check a store command and build its line.

        :returns: tuple -- `(words, value)`
        :raises: :py:exc:`~memcodec.exceptions.ClientError`
        '''
        key = check_key(key)
        if command == StoreCommand.CAS and options.cas is None:
            raise MissingCas('cas_id should be present when using cas command')
        value = to_memcache_value(value)
        if not isinstance(options.exptime, int):
            raise OutOfRange(
                    'Expiration must be an integer, got {0!r}'.format(
                        options.exptime))

        words = [command, key,
                 check_uint(options.flags or value.get_flags(), 32, 'Flags'),
                 options.exptime, value.get_length()]
        if options.cas is not None:
            words.append(check_uint(options.cas, 64, 'CAS unique'))
        if options.noreply:
            words.append(b'noreply')
        return words, value

    def _write_store(self, words, value):
        '''INTERNAL: Write a store command and its value, without flushing.'''
        self._write_line(*words)
        value.write_to(self.get_stream())
        self.get_stream().write(CRLF)

    def _read_store_reply(self):
        return self.reader.read_line(_parse_store_reply)

    def store(self, command, key, value, options=Options()):
        '''Send a storage command.

        :param command: One of the :py:class:`StoreCommand` verbs.
        :type command: bytes
        :param key: The memcache key.
        :type key: str or bytes
        :param value: Value to store.
        :param options: Flags, expiration, CAS unique and noreply.
        :type options: :py:class:`Options`
        :returns: bool -- True for STORED (or with noreply), False for
            NOT_STORED.
        :raises: :py:exc:`~memcodec.exceptions.KeyExists`,
            :py:exc:`~memcodec.exceptions.KeyNotFound`,
            :py:exc:`~memcodec.exceptions.MissingCas`,
            :py:exc:`~memcodec.exceptions.BadResponse`
        '''
        self._write_store(*self._store_args(command, key, value, options))
        self.get_stream().flush()
        if options.noreply:
            return True
        return self._read_store_reply()

    def auth(self, username, password):
        '''Authenticate by storing "username password" under the key
        "auth", which is how memcached accepts credentials over the text
        protocol.'''
        try:
            self.set('auth', '{0} {1}'.format(username, password))
        except ClientErrorReply as e:
            raise AuthenticationError(str(e))

    def version(self):
        def parse(line):
            text = _reply_text(line)
            if not text.startswith('VERSION '):
                raise BadResponse(text)
            return text[8:].rstrip('\r\n')
        return self._command(parse, b'version')

    def flush(self):
        self._command(_expect('OK\r\n'), b'flush_all')

    def flush_with_delay(self, delay):
        self._command(_expect('OK\r\n'), b'flush_all', delay)

    def get(self, key, value_type=bytes):
        key = check_key(key)
        self._write_line(b'get', key)
        self.get_stream().flush()

        result = self._read_value(False, value_type)
        if result is None:
            return None
        if result[0].encode('utf-8') != key:
            raise BadResponse("key doesn't match in the response")
        if self._read_value(False, value_type) is not None:
            raise BadResponse('Expected end of get response')
        return result[1]

    def gets(self, keys, value_type=bytes):
        keys = [check_key(x) for x in keys]
        self._write_line(b'gets', *keys)
        self.get_stream().flush()

        results = {}
        #  at most one VALUE per key, then END
        for _ in range(len(keys) + 1):
            result = self._read_value(True, value_type)
            if result is None:
                return results
            results[result[0]] = result[1]

        raise BadResponse('Expected end of gets response')

    def set(self, key, value, expiration=0):
        return self.store(
                StoreCommand.SET, key, value, Options(exptime=expiration))

    def add(self, key, value, expiration=0):
        return self.store(
                StoreCommand.ADD, key, value, Options(exptime=expiration))

    def replace(self, key, value, expiration=0):
        return self.store(
                StoreCommand.REPLACE, key, value, Options(exptime=expiration))

    def cas(self, key, value, expiration, cas_id):
        try:
            return self.store(
                    StoreCommand.CAS, key, value,
                    Options(exptime=expiration, cas=cas_id))
        except (KeyExists, KeyNotFound):
            return False

    def append(self, key, value):
        return self.store(StoreCommand.APPEND, key, value)

    def prepend(self, key, value):
        return self.store(StoreCommand.PREPEND, key, value)

    def _read_delete(self):
        try:
            return self.reader.read_line(_expect('DELETED\r\n'))
        except KeyNotFound:
            return False

    def delete(self, key):
        self._write_line(b'delete', check_key(key))
        self.get_stream().flush()
        return self._read_delete()

    def _counter(self, verb, key, amount):
        '''INTERNAL: "incr" or "decr".  NOT_FOUND raises KeyNotFound.'''
        def parse(line):
            return _parse_int(_reply_text(line).rstrip('\r\n'), 'counter')
        return self._command(
                parse, verb, check_key(key), check_uint(amount, 64, 'Amount'))

    def increment(self, key, amount):
        return self._counter(b'incr', key, amount)

    def decrement(self, key, amount):
        return self._counter(b'decr', key, amount)

    def touch(self, key, expiration):
        try:
            return self._command(
                    _expect('TOUCHED\r\n'), b'touch', check_key(key),
                    expiration)
        except KeyNotFound:
            return False

    def stats(self):
        '''Read statistics.

        Every "STAT name value" line adds one entry, where the value is
        the rest of the line after the name, until "END".
        '''
        def parse(line):
            text = _reply_text(line)
            if text == 'END\r\n':
                return None
            fields = text.rstrip('\r\n').split(' ', 2)
            if fields[0] != 'STAT' or len(fields) < 3:
                raise BadResponse(text)
            return fields[1], fields[2]

        self._write_line(b'stats')
        self.get_stream().flush()

        stats = {}
        while True:
            stat = self.reader.read_line(parse)
            if stat is None:
                return stats
            stats[stat[0]] = stat[1]

    def set_multi(self, entries, expiration=0):
        options = Options(exptime=expiration)
        requests = [self._store_args(StoreCommand.SET, k, v, options)
                    for k, v in entries]
        for words, value in requests:
            self._write_store(words, value)
        self.get_stream().flush()
        drain_responses(len(requests), self._read_store_reply)

    def delete_multi(self, keys):
        keys = [check_key(x) for x in keys]
        for key in keys:
            self._write_line(b'delete', key)
        self.get_stream().flush()
        return drain_responses(len(keys), self._read_delete)
