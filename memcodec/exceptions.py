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
Exceptions raised by memcodec, and the classifier that turns binary
status codes and ASCII reply lines into them.

Every exception carries a `recoverable` attribute.  If it is False the
stream is out of sync with the server (or gone) and the connection must
not be used again.
'''

MAX_KEY_LENGTH = 250


class MemcachedException(Exception):
    '''Base exception that all other exceptions inherit from.
    This is never raised directly.'''
    recoverable = False


class TransportError(MemcachedException):
    '''Reading from or writing to the server failed.
    Subclass of :class:`MemcachedException`.'''


class ServerDisconnect(TransportError):
    '''The connection to the server closed.
    Subclass of :class:`TransportError`.'''


class TransportTimeout(TransportError):
    '''A socket read or write timed out.
    Subclass of :class:`TransportError`.'''


class FramingError(MemcachedException):
    '''The server response could not be framed; the client and server
    are no longer in sync.  Subclass of :class:`MemcachedException`.'''


class BadMagic(FramingError):
    '''A binary response header did not start with the response magic
    byte.  Subclass of :class:`FramingError`.'''

    def __init__(self, magic):
        super(BadMagic, self).__init__(
                'Bad magic byte in response: 0x{0:02x}'.format(magic))
        self.magic = magic


class BadResponse(FramingError):
    '''The server sent something that is not a valid reply to the
    command.  Subclass of :class:`FramingError`.'''


class LineTooLong(FramingError):
    '''An ASCII response line did not fit in the line buffer.
    Subclass of :class:`FramingError`.'''


class NoLineFound(FramingError):
    '''The server closed the stream in the middle of an ASCII response
    line.  Subclass of :class:`FramingError`.'''


class EncodingError(MemcachedException):
    '''Text was not valid UTF-8, or a numeric field could not be parsed.
    Subclass of :class:`MemcachedException`.'''


class CommandError(MemcachedException):
    '''The server reported that the command failed.  The connection
    may still be used.  Subclass of :class:`MemcachedException`.

    `status` is the binary protocol status code, or None for errors
    which only exist in the ASCII protocol.
    '''
    recoverable = True
    status = None

    def __init__(self, message='', status=None):
        super(CommandError, self).__init__(message or self.__doc__.strip())
        if status is not None:
            self.status = status


class KeyNotFound(CommandError):
    '''Key not found.'''
    status = 0x01


class KeyExists(CommandError):
    '''Key exists.'''
    status = 0x02


class ValueTooLarge(CommandError):
    '''Value too large.'''
    status = 0x03


class InvalidArguments(CommandError):
    '''Invalid arguments.'''
    status = 0x04


class NotStored(CommandError):
    '''Item not stored.'''
    status = 0x05


class NonNumeric(CommandError):
    '''Incr/decr on a non-numeric value.'''
    status = 0x06


class AuthenticationError(CommandError):
    '''Authentication error.'''
    status = 0x20


class AuthenticationContinue(CommandError):
    '''Authentication continue.'''
    status = 0x21


class UnknownCommand(CommandError):
    '''Unknown command.'''
    status = 0x81


class OutOfMemory(CommandError):
    '''Out of memory.'''
    status = 0x82


class NotSupported(CommandError):
    '''Not supported.'''
    status = 0x83


class InternalError(CommandError):
    '''Internal error.'''
    status = 0x84


class Busy(CommandError):
    '''Busy.'''
    status = 0x85


class TemporaryFailure(CommandError):
    '''Temporary failure.'''
    status = 0x86


class ServerError(CommandError):
    '''ASCII "SERVER_ERROR" reply.'''


class ClientErrorReply(CommandError):
    '''ASCII "CLIENT_ERROR" reply.'''


class ClientError(MemcachedException):
    '''The caller passed something invalid.  Raised before anything is
    sent to the server.  Subclass of :class:`MemcachedException`.'''
    recoverable = True


class KeyTooLong(ClientError):
    '''Key is longer than 250 bytes.  Subclass of :class:`ClientError`.'''


class InvalidKey(ClientError):
    '''Key contains whitespace or control characters.
    Subclass of :class:`ClientError`.'''


class OutOfRange(ClientError):
    '''A numeric argument does not fit its field in the protocol.
    Subclass of :class:`ClientError`.'''


class MissingCas(ClientError):
    '''A "cas" store was requested without a CAS unique.
    Subclass of :class:`ClientError`.'''


class InvalidURI(ClientError):
    '''An error was encountered in parsing the server URI.
    Subclass of :class:`ClientError`.'''


class UnknownProtocol(ClientError):
    '''An unknown protocol was specified in the memcached URI.
    Subclass of :class:`ClientError`.'''


class PoolTimeout(MemcachedException):
    '''No connection became available in the pool in time.
    Subclass of :class:`MemcachedException`.'''
    recoverable = True


_STATUS_ERRORS = dict(
        (cls.status, cls) for cls in (
            KeyNotFound, KeyExists, ValueTooLarge, InvalidArguments,
            NotStored, NonNumeric, AuthenticationError,
            AuthenticationContinue, UnknownCommand, OutOfMemory,
            NotSupported, InternalError, Busy, TemporaryFailure))


def check_key(key):
    '''Encode a key and make sure it fits the protocol.

    :param key: The memcache key.
    :type key: str or bytes
    :returns: bytes -- The UTF-8 encoded key.
    :raises: :py:exc:`~memcodec.exceptions.KeyTooLong`,
        :py:exc:`~memcodec.exceptions.InvalidKey`
    '''
    if isinstance(key, str):
        key = key.encode('utf-8')
    if len(key) > MAX_KEY_LENGTH:
        raise KeyTooLong(
                'Key is {0} bytes, maximum is {1}'.format(
                    len(key), MAX_KEY_LENGTH))
    #  space, CR and NL would end the key in a text command line
    for byte in key:
        if byte <= 0x20 or byte == 0x7f:
            raise InvalidKey(
                    'Key contains control character 0x{0:02x}: {1!r}'
                    .format(byte, key))
    return key


def check_uint(value, bits, what):
    '''Make sure `value` fits an unsigned field of `bits` bits.

    :returns: int -- `value`
    :raises: :py:exc:`~memcodec.exceptions.OutOfRange`
    '''
    if not isinstance(value, int) or isinstance(value, bool) \
            or not 0 <= value < (1 << bits):
        raise OutOfRange(
                '{0} must be an integer from 0 to {1}, got {2!r}'.format(
                    what, (1 << bits) - 1, value))
    return value


def error_for_status(status, message=b''):
    '''Build the exception for a binary response status.

    :param status: The status field of the response header.
    :type status: int
    :param message: Response body, which memcached fills with a short
        description of the error.
    :type message: bytes
    :returns: :py:exc:`~memcodec.exceptions.CommandError` instance.
    '''
    if isinstance(message, bytes):
        message = message.decode('utf-8', 'replace')
    cls = _STATUS_ERRORS.get(status)
    if cls is None:
        return CommandError(
                message or 'Unknown status 0x{0:04x}'.format(status),
                status=status)
    return cls(message)


def check_status(status, message=b''):
    '''Raise the mapped exception unless `status` is success (0).'''
    if status != 0:
        raise error_for_status(status, message)


def classify_line(line):
    '''Map ASCII error and failure replies to exceptions.

    :param line: A reply line, including the trailing CR+NL.
    :type line: str
    :returns: str -- `line`, if it is not an error reply.
    :raises: :py:exc:`~memcodec.exceptions.CommandError` subclasses.
    '''
    if line == 'ERROR\r\n':
        raise UnknownCommand()
    if line.startswith('CLIENT_ERROR'):
        message = line[13:].rstrip('\r\n')
        if 'non-numeric' in message:
            raise NonNumeric(message)
        raise ClientErrorReply(message)
    if line.startswith('SERVER_ERROR'):
        message = line[13:].rstrip('\r\n')
        if message.startswith('object too large'):
            raise ValueTooLarge(message)
        raise ServerError(message)
    if line == 'NOT_FOUND\r\n':
        raise KeyNotFound()
    if line == 'EXISTS\r\n':
        raise KeyExists()
    return line
