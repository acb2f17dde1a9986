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

from .exceptions import LineTooLong, NoLineFound, ServerDisconnect

DEFAULT_BUFFER_SIZE = 2048


class CappedLineReader:
    '''Line oriented reads from a stream, through a fixed size buffer.

    ASCII protocol replies are read a line at a time.  Lines are
    accumulated in a buffer of `size` bytes that is allocated once and
    never grows, so a server that never sends CR+NL can not make the
    client allocate without bound.

    Note that this class buffers data read from the stream, so you should
    **never** read data directly from the underlying stream while it is
    in use, as it may confuse other software which uses this interface.
    '''

    def __init__(self, stream, size=DEFAULT_BUFFER_SIZE):
        '''
        :param stream: Stream to read from, it must provide `readinto()`
            and `read()`.
        :param size: Size of the line buffer in bytes.
        :type size: int
        '''
        self.stream = stream
        self.buffer = bytearray(size)
        self.filled = 0

    def get_stream(self):
        '''Return the underlying stream, for writing requests.'''
        return self.stream

    def consume(self, length):
        '''Drop `length` bytes from the front of the buffer.

        :param length: Number of bytes to discard.
        :type length: int
        '''
        length = min(length, self.filled)
        self.buffer[:self.filled - length] = \
            self.buffer[length:self.filled]
        self.filled -= length

    def _find_line(self, start=0):
        pos = self.buffer.find(b'\r\n', start, self.filled)
        if pos < 0:
            return None
        return pos + 2

    def read_line(self, parse):
        '''Read a CR+NL terminated line and hand it to `parse`.

        The line, including the CR+NL, is passed to `parse` as `bytes`
        and then removed from the buffer, whether or not `parse` raised.

        :param parse: Callable taking the line and returning the result.
        :type parse: callable
        :returns: Whatever `parse` returned.
        :raises: :py:exc:`~memcodec.exceptions.LineTooLong`,
            :py:exc:`~memcodec.exceptions.NoLineFound`
        '''
        end = self._find_line()
        while end is None:
            if self.filled == len(self.buffer):
                raise LineTooLong(
                        'Ascii protocol response too long (over {0} bytes)'
                        .format(len(self.buffer)))
            view = memoryview(self.buffer)[self.filled:]
            try:
                count = self.stream.readinto(view)
            finally:
                view.release()
            if not count:
                raise NoLineFound('Ascii protocol no line found')

            #  a CR may have been the last byte of the previous read
            start = max(0, self.filled - 1)
            self.filled += count
            end = self._find_line(start)

        line = bytes(self.buffer[:end])
        try:
            return parse(line)
        finally:
            self.consume(end)

    def read_exact(self, buf):
        '''Fill `buf` completely.

        Bytes already in the line buffer are used first, the remainder
        is read straight from the stream into `buf`.

        :param buf: Writable buffer, such as a `bytearray`.
        :raises: :py:exc:`~memcodec.exceptions.ServerDisconnect`
        '''
        view = memoryview(buf)
        try:
            buffered = min(len(view), self.filled)
            view[:buffered] = self.buffer[:buffered]
            self.consume(buffered)

            offset = buffered
            while offset < len(view):
                count = self.stream.readinto(view[offset:])
                if not count:
                    raise ServerDisconnect('Zero-length read in read_exact()')
                offset += count
        finally:
            view.release()

    def read_length(self, length):
        '''Read exactly `length` bytes.

        :returns: bytes -- Data read.
        '''
        data = bytearray(length)
        self.read_exact(data)
        return bytes(data)
