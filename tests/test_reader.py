#!/usr/bin/env python
#
#  Test the capped line reader of the Python memcodec module.
#
#===============
#  This is based on a skeleton test file, more information at:
#
#     https://github.com/linsomniac/python-unittest-skeleton
#
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

import unittest

import mctestsupp
from mctestsupp import FakeStream
from memcodec import exceptions
from memcodec.reader import CappedLineReader


def identity(line):
    return line


class test_CappedLineReader(unittest.TestCase):
    def test_ReadLines(self):
        reader = CappedLineReader(FakeStream(b'OK\r\nEND\r\n'))
        self.assertEqual(reader.read_line(identity), b'OK\r\n')
        self.assertEqual(reader.read_line(identity), b'END\r\n')

    def test_LineSplitOverReads(self):
        reader = CappedLineReader(
                FakeStream(b'STORED\r\nNOT_STORED\r\n', chunk_size=1))
        self.assertEqual(reader.read_line(identity), b'STORED\r\n')
        self.assertEqual(reader.read_line(identity), b'NOT_STORED\r\n')

    def test_CrNlSplitAtChunkBoundary(self):
        #  the CR arrives at the end of one read, the NL in the next
        reader = CappedLineReader(FakeStream(b'VERSION 1\r\n', chunk_size=10))
        self.assertEqual(reader.read_line(identity), b'VERSION 1\r\n')

    def test_ParseResult(self):
        reader = CappedLineReader(FakeStream(b'42\r\n'))
        self.assertEqual(reader.read_line(lambda x: int(x)), 42)

    def test_LineConsumedWhenParseRaises(self):
        reader = CappedLineReader(FakeStream(b'bad\r\ngood\r\n'))

        def parse(line):
            raise ValueError(line)

        with self.assertRaises(ValueError):
            reader.read_line(parse)
        self.assertEqual(reader.read_line(identity), b'good\r\n')

    def test_LineTooLong(self):
        reader = CappedLineReader(FakeStream(b'0123456789\r\n'), 8)
        with self.assertRaises(exceptions.LineTooLong):
            reader.read_line(identity)
        self.assertEqual(len(reader.buffer), 8)

    def test_LineFillsBuffer(self):
        reader = CappedLineReader(FakeStream(b'012345\r\n'), 8)
        self.assertEqual(reader.read_line(identity), b'012345\r\n')
        self.assertEqual(reader.filled, 0)

    def test_BufferNeverGrows(self):
        data = b''.join(b'STAT item%d 1\r\n' % x for x in range(500))
        reader = CappedLineReader(FakeStream(data), 64)
        for x in range(500):
            reader.read_line(identity)
            self.assertEqual(len(reader.buffer), 64)

    def test_NoLineFound(self):
        reader = CappedLineReader(FakeStream(b'STORED'))
        with self.assertRaises(exceptions.NoLineFound):
            reader.read_line(identity)

        reader = CappedLineReader(FakeStream(b''))
        with self.assertRaises(exceptions.NoLineFound):
            reader.read_line(identity)

    def test_ReadExact(self):
        stream = FakeStream(b'VALUE\r\n0123456789trailing', chunk_size=4)
        reader = CappedLineReader(stream)
        self.assertEqual(reader.read_line(identity), b'VALUE\r\n')

        #  part of the value is already buffered from the line read
        self.assertGreater(reader.filled, 0)
        self.assertEqual(reader.read_length(10), b'0123456789')
        self.assertEqual(reader.read_length(3), b'tra')

    def test_ReadExactServerDisconnect(self):
        reader = CappedLineReader(FakeStream(b'012'))
        with self.assertRaises(exceptions.ServerDisconnect):
            reader.read_length(10)

    def test_ReadExactIntoBuffer(self):
        reader = CappedLineReader(FakeStream(b'abcdef'))
        buf = bytearray(6)
        reader.read_exact(buf)
        self.assertEqual(buf, bytearray(b'abcdef'))

    def test_Consume(self):
        reader = CappedLineReader(FakeStream(b'abc\r\n'))
        reader.read_line(lambda x: None)
        self.assertEqual(reader.filled, 0)

        reader = CappedLineReader(FakeStream(b'a\r\nbcd'))
        reader.read_line(identity)
        self.assertEqual(bytes(reader.buffer[:reader.filled]), b'bcd')
        reader.consume(2)
        self.assertEqual(bytes(reader.buffer[:reader.filled]), b'd')

    def test_GetStream(self):
        stream = FakeStream()
        self.assertIs(CappedLineReader(stream).get_stream(), stream)


if __name__ == '__main__':
    unittest.main()
