#!/usr/bin/env python3
"""
Unit tests for the transfer header codec.

Covers:
- Byte layout of encoded headers
- Decoding from a stream, including early EOF at every field
- Guards against oversized and undecodable file names
- Address validation
"""

import asyncio
import struct
import unittest

from bridge.transfer.protocol import (
    TransferHeader, encode_header, read_header, validate_address,
    MAX_FILE_NAME_LENGTH
)
from bridge.transfer.errors import ProtocolError, PeerConnectionError, FailureKind


def make_reader(data: bytes) -> asyncio.StreamReader:
    """A reader holding data followed by EOF."""
    reader = asyncio.StreamReader()
    reader.feed_data(data)
    reader.feed_eof()
    return reader


class TestEncodeHeader(unittest.TestCase):
    """Test cases for header encoding."""

    def test_layout(self):
        """Name length, name, then size, all little-endian."""
        data = encode_header('report.pdf', 200000)
        self.assertEqual(
            data,
            struct.pack('<I', 10) + b'report.pdf' + struct.pack('<Q', 200000)
        )
        self.assertEqual(len(data), 4 + 10 + 8)

    def test_length_counts_utf8_bytes(self):
        """The prefix is the encoded length, not the character count."""
        name = 'résumé.txt'
        data = encode_header(name, 0)
        (length,) = struct.unpack('<I', data[:4])
        self.assertEqual(length, len(name.encode('utf-8')))
        self.assertEqual(data[4:4 + length].decode('utf-8'), name)

    def test_header_to_bytes_matches_encode(self):
        header = TransferHeader(file_name='a.bin', file_size=5)
        self.assertEqual(header.to_bytes(), encode_header('a.bin', 5))
        self.assertEqual(header.file_name_bytes, b'a.bin')

    def test_rejects_oversized_name(self):
        with self.assertRaises(ValueError):
            encode_header('x' * (MAX_FILE_NAME_LENGTH + 1), 1)

    def test_rejects_negative_size(self):
        with self.assertRaises(ValueError):
            encode_header('a.txt', -1)


class TestReadHeader(unittest.IsolatedAsyncioTestCase):
    """Test cases for header decoding."""

    async def test_decodes_and_leaves_payload(self):
        """Decoding consumes the header only."""
        reader = make_reader(encode_header('report.pdf', 3) + b'abc')

        header = await read_header(reader)

        self.assertEqual(header, TransferHeader('report.pdf', 3))
        self.assertEqual(await reader.read(), b'abc')

    async def test_large_size(self):
        """Sizes beyond 32 bits survive."""
        size = 6 * 1024 ** 3
        header = await read_header(make_reader(encode_header('big.iso', size)))
        self.assertEqual(header.file_size, size)

    async def test_empty_name(self):
        header = await read_header(make_reader(encode_header('', 7)))
        self.assertEqual(header.file_name, '')
        self.assertEqual(header.file_size, 7)

    async def test_eof_inside_length_prefix(self):
        """Two of the four length bytes, then the peer hangs up."""
        reader = make_reader(b'\x0a\x00')

        with self.assertRaises(ProtocolError) as ctx:
            await read_header(reader)

        self.assertEqual(ctx.exception.kind, FailureKind.MALFORMED_HEADER)
        self.assertIsInstance(ctx.exception.cause, asyncio.IncompleteReadError)

    async def test_eof_inside_name(self):
        reader = make_reader(struct.pack('<I', 10) + b'repo')
        with self.assertRaises(ProtocolError):
            await read_header(reader)

    async def test_eof_inside_size(self):
        reader = make_reader(struct.pack('<I', 1) + b'a' + b'\x01\x02\x03')
        with self.assertRaises(ProtocolError):
            await read_header(reader)

    async def test_empty_stream(self):
        with self.assertRaises(ProtocolError):
            await read_header(make_reader(b''))

    async def test_oversized_name_length(self):
        """A corrupt peer claiming a huge name is rejected before reading it."""
        reader = make_reader(struct.pack('<I', MAX_FILE_NAME_LENGTH + 1) + b'rest')

        with self.assertRaises(ProtocolError) as ctx:
            await read_header(reader)

        self.assertEqual(ctx.exception.kind, FailureKind.MALFORMED_HEADER)
        self.assertEqual(await reader.read(), b'rest')

    async def test_invalid_utf8_name(self):
        reader = make_reader(struct.pack('<I', 2) + b'\xff\xfe' + struct.pack('<Q', 0))
        with self.assertRaises(ProtocolError):
            await read_header(reader)


class TestValidateAddress(unittest.TestCase):
    """Test cases for address validation."""

    def test_accepts_ip_literals(self):
        self.assertEqual(validate_address('127.0.0.1', 12345), '127.0.0.1')
        self.assertEqual(validate_address(' ::1 ', 12345), '::1')

    def test_rejects_hostnames_and_garbage(self):
        for address in ('localhost', '999.1.1.1', '', '10.0.0'):
            with self.subTest(address=address):
                with self.assertRaises(PeerConnectionError):
                    validate_address(address, 12345)

    def test_rejects_bad_ports(self):
        for port in (0, -1, 65536):
            with self.subTest(port=port):
                with self.assertRaises(PeerConnectionError) as ctx:
                    validate_address('127.0.0.1', port)
                self.assertEqual(ctx.exception.kind, FailureKind.CONNECTION_ERROR)


if __name__ == '__main__':
    unittest.main()
