#!/usr/bin/env python3
"""
End-to-end tests: FileSender talking to FileReceiver over loopback.
"""

import asyncio
import os
import socket
import tempfile
import unittest
from pathlib import Path

from bridge.transfer import FileSender, FileReceiver, listen, send_file


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(('127.0.0.1', 0))
        return sock.getsockname()[1]


async def delivered(values: list) -> list:
    """Wait for the final 1.0 to reach a list used as a progress sink."""
    for _ in range(500):
        if values and values[-1] == 1.0:
            return values
        await asyncio.sleep(0.01)
    raise AssertionError(f"progress never finished: {values}")


class TestTransfer(unittest.IsolatedAsyncioTestCase):
    """Send-then-receive scenarios."""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.src_dir = Path(self.tmp.name) / 'src'
        self.dest_dir = Path(self.tmp.name) / 'dest'
        self.src_dir.mkdir()
        self.sent_progress = []
        self.received_progress = []

    def tearDown(self):
        self.tmp.cleanup()

    def make_file(self, name: str, content: bytes) -> Path:
        path = self.src_dir / name
        path.write_bytes(content)
        return path

    async def transfer(self, path: Path, chunk_size: int = 80 * 1024):
        """Run one sender against one receiver; return both results."""
        receiver = FileReceiver(
            self.dest_dir, host='127.0.0.1', port=0, chunk_size=chunk_size
        )
        await receiver.start()
        try:
            receiving = asyncio.create_task(
                receiver.receive(self.received_progress.append)
            )
            await asyncio.sleep(0)

            sender = FileSender(chunk_size=chunk_size)
            sent = await sender.send(
                '127.0.0.1', receiver.port, path, self.sent_progress.append
            )
            received = await asyncio.wait_for(receiving, timeout=10)
        finally:
            await receiver.stop()
        await delivered(self.sent_progress)
        await delivered(self.received_progress)
        return sent, received

    def assertProgressWellFormed(self, values):
        self.assertTrue(values)
        self.assertEqual(values, sorted(values))
        self.assertEqual(values[-1], 1.0)
        self.assertEqual(values.count(1.0), 1)
        self.assertTrue(all(0.0 <= v <= 1.0 for v in values))

    async def test_report_pdf(self):
        """200000-byte report.pdf over 127.0.0.1."""
        content = os.urandom(200000)
        path = self.make_file('report.pdf', content)

        sent, received = await self.transfer(path)

        self.assertTrue(sent.ok, sent.message)
        self.assertTrue(received.ok, received.message)
        self.assertEqual(sent.bytes_transferred, 200000)
        self.assertEqual(received.bytes_transferred, 200000)
        self.assertEqual(received.file_name, 'report.pdf')
        self.assertEqual(received.file_path, self.dest_dir / 'report.pdf')
        self.assertEqual((self.dest_dir / 'report.pdf').read_bytes(), content)
        self.assertProgressWellFormed(self.sent_progress)
        self.assertProgressWellFormed(self.received_progress)

    async def test_zero_byte_file(self):
        path = self.make_file('empty.dat', b'')

        sent, received = await self.transfer(path)

        self.assertTrue(sent.ok)
        self.assertTrue(received.ok)
        self.assertEqual(received.bytes_transferred, 0)
        self.assertEqual((self.dest_dir / 'empty.dat').read_bytes(), b'')
        self.assertEqual(self.sent_progress, [1.0])
        self.assertEqual(self.received_progress, [1.0])

    async def test_unicode_name_and_odd_chunking(self):
        """Chunk size that doesn't divide the file size."""
        content = os.urandom(10007)
        path = self.make_file('отчёт 2024 ✓.txt', content)

        sent, received = await self.transfer(path, chunk_size=1000)

        self.assertTrue(received.ok, received.message)
        self.assertEqual(received.file_name, 'отчёт 2024 ✓.txt')
        self.assertEqual((self.dest_dir / 'отчёт 2024 ✓.txt').read_bytes(), content)
        self.assertProgressWellFormed(self.sent_progress)
        self.assertEqual(len(self.sent_progress), 11)

    async def test_name_with_surrounding_spaces(self):
        """The received file name equals the sent one, spaces included."""
        path = self.make_file(' notes.txt ', b'padded')

        sent, received = await self.transfer(path)

        self.assertTrue(received.ok, received.message)
        self.assertEqual(received.file_name, ' notes.txt ')
        self.assertEqual((self.dest_dir / ' notes.txt ').read_bytes(), b'padded')

    async def test_listen_and_send_file_helpers(self):
        content = b'x' * 5000
        path = self.make_file('notes.txt', content)
        port = free_port()

        receiving = asyncio.create_task(
            listen(port, self.dest_dir, self.received_progress.append, host='127.0.0.1')
        )
        # listen() binds inside the task
        for _ in range(100):
            await asyncio.sleep(0.01)
            sent = await send_file('127.0.0.1', path, port=port)
            if sent.ok:
                break

        received = await asyncio.wait_for(receiving, timeout=10)

        self.assertTrue(sent.ok, sent.message)
        self.assertTrue(received.ok, received.message)
        self.assertEqual((self.dest_dir / 'notes.txt').read_bytes(), content)


if __name__ == '__main__':
    unittest.main()
