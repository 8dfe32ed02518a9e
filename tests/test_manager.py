#!/usr/bin/env python3
"""
Unit tests for TransferManager background jobs.
"""

import asyncio
import tempfile
import unittest
from pathlib import Path

from bridge.config import Config
from bridge.manager import TransferManager
from bridge.transfer import FailureKind


class TestTransferManager(unittest.IsolatedAsyncioTestCase):
    """Test cases for TransferManager."""

    async def asyncSetUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self.tmp.name)
        self.manager = TransferManager(Config(
            host='127.0.0.1', port=0, dest_dir=self.dir / 'inbox'
        ))

    async def asyncTearDown(self):
        await self.manager.shutdown()
        self.tmp.cleanup()

    async def wait_done(self, job):
        await asyncio.wait_for(job.task, timeout=10)
        self.assertTrue(job.done)

    async def test_send_and_receive_jobs(self):
        source = self.dir / 'photo.jpg'
        source.write_bytes(b'\xff\xd8' * 5000)

        receive_job = await self.manager.start_receive()
        self.assertNotEqual(receive_job.port, 0)
        send_job = await self.manager.start_send('127.0.0.1', receive_job.port, source)

        await self.wait_done(send_job)
        await self.wait_done(receive_job)

        self.assertTrue(send_job.result.ok)
        self.assertTrue(receive_job.result.ok)
        self.assertEqual(send_job.progress, 1.0)
        self.assertEqual(receive_job.progress, 1.0)
        self.assertEqual((self.dir / 'inbox' / 'photo.jpg').read_bytes(), source.read_bytes())

        stats = self.manager.get_stats()
        self.assertEqual(stats['succeeded'], 2)
        self.assertEqual(stats['bytes_sent'], 10000)
        self.assertEqual(stats['bytes_received'], 10000)

    async def test_cancel_receive(self):
        job = await self.manager.start_receive()
        receiver = job.engine

        job = await self.manager.cancel(job.id)

        self.assertTrue(job.done)
        self.assertEqual(job.result.kind, FailureKind.CANCELLED)
        self.assertFalse(receiver.is_listening)
        self.assertEqual(self.manager.active_jobs, [])

    async def test_bind_error_job(self):
        first = await self.manager.start_receive()
        second = await self.manager.start_receive(port=first.port)

        self.assertTrue(second.done)
        self.assertEqual(second.result.kind, FailureKind.BIND_ERROR)
        self.assertEqual(second.progress, 1.0)

    async def test_send_missing_file_job(self):
        job = await self.manager.start_send('127.0.0.1', 9, self.dir / 'missing.txt')
        await self.wait_done(job)

        self.assertEqual(job.result.kind, FailureKind.FILE_NOT_FOUND)
        self.assertEqual(job.to_dict()['result']['kind'], 'file_not_found')

    async def test_subscribe_sees_progress_then_result(self):
        source = self.dir / 'a.bin'
        source.write_bytes(b'a' * 300000)

        receive_job = await self.manager.start_receive()
        events = self.manager.subscribe(receive_job.id)
        await self.manager.start_send('127.0.0.1', receive_job.port, source)

        seen = []
        while True:
            event = await asyncio.wait_for(events.get(), timeout=10)
            seen.append(event)
            if event['event'] == 'result':
                break

        progress = [e['progress'] for e in seen if e['event'] == 'progress']
        self.assertEqual(progress[-1], 1.0)
        self.assertEqual(progress, sorted(progress))
        self.assertTrue(seen[-1]['job']['result']['ok'])

    async def test_subscribe_after_finish(self):
        job = await self.manager.start_send('127.0.0.1', 9, self.dir / 'missing.txt')
        await self.wait_done(job)

        events = self.manager.subscribe(job.id)
        event = events.get_nowait()
        self.assertEqual(event['event'], 'result')

    async def test_unknown_job(self):
        self.assertIsNone(self.manager.get('nope'))
        with self.assertRaises(KeyError):
            await self.manager.cancel('nope')


if __name__ == '__main__':
    unittest.main()
