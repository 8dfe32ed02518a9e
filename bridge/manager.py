"""
Transfer Manager - Background Jobs

Long-lived callers (the REST API, a desktop UI) don't want to await a
transfer inline. The manager runs each send/receive as an asyncio task,
remembers its progress and result, and lets callers cancel or watch it:

- start_send(address, port, path): Send a file in the background
- start_receive(port, dest_dir): Listen for one file in the background
- cancel(job_id): Stop a job and wait for its final result
- subscribe(job_id): Queue of progress/result events
"""

import asyncio
import time
import uuid
import logging
from pathlib import Path
from typing import Optional, List, Dict, Union, Callable, Awaitable
from dataclasses import dataclass, field

from .config import Config
from .transfer import (
    FileSender, FileReceiver, TransferResult, TransferCancelled, BindError
)

logger = logging.getLogger(__name__)


@dataclass
class TransferJob:
    """A send or receive running in the background."""
    id: str
    direction: str  # 'send' or 'receive'
    peer: Optional[str] = None
    file_path: Optional[str] = None
    port: Optional[int] = None
    progress: float = 0.0
    result: Optional[TransferResult] = None
    created_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    task: Optional[asyncio.Task] = field(default=None, repr=False)
    engine: Union[FileSender, FileReceiver, None] = field(default=None, repr=False)
    listeners: List[asyncio.Queue] = field(default_factory=list, repr=False)
    loop: Optional[asyncio.AbstractEventLoop] = field(default=None, repr=False)

    @property
    def done(self) -> bool:
        return self.result is not None

    def report(self, fraction: float):
        """Progress sink handed to the engine (called on its progress thread)."""
        self.loop.call_soon_threadsafe(self.update, fraction)

    def update(self, fraction: float):
        self.progress = fraction
        self._publish({'event': 'progress', 'progress': fraction})

    def finish(self, result: TransferResult):
        self.result = result
        self.finished_at = time.time()
        self._publish({'event': 'result', 'job': self.to_dict()})

    def _publish(self, event: dict):
        for queue in self.listeners:
            queue.put_nowait(event)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        session = self.engine.session if self.engine else None
        return {
            'id': self.id,
            'direction': self.direction,
            'peer': self.peer,
            'file_path': self.file_path,
            'port': self.port,
            'progress': self.progress,
            'done': self.done,
            'created_at': self.created_at,
            'finished_at': self.finished_at,
            'session': session.to_dict() if session and not self.done else None,
            'result': self.result.to_dict() if self.result else None,
        }


class TransferManager:
    """
    Runs transfers as background tasks.

    Jobs are kept after they finish so their results can be read back.
    """

    def __init__(self, config: Config = None):
        """
        Args:
            config: Settings used for every job (defaults if not provided)
        """
        self.config = config or Config()
        self.jobs: Dict[str, TransferJob] = {}

    @property
    def active_jobs(self) -> List[TransferJob]:
        return [job for job in self.jobs.values() if not job.done]

    def _new_job(self, direction: str, **kwargs) -> TransferJob:
        job = TransferJob(
            id=uuid.uuid4().hex[:12], direction=direction,
            loop=asyncio.get_running_loop(), **kwargs
        )
        self.jobs[job.id] = job
        return job

    def _run(self, job: TransferJob, start: Callable[[], Awaitable[TransferResult]]):
        """Start the job's task and record its result when it ends."""
        async def runner():
            result = await start()
            if job.engine.reporter is not None:
                try:
                    # Progress events go out before the result event
                    await job.engine.reporter.flush()
                except asyncio.CancelledError:
                    logger.debug(f"Job {job.id}: cancelled while flushing progress")
            job.finish(result)
            level = logging.INFO if result.ok else logging.WARNING
            logger.log(level, f"Job {job.id} ({job.direction}) finished: "
                              f"{'ok' if result.ok else result.kind.value}")
            return result

        job.task = asyncio.create_task(runner())

    async def start_send(self, address: str, port: int,
                         file_path: Union[str, Path]) -> TransferJob:
        """Send file_path to address:port in the background."""
        sender = FileSender(
            chunk_size=self.config.chunk_size,
            connect_timeout=self.config.connect_timeout,
            write_timeout=self.config.transfer_timeout,
        )
        job = self._new_job(
            'send', peer=f"{address}:{port}", file_path=str(file_path),
            port=port, engine=sender
        )
        logger.info(f"Job {job.id}: sending {file_path} to {address}:{port}")
        self._run(job, lambda: sender.send(address, port, file_path, job.report))
        return job

    async def start_receive(self, port: Optional[int] = None,
                            dest_dir: Union[str, Path, None] = None) -> TransferJob:
        """
        Listen for one incoming file in the background.

        The port is bound before this returns, so a bind failure shows up
        as an already-finished job.
        """
        receiver = FileReceiver(
            dest_dir or self.config.dest_dir,
            host=self.config.host,
            port=self.config.port if port is None else port,
            chunk_size=self.config.chunk_size,
            header_timeout=self.config.header_timeout,
            read_timeout=self.config.transfer_timeout,
            overwrite=self.config.overwrite,
            keep_partial=self.config.keep_partial,
        )
        job = self._new_job(
            'receive', file_path=str(receiver.dest_dir),
            port=receiver.port, engine=receiver
        )

        try:
            await receiver.start()
        except BindError as e:
            logger.error(f"Job {job.id}: {e.message}")
            job.update(1.0)
            job.finish(TransferResult.failed(e))
            return job

        job.port = receiver.port
        logger.info(f"Job {job.id}: receiving on port {receiver.port} into {receiver.dest_dir}")

        async def receive_one():
            try:
                return await receiver.receive(job.report)
            finally:
                await receiver.stop()

        self._run(job, receive_one)
        return job

    def get(self, job_id: str) -> Optional[TransferJob]:
        return self.jobs.get(job_id)

    def list_jobs(self) -> List[TransferJob]:
        return sorted(self.jobs.values(), key=lambda j: j.created_at)

    def subscribe(self, job_id: str) -> asyncio.Queue:
        """
        Get a queue of events for a job.

        Events are dicts with 'event' set to 'progress' or 'result'. A job
        that already finished gets its result event straight away.
        """
        job = self.jobs[job_id]
        queue: asyncio.Queue = asyncio.Queue()
        if job.done:
            queue.put_nowait({'event': 'result', 'job': job.to_dict()})
        else:
            job.listeners.append(queue)
        return queue

    def unsubscribe(self, job_id: str, queue: asyncio.Queue):
        job = self.jobs.get(job_id)
        if job and queue in job.listeners:
            job.listeners.remove(queue)

    async def cancel(self, job_id: str) -> TransferJob:
        """
        Cancel a job and wait until it reaches its final result.

        Raises:
            KeyError: unknown job
        """
        job = self.jobs[job_id]
        if job.task is not None and not job.task.done():
            logger.info(f"Cancelling job {job.id}")
            job.task.cancel()
            await asyncio.gather(job.task, return_exceptions=True)

        if not job.done:
            # Task was cancelled before the engine got to run
            if isinstance(job.engine, FileReceiver):
                await job.engine.stop()
            job.update(1.0)
            job.finish(TransferResult.failed(TransferCancelled("Cancelled before start")))

        return job

    async def shutdown(self):
        """Cancel every running job."""
        for job in self.active_jobs:
            await self.cancel(job.id)

    def get_stats(self) -> dict:
        """Get manager statistics."""
        finished = [j for j in self.jobs.values() if j.done]
        return {
            'jobs': len(self.jobs),
            'active': len(self.active_jobs),
            'succeeded': sum(1 for j in finished if j.result.ok),
            'failed': sum(1 for j in finished if not j.result.ok),
            'bytes_sent': sum(j.result.bytes_transferred for j in finished
                              if j.result.ok and j.direction == 'send'),
            'bytes_received': sum(j.result.bytes_transferred for j in finished
                                  if j.result.ok and j.direction == 'receive'),
        }
