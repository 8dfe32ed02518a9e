"""
Progress Reporting

Both directions report a fraction in [0.0, 1.0] into a caller-owned sink.
The engine never blocks waiting on the sink: every value is handed to a
single worker thread owned by the session's ProgressReporter, which calls
the sink in order. A slow observer therefore delays only its own updates.

Sinks run off the event loop thread; one that touches loop-bound objects
must hop back itself (loop.call_soon_threadsafe).
"""

import time
import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor, Future, wait
from typing import Optional, Tuple, Callable
from dataclasses import dataclass, field
from pathlib import Path

from .protocol import TransferHeader

logger = logging.getLogger(__name__)


# Progress callback type
ProgressSink = Callable[[float], None]


class ProgressReporter:
    """
    Guards a ProgressSink for one session.

    - Values are clamped to [0.0, 1.0] and never go backwards
    - An intermediate 1.0 is held back; finish() emits the single final 1.0
    - Delivery is fire-and-forget on a dedicated thread, in report order
    - Exceptions raised by the sink are logged, never propagated
    """

    def __init__(self, sink: Optional[ProgressSink] = None):
        self.sink = sink
        self.last = 0.0
        self.finished = False
        self._executor: Optional[ThreadPoolExecutor] = None
        self._pending: Optional[Future] = None
        if sink is not None:
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix='bridge-progress'
            )

    def report(self, fraction: float):
        """Report intermediate progress."""
        if self.finished:
            return
        fraction = min(max(fraction, 0.0), 1.0)
        if fraction < self.last or fraction >= 1.0:
            return
        self.last = fraction
        self._emit(fraction)

    def finish(self):
        """Queue the terminal 1.0 (once) and release the worker."""
        if self.finished:
            return
        self.finished = True
        self.last = 1.0
        self._emit(1.0)
        if self._executor is not None:
            self._executor.shutdown(wait=False)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until every queued value reached the sink."""
        if self._pending is None:
            return True
        done, _ = wait([self._pending], timeout=timeout)
        return bool(done)

    async def flush(self):
        """Wait (without blocking the loop) until every queued value reached the sink."""
        if self._pending is not None:
            await asyncio.wrap_future(self._pending)

    def _emit(self, value: float):
        if self._executor is None:
            return
        self._pending = self._executor.submit(self._deliver, value)

    def _deliver(self, value: float):
        try:
            self.sink(value)
        except Exception as e:
            logger.warning(f"Progress sink raised {type(e).__name__}: {e}")


@dataclass
class TransferSession:
    """State of one transfer over one connection."""
    direction: str  # 'send' or 'receive'
    peer: Optional[Tuple[str, int]] = None
    header: Optional[TransferHeader] = None
    file_path: Optional[Path] = None
    bytes_transferred: int = 0
    start_time: float = field(default_factory=time.time)
    phase: str = 'initializing'  # 'connecting', 'listening', 'transferring', 'complete', 'failed', 'cancelled'

    @property
    def fraction(self) -> float:
        """Progress as 0.0 to 1.0."""
        if self.header is None:
            return 0.0
        if self.header.file_size == 0:
            return 1.0
        return self.bytes_transferred / self.header.file_size

    @property
    def elapsed_seconds(self) -> float:
        """Time elapsed since start."""
        return time.time() - self.start_time

    @property
    def speed_bytes_per_sec(self) -> float:
        """Transfer speed in bytes/second."""
        elapsed = self.elapsed_seconds
        if elapsed == 0:
            return 0
        return self.bytes_transferred / elapsed

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'direction': self.direction,
            'peer': f"{self.peer[0]}:{self.peer[1]}" if self.peer else None,
            'file_name': self.header.file_name if self.header else None,
            'file_size': self.header.file_size if self.header else None,
            'file_path': str(self.file_path) if self.file_path else None,
            'bytes_transferred': self.bytes_transferred,
            'progress_percent': self.fraction * 100,
            'speed_bytes_per_sec': self.speed_bytes_per_sec,
            'elapsed_seconds': self.elapsed_seconds,
            'phase': self.phase,
        }
