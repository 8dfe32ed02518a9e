"""
File Receiver

Design Decision: Concurrent Connections
========================================

Options Considered:
1. Serve every connection in parallel
   - Needs per-session destination bookkeeping
   - Two peers could race on the same file name

2. Queue connections until the current session finishes
   - Senders hang with no feedback

3. One session at a time, reject the rest
   - Sender sees a closed connection immediately
   - In-flight session is never touched

Decision: Option 3
- A connection is only accepted while someone is waiting in receive()
- Anything else is closed straight away and counted in stats

Receive Flow:
1. Accept a connection
2. Read the header (bounded by header_timeout)
3. Sanitize the file name and pick a destination inside dest_dir
4. Read exactly file_size bytes, writing each chunk as it arrives
5. Report 1.0, close the file and connection, return the result
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional, Union

import aiofiles

from .errors import (
    TransferResult, TransferFailure, BindError, ProtocolError,
    TransferError, TransferCancelled, FailureKind
)
from .progress import ProgressReporter, ProgressSink, TransferSession
from .protocol import DEFAULT_PORT, CHUNK_SIZE, read_header, close_writer

logger = logging.getLogger(__name__)


DEFAULT_FILE_NAME = 'received_file'


def safe_file_name(name: str) -> str:
    """
    Reduce a peer-supplied file name to a bare name.

    Both '/' and '\\' count as separators and only the last component is
    kept. Whitespace is left alone. Empty names, '.' and '..' fall back
    to DEFAULT_FILE_NAME.
    """
    name = name.replace('\x00', '').replace('\\', '/')
    base = name.rstrip('/').rsplit('/', 1)[-1]
    if base in ('', '.', '..'):
        return DEFAULT_FILE_NAME
    return base


def unique_path(path: Path) -> Path:
    """Return path, or 'name (n).ext' if path already exists."""
    if not path.exists():
        return path

    stem, suffix = path.stem, path.suffix
    counter = 1
    while True:
        candidate = path.with_name(f"{stem} ({counter}){suffix}")
        if not candidate.exists():
            return candidate
        counter += 1


class FileReceiver:
    """
    TCP listener that receives one file per session into dest_dir.

    Usage:
        receiver = FileReceiver('./downloads', port=12345)
        result = await receiver.receive(progress=print)
        await receiver.stop()
    """

    def __init__(self, dest_dir: Union[str, Path], host: str = '0.0.0.0',
                 port: int = DEFAULT_PORT, chunk_size: int = CHUNK_SIZE,
                 header_timeout: Optional[float] = 10.0,
                 read_timeout: Optional[float] = 30.0,
                 overwrite: bool = False, keep_partial: bool = True):
        """
        Args:
            dest_dir: Directory received files are written to
            host: Interface to bind
            port: TCP port to bind (0 picks a free one)
            chunk_size: Max bytes read from the socket per write to disk
            header_timeout: Seconds a new peer has to send its header
            read_timeout: Seconds a single read may stay idle (None = forever)
            overwrite: Replace existing files instead of picking a new name
            keep_partial: Leave truncated files on disk
        """
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.dest_dir = Path(dest_dir)
        self.host = host
        self.port = port
        self.chunk_size = chunk_size
        self.header_timeout = header_timeout
        self.read_timeout = read_timeout
        self.overwrite = overwrite
        self.keep_partial = keep_partial

        self.server: Optional[asyncio.AbstractServer] = None
        self.session: Optional[TransferSession] = None
        self._waiter: Optional[asyncio.Future] = None
        self._reporter: Optional[ProgressReporter] = None
        self.reporter: Optional[ProgressReporter] = None
        self._session_task: Optional[asyncio.Task] = None

        # Statistics
        self.files_received = 0
        self.bytes_received = 0
        self.connections_rejected = 0

    @property
    def is_listening(self) -> bool:
        return self.server is not None

    @property
    def is_busy(self) -> bool:
        return self._session_task is not None

    async def start(self):
        """
        Bind and start accepting connections.

        Raises:
            BindError: port in use, privileged, or address unavailable
        """
        if self.server is not None:
            return

        try:
            self.server = await asyncio.start_server(
                self._handle_connection,
                self.host,
                self.port,
                reuse_address=True
            )
        except OSError as e:
            raise BindError(
                f"Cannot listen on {self.host}:{self.port}: {e.strerror or e}",
                cause=e
            ) from e

        self.port = self.server.sockets[0].getsockname()[1]
        logger.info(f"Receiver listening on {self.host}:{self.port}, saving to {self.dest_dir}")

    async def stop(self):
        """Stop listening, cancelling any session in flight."""
        if self.server is None:
            return

        server, self.server = self.server, None
        server.close()

        task = self._session_task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        await server.wait_closed()

        waiter = self._waiter
        if waiter is not None and not waiter.done():
            waiter.set_result(TransferResult.failed(
                TransferCancelled("Listener stopped before a transfer arrived")
            ))

        logger.info("Receiver stopped")

    async def receive(self, progress: Optional[ProgressSink] = None) -> TransferResult:
        """
        Wait for the next sender and receive its file.

        Starts the listener if needed. Returns when one session finishes,
        the listener is stopped, or this coroutine is cancelled.
        """
        if self._waiter is not None and not self._waiter.done():
            raise RuntimeError("receive() is already waiting on this receiver")

        reporter = ProgressReporter(progress)
        self.reporter = reporter
        try:
            try:
                await self.start()
            except BindError as e:
                logger.error(e.message)
                return TransferResult.failed(e)

            self._reporter = reporter
            self._waiter = asyncio.get_running_loop().create_future()
            try:
                return await self._waiter
            except asyncio.CancelledError:
                task = self._session_task
                session = None
                if task is not None and not task.done():
                    session = self.session
                    task.cancel()
                    await asyncio.gather(task, return_exceptions=True)
                logger.warning("Receive cancelled")
                return TransferResult.failed(
                    TransferCancelled("Receive cancelled by caller"), session
                )
        finally:
            self._waiter = None
            self._reporter = None
            reporter.finish()

    async def _handle_connection(self, reader: asyncio.StreamReader,
                                 writer: asyncio.StreamWriter):
        """Handle an incoming connection."""
        peer = writer.get_extra_info('peername')
        waiter = self._waiter

        if waiter is None or waiter.done() or self._session_task is not None:
            self.connections_rejected += 1
            logger.warning(f"Rejecting connection from {peer}: receiver busy")
            await close_writer(writer, abort=True)
            return

        self._session_task = asyncio.current_task()
        try:
            result = await self._run_session(reader, writer, peer, self._reporter)
        finally:
            self._session_task = None

        if not waiter.done():
            waiter.set_result(result)

    async def _run_session(self, reader: asyncio.StreamReader,
                           writer: asyncio.StreamWriter, peer,
                           reporter: ProgressReporter) -> TransferResult:
        """Receive one file from one connection."""
        session = TransferSession(direction='receive', peer=peer)
        self.session = session
        logger.info(f"Incoming transfer from {peer}")

        aborted = True
        try:
            try:
                session.header = await asyncio.wait_for(
                    read_header(reader), timeout=self.header_timeout
                )
            except asyncio.TimeoutError as e:
                raise ProtocolError(
                    f"No header within {self.header_timeout}s", cause=e
                ) from e

            session.file_path = self._destination(session.header.file_name)
            logger.info(
                f"Receiving {session.header.file_name} "
                f"({session.header.file_size:,} bytes) -> {session.file_path}"
            )

            session.phase = 'transferring'
            await self._receive_body(reader, session, reporter)
            aborted = False

        except TransferFailure as e:
            session.phase = 'failed'
            logger.error(f"Receive from {peer} failed ({e.kind.value}): {e.message}")
            return TransferResult.failed(e, session)

        except asyncio.CancelledError:
            session.phase = 'cancelled'
            logger.warning(f"Receive from {peer} cancelled")
            return TransferResult.failed(
                TransferCancelled("Transfer cancelled by caller"), session
            )

        finally:
            reporter.finish()
            await close_writer(writer, abort=aborted)

        session.phase = 'complete'
        self.files_received += 1
        self.bytes_received += session.bytes_transferred
        logger.info(
            f"Received {session.file_path.name} ({session.bytes_transferred:,} bytes) "
            f"in {session.elapsed_seconds:.2f}s"
        )
        return TransferResult.succeeded(session)

    def _destination(self, file_name: str) -> Path:
        """Pick the path a received file is written to."""
        try:
            self.dest_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise TransferError(
                f"Cannot create {self.dest_dir}: {e.strerror or e}", cause=e
            ) from e

        name = safe_file_name(file_name)
        if name != file_name:
            logger.warning(f"Sanitized file name {file_name!r} -> {name!r}")

        path = self.dest_dir / name
        if not self.overwrite:
            path = unique_path(path)

        # Symlinks inside dest_dir could still point elsewhere
        root = self.dest_dir.resolve()
        if path.resolve().parent != root:
            raise ProtocolError(f"File name {file_name!r} escapes {self.dest_dir}")

        return path

    async def _receive_body(self, reader: asyncio.StreamReader,
                            session: TransferSession,
                            reporter: ProgressReporter):
        """Read exactly header.file_size bytes into session.file_path."""
        size = session.header.file_size

        try:
            try:
                async with aiofiles.open(session.file_path, 'wb') as f:
                    while session.bytes_transferred < size:
                        want = min(self.chunk_size, size - session.bytes_transferred)
                        chunk = await self._read(reader, want)
                        if not chunk:
                            raise TransferError(
                                f"Connection closed after {session.bytes_transferred:,} "
                                f"of {size:,} bytes",
                                kind=FailureKind.TRUNCATED_STREAM
                            )

                        await f.write(chunk)
                        session.bytes_transferred += len(chunk)
                        reporter.report(session.fraction)

            except OSError as e:
                raise TransferError(
                    f"I/O failure after {session.bytes_transferred:,} bytes: "
                    f"{e.strerror or e}",
                    cause=e
                ) from e

        except (TransferFailure, asyncio.CancelledError):
            if not self.keep_partial:
                self._discard(session.file_path)
            raise

    async def _read(self, reader: asyncio.StreamReader, n: int) -> bytes:
        """Read up to n bytes, failing if the peer stalls."""
        try:
            return await asyncio.wait_for(reader.read(n), timeout=self.read_timeout)
        except asyncio.TimeoutError as e:
            raise TransferError(
                f"Peer sent nothing for {self.read_timeout}s", cause=e
            ) from e

    def _discard(self, path: Path):
        """Remove a partial file."""
        try:
            path.unlink()
            logger.info(f"Removed partial file {path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove partial file {path}: {e}")

    def get_stats(self) -> dict:
        """Get receiver statistics."""
        return {
            'listening': self.is_listening,
            'busy': self.is_busy,
            'port': self.port,
            'dest_dir': str(self.dest_dir),
            'files_received': self.files_received,
            'bytes_received': self.bytes_received,
            'connections_rejected': self.connections_rejected,
            'active': self.session.to_dict() if self.is_busy and self.session else None,
        }


async def listen(port: int, dest_dir: Union[str, Path],
                 progress: Optional[ProgressSink] = None,
                 host: str = '0.0.0.0', **kwargs) -> TransferResult:
    """
    Receive a single file on port (convenience function).

    Binds, waits for one sender, stops listening, returns the result.
    """
    receiver = FileReceiver(dest_dir, host=host, port=port, **kwargs)
    try:
        return await receiver.receive(progress)
    finally:
        await receiver.stop()
