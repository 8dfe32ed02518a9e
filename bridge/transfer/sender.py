"""
File Sender

Streams one local file to a listening receiver.

Send Flow:
1. Check and open the source file (no network activity if it's missing
   or unreadable)
2. Connect to the receiver
3. Write the header
4. Stream the content in chunks, reporting progress after each one
5. Report 1.0 and close everything, whatever the outcome
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional, Union

import aiofiles

from .errors import (
    TransferResult, TransferFailure, MissingFileError, TransferError,
    TransferCancelled
)
from .progress import ProgressReporter, ProgressSink, TransferSession
from .protocol import (
    TransferHeader, DEFAULT_PORT, CHUNK_SIZE,
    open_connection, close_writer, validate_address
)

logger = logging.getLogger(__name__)


class FileSender:
    """
    Sends files to a FileReceiver over TCP.

    One send() call drives exactly one session and returns exactly one
    TransferResult. No retries; that's up to the caller.
    """

    def __init__(self, chunk_size: int = CHUNK_SIZE,
                 connect_timeout: float = 10.0,
                 write_timeout: Optional[float] = 30.0):
        """
        Args:
            chunk_size: Bytes read from disk per write
            connect_timeout: Seconds to wait for the TCP handshake
            write_timeout: Seconds a single write may stay blocked (None = forever)
        """
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.chunk_size = chunk_size
        self.connect_timeout = connect_timeout
        self.write_timeout = write_timeout

        self.session: Optional[TransferSession] = None
        self.reporter: Optional[ProgressReporter] = None

        # Statistics
        self.files_sent = 0
        self.bytes_sent = 0

    async def send(self, address: str, port: int,
                   file_path: Union[str, Path],
                   progress: Optional[ProgressSink] = None) -> TransferResult:
        """
        Send a file to address:port.

        Args:
            address: Receiver IPv4/IPv6 literal
            port: Receiver TCP port
            file_path: File to send
            progress: Optional sink for fractional progress

        Returns:
            TransferResult (success or typed failure)
        """
        reporter = ProgressReporter(progress)
        session = TransferSession(direction='send', peer=(address, port))
        self.session = session
        self.reporter = reporter

        source = None
        try:
            session.header, session.file_path = self._describe(file_path)
            source = await self._open_source(session.file_path)
            address = validate_address(address, port)

            session.phase = 'connecting'
            logger.info(f"Connecting to {address}:{port}")
            reader, writer = await open_connection(
                address, port, timeout=self.connect_timeout
            )

            aborted = True
            try:
                session.phase = 'transferring'
                await self._write(writer, session.header.to_bytes())
                await self._stream_file(source, writer, session, reporter)
                aborted = False
            except OSError as e:
                raise TransferError(
                    f"I/O failure after {session.bytes_transferred:,} bytes: "
                    f"{e.strerror or e}",
                    cause=e
                ) from e
            finally:
                await close_writer(writer, abort=aborted)

        except TransferFailure as e:
            session.phase = 'failed'
            logger.error(f"Send of {file_path} failed ({e.kind.value}): {e.message}")
            return TransferResult.failed(e, session)

        except asyncio.CancelledError:
            session.phase = 'cancelled'
            logger.warning(f"Send of {file_path} cancelled")
            return TransferResult.failed(
                TransferCancelled("Transfer cancelled by caller"), session
            )

        finally:
            if source is not None:
                await source.close()
            reporter.finish()

        session.phase = 'complete'
        self.files_sent += 1
        self.bytes_sent += session.bytes_transferred
        logger.info(
            f"Sent {session.header.file_name} ({session.bytes_transferred:,} bytes) "
            f"to {address}:{port} in {session.elapsed_seconds:.2f}s"
        )
        return TransferResult.succeeded(session)

    def _describe(self, file_path: Union[str, Path]):
        """Build the header for file_path, checking it's a regular file."""
        path = Path(file_path)
        if not path.is_file():
            raise MissingFileError(f"File not found: {path}")

        try:
            size = path.stat().st_size
        except OSError as e:
            raise MissingFileError(f"Cannot read {path}: {e.strerror or e}", cause=e) from e

        header = TransferHeader(file_name=path.name, file_size=size)
        try:
            header.to_bytes()
        except ValueError as e:
            raise TransferError(str(e), cause=e) from e

        return header, path

    async def _open_source(self, path: Path):
        """Open the source for reading before anything touches the network."""
        try:
            return await aiofiles.open(path, 'rb')
        except OSError as e:
            raise MissingFileError(f"Cannot read {path}: {e.strerror or e}", cause=e) from e

    async def _stream_file(self, source, writer: asyncio.StreamWriter,
                           session: TransferSession,
                           reporter: ProgressReporter):
        """Write exactly header.file_size bytes of source to the peer."""
        size = session.header.file_size

        while session.bytes_transferred < size:
            want = min(self.chunk_size, size - session.bytes_transferred)
            chunk = await source.read(want)
            if not chunk:
                raise TransferError(
                    f"{session.file_path.name} shrank during transfer "
                    f"({session.bytes_transferred:,} of {size:,} bytes sent)"
                )

            await self._write(writer, chunk)
            session.bytes_transferred += len(chunk)
            reporter.report(session.fraction)

    async def _write(self, writer: asyncio.StreamWriter, data: bytes):
        """Write and wait for the transport buffer to drain."""
        writer.write(data)
        try:
            await asyncio.wait_for(writer.drain(), timeout=self.write_timeout)
        except asyncio.TimeoutError as e:
            raise TransferError(
                f"Peer stopped reading for {self.write_timeout}s",
                cause=e
            ) from e

    def get_stats(self) -> dict:
        """Get sender statistics."""
        return {
            'files_sent': self.files_sent,
            'bytes_sent': self.bytes_sent,
            'active': self.session.to_dict() if self.session else None,
        }


async def send_file(address: str, file_path: Union[str, Path],
                    progress: Optional[ProgressSink] = None,
                    port: int = DEFAULT_PORT, **kwargs) -> TransferResult:
    """Send one file (convenience function)."""
    return await FileSender(**kwargs).send(address, port, file_path, progress)
