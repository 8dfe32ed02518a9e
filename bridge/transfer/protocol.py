"""
File Transfer Protocol

Design Decision: Transfer Protocol
===================================

Options Considered:
1. HTTP upload
   - Standard, well-supported
   - Needs a web server on the receiving side

2. Length-prefixed JSON header + binary body
   - Extensible
   - Not what existing peers speak

3. Fixed binary header + raw body
   - What the existing sender already emits
   - No parsing library needed, trivial to decode

Decision: Fixed binary header followed by the raw file bytes
- One file per connection, nothing after the body
- No acknowledgement or checksum; TCP guarantees ordered delivery
- Integers are little-endian, matching existing Bridge senders

Message Format:
```
+------------------+-------------------+------------------+-----------------+
| Name length (4B) | Name (N, UTF-8)   | File size (8B)   | File content    |
+------------------+-------------------+------------------+-----------------+
```
"""

import asyncio
import struct
import logging
import ipaddress
from typing import Tuple
from dataclasses import dataclass

from .errors import ProtocolError, PeerConnectionError

logger = logging.getLogger(__name__)


DEFAULT_PORT = 12345
CHUNK_SIZE = 80 * 1024  # 80KB
MAX_FILE_NAME_LENGTH = 65535
MAX_FILE_SIZE = 2 ** 64 - 1

NAME_LENGTH = struct.Struct('<I')
FILE_SIZE = struct.Struct('<Q')


@dataclass(frozen=True)
class TransferHeader:
    """Metadata sent ahead of the file content."""
    file_name: str
    file_size: int

    @property
    def file_name_bytes(self) -> bytes:
        return self.file_name.encode('utf-8')

    def to_bytes(self) -> bytes:
        """Serialize header to bytes."""
        name_bytes = self.file_name_bytes
        if len(name_bytes) > MAX_FILE_NAME_LENGTH:
            raise ValueError(
                f"File name too long: {len(name_bytes)} bytes "
                f"(max {MAX_FILE_NAME_LENGTH})"
            )
        if not 0 <= self.file_size <= MAX_FILE_SIZE:
            raise ValueError(f"File size out of range: {self.file_size}")

        return (
            NAME_LENGTH.pack(len(name_bytes)) +
            name_bytes +
            FILE_SIZE.pack(self.file_size)
        )

    @classmethod
    async def from_reader(cls, reader: asyncio.StreamReader) -> 'TransferHeader':
        """
        Read a header from a stream.

        Raises:
            ProtocolError: stream ended early, name too long or not UTF-8
        """
        try:
            name_length = NAME_LENGTH.unpack(
                await reader.readexactly(NAME_LENGTH.size)
            )[0]

            # Sanity check
            if name_length > MAX_FILE_NAME_LENGTH:
                raise ProtocolError(
                    f"File name length {name_length} exceeds "
                    f"{MAX_FILE_NAME_LENGTH} bytes"
                )

            name_bytes = await reader.readexactly(name_length)
            file_size = FILE_SIZE.unpack(
                await reader.readexactly(FILE_SIZE.size)
            )[0]

        except asyncio.IncompleteReadError as e:
            raise ProtocolError(
                f"Connection closed inside header "
                f"({len(e.partial)} of {e.expected} bytes of a field)",
                cause=e
            ) from e

        try:
            file_name = name_bytes.decode('utf-8')
        except UnicodeDecodeError as e:
            raise ProtocolError("File name is not valid UTF-8", cause=e) from e

        return cls(file_name=file_name, file_size=file_size)


def encode_header(file_name: str, file_size: int) -> bytes:
    """Encode the header for a file."""
    return TransferHeader(file_name=file_name, file_size=file_size).to_bytes()


async def read_header(reader: asyncio.StreamReader) -> TransferHeader:
    """Decode a header from a stream."""
    return await TransferHeader.from_reader(reader)


def validate_address(address: str, port: int) -> str:
    """
    Check that address is an IP literal and port is a TCP port.

    Returns:
        Normalized address string
    """
    try:
        ip = ipaddress.ip_address(address.strip())
    except ValueError as e:
        raise PeerConnectionError(f"Invalid IP address: {address!r}", cause=e) from e

    if not 0 < port < 65536:
        raise PeerConnectionError(f"Invalid port: {port}")

    return str(ip)


async def open_connection(address: str, port: int, timeout: float = 10.0
                          ) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """
    Connect to a receiving peer.

    Raises:
        PeerConnectionError: refused, unreachable or timed out
    """
    try:
        return await asyncio.wait_for(
            asyncio.open_connection(address, port),
            timeout=timeout
        )
    except asyncio.TimeoutError as e:
        raise PeerConnectionError(
            f"Timed out connecting to {address}:{port}", cause=e
        ) from e
    except OSError as e:
        raise PeerConnectionError(
            f"Failed to connect to {address}:{port}: {e.strerror or e}", cause=e
        ) from e


async def close_writer(writer: asyncio.StreamWriter, abort: bool = False):
    """Close a connection, logging errors raised while tearing it down."""
    if abort:
        writer.transport.abort()
    else:
        writer.close()
    try:
        await writer.wait_closed()
    except OSError as e:
        logger.debug(f"Error while closing connection: {e}")
