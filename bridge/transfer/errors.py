"""
Transfer Errors and Results

Design Decision: Failure Reporting
==================================

Options Considered:
1. Return None on failure, log the reason
   - Simple, but callers can't tell failures apart

2. Let exceptions escape to the caller
   - Natural inside the engine
   - Callers (CLI, API, UI) end up re-implementing the same try/except

3. Raise internally, return a typed result at the public boundary
   - Engine code stays linear
   - Every caller gets exactly one outcome value

Decision: Option 3
- Engine internals raise TransferFailure subclasses
- FileSender.send / FileReceiver.receive turn them into a TransferResult
- The underlying exception is kept on the result as `cause`
"""

from enum import Enum
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, List, Dict, Any


class FailureKind(Enum):
    """Stable failure kinds surfaced to callers."""
    FILE_NOT_FOUND = "file_not_found"
    CONNECTION_ERROR = "connection_error"
    BIND_ERROR = "bind_error"
    MALFORMED_HEADER = "malformed_header"
    TRUNCATED_STREAM = "truncated_stream"
    IO_FAILURE = "io_failure"
    CANCELLED = "cancelled"


class TransferFailure(Exception):
    """Base class for every failure the transfer engine can report."""
    kind: FailureKind = FailureKind.IO_FAILURE

    def __init__(self, message: str, cause: Optional[BaseException] = None,
                 kind: Optional[FailureKind] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        if kind is not None:
            self.kind = kind


class MissingFileError(TransferFailure):
    """Source file does not exist or is not a regular file."""
    kind = FailureKind.FILE_NOT_FOUND


class PeerConnectionError(TransferFailure):
    """Could not reach the receiving peer."""
    kind = FailureKind.CONNECTION_ERROR


class BindError(TransferFailure):
    """Receiver could not listen on the requested address."""
    kind = FailureKind.BIND_ERROR


class ProtocolError(TransferFailure):
    """The peer sent a header we can't decode."""
    kind = FailureKind.MALFORMED_HEADER


class TransferError(TransferFailure):
    """Failure while streaming file content (truncation or I/O)."""
    kind = FailureKind.IO_FAILURE


class TransferCancelled(TransferFailure):
    """The transfer was cancelled by the caller."""
    kind = FailureKind.CANCELLED


def cause_chain(error: Optional[BaseException]) -> List[Dict[str, str]]:
    """Flatten an exception and its causes into a list of dicts."""
    chain = []
    seen = set()
    while error is not None and id(error) not in seen:
        seen.add(id(error))
        chain.append({
            'type': type(error).__name__,
            'message': str(error),
        })
        error = getattr(error, 'cause', None) or error.__cause__
    return chain


def _file_name(session) -> str:
    """Name the file ended up under; the announced name until a path is picked."""
    if session.file_path is not None:
        return session.file_path.name
    return session.header.file_name if session.header else ''


@dataclass(frozen=True)
class TransferResult:
    """Terminal outcome of one transfer session."""
    ok: bool
    bytes_transferred: int = 0
    kind: Optional[FailureKind] = None
    message: str = ''
    cause: Optional[BaseException] = None
    file_name: str = ''
    file_path: Optional[Path] = None
    peer: Optional[Tuple[str, int]] = None

    @classmethod
    def succeeded(cls, session) -> 'TransferResult':
        """Build a success result from a finished session."""
        return cls(
            ok=True,
            bytes_transferred=session.bytes_transferred,
            file_name=_file_name(session),
            file_path=session.file_path,
            peer=session.peer,
        )

    @classmethod
    def failed(cls, error: TransferFailure, session=None) -> 'TransferResult':
        """Build a failure result, keeping whatever the session got done."""
        return cls(
            ok=False,
            bytes_transferred=session.bytes_transferred if session else 0,
            kind=error.kind,
            message=error.message,
            cause=error.cause,
            file_name=_file_name(session) if session else '',
            file_path=session.file_path if session else None,
            peer=session.peer if session else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'ok': self.ok,
            'bytes_transferred': self.bytes_transferred,
            'kind': self.kind.value if self.kind else None,
            'message': self.message,
            'causes': cause_chain(self.cause),
            'file_name': self.file_name,
            'file_path': str(self.file_path) if self.file_path else None,
            'peer': f"{self.peer[0]}:{self.peer[1]}" if self.peer else None,
        }
