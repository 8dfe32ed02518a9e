"""
Transfer Module - Header Protocol, Sender and Receiver

Handles direct TCP file transfers between two peers.
"""

from .protocol import (
    TransferHeader, encode_header, read_header,
    DEFAULT_PORT, CHUNK_SIZE, MAX_FILE_NAME_LENGTH
)
from .errors import (
    FailureKind, TransferResult, TransferFailure, MissingFileError,
    PeerConnectionError, BindError, ProtocolError, TransferError,
    TransferCancelled
)
from .progress import ProgressSink, ProgressReporter, TransferSession
from .sender import FileSender, send_file
from .receiver import FileReceiver, listen, safe_file_name

__all__ = [
    'TransferHeader',
    'encode_header',
    'read_header',
    'DEFAULT_PORT',
    'CHUNK_SIZE',
    'MAX_FILE_NAME_LENGTH',
    'FailureKind',
    'TransferResult',
    'TransferFailure',
    'MissingFileError',
    'PeerConnectionError',
    'BindError',
    'ProtocolError',
    'TransferError',
    'TransferCancelled',
    'ProgressSink',
    'ProgressReporter',
    'TransferSession',
    'FileSender',
    'send_file',
    'FileReceiver',
    'listen',
    'safe_file_name',
]
