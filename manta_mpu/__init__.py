"""
Manta MPU - multipart upload client orchestration engine.

This package opens multipart upload sessions on a Manta-style object store,
uploads parts concurrently under a bounded concurrency ceiling, commits them
in an explicit caller-supplied order, and aborts sessions that will not be
committed.
"""

__version__ = "0.1.0"

# Public API exports
from .core.domain.session import (
    CommitRequest, ObjectReference, Part, PartStatus, Session, SessionState
)
from .core.exceptions import ErrorCategory, MultipartUploadError
from .core.interfaces.transport import ISigner, ITransport, TransportResponse
from .core.services.engine import MultipartUploadEngine
from .core.services.part_uploader import PartSpec
from .core.services.retry import RetryPolicy
from .core.services.sources import FileSegment

__all__ = [
    "CommitRequest",
    "ObjectReference",
    "Part",
    "PartStatus",
    "Session",
    "SessionState",
    "ErrorCategory",
    "MultipartUploadError",
    "ISigner",
    "ITransport",
    "TransportResponse",
    "MultipartUploadEngine",
    "PartSpec",
    "RetryPolicy",
    "FileSegment",
]
