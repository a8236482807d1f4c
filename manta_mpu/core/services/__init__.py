"""
Engine services: session management, part upload, commit, abort and retry.
"""

from .abort_handler import AbortHandler
from .commit_coordinator import CommitCoordinator
from .engine import MultipartUploadEngine
from .part_uploader import PartSpec, PartUploader
from .retry import RetryPolicy
from .session_manager import SessionManager
from .sources import BytesSource, FileSegment, IterableSource, PartSource, open_source, split_file

__all__ = [
    "AbortHandler",
    "CommitCoordinator",
    "MultipartUploadEngine",
    "PartSpec",
    "PartUploader",
    "RetryPolicy",
    "SessionManager",
    "BytesSource",
    "FileSegment",
    "IterableSource",
    "PartSource",
    "open_source",
    "split_file",
]
