"""
Core interfaces defining the contracts of the engine components and of the
collaborators they consume.
"""

from .lifecycle import IStartable, IStoppable, IHealthCheckable
from .transport import ISigner, ITransport, TransportResponse
from .upload import IAbortHandler, ICommitCoordinator, IPartUploader, ISessionManager

__all__ = [
    "IStartable",
    "IStoppable",
    "IHealthCheckable",
    "ISigner",
    "ITransport",
    "TransportResponse",
    "IAbortHandler",
    "ICommitCoordinator",
    "IPartUploader",
    "ISessionManager",
]
