"""
Multipart upload service interfaces.

This module defines the contracts of the engine components: session
management, part upload, commit and abort.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from ..domain.session import ObjectReference, Part, Session, SessionState
from ..domain.wire import SessionStateResponse
from .lifecycle import IHealthCheckable


class ISessionManager(IHealthCheckable):
    """Opens sessions and owns their lifecycle registry."""

    @abstractmethod
    async def open_session(
        self,
        target_path: str,
        durability_level: Optional[int] = None
    ) -> Session:
        """
        Create a new multipart upload session.

        Args:
            target_path: Logical path of the final object
            durability_level: Number of replicas; the configured default if None

        Returns:
            A session in the OPEN state
        """
        pass

    @abstractmethod
    def get_session(self, session_id: str) -> Optional[Session]:
        """Get a registered session by id."""
        pass

    @abstractmethod
    def list_sessions(self, state: Optional[SessionState] = None) -> List[Session]:
        """List registered sessions with optional state filtering."""
        pass

    @abstractmethod
    async def query_state(self, session: Session) -> SessionStateResponse:
        """Read the server-side state of a session."""
        pass

    @abstractmethod
    def release(self, session: Session) -> None:
        """Drop a terminal session from the registry."""
        pass


class IPartUploader(ABC):
    """Transfers parts into open sessions."""

    @abstractmethod
    async def upload_part(
        self,
        session: Session,
        part_number: int,
        data: Any,
        expected_size: Optional[int] = None
    ) -> Part:
        """
        Upload one part.

        Args:
            session: An open session
            part_number: Caller-chosen non-negative part number
            data: Bytes, a FileSegment or a (async) iterable of bytes
            expected_size: Declared length of data, if known

        Returns:
            The uploaded part carrying its server identifier
        """
        pass

    @abstractmethod
    def get_stats(self) -> Dict[str, Any]:
        """Get transfer statistics."""
        pass


class ICommitCoordinator(ABC):
    """Finalizes sessions into durable objects."""

    @abstractmethod
    async def commit(
        self,
        session: Session,
        ordered_identifiers: Sequence[str]
    ) -> ObjectReference:
        """
        Commit a session.

        Args:
            session: An open (or previously failed committing) session
            ordered_identifiers: Server identifiers in final byte order

        Returns:
            Reference to the final object
        """
        pass


class IAbortHandler(ABC):
    """Discards sessions and their parts."""

    @abstractmethod
    async def abort(self, session: Session) -> None:
        """Abort a session; aborting an aborted session is a no-op."""
        pass
