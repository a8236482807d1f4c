"""
Multipart upload engine.

Composes the session manager, part uploader, commit coordinator and abort
handler into the complete flow: open a session, upload parts concurrently,
commit them in an explicit order, and abort the session whenever the commit
will not happen (failure or cancellation) before the error is surfaced.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Iterable, Mapping, Optional, Sequence, Union

from loguru import logger

from ..domain.session import ObjectReference, Part, Session, SessionState
from ..exceptions import InvalidCommitRequestError, UploadCancelledError
from ..interfaces.lifecycle import IHealthCheckable, IStartable, IStoppable
from ..interfaces.transport import ITransport
from .abort_handler import AbortHandler
from .commit_coordinator import CommitCoordinator
from .part_uploader import PartSpec, PartUploader
from .retry import RetryPolicy
from .session_manager import SessionManager
from .sources import split_file

PartsInput = Union[Mapping[int, Any], Iterable[PartSpec]]


class MultipartUploadEngine(IStartable, IStoppable, IHealthCheckable):
    """
    Client orchestration engine for multipart uploads.

    Example:
        async with engine.session("/acct/stor/big.bin") as session:
            a = await engine.upload_part(session, 1, b"world")
            b = await engine.upload_part(session, 0, b"hello ")
            await engine.commit(session, [b.server_identifier, a.server_identifier])
    """

    def __init__(
        self,
        transport: ITransport,
        retry_policy: Optional[RetryPolicy] = None,
        max_concurrent_parts: int = 4,
        part_size: int = 5 * 1024 * 1024,
        default_durability: int = 2,
        min_durability: int = 1,
        max_durability: int = 6,
        max_parts: Optional[int] = None,
        min_part_size: int = 0,
        max_part_number: Optional[int] = None
    ):
        """
        Initialize the engine and its components.

        Args:
            transport: Authenticated transport to the storage service
            retry_policy: Policy shared by all retryable operations
            max_concurrent_parts: Ceiling on simultaneous part transfers
            part_size: Segment size used by upload_file
            default_durability: Durability used when none is requested
            min_durability: Lowest accepted durability level
            max_durability: Highest accepted durability level
            max_parts: Maximum distinct parts per session
            min_part_size: Minimum size of every committed part but the last
            max_part_number: Highest accepted part number
        """
        if part_size <= 0:
            raise ValueError("part_size must be positive")
        if part_size < min_part_size:
            raise ValueError("part_size cannot be smaller than min_part_size")

        self._transport = transport
        self._retry = retry_policy or RetryPolicy()
        self._part_size = part_size
        self._running = False

        self.sessions = SessionManager(
            transport,
            self._retry,
            default_durability=default_durability,
            min_durability=min_durability,
            max_durability=max_durability,
        )
        self.uploader = PartUploader(
            transport,
            self._retry,
            max_concurrent_parts=max_concurrent_parts,
            max_parts=max_parts,
            max_part_number=max_part_number,
        )
        self.committer = CommitCoordinator(
            transport, self.sessions, self._retry, min_part_size=min_part_size
        )
        self.aborter = AbortHandler(transport, self.sessions, self._retry)

    @classmethod
    def from_config(cls, transport: ITransport, config: Any) -> "MultipartUploadEngine":
        """Build an engine from an ApplicationConfig."""
        upload = config.upload
        return cls(
            transport,
            retry_policy=RetryPolicy.from_config(config.retry),
            max_concurrent_parts=upload.max_concurrent_parts,
            part_size=upload.part_size,
            default_durability=upload.default_durability,
            min_durability=upload.min_durability,
            max_durability=upload.max_durability,
            max_parts=upload.max_parts,
            min_part_size=upload.min_part_size,
            max_part_number=upload.max_part_number,
        )

    async def start(self) -> None:
        """Start the engine and its transport."""
        if self._running:
            return
        await self._transport.start()
        self._running = True
        logger.info("Multipart upload engine started")

    async def stop(self) -> None:
        """Abort every session still pending, then stop the transport."""
        if not self._running:
            return
        pending = [s for s in self.sessions.list_sessions() if not s.is_terminal]
        for session in pending:
            await self.aborter.abort_quietly(session, cause=RuntimeError("engine stopping"))
        await self._transport.stop()
        self._running = False
        logger.info("Multipart upload engine stopped")

    async def __aenter__(self) -> "MultipartUploadEngine":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    async def check_health(self) -> Dict[str, Any]:
        """Combined health of the engine components."""
        sessions = await self.sessions.check_health()
        return {
            "healthy": self._running and sessions["healthy"],
            "status": "running" if self._running else "stopped",
            "details": {
                "sessions": sessions["details"],
                "transfers": self.uploader.get_stats(),
            },
        }

    # Component operations

    async def open_session(self, target_path: str, durability_level: Optional[int] = None) -> Session:
        return await self.sessions.open_session(target_path, durability_level)

    async def upload_part(
        self,
        session: Session,
        part_number: int,
        data: Any,
        expected_size: Optional[int] = None
    ) -> Part:
        return await self.uploader.upload_part(session, part_number, data, expected_size)

    async def commit(self, session: Session, ordered_identifiers: Sequence[str]) -> ObjectReference:
        return await self.committer.commit(session, ordered_identifiers)

    async def abort(self, session: Session) -> None:
        await self.aborter.abort(session)

    # Orchestrated flows

    @asynccontextmanager
    async def session(
        self,
        target_path: str,
        durability_level: Optional[int] = None
    ) -> AsyncIterator[Session]:
        """
        Open a session that is guaranteed to end committed or aborted.

        If the block raises (or is cancelled), or exits without committing,
        the session is aborted. The block's own exception is re-raised.
        """
        session = await self.open_session(target_path, durability_level)
        try:
            yield session
        except BaseException as e:
            await self._abort_after_failure(session, e)
            raise
        if session.state != SessionState.COMMITTED:
            await self._abort_after_failure(session, None)

    async def upload(
        self,
        target_path: str,
        parts: PartsInput,
        order: Optional[Sequence[int]] = None,
        durability_level: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> ObjectReference:
        """
        Run a complete multipart upload.

        Args:
            target_path: Logical path of the final object
            parts: Mapping of part number to data, or PartSpec items
            order: Part numbers in final byte order; ascending if None. Parts
                left out of the order are uploaded but not committed.
            durability_level: Replica count; configured default if None
            cancel_event: Setting it stops new transfers and aborts the session

        Returns:
            Reference to the committed object
        """
        if isinstance(parts, Mapping):
            specs = [PartSpec(number, data) for number, data in parts.items()]
        else:
            specs = list(parts)

        async with self.session(target_path, durability_level) as session:
            uploaded = await self.uploader.upload_parts(session, specs, cancel_event)
            if cancel_event is not None and cancel_event.is_set():
                raise UploadCancelledError(
                    "Upload cancelled before commit",
                    session_id=session.id,
                    state=session.state.value,
                )

            by_number = {part.part_number: part for part in uploaded}
            numbers = list(order) if order is not None else sorted(by_number)
            unknown = [n for n in numbers if n not in by_number]
            if unknown:
                raise InvalidCommitRequestError(
                    f"Commit order references part numbers that were not uploaded: {unknown}",
                    session_id=session.id,
                )
            identifiers = [by_number[n].server_identifier for n in numbers]
            return await self.commit(session, identifiers)  # type: ignore[arg-type]

    async def upload_file(
        self,
        local_path: str,
        target_path: str,
        part_size: Optional[int] = None,
        durability_level: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> ObjectReference:
        """Upload a local file as consecutive parts numbered from 0."""
        segments = split_file(local_path, part_size or self._part_size)
        specs = [PartSpec(index, segment, segment.length) for index, segment in enumerate(segments)]
        logger.info(f"Uploading {local_path} to {target_path} in {len(specs)} part(s)")
        return await self.upload(
            target_path, specs,
            durability_level=durability_level,
            cancel_event=cancel_event,
        )

    async def _abort_after_failure(
        self,
        session: Session,
        cause: Optional[BaseException]
    ) -> None:
        if session.state in (SessionState.COMMITTED, SessionState.ABORTED):
            return
        # Shielded so a second cancellation cannot leave the session dangling.
        await asyncio.shield(self.aborter.abort_quietly(session, cause))
