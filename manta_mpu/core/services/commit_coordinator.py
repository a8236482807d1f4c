"""
Commit coordinator for multipart uploads.

A commit finalizes a session into one object whose bytes are the
concatenation of the referenced parts in exactly the order given. Part
numbers play no role in the final ordering.
"""

from typing import Optional, Sequence, Union

from loguru import logger
from pydantic import ValidationError

from ..domain.session import CommitRequest, ObjectReference, Session, SessionState
from ..domain.wire import CommitBody, CommitResponse, ObjectReferencePayload
from ..exceptions import (
    InvalidCommitRequestError, MissingPartError, MultipartUploadError,
    ServiceError, SessionNotOpenError, SessionStateError, classify_response
)
from ..interfaces.transport import ITransport
from ..interfaces.upload import ICommitCoordinator, ISessionManager
from .retry import RetryPolicy


def to_object_reference(
    payload: Optional[Union[ObjectReferencePayload, str]],
    default_path: str
) -> ObjectReference:
    """Convert a wire object reference into the domain type."""
    if payload is None:
        return ObjectReference(path=default_path)
    if isinstance(payload, str):
        return ObjectReference(path=payload)
    return ObjectReference(
        path=payload.path,
        content_digest=payload.content_digest,
        size_bytes=payload.size_bytes,
    )


class CommitCoordinator(ICommitCoordinator):
    """
    Commit coordinator implementation.

    Commit and abort hold the session's terminal lock for their whole
    duration, so at most one of them can complete.
    """

    def __init__(
        self,
        transport: ITransport,
        session_manager: ISessionManager,
        retry_policy: Optional[RetryPolicy] = None,
        min_part_size: int = 0
    ):
        """
        Initialize the commit coordinator.

        Args:
            transport: Authenticated transport to the storage service
            session_manager: Used to re-query remote state and release sessions
            retry_policy: Policy for ambiguous/transient commit failures
            min_part_size: Minimum size of every part but the last
        """
        self._transport = transport
        self._sessions = session_manager
        self._retry = retry_policy or RetryPolicy()
        self._min_part_size = min_part_size

    @staticmethod
    def _validate_request(session: Session, request: CommitRequest) -> None:
        if len(request) == 0:
            raise InvalidCommitRequestError(
                "Commit ordering must not be empty", session_id=session.id
            )
        bad = [i for i in request.ordered_identifiers if not isinstance(i, str) or not i]
        if bad:
            raise InvalidCommitRequestError(
                f"Commit ordering contains invalid identifiers: {bad!r}",
                session_id=session.id,
            )
        duplicates = request.duplicates()
        if duplicates:
            raise InvalidCommitRequestError(
                f"Commit ordering contains duplicate identifiers: {', '.join(duplicates)}",
                session_id=session.id,
            )

    def _check_part_sizes(self, session: Session, request: CommitRequest) -> None:
        if not self._min_part_size:
            return
        # Unknown identifiers are left to _check_parts.
        small = []
        for identifier in request.ordered_identifiers[:-1]:
            part = session.find_part(identifier)
            if part is not None and part.size_bytes < self._min_part_size:
                small.append(part.part_number)
        if small:
            raise InvalidCommitRequestError(
                f"Parts {small} are smaller than the minimum part size of "
                f"{self._min_part_size} bytes",
                session_id=session.id,
            )

    @staticmethod
    def _check_parts(session: Session, request: CommitRequest) -> None:
        missing = [i for i in request.ordered_identifiers if session.find_part(i) is None]
        if missing:
            raise MissingPartError(
                f"Commit references parts that are not uploaded: {', '.join(missing)}",
                session_id=session.id,
                state=session.state.value,
                identifiers=missing,
            )

    async def commit(
        self,
        session: Session,
        ordered_identifiers: Sequence[str]
    ) -> ObjectReference:
        """Commit a session."""
        request = CommitRequest(tuple(ordered_identifiers))
        self._validate_request(session, request)
        self._check_part_sizes(session, request)
        log = logger.bind(session_id=session.id)

        async with session.terminal_lock:
            if not session.compare_and_set(
                (SessionState.OPEN, SessionState.COMMITTING), SessionState.COMMITTING
            ):
                raise SessionNotOpenError(
                    f"Session {session.id} cannot be committed",
                    session_id=session.id,
                    state=session.state.value,
                )

            self._check_parts(session, request)

            body = CommitBody(
                parts_location=session.parts_location,
                ordered_identifiers=list(request.ordered_identifiers),
            )

            async def attempt() -> ObjectReference:
                response = await self._transport.request(
                    "POST",
                    f"{session.parts_location}/commit",
                    headers={"content-type": "application/json"},
                    body=body.to_json_bytes(),
                )
                if not response.ok:
                    raise classify_response(response.status, response.body, session_id=session.id)
                try:
                    parsed = CommitResponse.model_validate(response.json())
                except (ValidationError, ValueError) as e:
                    raise ServiceError(f"Malformed commit response: {e}", session_id=session.id) from e
                return to_object_reference(parsed.object_reference, session.target_path)

            async def settle(attempt_no: int, error: MultipartUploadError) -> Optional[ObjectReference]:
                # A transient failure may hide a commit that actually happened.
                return await self._resolve_remote(session)

            try:
                reference = await self._retry.run(
                    attempt,
                    context={"session_id": session.id},
                    before_retry=settle,
                    description=f"commit of session {session.id}",
                )
            except MissingPartError as e:
                session.last_error = str(e)
                raise
            except SessionStateError as e:
                if session.state != SessionState.COMMITTING:
                    raise
                # The service refused the commit for its state; it may have
                # been committed by an earlier attempt whose reply was lost.
                reference = await self._resolve_remote(session)
                if reference is None:
                    session.last_error = str(e)
                    raise
            except MultipartUploadError as e:
                session.last_error = str(e)
                log.error(f"Commit of session {session.id} failed: {e}")
                raise

            session.compare_and_set((SessionState.COMMITTING,), SessionState.COMMITTED)
            self._sessions.release(session)

        log.info(
            f"Committed session {session.id} from {len(request)} part(s) to {reference.path}"
        )
        return reference

    async def _resolve_remote(self, session: Session) -> Optional[ObjectReference]:
        """
        Re-read the remote state after an ambiguous failure.

        Returns:
            The object reference if the session is already committed, None if
            it is still pending

        Raises:
            SessionNotOpenError: If the service reports the session aborted
        """
        try:
            remote = await self._sessions.query_state(session)
        except MultipartUploadError as e:
            logger.bind(session_id=session.id).warning(
                f"Could not read remote state of {session.id}: {e}"
            )
            return None

        if remote.is_committed:
            logger.bind(session_id=session.id).info(
                f"Session {session.id} was committed by an earlier attempt"
            )
            return to_object_reference(remote.object_reference, session.target_path)
        if remote.is_aborted:
            session.compare_and_set((SessionState.COMMITTING,), SessionState.ABORTED)
            self._sessions.release(session)
            raise SessionNotOpenError(
                f"Session {session.id} was aborted on the service",
                session_id=session.id,
                state=session.state.value,
            )
        return None
