"""
Abort and cleanup handling for multipart uploads.

Aborting discards every uploaded part of a session. The target object is
never created or modified by an abort.
"""

from typing import Optional

from loguru import logger

from ..domain.session import Session, SessionState
from ..domain.wire import AbortBody
from ..exceptions import AlreadyCommittedError, MultipartUploadError, classify_response
from ..interfaces.transport import ITransport
from ..interfaces.upload import IAbortHandler, ISessionManager
from .retry import RetryPolicy


class AbortHandler(IAbortHandler):
    """
    Abort handler implementation.

    Aborting an aborted session is a no-op. A session whose earlier abort
    failed (FAILED) can be aborted again.
    """

    def __init__(
        self,
        transport: ITransport,
        session_manager: ISessionManager,
        retry_policy: Optional[RetryPolicy] = None
    ):
        self._transport = transport
        self._sessions = session_manager
        self._retry = retry_policy or RetryPolicy()

    def _already_committed(self, session: Session) -> AlreadyCommittedError:
        return AlreadyCommittedError(
            f"Session {session.id} is already committed and cannot be aborted",
            session_id=session.id,
            state=SessionState.COMMITTED.value,
        )

    async def abort(self, session: Session) -> None:
        """Abort a session."""
        log = logger.bind(session_id=session.id)

        async with session.terminal_lock:
            if session.state == SessionState.ABORTED:
                log.debug(f"Session {session.id} already aborted")
                return
            if session.state == SessionState.COMMITTED:
                raise self._already_committed(session)

            previous = session.state
            session.compare_and_set(
                (SessionState.OPEN, SessionState.COMMITTING,
                 SessionState.ABORTING, SessionState.FAILED),
                SessionState.ABORTING,
            )
            log.info(f"Aborting session {session.id} (was {previous.value})")

            body = AbortBody(parts_location=session.parts_location)

            async def attempt() -> bool:
                response = await self._transport.request(
                    "POST",
                    f"{session.parts_location}/abort",
                    headers={"content-type": "application/json"},
                    body=body.to_json_bytes(),
                )
                if response.ok or response.status == 404:
                    return True
                if response.status == 409:
                    remote = await self._sessions.query_state(session)
                    if remote.is_committed:
                        session.compare_and_set((SessionState.ABORTING,), SessionState.COMMITTED)
                        self._sessions.release(session)
                        raise self._already_committed(session)
                    if remote.is_aborted:
                        return True
                raise classify_response(response.status, response.body, session_id=session.id)

            try:
                await self._retry.run(
                    attempt,
                    context={"session_id": session.id},
                    description=f"abort of session {session.id}",
                )
            except AlreadyCommittedError:
                raise
            except MultipartUploadError as e:
                session.last_error = str(e)
                session.compare_and_set((SessionState.ABORTING,), SessionState.FAILED)
                self._sessions.release(session)
                log.error(f"Abort of session {session.id} failed: {e}")
                raise

            session.compare_and_set((SessionState.ABORTING,), SessionState.ABORTED)
            self._sessions.release(session)

        log.info(f"Aborted session {session.id}")

    async def abort_quietly(
        self,
        session: Session,
        cause: Optional[BaseException] = None
    ) -> bool:
        """
        Abort after another failure.

        A failing abort is logged and reported through the return value so
        the original error can still be surfaced to the caller.

        Returns:
            True if the session ended up aborted
        """
        log = logger.bind(session_id=session.id)
        if cause is not None:
            log.warning(f"Aborting session {session.id} after failure: {cause!r}")
        try:
            await self.abort(session)
            return True
        except MultipartUploadError as e:
            log.error(f"Cleanup abort of session {session.id} failed: {e}")
            return False
