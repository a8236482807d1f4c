"""
Session manager for multipart uploads.

Opens sessions on the storage service and keeps a registry of the sessions
this client is responsible for until they reach a terminal state.
"""

import time
from typing import Any, Dict, List, Optional

from loguru import logger
from pydantic import ValidationError

from ..domain.session import Session, SessionState
from ..domain.wire import OpenSessionRequest, OpenSessionResponse, SessionStateResponse
from ..exceptions import InvalidPathError, PolicyRejectedError, ServiceError, classify_response
from ..interfaces.transport import ITransport
from ..interfaces.upload import ISessionManager
from .retry import RetryPolicy

JSON_HEADERS = {"content-type": "application/json", "accept": "application/json"}


def validate_target_path(target_path: Any) -> str:
    """
    Check that a logical object path is well formed.

    Raises:
        InvalidPathError: If the path is empty, relative, or has empty,
            '.' or '..' segments or control characters
    """
    if not isinstance(target_path, str) or not target_path:
        raise InvalidPathError("Target path must be a non-empty string", path=target_path)
    if not target_path.startswith("/"):
        raise InvalidPathError("Target path must be absolute", path=target_path)
    if any(ord(ch) < 0x20 or ord(ch) == 0x7f for ch in target_path):
        raise InvalidPathError("Target path contains control characters", path=repr(target_path))
    segments = target_path[1:].split("/")
    if target_path.endswith("/") or any(s in ("", ".", "..") for s in segments):
        raise InvalidPathError("Target path has an empty or relative segment", path=target_path)
    return target_path


class SessionManager(ISessionManager):
    """
    Session manager implementation.

    Durability levels outside [min_durability, max_durability] are rejected
    locally before any request is sent.
    """

    def __init__(
        self,
        transport: ITransport,
        retry_policy: Optional[RetryPolicy] = None,
        default_durability: int = 2,
        min_durability: int = 1,
        max_durability: int = 6
    ):
        """
        Initialize the session manager.

        Args:
            transport: Authenticated transport to the storage service
            retry_policy: Policy for retryable failures
            default_durability: Durability used when none is requested
            min_durability: Lowest durability the policy accepts
            max_durability: Highest durability the policy accepts
        """
        if min_durability < 1 or max_durability < min_durability:
            raise ValueError("Invalid durability policy bounds")
        self._transport = transport
        self._retry = retry_policy or RetryPolicy()
        self._default_durability = default_durability
        self._min_durability = min_durability
        self._max_durability = max_durability
        self._sessions: Dict[str, Session] = {}
        self._stats = {
            "sessions_opened": 0,
            "sessions_released": 0,
        }

    @property
    def uploads_path(self) -> str:
        return f"/{self._transport.account}/uploads"

    def _check_durability(self, durability_level: Any) -> int:
        if isinstance(durability_level, bool) or not isinstance(durability_level, int):
            raise PolicyRejectedError(
                f"Durability level must be an integer, got {durability_level!r}"
            )
        if not self._min_durability <= durability_level <= self._max_durability:
            raise PolicyRejectedError(
                f"Durability level {durability_level} is outside the accepted range "
                f"{self._min_durability}-{self._max_durability}",
                durability_level=durability_level,
            )
        return durability_level

    async def open_session(
        self,
        target_path: str,
        durability_level: Optional[int] = None
    ) -> Session:
        """Create a new multipart upload session."""
        validate_target_path(target_path)
        level = self._check_durability(
            self._default_durability if durability_level is None else durability_level
        )

        payload = OpenSessionRequest(object_path=target_path, durability_level=level)

        async def attempt() -> OpenSessionResponse:
            response = await self._transport.request(
                "POST",
                self.uploads_path,
                headers={**JSON_HEADERS, "durability-level": str(level)},
                body=payload.to_json_bytes(),
            )
            if not response.ok:
                raise classify_response(response.status, response.body, path=target_path)
            try:
                return OpenSessionResponse.model_validate(response.json())
            except (ValidationError, ValueError) as e:
                raise ServiceError(f"Malformed open-session response: {e}", path=target_path) from e

        created = await self._retry.run(
            attempt,
            context={"path": target_path},
            description=f"open session for {target_path}",
        )

        session = Session(
            id=created.id,
            target_path=target_path,
            parts_location=created.parts_location,
            durability_level=level,
        )
        self._sessions[session.id] = session
        self._stats["sessions_opened"] += 1

        logger.bind(session_id=session.id).info(
            f"Opened multipart upload {session.id} for {target_path} "
            f"(durability {level}, parts at {session.parts_location})"
        )
        return session

    def get_session(self, session_id: str) -> Optional[Session]:
        """Get a registered session by id."""
        return self._sessions.get(session_id)

    def list_sessions(self, state: Optional[SessionState] = None) -> List[Session]:
        """List registered sessions with optional state filtering."""
        sessions = list(self._sessions.values())
        if state is not None:
            sessions = [s for s in sessions if s.state == state]
        return sessions

    async def query_state(self, session: Session) -> SessionStateResponse:
        """Read the server-side state of a session."""

        async def attempt() -> SessionStateResponse:
            response = await self._transport.request(
                "GET",
                f"{session.parts_location}/state",
                headers={"accept": "application/json"},
            )
            if not response.ok:
                raise classify_response(response.status, response.body, session_id=session.id)
            try:
                return SessionStateResponse.model_validate(response.json())
            except (ValidationError, ValueError) as e:
                raise ServiceError(f"Malformed session state response: {e}", session_id=session.id) from e

        return await self._retry.run(
            attempt,
            context={"session_id": session.id},
            description=f"query state of {session.id}",
        )

    def release(self, session: Session) -> None:
        """Drop a terminal session from the registry."""
        if not session.is_terminal:
            raise ValueError(f"Session {session.id} is {session.state.value}, not terminal")
        if self._sessions.pop(session.id, None) is not None:
            session.clear_parts()
            self._stats["sessions_released"] += 1
            logger.bind(session_id=session.id).debug(
                f"Released session {session.id} ({session.state.value})"
            )

    def cleanup_stale_sessions(self, older_than_seconds: float) -> List[Session]:
        """
        Return open sessions untouched for longer than the given age.

        The caller is expected to abort them; nothing is changed here.
        """
        cutoff = time.time() - older_than_seconds
        return [
            s for s in self._sessions.values()
            if not s.is_terminal and s.updated_at < cutoff
        ]

    async def check_health(self) -> Dict[str, Any]:
        """Report registry statistics."""
        by_state: Dict[str, int] = {}
        for session in self._sessions.values():
            by_state[session.state.value] = by_state.get(session.state.value, 0) + 1
        return {
            "healthy": True,
            "status": "running",
            "details": {
                "sessions_tracked": len(self._sessions),
                "sessions_by_state": by_state,
                "durability_range": [self._min_durability, self._max_durability],
                "statistics": dict(self._stats),
            },
        }
