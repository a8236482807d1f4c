"""
Domain models: sessions, parts and wire payloads.
"""

from .session import (
    CommitRequest, ObjectReference, Part, PartStatus, Session, SessionState, TERMINAL_STATES
)

__all__ = [
    "CommitRequest",
    "ObjectReference",
    "Part",
    "PartStatus",
    "Session",
    "SessionState",
    "TERMINAL_STATES",
]
