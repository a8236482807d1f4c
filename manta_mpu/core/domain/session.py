"""
Session and part domain models for multipart uploads.

A Session is the client-side view of one in-progress multipart upload. Its
state field is the only piece of mutable state shared between concurrent part
uploads and the commit/abort operations, so every transition goes through
Session.compare_and_set.
"""

import asyncio
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence


class SessionState(Enum):
    """Multipart upload session state."""
    OPEN = "open"
    COMMITTING = "committing"
    COMMITTED = "committed"
    ABORTING = "aborting"
    ABORTED = "aborted"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({
    SessionState.COMMITTED,
    SessionState.ABORTED,
    SessionState.FAILED,
})


class PartStatus(Enum):
    """Upload status of a single part."""
    PENDING = "pending"
    UPLOADED = "uploaded"
    FAILED = "failed"


@dataclass
class Part:
    """One uploaded chunk belonging to a session."""
    part_number: int
    server_identifier: Optional[str] = None
    size_bytes: int = 0
    content_checksum: Optional[str] = None
    upload_status: PartStatus = PartStatus.PENDING
    attempts: int = 0
    uploaded_at: Optional[float] = None

    @property
    def is_uploaded(self) -> bool:
        return self.upload_status == PartStatus.UPLOADED and bool(self.server_identifier)


@dataclass(frozen=True)
class ObjectReference:
    """Reference to the durable object produced by a successful commit."""
    path: str
    content_digest: Optional[str] = None
    size_bytes: Optional[int] = None


@dataclass(frozen=True)
class CommitRequest:
    """
    Ordered list of server identifiers describing the final object.

    The object is the byte concatenation of the referenced parts in exactly
    this order; part numbers play no role.
    """
    ordered_identifiers: Sequence[str]

    @classmethod
    def from_parts(cls, parts: Iterable[Part]) -> "CommitRequest":
        """Build a request from parts, in the order given."""
        return cls(tuple(p.server_identifier for p in parts if p.server_identifier))

    def duplicates(self) -> List[str]:
        """Return identifiers that appear more than once, in first-seen order."""
        seen = set()
        repeated: List[str] = []
        for identifier in self.ordered_identifiers:
            if identifier in seen and identifier not in repeated:
                repeated.append(identifier)
            seen.add(identifier)
        return repeated

    def __len__(self) -> int:
        return len(self.ordered_identifiers)


@dataclass(eq=False)
class Session:
    """
    Client-side state of one multipart upload.

    id, parts_location and target_path are issued/fixed at creation and never
    change. The uploaded parts map keeps only the latest successful upload for
    each part number (last write wins).
    """
    id: str
    target_path: str
    parts_location: str
    durability_level: int
    state: SessionState = SessionState.OPEN
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    last_error: Optional[str] = None
    parts: Dict[int, Part] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._state_lock = threading.Lock()
        self._parts_lock = threading.Lock()
        # Part numbers with a transfer in flight, counted per number.
        self._reserved: Dict[int, int] = {}
        # Serializes commit and abort so exactly one of them can finish.
        self.terminal_lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self.state == SessionState.OPEN

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def compare_and_set(
        self,
        expected: Iterable[SessionState],
        new_state: SessionState
    ) -> bool:
        """
        Atomically move to new_state if the current state is one of expected.

        Returns:
            True if the transition happened
        """
        allowed = frozenset(expected)
        with self._state_lock:
            if self.state not in allowed:
                return False
            self.state = new_state
            self.updated_at = time.time()
            return True

    def record_part(self, part: Part) -> bool:
        """
        Attach an uploaded part, superseding any earlier part with that number.

        The open check and the insertion happen under the state lock so that a
        part can never be attached after the session left OPEN.

        Returns:
            False if the session is no longer open
        """
        with self._state_lock:
            if self.state != SessionState.OPEN:
                return False
            with self._parts_lock:
                self.parts[part.part_number] = part
            self.updated_at = time.time()
            return True

    def reserve_part(self, part_number: int, max_parts: Optional[int] = None) -> bool:
        """
        Claim a part-number slot before its transfer starts.

        Numbers already attached or in flight share their slot. A new number
        is refused once attached and in-flight numbers reach max_parts.

        Returns:
            False if the slot limit is reached
        """
        with self._parts_lock:
            known = part_number in self.parts or part_number in self._reserved
            if not known and max_parts is not None:
                if len(self.parts.keys() | self._reserved.keys()) >= max_parts:
                    return False
            self._reserved[part_number] = self._reserved.get(part_number, 0) + 1
            return True

    def release_part(self, part_number: int) -> None:
        """Give back a slot taken with reserve_part."""
        with self._parts_lock:
            remaining = self._reserved.get(part_number, 0) - 1
            if remaining > 0:
                self._reserved[part_number] = remaining
            else:
                self._reserved.pop(part_number, None)

    @property
    def reserved_parts(self) -> int:
        with self._parts_lock:
            return len(self._reserved)

    def uploaded_parts(self) -> List[Part]:
        """Return uploaded parts sorted by part number."""
        with self._parts_lock:
            parts = [p for p in self.parts.values() if p.is_uploaded]
        return sorted(parts, key=lambda p: p.part_number)

    def find_part(self, server_identifier: str) -> Optional[Part]:
        """Find the current uploaded part carrying the given identifier."""
        with self._parts_lock:
            for part in self.parts.values():
                if part.server_identifier == server_identifier and part.is_uploaded:
                    return part
        return None

    def clear_parts(self) -> None:
        with self._parts_lock:
            self.parts.clear()

    def describe(self) -> Dict[str, Any]:
        """Summary used for logging and the CLI."""
        uploaded = self.uploaded_parts()
        return {
            "id": self.id,
            "target_path": self.target_path,
            "parts_location": self.parts_location,
            "durability_level": self.durability_level,
            "state": self.state.value,
            "parts_uploaded": len(uploaded),
            "bytes_uploaded": sum(p.size_bytes for p in uploaded),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "last_error": self.last_error,
        }
