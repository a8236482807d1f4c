"""
Error taxonomy for the multipart upload engine.

Every error raised by the engine derives from MultipartUploadError and carries
a category, a retryable flag and a context dictionary (session id, part number,
attempt count, observed state) so that callers can decide whether to retry the
whole multipart operation or abort it.
"""

import json
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(Enum):
    """Error classification used by the retry policy and callers."""
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    TRANSIENT = "transient"
    STATE_CONFLICT = "state_conflict"
    INTEGRITY = "integrity"
    SERVICE_CAPACITY = "service_capacity"


class MultipartUploadError(Exception):
    """Base class for all multipart upload errors."""

    category: ErrorCategory = ErrorCategory.VALIDATION
    retryable: bool = False
    default_code: str = "MPU_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        **context: Any
    ) -> None:
        self.message = message
        self.error_code = error_code or self.default_code
        self.context: Dict[str, Any] = {
            key: value for key, value in context.items() if value is not None
        }
        super().__init__(message)

    @property
    def session_id(self) -> Optional[str]:
        return self.context.get("session_id")

    @property
    def part_number(self) -> Optional[int]:
        return self.context.get("part_number")

    def with_context(self, **context: Any) -> "MultipartUploadError":
        """Attach additional context without overwriting existing keys."""
        for key, value in context.items():
            if value is not None:
                self.context.setdefault(key, value)
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the error for logging or API responses."""
        return {
            "error": self.message,
            "type": type(self).__name__,
            "code": self.error_code,
            "category": self.category.value,
            "retryable": self.retryable,
            "context": dict(self.context),
        }

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in sorted(self.context.items()))
        return f"{self.message} ({details})"


# Validation

class InvalidPathError(MultipartUploadError):
    """The target object path is malformed."""
    default_code = "INVALID_PATH"


class InvalidPartError(MultipartUploadError):
    """The part number or part data is not acceptable."""
    default_code = "INVALID_PART"


class PartSizeMismatchError(MultipartUploadError):
    """The data stream length differs from the declared expected size."""
    default_code = "PART_SIZE_MISMATCH"


class InvalidCommitRequestError(MultipartUploadError):
    """The commit ordering is empty or contains duplicates."""
    default_code = "INVALID_COMMIT_REQUEST"


# Authentication

class AuthenticationError(MultipartUploadError):
    """Credentials were rejected or could not be loaded."""
    category = ErrorCategory.AUTHENTICATION
    default_code = "AUTHENTICATION_FAILED"


# Transient / transport

class ServiceUnavailableError(MultipartUploadError):
    """The service is temporarily unable to handle the request."""
    category = ErrorCategory.TRANSIENT
    retryable = True
    default_code = "SERVICE_UNAVAILABLE"


class TransportError(MultipartUploadError):
    """A network level failure happened before a response was received."""
    category = ErrorCategory.TRANSIENT
    retryable = True
    default_code = "TRANSPORT_ERROR"


class ExhaustedRetriesError(MultipartUploadError):
    """A retryable operation kept failing until the retry budget ran out."""
    category = ErrorCategory.TRANSIENT
    default_code = "RETRIES_EXHAUSTED"

    def __init__(
        self,
        message: str,
        last_error: Optional[BaseException] = None,
        attempts: int = 0,
        **context: Any
    ) -> None:
        super().__init__(message, attempts=attempts, **context)
        self.last_error = last_error
        self.attempts = attempts


# State conflicts

class SessionStateError(MultipartUploadError):
    """The operation is invalid for the current session state."""
    category = ErrorCategory.STATE_CONFLICT
    default_code = "SESSION_STATE_CONFLICT"

    @property
    def observed_state(self) -> Optional[str]:
        return self.context.get("state")


class SessionClosedError(SessionStateError):
    """Parts can only be uploaded while the session is open."""
    default_code = "SESSION_CLOSED"


class SessionNotOpenError(SessionStateError):
    """The session was already committed or aborted."""
    default_code = "SESSION_NOT_OPEN"


class AlreadyCommittedError(SessionStateError):
    """A committed session cannot be aborted."""
    default_code = "ALREADY_COMMITTED"


class MissingPartError(SessionStateError):
    """A commit identifier does not reference an uploaded part."""
    default_code = "MISSING_PART"


class UploadCancelledError(SessionStateError):
    """Part scheduling stopped because a cancellation was requested."""
    default_code = "UPLOAD_CANCELLED"


# Integrity

class ChecksumMismatchError(MultipartUploadError):
    """The service stored different bytes than were sent."""
    category = ErrorCategory.INTEGRITY
    retryable = True
    default_code = "CHECKSUM_MISMATCH"


# Capacity / policy

class QuotaExceededError(MultipartUploadError):
    """The account is out of storage quota or the part limit was reached."""
    category = ErrorCategory.SERVICE_CAPACITY
    default_code = "QUOTA_EXCEEDED"


class PolicyRejectedError(MultipartUploadError):
    """The service replication policy rejected the requested durability."""
    category = ErrorCategory.SERVICE_CAPACITY
    default_code = "POLICY_REJECTED"


class ServiceError(MultipartUploadError):
    """An unexpected service response that fits no other category."""
    category = ErrorCategory.SERVICE_CAPACITY
    default_code = "SERVICE_ERROR"


_CODE_MAP = {
    "InvalidArgument": InvalidPathError,
    "InvalidPath": InvalidPathError,
    "InvalidParameter": InvalidPartError,
    "InvalidDurabilityLevel": PolicyRejectedError,
    "NotEnoughSpace": QuotaExceededError,
    "AccountBlocked": AuthenticationError,
    "InvalidCredentials": AuthenticationError,
    "InvalidSignature": AuthenticationError,
    "InvalidMultipartUploadState": SessionNotOpenError,
    "MultipartUploadInvalidArgument": MissingPartError,
    "ChecksumError": ChecksumMismatchError,
    "ContentMD5Mismatch": ChecksumMismatchError,
    "ServiceUnavailable": ServiceUnavailableError,
}


def _decode_error_body(body: bytes) -> Dict[str, Any]:
    if not body:
        return {}
    try:
        decoded = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return {"message": body.decode("utf-8", errors="replace")[:200]}
    return decoded if isinstance(decoded, dict) else {}


def classify_response(
    status: int,
    body: bytes = b"",
    **context: Any
) -> MultipartUploadError:
    """
    Map a failed service response onto the error taxonomy.

    The service error code in the body wins over the HTTP status when it is
    recognized.

    Args:
        status: HTTP status code
        body: Raw response body
        **context: Session id, part number and other context to attach

    Returns:
        An unraised MultipartUploadError subclass instance
    """
    payload = _decode_error_body(body)
    code = payload.get("code")
    message = payload.get("message") or f"Service responded with HTTP {status}"

    error_type = _CODE_MAP.get(code) if code else None
    if error_type is None:
        if status in (401, 403):
            error_type = AuthenticationError
        elif status == 404:
            error_type = SessionNotOpenError
        elif status == 409:
            error_type = SessionNotOpenError
        elif status == 413 or status == 507:
            error_type = QuotaExceededError
        elif status == 400:
            error_type = InvalidPartError
        elif status in (408, 429) or 500 <= status < 600:
            error_type = ServiceUnavailableError
        else:
            error_type = ServiceError

    return error_type(message, error_code=code, status=status, **context)
