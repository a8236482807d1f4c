"""
Part uploader for multipart uploads.

Parts are streamed to the session's parts location. The number of transfers
in flight at any moment is bounded by a semaphore shared by every call made
through one uploader instance.
"""

import asyncio
import base64
import hashlib
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

from loguru import logger
from pydantic import ValidationError

from ..domain.session import Part, PartStatus, Session
from ..domain.wire import UploadPartResponse
from ..exceptions import (
    ChecksumMismatchError, InvalidPartError, MultipartUploadError,
    PartSizeMismatchError, QuotaExceededError, ServiceError,
    SessionClosedError, UploadCancelledError, classify_response
)
from ..interfaces.transport import ITransport
from ..interfaces.upload import IPartUploader
from .retry import RetryPolicy
from .sources import PartSource, open_source


@dataclass
class PartSpec:
    """A part scheduled for upload."""
    part_number: int
    data: Any
    expected_size: Optional[int] = None


def content_md5(digest: "hashlib._Hash") -> str:
    """Base64 encoded MD5, as used in content-md5 headers."""
    return base64.b64encode(digest.digest()).decode("ascii")


class PartUploader(IPartUploader):
    """
    Part uploader implementation.

    Re-uploading a part number replaces the earlier part on the session once
    the new transfer succeeds; a failed re-upload leaves the earlier part in
    place.
    """

    def __init__(
        self,
        transport: ITransport,
        retry_policy: Optional[RetryPolicy] = None,
        max_concurrent_parts: int = 4,
        max_parts: Optional[int] = None,
        max_part_number: Optional[int] = None
    ):
        """
        Initialize the part uploader.

        Args:
            transport: Authenticated transport to the storage service
            retry_policy: Policy for transport and integrity failures
            max_concurrent_parts: Ceiling on simultaneous transfers
            max_parts: Maximum number of distinct parts per session
            max_part_number: Highest accepted part number
        """
        if max_concurrent_parts < 1:
            raise ValueError("max_concurrent_parts must be at least 1")
        self._transport = transport
        self._retry = retry_policy or RetryPolicy()
        self._max_concurrent_parts = max_concurrent_parts
        self._max_parts = max_parts
        self._max_part_number = max_part_number
        self._semaphore = asyncio.Semaphore(max_concurrent_parts)

        self._in_flight = 0
        self._peak_in_flight = 0
        self._stats = {
            "parts_uploaded": 0,
            "parts_failed": 0,
            "bytes_uploaded": 0,
            "attempts": 0,
        }

    @property
    def max_concurrent_parts(self) -> int:
        return self._max_concurrent_parts

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def peak_in_flight(self) -> int:
        return self._peak_in_flight

    def get_stats(self) -> Dict[str, Any]:
        """Get transfer statistics."""
        return {
            **self._stats,
            "in_flight": self._in_flight,
            "peak_in_flight": self._peak_in_flight,
            "max_concurrent_parts": self._max_concurrent_parts,
        }

    @asynccontextmanager
    async def _slot(self) -> AsyncIterator[None]:
        async with self._semaphore:
            self._in_flight += 1
            self._peak_in_flight = max(self._peak_in_flight, self._in_flight)
            try:
                yield
            finally:
                self._in_flight -= 1

    def _check_part_number(self, session: Session, part_number: Any) -> None:
        if isinstance(part_number, bool) or not isinstance(part_number, int) or part_number < 0:
            raise InvalidPartError(
                f"Part number must be a non-negative integer, got {part_number!r}",
                session_id=session.id,
            )
        if self._max_part_number is not None and part_number > self._max_part_number:
            raise InvalidPartError(
                f"Part number {part_number} exceeds the maximum of {self._max_part_number}",
                session_id=session.id,
                part_number=part_number,
            )

    @staticmethod
    def _ensure_open(session: Session, part_number: int) -> None:
        if not session.is_open:
            raise SessionClosedError(
                f"Session {session.id} does not accept parts",
                session_id=session.id,
                part_number=part_number,
                state=session.state.value,
            )

    async def upload_part(
        self,
        session: Session,
        part_number: int,
        data: Any,
        expected_size: Optional[int] = None
    ) -> Part:
        """Upload one part."""
        return await self._upload(session, PartSpec(part_number, data, expected_size))

    async def _upload(
        self,
        session: Session,
        spec: PartSpec,
        cancel_event: Optional[asyncio.Event] = None
    ) -> Part:
        self._check_part_number(session, spec.part_number)
        self._ensure_open(session, spec.part_number)

        source = open_source(spec.data)
        if (spec.expected_size is not None and source.length is not None
                and source.length != spec.expected_size):
            raise PartSizeMismatchError(
                f"Part data is {source.length} bytes, expected {spec.expected_size}",
                session_id=session.id,
                part_number=spec.part_number,
            )

        if not session.reserve_part(spec.part_number, self._max_parts):
            raise QuotaExceededError(
                f"Session already holds the maximum of {self._max_parts} parts",
                session_id=session.id,
                part_number=spec.part_number,
            )
        try:
            uploaded = await self._send(session, spec, source, cancel_event)
            if not session.record_part(uploaded):
                raise SessionClosedError(
                    f"Session {session.id} left the open state while part {spec.part_number} was in flight",
                    session_id=session.id,
                    part_number=spec.part_number,
                    state=session.state.value,
                )
        finally:
            session.release_part(spec.part_number)

        self._stats["parts_uploaded"] += 1
        self._stats["bytes_uploaded"] += uploaded.size_bytes
        logger.bind(session_id=session.id, part_number=spec.part_number).debug(
            f"Uploaded part {uploaded.part_number} ({uploaded.size_bytes} bytes) "
            f"as {uploaded.server_identifier}"
        )
        return uploaded

    async def _send(
        self,
        session: Session,
        spec: PartSpec,
        source: PartSource,
        cancel_event: Optional[asyncio.Event]
    ) -> Part:
        part = Part(part_number=spec.part_number)
        async with self._slot():
            if cancel_event is not None and cancel_event.is_set():
                raise UploadCancelledError(
                    "Upload cancelled before the part was sent",
                    session_id=session.id,
                    part_number=spec.part_number,
                    state=session.state.value,
                )
            # The session may have moved on while this call waited for a slot.
            self._ensure_open(session, spec.part_number)

            try:
                return await self._retry.run(
                    lambda: self._transfer(session, part, source, spec.expected_size),
                    context={"session_id": session.id, "part_number": spec.part_number},
                    description=f"upload of part {spec.part_number}",
                )
            except MultipartUploadError:
                part.upload_status = PartStatus.FAILED
                self._stats["parts_failed"] += 1
                raise

    async def _transfer(
        self,
        session: Session,
        part: Part,
        source: PartSource,
        expected_size: Optional[int]
    ) -> Part:
        """Send the part once and verify what the service stored."""
        part.attempts += 1
        self._stats["attempts"] += 1
        digest = hashlib.md5(usedforsecurity=False)
        sent = 0

        async def body() -> AsyncIterator[bytes]:
            nonlocal sent
            async for chunk in source.chunks():
                digest.update(chunk)
                sent += len(chunk)
                yield chunk

        headers = {"content-type": "application/octet-stream"}
        declared = expected_size if expected_size is not None else source.length
        if declared is not None:
            headers["content-length"] = str(declared)

        response = await self._transport.request(
            "PUT",
            f"{session.parts_location}/{part.part_number}",
            headers=headers,
            body=body(),
        )
        context = {"session_id": session.id, "part_number": part.part_number}
        if not response.ok:
            raise classify_response(response.status, response.body, **context)

        if expected_size is not None and sent != expected_size:
            raise PartSizeMismatchError(
                f"Part stream produced {sent} bytes, expected {expected_size}",
                **context
            )

        try:
            if response.body:
                result = UploadPartResponse.model_validate(response.json())
            else:
                result = UploadPartResponse(
                    server_identifier=response.header("etag") or "",
                    size_bytes=None,
                    checksum=response.header("computed-md5"),
                )
        except (ValidationError, ValueError) as e:
            raise ServiceError(f"Malformed upload-part response: {e}", **context) from e

        checksum = content_md5(digest)
        if result.size_bytes is not None and result.size_bytes != sent:
            raise ChecksumMismatchError(
                f"Service stored {result.size_bytes} bytes, {sent} were sent",
                **context
            )
        if result.checksum is not None and result.checksum != checksum:
            raise ChecksumMismatchError(
                f"Service checksum {result.checksum} does not match {checksum}",
                **context
            )

        return Part(
            part_number=part.part_number,
            server_identifier=result.server_identifier,
            size_bytes=sent,
            content_checksum=checksum,
            upload_status=PartStatus.UPLOADED,
            attempts=part.attempts,
            uploaded_at=time.time(),
        )

    async def upload_parts(
        self,
        session: Session,
        specs: Iterable[PartSpec],
        cancel_event: Optional[asyncio.Event] = None
    ) -> List[Part]:
        """
        Upload many parts concurrently, bounded by the concurrency ceiling.

        Once the cancel event is set, or any part fails for good, no new
        transfer is started; transfers already in flight run to completion.

        Args:
            session: An open session
            specs: Parts to upload; part numbers must be distinct
            cancel_event: Optional external cancellation signal

        Returns:
            Uploaded parts in the order of specs

        Raises:
            The first part failure, or UploadCancelledError if cancellation
            was requested and nothing failed
        """
        specs = list(specs)
        numbers = [spec.part_number for spec in specs]
        if len(set(numbers)) != len(numbers):
            raise InvalidPartError(
                "Part numbers in one batch must be distinct",
                session_id=session.id,
            )

        stop = asyncio.Event()
        failures: List[BaseException] = []

        async def watch_cancel() -> None:
            if cancel_event is not None:
                await cancel_event.wait()
                stop.set()

        async def run(spec: PartSpec) -> Part:
            try:
                return await self._upload(session, spec, stop)
            except Exception as e:
                if not isinstance(e, UploadCancelledError):
                    failures.append(e)
                stop.set()
                raise

        watcher = asyncio.create_task(watch_cancel())
        try:
            results = await asyncio.gather(*(run(spec) for spec in specs), return_exceptions=True)
        finally:
            watcher.cancel()
            try:
                await watcher
            except asyncio.CancelledError:
                pass

        if failures:
            raise failures[0]
        for result in results:
            if isinstance(result, BaseException):
                raise result
        logger.bind(session_id=session.id).info(
            f"Uploaded {len(results)} part(s) to session {session.id}"
        )
        return list(results)  # type: ignore[arg-type]
