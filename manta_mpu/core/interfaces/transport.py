"""
Collaborator interfaces consumed by the multipart upload engine.

The engine never performs network I/O or signing itself. It talks to the
storage service through an ITransport, which in turn was built with an
ISigner injected at construction time.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Mapping, Optional, Union

from .lifecycle import IStartable, IStoppable


RequestBody = Union[bytes, AsyncIterator[bytes]]


@dataclass
class TransportResponse:
    """Application level response from the storage service."""
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        """Decode the body as JSON; an empty body decodes to an empty dict."""
        if not self.body:
            return {}
        return json.loads(self.body.decode("utf-8"))

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


class ISigner(ABC):
    """Produces authorization headers for outgoing requests."""

    @property
    @abstractmethod
    def key_id(self) -> str:
        """Identifier of the signing key as the service knows it."""
        pass

    @abstractmethod
    async def sign(self, headers: Mapping[str, str]) -> Dict[str, str]:
        """
        Sign a request.

        Args:
            headers: Request headers; must include the date header

        Returns:
            Headers to add to the request (at least 'authorization')
        """
        pass

    async def close(self) -> None:
        """Release any connection held by the signer."""


class ITransport(IStartable, IStoppable):
    """
    Performs authenticated calls against the storage service.

    Network-level failures (connection refused, timeouts, resets) are raised
    as TransportError. HTTP error statuses are returned as responses and
    classified by the caller.
    """

    @property
    @abstractmethod
    def account(self) -> str:
        """Account name that owns the uploads."""
        pass

    @abstractmethod
    async def request(
        self,
        method: str,
        path: str,
        headers: Optional[Mapping[str, str]] = None,
        body: Optional[RequestBody] = None
    ) -> TransportResponse:
        """
        Send a request.

        Args:
            method: HTTP method
            path: Absolute service path
            headers: Extra request headers
            body: Raw bytes or an async iterator of byte chunks

        Returns:
            The service response

        Raises:
            TransportError: If no response could be obtained
        """
        pass
