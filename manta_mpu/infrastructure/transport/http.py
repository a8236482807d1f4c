"""
aiohttp based transport to the storage service.

The signer is injected at construction; the transport adds the date and
authorization headers to every request and maps network failures onto
TransportError. HTTP error statuses are returned to the caller unchanged.
"""

import asyncio
from email.utils import formatdate
from typing import Any, Dict, Mapping, Optional

import aiohttp
from loguru import logger

from ...core.exceptions import TransportError
from ...core.interfaces.transport import ISigner, ITransport, RequestBody, TransportResponse
from ..config.models import ServiceConfig

USER_AGENT = "manta-mpu/0.1.0"


class HttpTransport(ITransport):
    """HTTP transport implementation."""

    def __init__(
        self,
        base_url: str,
        account: str,
        signer: Optional[ISigner] = None,
        timeout: float = 300.0,
        verify_tls: bool = True
    ):
        """
        Initialize the transport.

        Args:
            base_url: Service URL, e.g. https://us-east.manta.joyent.com
            account: Account that owns the uploads
            signer: Request signer; requests are sent unsigned if None
            timeout: Total timeout of one request in seconds
            verify_tls: Verify the server certificate
        """
        self._base_url = base_url.rstrip("/")
        self._account = account
        self._signer = signer
        self._timeout = timeout
        self._verify_tls = verify_tls
        self._session: Optional[aiohttp.ClientSession] = None
        self._requests = 0
        self._failures = 0

    @classmethod
    def from_config(cls, config: ServiceConfig, signer: Optional[ISigner] = None) -> "HttpTransport":
        return cls(
            base_url=config.url,
            account=config.account,
            signer=signer,
            timeout=config.timeout,
            verify_tls=config.verify_tls,
        )

    @property
    def account(self) -> str:
        return self._account

    async def start(self) -> None:
        """Open the underlying connection pool."""
        if self._session is not None and not self._session.closed:
            return
        connector = aiohttp.TCPConnector(ssl=self._verify_tls)
        self._session = aiohttp.ClientSession(
            connector=connector,
            timeout=aiohttp.ClientTimeout(total=self._timeout),
            headers={"user-agent": USER_AGENT},
        )
        logger.debug(f"HTTP transport to {self._base_url} started")

    async def stop(self) -> None:
        """Close the connection pool."""
        if self._session is not None:
            await self._session.close()
            self._session = None
            logger.debug(f"HTTP transport to {self._base_url} stopped")
        if self._signer is not None:
            await self._signer.close()

    async def _build_headers(self, headers: Optional[Mapping[str, str]]) -> Dict[str, str]:
        merged = {"date": formatdate(usegmt=True)}
        merged.update({k.lower(): v for k, v in (headers or {}).items()})
        if self._signer is not None:
            merged.update(await self._signer.sign(merged))
        return merged

    async def request(
        self,
        method: str,
        path: str,
        headers: Optional[Mapping[str, str]] = None,
        body: Optional[RequestBody] = None
    ) -> TransportResponse:
        """Send a request and read the whole response body."""
        if self._session is None or self._session.closed:
            await self.start()
        assert self._session is not None

        url = f"{self._base_url}{path}"
        request_headers = await self._build_headers(headers)
        self._requests += 1
        try:
            async with self._session.request(
                method, url, headers=request_headers, data=body
            ) as response:
                payload = await response.read()
                logger.debug(f"{method} {path} -> {response.status}")
                return TransportResponse(
                    status=response.status,
                    headers={k.lower(): v for k, v in response.headers.items()},
                    body=payload,
                )
        except asyncio.TimeoutError as e:
            self._failures += 1
            raise TransportError(f"{method} {path} timed out after {self._timeout}s") from e
        except aiohttp.ClientError as e:
            self._failures += 1
            raise TransportError(f"{method} {path} failed: {e}") from e

    def get_stats(self) -> Dict[str, Any]:
        return {
            "base_url": self._base_url,
            "requests": self._requests,
            "failures": self._failures,
            "connected": self._session is not None and not self._session.closed,
        }
