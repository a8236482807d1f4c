"""
Tests for the aiohttp transport.
"""

import asyncio
from typing import Any, AsyncGenerator, Dict, List
from unittest.mock import AsyncMock, Mock

import pytest
from aiohttp import web
from aiohttp import test_utils

from manta_mpu.core.exceptions import AuthenticationError, TransportError
from manta_mpu.infrastructure.config.models import ServiceConfig
from manta_mpu.infrastructure.transport.http import HttpTransport

from .fake_service import chunked


class TestHttpTransport:
    """Test cases for HttpTransport against a local aiohttp server."""

    @pytest.fixture
    def received(self) -> List[Dict[str, Any]]:
        return []

    @pytest.fixture
    async def server(self, received: List[Dict[str, Any]]) -> AsyncGenerator[test_utils.TestServer, None]:
        async def create(request: web.Request) -> web.Response:
            received.append({"headers": dict(request.headers), "body": await request.read()})
            return web.json_response({"id": "u1", "partsLocation": "/acct/uploads/u/u1"}, status=201)

        async def put_part(request: web.Request) -> web.Response:
            body = await request.read()
            received.append({"headers": dict(request.headers), "body": body})
            return web.json_response({"serverIdentifier": "etag-1", "sizeBytes": len(body)}, headers={"ETag": "etag-1"})

        async def slow(request: web.Request) -> web.Response:
            await asyncio.sleep(1)
            return web.Response(status=204)

        app = web.Application()
        app.router.add_post("/acct/uploads", create)
        app.router.add_put("/acct/uploads/u/u1/{number}", put_part)
        app.router.add_get("/slow", slow)

        server = test_utils.TestServer(app)
        await server.start_server()
        yield server
        await server.close()

    @pytest.fixture
    async def transport(self, server: test_utils.TestServer) -> AsyncGenerator[HttpTransport, None]:
        signer = Mock()
        signer.sign = AsyncMock(side_effect=lambda headers: {
            "date": headers["date"],
            "authorization": "Signature test",
        })
        signer.close = AsyncMock()
        transport = HttpTransport(str(server.make_url("")), "acct", signer=signer, timeout=0.5)
        await transport.start()
        yield transport
        await transport.stop()

    @pytest.mark.asyncio
    async def test_post_json(self, transport: HttpTransport, received: List[Dict[str, Any]]) -> None:
        response = await transport.request(
            "POST", "/acct/uploads",
            headers={"Content-Type": "application/json", "Durability-Level": "2"},
            body=b'{"objectPath": "/acct/stor/obj"}',
        )

        assert response.status == 201
        assert response.ok
        assert response.json()["partsLocation"] == "/acct/uploads/u/u1"
        assert response.header("Content-Type").startswith("application/json")

        headers = {k.lower(): v for k, v in received[0]["headers"].items()}
        assert headers["authorization"] == "Signature test"
        assert headers["durability-level"] == "2"
        assert "date" in headers
        assert headers["user-agent"].startswith("manta-mpu/")
        assert received[0]["body"] == b'{"objectPath": "/acct/stor/obj"}'

    @pytest.mark.asyncio
    async def test_streamed_body(self, transport: HttpTransport, received: List[Dict[str, Any]]) -> None:
        response = await transport.request(
            "PUT", "/acct/uploads/u/u1/0", body=chunked(b"abc", b"def")
        )

        assert response.status == 200
        assert response.header("etag") == "etag-1"
        assert received[0]["body"] == b"abcdef"

    @pytest.mark.asyncio
    async def test_error_status_is_returned(self, transport: HttpTransport) -> None:
        response = await transport.request("GET", "/missing")
        assert response.status == 404
        assert not response.ok

    @pytest.mark.asyncio
    async def test_timeout(self, transport: HttpTransport) -> None:
        with pytest.raises(TransportError, match="timed out"):
            await transport.request("GET", "/slow")
        assert transport.get_stats()["failures"] == 1

    @pytest.mark.asyncio
    async def test_connection_failure(self) -> None:
        transport = HttpTransport("http://127.0.0.1:1", "acct", timeout=2)
        try:
            with pytest.raises(TransportError):
                await transport.request("GET", "/acct/uploads")
        finally:
            await transport.stop()

    @pytest.mark.asyncio
    async def test_lifecycle(self, server: test_utils.TestServer) -> None:
        transport = HttpTransport(str(server.make_url("")), "acct")
        assert transport.get_stats()["connected"] is False
        await transport.start()
        assert transport.get_stats()["connected"] is True
        await transport.stop()
        assert transport.get_stats()["connected"] is False

    def test_from_config(self) -> None:
        config = ServiceConfig(url="https://manta.example.com/", account="alice", timeout=12)
        transport = HttpTransport.from_config(config)
        assert transport.account == "alice"
        assert transport.get_stats()["base_url"] == "https://manta.example.com"

    @pytest.mark.asyncio
    async def test_stop_closes_signer(self, transport: HttpTransport) -> None:
        signer = transport._signer
        await transport.stop()
        signer.close.assert_awaited_once()  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_signing_failure_is_not_sent(self, server: test_utils.TestServer, received: List[Dict[str, Any]]) -> None:
        signer = Mock()
        signer.sign = AsyncMock(side_effect=AuthenticationError("agent refused"))
        signer.close = AsyncMock()
        transport = HttpTransport(str(server.make_url("")), "acct", signer=signer)
        try:
            with pytest.raises(AuthenticationError):
                await transport.request("POST", "/acct/uploads", body=b"{}")
        finally:
            await transport.stop()
        assert received == []
        assert transport.get_stats()["requests"] == 0
