"""
Tests for the session manager.
"""

import time

import pytest

from manta_mpu.core.domain.session import SessionState
from manta_mpu.core.exceptions import (
    AuthenticationError, ExhaustedRetriesError, InvalidPathError, PolicyRejectedError
)
from manta_mpu.core.services.retry import RetryPolicy
from manta_mpu.core.services.session_manager import SessionManager, validate_target_path

from .fake_service import FakeMantaService


class TestValidateTargetPath:
    """Test cases for validate_target_path."""

    @pytest.mark.parametrize("path", [
        "/acct/stor/file.bin",
        "/acct/stor/dir/nested/file",
        "/a",
    ])
    def test_valid(self, path: str) -> None:
        assert validate_target_path(path) == path

    @pytest.mark.parametrize("path", [
        "",
        None,
        "relative/path",
        "/acct/stor/",
        "/acct//stor",
        "/acct/./stor",
        "/acct/../stor",
        "/acct/stor/bad\nname",
        "/",
    ])
    def test_invalid(self, path: object) -> None:
        with pytest.raises(InvalidPathError):
            validate_target_path(path)


class TestSessionManager:
    """Test cases for SessionManager."""

    @pytest.fixture
    def manager(self, service: FakeMantaService, fast_retry: RetryPolicy) -> SessionManager:
        return SessionManager(service, fast_retry, default_durability=2, min_durability=1, max_durability=3)

    @pytest.mark.asyncio
    async def test_open_session(self, manager: SessionManager, service: FakeMantaService) -> None:
        session = await manager.open_session("/acct/stor/obj")

        assert session.state == SessionState.OPEN
        assert session.target_path == "/acct/stor/obj"
        assert session.durability_level == 2
        assert session.id in service.uploads
        assert session.parts_location == service.uploads[session.id].parts_location
        assert manager.get_session(session.id) is session

    @pytest.mark.asyncio
    async def test_open_session_with_durability(self, manager: SessionManager, service: FakeMantaService) -> None:
        session = await manager.open_session("/acct/stor/obj", durability_level=3)
        assert session.durability_level == 3
        assert service.uploads[session.id].durability_level == 3

    @pytest.mark.asyncio
    async def test_sessions_get_distinct_ids(self, manager: SessionManager) -> None:
        first = await manager.open_session("/acct/stor/obj")
        second = await manager.open_session("/acct/stor/obj")
        assert first.id != second.id
        assert first.parts_location != second.parts_location

    @pytest.mark.asyncio
    @pytest.mark.parametrize("level", [0, 4, -1, True, "2", 2.0])
    async def test_durability_policy(self, manager: SessionManager, service: FakeMantaService, level: object) -> None:
        with pytest.raises(PolicyRejectedError):
            await manager.open_session("/acct/stor/obj", durability_level=level)  # type: ignore[arg-type]
        assert service.count("open") == 0

    @pytest.mark.asyncio
    async def test_invalid_path_sends_nothing(self, manager: SessionManager, service: FakeMantaService) -> None:
        with pytest.raises(InvalidPathError):
            await manager.open_session("no/leading/slash")
        assert service.requests == []

    @pytest.mark.asyncio
    async def test_open_retries_transient_failures(self, manager: SessionManager, service: FakeMantaService) -> None:
        service.fail("open", times=2, status=503)
        session = await manager.open_session("/acct/stor/obj")
        assert session.is_open
        assert service.count("open") == 3

    @pytest.mark.asyncio
    async def test_open_exhausts_retries(self, manager: SessionManager, service: FakeMantaService) -> None:
        service.fail("open", times=5, transport_error=True)
        with pytest.raises(ExhaustedRetriesError):
            await manager.open_session("/acct/stor/obj")
        assert manager.list_sessions() == []

    @pytest.mark.asyncio
    async def test_open_authentication_failure(self, manager: SessionManager, service: FakeMantaService) -> None:
        service.fail("open", status=403, body={"code": "InvalidSignature", "message": "bad signature"})
        with pytest.raises(AuthenticationError):
            await manager.open_session("/acct/stor/obj")
        assert service.count("open") == 1

    @pytest.mark.asyncio
    async def test_query_state(self, manager: SessionManager) -> None:
        session = await manager.open_session("/acct/stor/obj")
        remote = await manager.query_state(session)
        assert remote.id == session.id
        assert remote.state == "created"
        assert not remote.is_committed
        assert not remote.is_aborted

    @pytest.mark.asyncio
    async def test_list_and_release(self, manager: SessionManager) -> None:
        first = await manager.open_session("/acct/stor/a")
        second = await manager.open_session("/acct/stor/b")
        second.compare_and_set((SessionState.OPEN,), SessionState.ABORTED)

        assert set(manager.list_sessions()) == {first, second}
        assert manager.list_sessions(SessionState.ABORTED) == [second]

        manager.release(second)
        assert manager.get_session(second.id) is None
        assert manager.list_sessions() == [first]

    @pytest.mark.asyncio
    async def test_release_requires_terminal_state(self, manager: SessionManager) -> None:
        session = await manager.open_session("/acct/stor/a")
        with pytest.raises(ValueError):
            manager.release(session)

    @pytest.mark.asyncio
    async def test_cleanup_stale_sessions(self, manager: SessionManager) -> None:
        stale = await manager.open_session("/acct/stor/a")
        fresh = await manager.open_session("/acct/stor/b")
        stale.updated_at = time.time() - 3600

        assert manager.cleanup_stale_sessions(60) == [stale]
        assert fresh.is_open

    @pytest.mark.asyncio
    async def test_check_health(self, manager: SessionManager) -> None:
        await manager.open_session("/acct/stor/a")
        health = await manager.check_health()
        assert health["healthy"] is True
        assert health["details"]["sessions_tracked"] == 1
        assert health["details"]["sessions_by_state"] == {"open": 1}
        assert health["details"]["statistics"]["sessions_opened"] == 1

    def test_invalid_policy_bounds(self, service: FakeMantaService) -> None:
        with pytest.raises(ValueError):
            SessionManager(service, min_durability=3, max_durability=2)
