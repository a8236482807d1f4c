"""
Shared fixtures for the multipart upload tests.
"""

import sys
from typing import AsyncGenerator, Generator

import pytest
from loguru import logger

from manta_mpu.core.services.engine import MultipartUploadEngine
from manta_mpu.core.services.retry import RetryPolicy

from .fake_service import FakeMantaService


@pytest.fixture(autouse=True)
def reset_logging() -> Generator[None, None, None]:
    """Restore a plain stderr sink after tests that reconfigure logging."""
    yield
    logger.remove()
    logger.add(sys.stderr, level="DEBUG")


@pytest.fixture
def service() -> FakeMantaService:
    """In-memory storage service."""
    return FakeMantaService(account="acct")


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Retry policy without backoff delays."""
    return RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=False)


@pytest.fixture
async def engine(service: FakeMantaService, fast_retry: RetryPolicy) -> AsyncGenerator[MultipartUploadEngine, None]:
    """Started engine wired to the fake service."""
    engine = MultipartUploadEngine(service, retry_policy=fast_retry, max_concurrent_parts=4)
    await engine.start()
    yield engine
    await engine.stop()
