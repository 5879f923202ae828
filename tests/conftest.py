"""Test fixtures for workspace provisioner tests."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator

import pytest
import pytest_asyncio
import structlog
from kubernetes_asyncio import client
from structlog.stdlib import BoundLogger

from provisioner.config import Config
from provisioner.factory import Factory

from .support.config import configure
from .support.kubernetes import MockKubernetesApi, patch_kubernetes


@pytest.fixture
def config() -> Config:
    """Construct default configuration for tests."""
    return configure("standard")


@pytest_asyncio.fixture
async def factory(
    config: Config, mock_kubernetes: MockKubernetesApi
) -> AsyncIterator[Factory]:
    """Create a component factory for tests."""
    logger = structlog.get_logger(__name__)
    factory = Factory(config, client.ApiClient(), logger)
    yield factory
    await factory.aclose()


@pytest.fixture
def logger() -> BoundLogger:
    return structlog.get_logger(__name__)


@pytest.fixture
def mock_kubernetes() -> Iterator[MockKubernetesApi]:
    yield from patch_kubernetes()
