"""
Pytest configuration and fixtures for sentinel_pool tests.

Provides:
- A fake Redis/Sentinel network patched over redis.asyncio.Redis
- Configuration fixtures for various scenarios
- Mock Redis clients for factory tests
- Integration test markers and CLI options
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from typing import AsyncGenerator

from fakes import FakeNetwork
from sentinel_pool import (
    ConnectionFactory,
    HostAndPort,
    PoolConfig,
    ResourcePool,
    SentinelPool,
    SentinelPoolConfig,
)


# ============================================================================
# Pytest Hooks for Integration Tests
# ============================================================================

def pytest_addoption(parser):
    """Add custom command line options for pytest."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests (requires a running Sentinel topology)",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (requires running Redis)"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running (e.g., failover tests)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --run-integration is provided."""
    if config.getoption("--run-integration"):
        # --run-integration given: do not skip integration tests
        return

    skip_integration = pytest.mark.skip(reason="need --run-integration option to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


# ============================================================================
# Fake Network Fixtures
# ============================================================================

@pytest.fixture
def network():
    """A master, a failover target and two Sentinels monitoring 'mymaster'."""
    net = FakeNetwork.with_default_topology()
    with patch("sentinel_pool.redis.Redis", side_effect=net.connect):
        yield net


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def default_config() -> SentinelPoolConfig:
    """Create a default configuration."""
    return SentinelPoolConfig()


@pytest.fixture
def sentinel_config() -> SentinelPoolConfig:
    """Configuration matching the fake network topology."""
    return SentinelPoolConfig(
        master_name="mymaster",
        sentinels=[str(FakeNetwork.SENTINEL_1), str(FakeNetwork.SENTINEL_2)],
        password=FakeNetwork.PASSWORD,
        db=2,
        subscribe_retry_delay=0.01,
        subscribe_retry_max_delay=0.05,
    )


@pytest.fixture
def single_connection_config(sentinel_config) -> SentinelPoolConfig:
    """Pool of one connection that fails fast when exhausted."""
    sentinel_config.pool = PoolConfig(max_total=1, block_when_exhausted=False)
    return sentinel_config


# ============================================================================
# Pool Fixtures
# ============================================================================

@pytest.fixture
def factory(network) -> ConnectionFactory:
    """Factory pointed at the fake master."""
    return ConnectionFactory(
        address=FakeNetwork.MASTER,
        password=FakeNetwork.PASSWORD,
        client_name="pool_tests",
    )


@pytest.fixture
async def resource_pool(factory) -> AsyncGenerator[ResourcePool, None]:
    """A bounded pool with the default policy."""
    pool = ResourcePool(factory, PoolConfig())
    yield pool
    await pool.close()


@pytest.fixture
async def sentinel_pool(network, sentinel_config) -> AsyncGenerator[SentinelPool, None]:
    """An initialized SentinelPool on the fake network."""
    pool = SentinelPool(sentinel_config)
    await pool.initialize()

    yield pool

    # Cleanup
    await pool.close()


# ============================================================================
# Mock Fixtures
# ============================================================================

@pytest.fixture
def mock_master_client() -> AsyncMock:
    """Create a mock single-connection redis.asyncio.Redis client."""
    mock = AsyncMock()
    mock.initialize = AsyncMock(return_value=mock)
    mock.connection = MagicMock()
    mock.connection.is_connected = True
    mock.ping = AsyncMock(return_value=True)
    mock.aclose = AsyncMock()
    mock.pipeline = MagicMock()
    return mock


@pytest.fixture
def mock_logger() -> MagicMock:
    """Create a mock logger for testing log output."""
    logger = MagicMock()
    logger.info = MagicMock()
    logger.warning = MagicMock()
    logger.error = MagicMock()
    logger.debug = MagicMock()
    return logger


@pytest.fixture
def new_master() -> HostAndPort:
    return FakeNetwork.NEW_MASTER
