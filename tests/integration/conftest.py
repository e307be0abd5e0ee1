"""
Shared pytest fixtures for integration tests.

Provides a RabbitMQ broker through testcontainers. If testcontainers or
Docker is not available, tests are automatically skipped.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Generator
from typing import Any
from uuid import uuid4

import pytest
import pytest_asyncio

from brokerkit.config import BrokerSettings
from brokerkit.connection import ConnectionManager

# ============================================================================
# Testcontainers Detection
# ============================================================================

TESTCONTAINERS_AVAILABLE = False

try:
    from testcontainers.core.container import DockerContainer
    from testcontainers.core.waiting_utils import wait_for_logs

    TESTCONTAINERS_AVAILABLE = True
except ImportError:
    DockerContainer = None  # type: ignore[assignment, misc]
    wait_for_logs = None  # type: ignore[assignment]


def is_docker_available() -> bool:
    """Check if Docker is available for running containers."""
    import subprocess

    try:
        result = subprocess.run(
            ["docker", "info"],
            capture_output=True,
            timeout=5,
        )
        return result.returncode == 0
    except (subprocess.TimeoutExpired, OSError):
        return False


DOCKER_AVAILABLE = is_docker_available()

skip_if_no_rabbitmq_infra = pytest.mark.skipif(
    not (TESTCONTAINERS_AVAILABLE and DOCKER_AVAILABLE),
    reason="RabbitMQ test infrastructure not available",
)


# ============================================================================
# RabbitMQ Fixtures
# ============================================================================


@pytest.fixture(scope="session")
def rabbitmq_container() -> Generator[Any, None, None]:
    """
    RabbitMQ container shared by the whole test session.

    Uses the management image so the management port can be checked too.
    """
    if not TESTCONTAINERS_AVAILABLE or not DOCKER_AVAILABLE:
        pytest.skip("RabbitMQ testcontainer not available")

    container = DockerContainer("rabbitmq:3-management")
    container.with_exposed_ports(5672, 15672)
    container.with_env("RABBITMQ_DEFAULT_USER", "guest")
    container.with_env("RABBITMQ_DEFAULT_PASS", "guest")
    container.start()

    wait_for_logs(container, "started TCP listener on", timeout=60)

    yield container

    container.stop()


@pytest.fixture
def broker_settings(rabbitmq_container: Any) -> BrokerSettings:
    """Settings pointing at the container, with a per-test application prefix."""
    return BrokerSettings(
        host=rabbitmq_container.get_container_host_ip(),
        port=int(rabbitmq_container.get_exposed_port(5672)),
        management_port=int(rabbitmq_container.get_exposed_port(15672)),
        user="guest",
        password="guest",
        vhost="/",
        channel_pool_size=2,
        application=f"test{uuid4().hex[:12]}",
        enable_tracing=False,
        _env_file=None,
    )


@pytest_asyncio.fixture
async def connected_manager(
    broker_settings: BrokerSettings,
) -> AsyncGenerator[ConnectionManager, None]:
    manager = ConnectionManager(broker_settings)
    await manager.connect()
    yield manager
    if manager.connection is not None:
        await manager.disconnect()
