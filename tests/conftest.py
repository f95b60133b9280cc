from __future__ import annotations

import pytest

from hrp_server.config import ServerConfig
from hrp_server.server import HrpServer
from hrp_server.services.connections import ConnectionRegistry
from hrp_server.services.discovery import DiscoveryRegistry
from hrp_server.state import RegistryState
from tests.fakes import FakeDriverLoader, FakeEnumerator, FakePublisher, FakeRobotProtocol


@pytest.fixture
def protocol() -> FakeRobotProtocol:
    return FakeRobotProtocol(compliant={"/dev/r1"})


@pytest.fixture
def enumerator() -> FakeEnumerator:
    return FakeEnumerator(["/dev/r1", "/dev/j1"])


@pytest.fixture
def drivers() -> FakeDriverLoader:
    return FakeDriverLoader()


@pytest.fixture
def config() -> ServerConfig:
    # Long period: registry tests drive ticks by hand
    return ServerConfig(with_console=False, with_remote=False, loop_period_s=60.0)


@pytest.fixture
def state() -> RegistryState:
    return RegistryState()


@pytest.fixture
def discovery(state, enumerator, protocol) -> DiscoveryRegistry:
    return DiscoveryRegistry(state, enumerator, protocol, probe_timeout=0.5)


@pytest.fixture
def registry(state, protocol, drivers, config) -> ConnectionRegistry:
    FakePublisher.instances.clear()
    return ConnectionRegistry(
        state, protocol, drivers, config=config, publisher_factory=FakePublisher
    )


@pytest.fixture
def server(config, protocol, enumerator, drivers):
    FakePublisher.instances.clear()
    return HrpServer(
        config,
        protocol=protocol,
        enumerator=enumerator,
        load_driver=drivers,
        publisher_factory=FakePublisher,
    )
