from __future__ import annotations

import asyncio

import pytest

from hrp_server.services.devices import classify_all, safe_is_compliant
from hrp_server.state import Origin
from tests.fakes import FakeRobotProtocol


class SlowProtocol(FakeRobotProtocol):
    """Answers in reverse order of request to expose ordering bugs."""

    async def is_compliant(self, path: str) -> bool:
        await asyncio.sleep(0.01 * (10 - int(path[-1])))
        return int(path[-1]) % 2 == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_classification_keeps_input_order():
    paths = [f"/dev/d{i}" for i in range(6)]
    flags = await classify_all(SlowProtocol(), paths, timeout=1.0)
    assert flags == [True, False, True, False, True, False]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_probe_failure_and_timeout_mean_not_a_robot():
    proto = FakeRobotProtocol(compliant={"/dev/x"})
    proto.broken.add("/dev/x")
    assert await safe_is_compliant(proto, "/dev/x", timeout=0.5) is False

    class Hanging(FakeRobotProtocol):
        async def is_compliant(self, path: str) -> bool:
            await asyncio.sleep(5)
            return True

    assert await safe_is_compliant(Hanging(), "/dev/y", timeout=0.01) is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_robots_and_controllers_partition_the_devices(discovery, enumerator, protocol):
    enumerator.paths = ["/dev/a", "/dev/r1", "/dev/b", "/dev/r2"]
    protocol.compliant = {"/dev/r1", "/dev/r2"}

    display, robots = await discovery.discover_robots()
    _, controllers = await discovery.discover_controllers()

    assert robots == ["/dev/r1", "/dev/r2"]
    assert display == "//dev/r1//dev/r2/"
    assert controllers == ["/dev/a", "/dev/b"]
    assert not set(robots) & set(controllers)
    assert set(robots) | set(controllers) == set(enumerator.paths)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_virtual_robot_appended_only_when_reachable(discovery, protocol):
    _, robots = await discovery.discover_robots()
    assert robots == ["/dev/r1"]

    protocol.compliant.add("virtual")
    _, robots = await discovery.discover_robots()
    assert robots == ["/dev/r1", "virtual"]
    assert discovery.state.robots[-1].origin is Origin.VIRTUAL

    protocol.broken.add("virtual")
    _, robots = await discovery.discover_robots()
    assert robots == ["/dev/r1"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_path_maps_rebuilt_on_each_discovery(discovery, enumerator, protocol):
    enumerator.paths = ["/dev/r1", "/dev/r2"]
    protocol.compliant = {"/dev/r1", "/dev/r2"}
    await discovery.discover_robots()
    assert discovery.robot_index("/dev/r2") == 2
    gen = discovery.state.robot_generation

    enumerator.paths = ["/dev/r2"]
    await discovery.discover_robots()
    assert discovery.robot_index("/dev/r2") == 1
    assert discovery.robot_index("/dev/r1") is None
    assert discovery.state.robot_generation == gen + 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_virtual_controllers_follow_physical_in_registration_order(discovery):
    discovery.register_virtual_controller("sock-b")
    discovery.register_virtual_controller("sock-a")
    discovery.register_virtual_controller("sock-b")  # duplicate ignored

    display, controllers = await discovery.discover_controllers()

    assert controllers == ["/dev/j1", "sock-b", "sock-a"]
    assert display == "//dev/j1/sock-b/sock-a/"
    assert discovery.controller_index("sock-a") == 3
    assert discovery.controller_origin("sock-a") is Origin.VIRTUAL
    assert discovery.controller_origin("/dev/j1") is Origin.PHYSICAL


@pytest.mark.unit
@pytest.mark.asyncio
async def test_deregister_then_refresh_reindexes(discovery):
    for cid in ("v1", "v2", "v3"):
        discovery.register_virtual_controller(cid)
    await discovery.refresh_controllers()

    discovery.deregister_virtual_controller("v2")
    discovery.deregister_virtual_controller("never-registered")
    _, controllers = await discovery.refresh_controllers()

    assert controllers == ["/dev/j1", "v1", "v3"]
    assert discovery.controller_index("v3") == 3
    assert discovery.controller_index("v2") is None
