from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from hrp_server.constants import VIRTUAL_ROBOT_PATH
from hrp_server.services.devices import classify_all, safe_is_compliant
from hrp_server.state import ControllerEntry, Origin, RegistryState, RobotEntry

if TYPE_CHECKING:
    from hrp_server.services.interfaces import DeviceEnumerator, RobotProtocol

logger = logging.getLogger(__name__)

BOUND_DEVICES_NOTE = (
    "Bound devices are held exclusively and will not appear in this list; "
    "scan again after unbinding them."
)


def _display(paths: list[str]) -> str:
    return "/" + "".join(f"{p}/" for p in paths)


class DiscoveryRegistry:
    """
    Scans attached devices on demand and rebuilds the robot and controller lists.

    Robots are devices passing the robot protocol's classification probe, plus
    the reserved virtual robot when it answers the same probe. Controllers are
    every other device, followed by the virtual controllers registered over the
    remote console. Each rebuild replaces the matching path->index map and bumps
    its generation, so indices handed out earlier may now point elsewhere.
    """

    def __init__(
        self,
        state: RegistryState,
        enumerator: DeviceEnumerator,
        protocol: RobotProtocol,
        probe_timeout: float = 1.0,
    ) -> None:
        self.state = state
        self.enumerator = enumerator
        self.protocol = protocol
        self.probe_timeout = probe_timeout

    # ---- read access ----

    @property
    def robots(self) -> list[str]:
        return [r.path for r in self.state.robots]

    @property
    def controllers(self) -> list[str]:
        return [j.path for j in self.state.controllers]

    @property
    def virtual_controllers(self) -> list[str]:
        return list(self.state.virtual_controllers)

    def robot_index(self, path: str) -> int | None:
        return self.state.robot_map.get(path)

    def controller_index(self, path: str) -> int | None:
        return self.state.controller_map.get(path)

    def controller_origin(self, path: str) -> Origin:
        if path in self.state.virtual_controllers:
            return Origin.VIRTUAL
        return Origin.PHYSICAL

    # ---- scans ----

    def _bound_paths(self) -> set[str]:
        return self.state.bound_robot_paths() | self.state.bound_controller_paths()

    async def _scan(self) -> tuple[list[str], list[bool]]:
        handles = await asyncio.to_thread(self.enumerator.list)
        # Held devices are owned by their control loop; never probe or list them
        bound = self._bound_paths()
        paths = [h.path for h in handles if h.path not in bound]
        flags = await classify_all(self.protocol, paths, self.probe_timeout)
        if bound:
            logger.info(BOUND_DEVICES_NOTE)
        return paths, flags

    async def discover_robots(self) -> tuple[str, list[str]]:
        paths, flags = await self._scan()
        robots = [(p, Origin.PHYSICAL) for p, ok in zip(paths, flags) if ok]
        # Reachability of the virtual robot depends on its socket state
        if VIRTUAL_ROBOT_PATH not in self._bound_paths() and await safe_is_compliant(
            self.protocol, VIRTUAL_ROBOT_PATH, self.probe_timeout
        ):
            robots.append((VIRTUAL_ROBOT_PATH, Origin.VIRTUAL))

        st = self.state
        st.robots = [
            RobotEntry(path=p, index=i, origin=o) for i, (p, o) in enumerate(robots, 1)
        ]
        st.robot_map = {r.path: r.index for r in st.robots}
        st.robot_generation += 1
        logger.info("Robots connected: %d", len(st.robots))
        return _display(self.robots), self.robots

    async def discover_controllers(self) -> tuple[str, list[str]]:
        paths, flags = await self._scan()
        physical = [p for p, ok in zip(paths, flags) if not ok]
        self._rebuild_controllers(physical)
        return _display(self.controllers), self.controllers

    def _rebuild_controllers(self, physical: list[str]) -> None:
        st = self.state
        entries = [(p, Origin.PHYSICAL) for p in physical]
        entries += [(v, Origin.VIRTUAL) for v in st.virtual_controllers]
        st.controllers = [
            ControllerEntry(path=p, index=i, origin=o)
            for i, (p, o) in enumerate(entries, 1)
        ]
        st.controller_map = {j.path: j.index for j in st.controllers}
        st.controller_generation += 1
        logger.info("Controllers connected: %d", len(st.controllers))

    # ---- virtual controllers ----

    def register_virtual_controller(self, controller_id: str) -> None:
        if controller_id in self.state.virtual_controllers:
            logger.debug("Virtual controller %s already registered", controller_id)
            return
        self.state.virtual_controllers.append(controller_id)
        logger.info("Registered virtual controller %s", controller_id)

    def deregister_virtual_controller(self, controller_id: str) -> None:
        try:
            self.state.virtual_controllers.remove(controller_id)
        except ValueError:
            logger.debug("Virtual controller %s was not registered", controller_id)
            return
        logger.info("Removed virtual controller %s", controller_id)

    async def refresh_controllers(self) -> tuple[str, list[str]]:
        """Rescan after a virtual-controller change so indices stay consistent."""
        return await self.discover_controllers()
