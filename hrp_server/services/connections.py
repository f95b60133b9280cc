from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from hrp_server.config import ServerConfig
from hrp_server.errors import (
    ExclusivityError,
    ResourceTeardownError,
    TransientIOError,
    ValidationError,
)
from hrp_server.services.control_loop import ControlLoop
from hrp_server.services.publisher import JointPublisher
from hrp_server.state import Connection, ControllerEntry, Origin, RegistryState, RobotEntry

if TYPE_CHECKING:
    from hrp_server.services.interfaces import (
        ControllerLink,
        DriverFactory,
        RobotLink,
        RobotProtocol,
    )
    from hrp_server.services.publisher import PublisherFactory

logger = logging.getLogger(__name__)

ReleaseListener = Callable[[str], Awaitable[Any]]


def _valid_index(value: Any, length: int) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 1 <= value <= length


class ConnectionRegistry:
    """
    Active robot/controller bindings and their control loops.

    A robot path and a controller path each belong to at most one connection.
    Every failed request leaves the registry untouched; every unbind removes
    its entry even when closing one of the resources fails.
    """

    def __init__(
        self,
        state: RegistryState,
        protocol: RobotProtocol,
        load_driver: Callable[[str], DriverFactory],
        config: ServerConfig | None = None,
        publisher_factory: PublisherFactory = JointPublisher,
    ) -> None:
        self.state = state
        self.protocol = protocol
        self.load_driver = load_driver
        self.config = config or ServerConfig()
        self.publisher_factory = publisher_factory
        self._release_listeners: list[ReleaseListener] = []
        self._pending: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self.state.connections)

    @property
    def connections(self) -> list[Connection]:
        return list(self.state.connections)

    def add_release_listener(self, listener: ReleaseListener) -> None:
        """Called with the controller id whenever a virtual controller is unbound."""
        self._release_listeners.append(listener)

    # ---- bind ----

    def _validate(
        self,
        robot_index: Any,
        controller_index: Any,
        generation: tuple[int, int] | None,
    ) -> tuple[RobotEntry, ControllerEntry]:
        st = self.state
        if generation is not None and tuple(generation) != st.generation:
            raise ValidationError(
                f"Stale device listing {tuple(generation)}, current is {st.generation}; "
                "list robots and controllers again"
            )
        if not _valid_index(robot_index, len(st.robots)):
            raise ValidationError(
                f"Robot index {robot_index!r} is not valid; check robots with 'robs'"
            )
        if not _valid_index(controller_index, len(st.controllers)):
            raise ValidationError(
                f"Controller index {controller_index!r} is not valid; check controllers with 'joys'"
            )
        robot = st.robots[robot_index - 1]
        controller = st.controllers[controller_index - 1]
        # A device is held by at most one connection, whichever role it plays there
        bound = st.bound_robot_paths() | st.bound_controller_paths()
        if robot.path in bound:
            raise ExclusivityError(f"Robot {robot.path} is already bound")
        if controller.path in bound:
            raise ExclusivityError(f"Controller {controller.path} is already bound")
        if robot.path == controller.path:
            raise ExclusivityError(f"Device {robot.path} cannot drive itself")
        return robot, controller

    def _open_publisher(self) -> JointPublisher:
        used = {conn.publisher.endpoint for conn in self.state.connections}
        last_error: Exception | None = None
        for offset in range(self.config.publish_port_span):
            endpoint = self.config.publish_endpoint(offset)
            if endpoint in used:
                continue
            publisher = self.publisher_factory(endpoint)
            try:
                publisher.open()
            except Exception as e:
                last_error = e
                logger.debug("Publish endpoint %s unavailable: %s", endpoint, e)
                continue
            return publisher
        raise TransientIOError(f"No free publish endpoint: {last_error}")

    def _open(
        self, robot: RobotEntry, controller: ControllerEntry, driver_name: str
    ) -> Connection:
        robot_link: RobotLink | None = None
        controller_link: ControllerLink | None = None
        publisher: JointPublisher | None = None
        try:
            create_controller = self.load_driver(driver_name)
            robot_link = self.protocol.open(robot.path)
            controller_link = create_controller(controller.path)
            publisher = self._open_publisher()
            robot_link.connect()
            controller_link.connect()
        except Exception:
            self._close_resources(robot_link, controller_link, publisher)
            raise

        label = f"{robot.path}<-{controller.path}"
        loop = ControlLoop(
            robot_link,
            controller_link,
            publisher,
            self.protocol,
            period=self.config.loop_period_s,
            stage_timeout=self.config.stage_timeout_s,
            label=label,
        )
        loop.start()
        return Connection(
            robot_path=robot.path,
            controller_path=controller.path,
            controller_origin=controller.origin,
            driver_name=driver_name,
            robot_link=robot_link,
            controller_link=controller_link,
            publisher=publisher,
            loop=loop,
        )

    async def bind(
        self,
        robot_index: Any,
        controller_index: Any,
        driver_name: str,
        generation: tuple[int, int] | None = None,
    ) -> bool:
        """Bind robot ``robot_index`` to controller ``controller_index`` (1-based)."""
        try:
            robot, controller = self._validate(robot_index, controller_index, generation)
        except (ValidationError, ExclusivityError) as e:
            logger.warning("Bind rejected: %s", e)
            return False

        # Validation and registration run without suspending, so no other
        # request can claim the same devices in between.
        try:
            conn = self._open(robot, controller, driver_name)
        except Exception as e:
            logger.error(
                "Bind failed for robot %s and controller %s: %s",
                robot.path,
                controller.path,
                e,
            )
            return False

        self.state.connections.append(conn)
        logger.info(
            "Bound robot (%s) with controller (%s); connection index %d, joints on %s",
            robot.path,
            controller.path,
            len(self.state.connections),
            conn.publisher.endpoint,
        )
        return True

    async def bind_paths(self, robot_path: str, controller_path: str, driver_name: str) -> bool:
        """Path-addressed bind, resolved through the maps of the latest discovery."""
        robot_index = self.state.robot_map.get(robot_path)
        controller_index = self.state.controller_map.get(controller_path)
        if robot_index is None or controller_index is None:
            logger.warning(
                "Bind rejected: unknown robot path %r or controller path %r; run discovery first",
                robot_path,
                controller_path,
            )
            return False
        return await self.bind(robot_index, controller_index, driver_name)

    # ---- unbind ----

    @staticmethod
    def _close_step(what: str, close: Callable[[], Any]) -> None:
        try:
            close()
        except Exception as e:
            err = ResourceTeardownError(f"closing {what} failed: {e}")
            logger.error("%s", err)

    def _close_resources(
        self,
        robot_link: RobotLink | None,
        controller_link: ControllerLink | None,
        publisher: JointPublisher | None,
    ) -> None:
        if robot_link is not None:
            self._close_step("robot link", robot_link.disconnect)
        if controller_link is not None:
            self._close_step("controller link", controller_link.disconnect)
        if publisher is not None:
            self._close_step("publish channel", publisher.close)

    async def _teardown(self, conn: Connection) -> None:
        try:
            await conn.loop.stop()
        except Exception as e:
            logger.error("%s", ResourceTeardownError(f"stopping control loop failed: {e}"))
        self._close_resources(conn.robot_link, conn.controller_link, conn.publisher)

    def _notify_released(self, controller_id: str) -> None:
        for listener in self._release_listeners:
            task = asyncio.create_task(listener(controller_id))
            self._pending.add(task)
            task.add_done_callback(self._on_notified)

    def _on_notified(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Release notification failed: %s", task.exception())

    async def unbind(self, connection_index: Any) -> bool:
        """Remove connection ``connection_index`` (1-based) and release all its resources."""
        if not _valid_index(connection_index, len(self.state.connections)):
            logger.warning("Unbind rejected: connection index %r is not valid", connection_index)
            return False

        conn = self.state.connections.pop(connection_index - 1)
        await self._teardown(conn)
        if conn.controller_origin is Origin.VIRTUAL:
            self._notify_released(conn.controller_path)
        logger.info(
            "Unbound robot (%s) and controller (%s)", conn.robot_path, conn.controller_path
        )
        return True

    async def unbind_paths(self, robot_path: str, controller_path: str) -> bool:
        for i, conn in enumerate(self.state.connections, 1):
            if conn.robot_path == robot_path and conn.controller_path == controller_path:
                return await self.unbind(i)
        logger.warning("Unbind rejected: no connection %s & %s", robot_path, controller_path)
        return False

    async def unbind_all(self) -> int:
        """Unbind every connection, last first. Returns how many were removed."""
        removed = 0
        for i in range(len(self.state.connections), 0, -1):
            try:
                if await self.unbind(i):
                    removed += 1
            except Exception as e:
                logger.error("Unbinding connection %d failed: %s", i, e)
        return removed

    async def drain_notifications(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ---- listing ----

    def list(self) -> tuple[str, list[Connection]]:
        conns = list(self.state.connections)
        display = "/" + "".join(f"{c.robot_path}&{c.controller_path}/" for c in conns)
        return display, conns
