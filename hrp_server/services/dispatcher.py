from __future__ import annotations

import asyncio
import contextlib
import logging
import re
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable

from hrp_server.errors import TransientIOError, UnknownCommandError, ValidationError
from hrp_server.state import CommandEntry, ParamSpec

if TYPE_CHECKING:
    from hrp_server.services.connections import ConnectionRegistry
    from hrp_server.services.discovery import DiscoveryRegistry
    from hrp_server.services.interfaces import RobotProtocol

logger = logging.getLogger(__name__)

INDEX_PATTERN = r"[0-9]+"
# Device paths and sender ids are opaque; only blank or padded values are rejected
PATH_PATTERN = r"\S(?:[\s\S]*\S)?"
DRIVER_PATTERN = r"[A-Za-z_][A-Za-z0-9_]*"


def index_param(name: str, label: str) -> ParamSpec:
    return ParamSpec(name=name, label=label, pattern=INDEX_PATTERN, default="1")


def path_param(name: str, label: str) -> ParamSpec:
    return ParamSpec(name=name, label=label, pattern=PATH_PATTERN, default="virtual")


class Dispatcher:
    """Name -> CommandEntry table shared by the local and the remote console.

    Callers pass complete positional arguments. Interactive collection of
    missing arguments belongs to the local console, never to a handler.
    """

    def __init__(self, entries: Iterable[CommandEntry]) -> None:
        self._table: dict[str, CommandEntry] = {}
        for entry in entries:
            if entry.name in self._table:
                raise ValueError(f"Duplicate command: {entry.name}")
            self._table[entry.name] = entry

    def __contains__(self, name: object) -> bool:
        return name in self._table

    @property
    def entries(self) -> list[CommandEntry]:
        return list(self._table.values())

    def get(self, name: str) -> CommandEntry:
        try:
            return self._table[name]
        except KeyError:
            raise UnknownCommandError(f"Command not recognized: {name!r}") from None

    @staticmethod
    def check_args(entry: CommandEntry, args: list[Any] | None) -> list[str]:
        """Validate arity and shape before any I/O. Returns the args as strings."""
        values = [str(a) for a in (args or [])]
        if len(values) < len(entry.params):
            missing = ", ".join(p.name for p in entry.params[len(values):])
            raise ValidationError(f"{entry.name}: missing argument(s): {missing}")
        if len(values) > len(entry.params):
            raise ValidationError(
                f"{entry.name}: expected {len(entry.params)} argument(s), got {len(values)}"
            )
        for spec, value in zip(entry.params, values):
            if not re.fullmatch(spec.pattern, value):
                raise ValidationError(f"{entry.name}: malformed {spec.name}: {value!r}")
        return values

    async def dispatch(self, name: str, args: list[Any] | None, local: bool = False) -> list[Any]:
        entry = self.get(name)
        if entry.local_only and not local:
            raise ValidationError(f"{name} is only available on the local console")
        values = self.check_args(entry, args)
        logger.debug("Dispatch %s %s (local=%s)", name, values, local)
        return await entry.handler(values, local)


class ServerCommands:
    """Handlers behind the dispatch table."""

    def __init__(
        self,
        discovery: DiscoveryRegistry,
        connections: ConnectionRegistry,
        protocol: RobotProtocol,
        on_exit: Callable[[], Awaitable[Any]],
        default_driver: str = "GeniusDriver",
        io_timeout: float = 1.0,
    ) -> None:
        self.discovery = discovery
        self.connections = connections
        self.protocol = protocol
        self.on_exit = on_exit
        self.default_driver = default_driver
        self.io_timeout = io_timeout
        self._entries: list[CommandEntry] | None = None

    def driver_param(self) -> ParamSpec:
        return ParamSpec(
            name="driver",
            label="Controller Driver",
            pattern=DRIVER_PATTERN,
            default=self.default_driver,
        )

    def table(self) -> list[CommandEntry]:
        if self._entries is None:
            self._entries = [
                CommandEntry("h", "Shows the hrp-server help", self.help),
                CommandEntry(
                    "info",
                    "Gets the robot's information",
                    self.info,
                    (index_param("robot", "Robot Index"),),
                ),
                CommandEntry("robs", "Shows connected HRP compliant robots", self.robs),
                CommandEntry("joys", "Shows connected controllers (non HRP devices)", self.joys),
                CommandEntry("clear", "Clears the console", self.clear, local_only=True),
                CommandEntry(
                    "bind",
                    "Binds controller to robot (asks for indexes)",
                    self.bind,
                    (
                        index_param("robot", "Robot Index"),
                        index_param("controller", "Controller Index"),
                        self.driver_param(),
                    ),
                ),
                CommandEntry(
                    "pbind",
                    "Binds controller to robot (asks for paths)",
                    self.pbind,
                    (
                        path_param("robot", "Robot Path"),
                        path_param("controller", "Controller Path"),
                        self.driver_param(),
                    ),
                ),
                CommandEntry(
                    "ubind",
                    "Unbinds controller and robot",
                    self.ubind,
                    (index_param("connection", "Connection Index"),),
                ),
                CommandEntry(
                    "pubind",
                    "Unbinds controller and robot (asks for paths)",
                    self.pubind,
                    (
                        path_param("robot", "Robot Path"),
                        path_param("controller", "Controller Path"),
                    ),
                ),
                CommandEntry("conn", "Lists active connections", self.conn),
                CommandEntry("exit", "Closes the server", self.exit),
            ]
        return self._entries

    async def help(self, args: list[str], local: bool) -> list[Any]:
        return [f"{e.name}: {e.description}" for e in self.table()]

    async def info(self, args: list[str], local: bool) -> list[Any]:
        robots = self.discovery.robots
        if not robots:
            raise ValidationError("There are no robots currently listed; run 'robs' first")
        index = int(args[0])
        if not 1 <= index <= len(robots):
            raise ValidationError(f"Robot index {index} is not valid")
        path = robots[index - 1]
        try:
            link = self.protocol.open(path)
            link.connect()
        except Exception as e:
            raise TransientIOError(f"An error occurred with robot {path}: {e}") from e
        try:
            info = await asyncio.wait_for(link.get_info(), timeout=self.io_timeout)
        except Exception as e:
            raise TransientIOError(
                f"No info for robot {index}; consider listing robots again with 'robs'"
            ) from e
        finally:
            with contextlib.suppress(Exception):
                link.disconnect()
        return [info, index]

    async def robs(self, args: list[str], local: bool) -> list[Any]:
        display, robots = await self.discovery.discover_robots()
        return [display, robots]

    async def joys(self, args: list[str], local: bool) -> list[Any]:
        display, controllers = await self.discovery.discover_controllers()
        return [display, controllers]

    async def clear(self, args: list[str], local: bool) -> list[Any]:
        return [True]

    async def bind(self, args: list[str], local: bool) -> list[Any]:
        robot_index, controller_index, driver = int(args[0]), int(args[1]), args[2]
        return [await self.connections.bind(robot_index, controller_index, driver)]

    async def pbind(self, args: list[str], local: bool) -> list[Any]:
        return [await self.connections.bind_paths(args[0], args[1], args[2])]

    async def ubind(self, args: list[str], local: bool) -> list[Any]:
        return [await self.connections.unbind(int(args[0]))]

    async def pubind(self, args: list[str], local: bool) -> list[Any]:
        return [await self.connections.unbind_paths(args[0], args[1])]

    async def conn(self, args: list[str], local: bool) -> list[Any]:
        display, conns = self.connections.list()
        return [display, [c.describe() for c in conns]]

    async def exit(self, args: list[str], local: bool) -> list[Any]:
        await self.on_exit()
        return [True]
