from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable

if TYPE_CHECKING:
    from hrp_server.services.control_loop import ControlLoop
    from hrp_server.services.interfaces import ControllerLink, RobotLink
    from hrp_server.services.publisher import JointPublisher


class Origin(enum.Enum):
    PHYSICAL = "physical"
    VIRTUAL = "virtual"


@dataclass(frozen=True)
class DeviceHandle:
    path: str
    origin: Origin = Origin.PHYSICAL


@dataclass(frozen=True)
class RobotEntry:
    path: str
    index: int  # 1-based, valid until the next robot discovery
    origin: Origin = Origin.PHYSICAL


@dataclass(frozen=True)
class ControllerEntry:
    path: str
    index: int  # 1-based, valid until the next controller discovery
    origin: Origin = Origin.PHYSICAL


@dataclass
class LoopStats:
    ticks: int = 0
    published: int = 0
    failures: int = 0
    skipped: int = 0  # periods dropped because the previous tick overran
    last_error: str | None = None


@dataclass
class Connection:
    robot_path: str
    controller_path: str
    controller_origin: Origin
    driver_name: str
    robot_link: RobotLink
    controller_link: ControllerLink
    publisher: JointPublisher
    loop: ControlLoop

    @property
    def stats(self) -> LoopStats:
        return self.loop.stats

    def describe(self) -> dict[str, Any]:
        return {
            "robot": self.robot_path,
            "controller": self.controller_path,
            "driver": self.driver_name,
            "endpoint": self.publisher.endpoint,
        }


# handler(args, local) -> result frames
CommandHandler = Callable[[list[str], bool], Awaitable[list[Any]]]


@dataclass(frozen=True)
class ParamSpec:
    name: str
    label: str  # prompt shown by the local console
    pattern: str  # full-match regex the raw value must satisfy
    default: str | None = None


@dataclass(frozen=True)
class CommandEntry:
    name: str
    description: str
    handler: CommandHandler
    params: tuple[ParamSpec, ...] = ()
    local_only: bool = False


@dataclass
class RegistryState:
    """Shared robot/controller lists, path maps and connections.

    Owned by the server and handed to the discovery and connection registries;
    those are the only writers.
    """

    robots: list[RobotEntry] = field(default_factory=list)
    controllers: list[ControllerEntry] = field(default_factory=list)
    virtual_controllers: list[str] = field(default_factory=list)
    robot_map: dict[str, int] = field(default_factory=dict)
    controller_map: dict[str, int] = field(default_factory=dict)
    robot_generation: int = 0
    controller_generation: int = 0
    connections: list[Connection] = field(default_factory=list)

    @property
    def generation(self) -> tuple[int, int]:
        return (self.robot_generation, self.controller_generation)

    def bound_robot_paths(self) -> set[str]:
        return {conn.robot_path for conn in self.connections}

    def bound_controller_paths(self) -> set[str]:
        return {conn.controller_path for conn in self.connections}
