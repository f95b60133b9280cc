"""Capabilities the server consumes but does not implement.

- DeviceEnumerator: lists attached input devices (see ``devices.HidEnumerator``)
- RobotProtocol:    HRP wire protocol; classification, links, decoders
- ControllerLink:   a driver instance decoding one controller's reports

The robot protocol and the controller drivers are imported by name, the same
way the operator names them on the console.
"""

from __future__ import annotations

import importlib
import logging
import re
from types import ModuleType
from typing import Any, Callable, Protocol, runtime_checkable

from hrp_server.errors import DriverLoadError
from hrp_server.state import DeviceHandle

_DRIVER_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class DeviceEnumerator(Protocol):
    def list(self) -> list[DeviceHandle]: ...


@runtime_checkable
class RobotLink(Protocol):
    def connect(self) -> None: ...

    def disconnect(self) -> None: ...

    async def get_info(self) -> str: ...

    async def set_end_effector_position(self, payload: Any, ack: bool = True) -> Any: ...

    async def get_joints(self) -> str: ...


@runtime_checkable
class ControllerLink(Protocol):
    def connect(self) -> None: ...

    def disconnect(self) -> None: ...

    async def read(self) -> tuple[str, Any]: ...


class RobotProtocol(Protocol):
    async def is_compliant(self, path: str) -> bool: ...

    def open(self, path: str) -> RobotLink: ...

    def decode_joints(self, raw: str) -> dict[str, float]: ...

    def decode_info(self, raw: str) -> dict[str, Any]: ...

    def format_value(self, value: float) -> str: ...


DriverFactory = Callable[[str], ControllerLink]


def _import(name: str, what: str) -> ModuleType:
    try:
        return importlib.import_module(name)
    except ImportError as e:
        raise DriverLoadError(f"Cannot import {what} '{name}': {e}") from e


def load_robot_protocol(module_name: str) -> RobotProtocol:
    """Import the robot protocol module; the module itself is the protocol object."""
    module = _import(module_name, "robot protocol")
    missing = [
        attr
        for attr in ("is_compliant", "open", "decode_joints", "decode_info", "format_value")
        if not hasattr(module, attr)
    ]
    if missing:
        raise DriverLoadError(
            f"Robot protocol '{module_name}' lacks: {', '.join(missing)}"
        )
    logging.info("Loaded robot protocol %s", module_name)
    return module  # type: ignore[return-value]


class DriverLoader:
    """Resolves a driver name to ``<package>.<name>.create``."""

    def __init__(self, package: str) -> None:
        self.package = package
        self._cache: dict[str, DriverFactory] = {}

    def __call__(self, name: str) -> DriverFactory:
        if not _DRIVER_NAME_RE.match(name or ""):
            raise DriverLoadError(f"Invalid driver name: {name!r}")
        factory = self._cache.get(name)
        if factory is None:
            module = _import(f"{self.package}.{name}", "controller driver")
            factory = getattr(module, "create", None)
            if not callable(factory):
                raise DriverLoadError(f"Driver '{name}' has no create(path) function")
            self._cache[name] = factory
        return factory
