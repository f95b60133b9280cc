"""In-process doubles for the collaborators the server imports by name."""

from __future__ import annotations

import json
from typing import Any

from hrp_server.services.publisher import format_joints_message
from hrp_server.state import DeviceHandle


class FakeEnumerator:
    """Stands in for hidapi enumeration; ``paths`` can be swapped between scans."""

    def __init__(self, paths: list[str]) -> None:
        self.paths = list(paths)

    def list(self) -> list[DeviceHandle]:
        return [DeviceHandle(path=p) for p in self.paths]


class FakeRobotLink:
    def __init__(self, path: str, joints: dict[str, float] | None = None) -> None:
        self.path = path
        self.joints = joints if joints is not None else {"1": 0.5, "2": -0.2}
        self.info = json.dumps({"name": path, "dof": len(self.joints)})
        self.connected = False
        self.positions: list[Any] = []
        self.fail_disconnect = False
        self.fail_joints = False

    def connect(self) -> None:
        self.connected = True

    def disconnect(self) -> None:
        if self.fail_disconnect:
            raise OSError("robot link stuck")
        self.connected = False

    async def get_info(self) -> str:
        return self.info

    async def set_end_effector_position(self, payload: Any, ack: bool = True) -> Any:
        self.positions.append(payload)
        return True

    async def get_joints(self) -> str:
        if self.fail_joints:
            raise OSError("no joints")
        return ";".join(f"{k}:{v}" for k, v in self.joints.items())


class FakeRobotProtocol:
    """HRP protocol double: a device is a robot when its path is in ``compliant``."""

    def __init__(self, compliant: set[str] | None = None, virtual_ok: bool = False) -> None:
        self.compliant = set(compliant or ())
        if virtual_ok:
            self.compliant.add("virtual")
        self.broken: set[str] = set()
        self.links: dict[str, FakeRobotLink] = {}
        self.probed: list[str] = []

    async def is_compliant(self, path: str) -> bool:
        self.probed.append(path)
        if path in self.broken:
            raise OSError(f"probe of {path} failed")
        return path in self.compliant

    def open(self, path: str) -> FakeRobotLink:
        link = self.links.get(path)
        if link is None:
            link = self.links[path] = FakeRobotLink(path)
        return link

    def decode_joints(self, raw: str) -> dict[str, float]:
        joints: dict[str, float] = {}
        for pair in raw.split(";"):
            key, _, value = pair.partition(":")
            joints[key] = float(value)
        return joints

    def decode_info(self, raw: str) -> dict[str, Any]:
        return json.loads(raw)

    def format_value(self, value: float) -> str:
        return f"{value:.2f}"


class FakeControllerLink:
    def __init__(self, path: str, commands: list[tuple[str, Any]] | None = None) -> None:
        self.path = path
        self.commands = commands or [("MN", None)]
        self.connected = False
        self.reads = 0
        self.fail_disconnect = False

    def connect(self) -> None:
        self.connected = True

    def disconnect(self) -> None:
        if self.fail_disconnect:
            raise OSError("controller link stuck")
        self.connected = False

    async def read(self) -> tuple[str, Any]:
        cmd = self.commands[min(self.reads, len(self.commands) - 1)]
        self.reads += 1
        if isinstance(cmd, Exception):
            raise cmd
        return cmd


class FakeDriverLoader:
    def __init__(self) -> None:
        self.links: dict[str, FakeControllerLink] = {}
        self.loaded: list[str] = []

    def __call__(self, name: str):
        if name == "MissingDriver":
            raise ImportError(f"No driver named {name}")
        self.loaded.append(name)

        def create(path: str) -> FakeControllerLink:
            link = self.links.get(path)
            if link is None:
                link = self.links[path] = FakeControllerLink(path)
            return link

        return create


class FakePublisher:
    instances: list["FakePublisher"] = []

    def __init__(self, endpoint: str) -> None:
        self.endpoint = endpoint
        self.opened = False
        self.closed = False
        self.sent: list[list[str]] = []
        self.fail_close = False
        FakePublisher.instances.append(self)

    def open(self) -> None:
        self.opened = True

    async def publish(self, frames: list[str]) -> None:
        self.sent.append(frames)

    async def publish_joints(self, joints, format_value) -> list[str]:
        frames = format_joints_message(joints, format_value)
        await self.publish(frames)
        return frames

    def close(self) -> None:
        if self.fail_close:
            raise OSError("socket busy")
        self.closed = True


