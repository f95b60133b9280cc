from __future__ import annotations

import contextlib
import logging
from typing import Callable, Mapping

import zmq
import zmq.asyncio

from hrp_server.constants import JOINTS_TOPIC

logger = logging.getLogger(__name__)


def format_joints_message(
    joints: Mapping[str, float], format_value: Callable[[float], str]
) -> list[str]:
    """Topic tag followed by interleaved joint id / formatted value pairs, in decode order."""
    msg = [JOINTS_TOPIC]
    for joint_id, value in joints.items():
        msg.append(str(joint_id))
        msg.append(format_value(value))
    return msg


class JointPublisher:
    """Fire-and-forget PUB socket carrying one connection's joint telemetry."""

    def __init__(self, endpoint: str, context: zmq.asyncio.Context | None = None) -> None:
        self.endpoint = endpoint
        self._ctx = context or zmq.asyncio.Context.instance()
        self._sock: zmq.asyncio.Socket | None = None

    @property
    def is_open(self) -> bool:
        return self._sock is not None

    def open(self) -> None:
        sock = self._ctx.socket(zmq.PUB)
        sock.setsockopt(zmq.LINGER, 0)
        try:
            sock.bind(self.endpoint)
        except zmq.ZMQError:
            sock.close()
            raise
        self._sock = sock
        logger.debug("Publishing joints on %s", self.endpoint)

    async def publish(self, frames: list[str]) -> None:
        if self._sock is None:
            raise RuntimeError(f"Publisher {self.endpoint} is closed")
        await self._sock.send_multipart([f.encode("utf-8") for f in frames])

    async def publish_joints(
        self, joints: Mapping[str, float], format_value: Callable[[float], str]
    ) -> list[str]:
        frames = format_joints_message(joints, format_value)
        await self.publish(frames)
        return frames

    def close(self) -> None:
        sock, self._sock = self._sock, None
        if sock is None:
            return
        try:
            with contextlib.suppress(zmq.ZMQError):
                sock.unbind(self.endpoint)
        finally:
            sock.close()
        logger.debug("Closed publisher %s", self.endpoint)


PublisherFactory = Callable[[str], JointPublisher]
