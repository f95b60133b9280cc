from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Any, Awaitable

from hrp_server.common import logging_config
from hrp_server.constants import CMD_MOVE, CMD_NEUTRAL
from hrp_server.errors import TransientIOError
from hrp_server.state import LoopStats

if TYPE_CHECKING:
    from hrp_server.services.interfaces import ControllerLink, RobotLink, RobotProtocol
    from hrp_server.services.publisher import JointPublisher

logger = logging.getLogger(__name__)


class ControlLoop:
    """
    Periodic controller -> robot -> publisher pipeline for one connection.

    Each tick:
      1. read the controller command (kind, payload)
      2. forward a move payload to the robot as an end-effector position and
         wait for its ack ("MN" skips this stage, other kinds are ignored)
      3. read and decode the robot joints
      4. publish ["joints", id, value, ...] on the connection's channel

    A failing stage aborts only the current tick. Ticks never overlap: the
    tick runs inside the loop task, and periods that elapse while a slow tick
    is still suspended are dropped (counted in ``stats.skipped``) so the next
    tick lands back on the period grid.
    """

    def __init__(
        self,
        robot: RobotLink,
        controller: ControllerLink,
        publisher: JointPublisher,
        protocol: RobotProtocol,
        period: float = 0.25,
        stage_timeout: float = 1.0,
        label: str = "",
    ) -> None:
        if period <= 0:
            raise ValueError("period must be > 0")
        self.robot = robot
        self.controller = controller
        self.publisher = publisher
        self.protocol = protocol
        self.period = period
        self.stage_timeout = stage_timeout
        self.label = label
        self.stats = LoopStats()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"control-loop {self.label}")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + self.period
        while True:
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
            await self.tick()
            next_tick += self.period
            now = loop.time()
            if now > next_tick:
                missed = int((now - next_tick) // self.period) + 1
                self.stats.skipped += missed
                next_tick += missed * self.period
                logger.debug("%s: tick overran, skipped %d period(s)", self.label, missed)

    async def _stage(self, name: str, aw: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(aw, timeout=self.stage_timeout)
        except asyncio.TimeoutError as e:
            raise TransientIOError(f"{name} timed out after {self.stage_timeout}s") from e

    async def tick(self) -> bool:
        """Run one pipeline pass. Returns True when a joints message was published."""
        self.stats.ticks += 1
        try:
            await self._pipeline()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.stats.failures += 1
            self.stats.last_error = str(e) or type(e).__name__
            logger.debug("%s: tick aborted: %s", self.label, self.stats.last_error)
            return False
        self.stats.published += 1
        return True

    async def _pipeline(self) -> None:
        kind, payload = await self._stage("controller read", self.controller.read())
        if logging_config.TRACE_ENABLED:
            logger.trace("%s: command from controller: %s %s", self.label, kind, payload)  # type: ignore[attr-defined]

        if kind == CMD_MOVE:
            await self._stage(
                "end effector ack",
                self.robot.set_end_effector_position(payload, True),
            )
            if logging_config.TRACE_ENABLED:
                logger.trace("%s: ack received for end effector position", self.label)  # type: ignore[attr-defined]
        elif kind != CMD_NEUTRAL:
            logger.debug("%s: ignoring controller command %r", self.label, kind)

        # Neutral commands still refresh the joints shown by the simulator
        raw = await self._stage("joint read", self.robot.get_joints())
        joints = self.protocol.decode_joints(raw)
        frames = await self._stage(
            "publish", self.publisher.publish_joints(joints, self.protocol.format_value)
        )
        if logging_config.TRACE_ENABLED:
            logger.trace("%s: published %s", self.label, frames)  # type: ignore[attr-defined]
