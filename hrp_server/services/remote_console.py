from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import TYPE_CHECKING, Any

import zmq
import zmq.asyncio

from hrp_server.constants import (
    ADD_VIRTUAL_JOY,
    CLOSING_NOTICE,
    DEL_VIRTUAL_JOY,
    ERROR_FRAME,
    RELEASED_NOTICE,
)

if TYPE_CHECKING:
    from hrp_server.services.discovery import DiscoveryRegistry
    from hrp_server.services.dispatcher import Dispatcher

logger = logging.getLogger(__name__)


def encode_frame(value: Any) -> bytes:
    if isinstance(value, bytes):
        return value
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, bool):
        return b"true" if value else b"false"
    if isinstance(value, (int, float)):
        return str(value).encode("utf-8")
    if value is None:
        return b""
    return json.dumps(value, default=str).encode("utf-8")


def decode_frames(frames: list[bytes]) -> list[str]:
    return [f.decode("utf-8", errors="replace") for f in frames]


class RemoteConsole:
    """
    ZeroMQ PAIR socket exposing the dispatch table to a remote peer.

    Request:  [senderId, command, *args]
    Reply:    [senderId, command, *result]  or  [senderId, command, "error"]

    ``addVirtualJoy``/``delVirtualJoy`` register the sender as a virtual
    controller (or drop it), rebuild the controller list, then reply "true".
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        discovery: DiscoveryRegistry,
        endpoint: str = "tcp://*:6666",
        context: zmq.asyncio.Context | None = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.discovery = discovery
        self.endpoint = endpoint
        self._ctx = context or zmq.asyncio.Context.instance()
        self._sock: zmq.asyncio.Socket | None = None
        self._task: asyncio.Task | None = None

    @property
    def is_open(self) -> bool:
        return self._sock is not None

    def open(self) -> None:
        sock = self._ctx.socket(zmq.PAIR)
        sock.setsockopt(zmq.LINGER, 0)
        try:
            sock.bind(self.endpoint)
        except zmq.ZMQError:
            sock.close()
            raise
        self._sock = sock
        logger.info("Remote console listening on %s", self.endpoint)

    def start(self) -> None:
        if self._sock is None:
            self.open()
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._serve(), name="remote-console")

    async def _serve(self) -> None:
        assert self._sock is not None
        while True:
            frames = await self._sock.recv_multipart()
            try:
                reply = await self.handle(frames)
                if reply is not None:
                    await self._send(reply)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # One bad request must not stop the console
                logger.error("Remote request %s failed: %s", frames[:2], e)

    async def handle(self, frames: list[bytes]) -> list[Any] | None:
        """Process one request and build its reply frames."""
        parts = decode_frames(frames)
        if len(parts) < 2:
            logger.warning("Dropping malformed remote request: %s", parts)
            return None
        sender, command, args = parts[0], parts[1], parts[2:]
        logger.debug("Received message: %s %s %s", sender, command, args)

        try:
            if command == ADD_VIRTUAL_JOY:
                self.discovery.register_virtual_controller(sender)
                await self.discovery.refresh_controllers()
                return [sender, command, "true"]
            if command == DEL_VIRTUAL_JOY:
                self.discovery.deregister_virtual_controller(sender)
                await self.discovery.refresh_controllers()
                return [sender, command, "true"]

            result = await self.dispatcher.dispatch(command, args, local=False)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Remote %s failed: %s", command, e)
            return [sender, command, ERROR_FRAME]
        return [sender, command, *result]

    async def _send(self, frames: list[Any]) -> bool:
        if self._sock is None:
            return False
        try:
            await self._sock.send_multipart(
                [encode_frame(f) for f in frames], flags=zmq.NOBLOCK
            )
        except zmq.Again:
            logger.debug("No remote peer for %s", frames[:2])
            return False
        logger.debug("Emitting: %s", frames)
        return True

    async def notify_released(self, controller_id: str) -> None:
        """Tell a virtual controller's owner that it has been unbound."""
        await self._send([controller_id, RELEASED_NOTICE, "true"])

    async def close(self) -> None:
        """Send the one-off closing notice, then release the socket."""
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if self._sock is None:
            return
        await self._send(["", CLOSING_NOTICE])
        sock, self._sock = self._sock, None
        sock.close()
        logger.info("Remote console closed")
