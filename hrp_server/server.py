from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Callable

from hrp_server.config import ServerConfig
from hrp_server.services.connections import ConnectionRegistry
from hrp_server.services.devices import HidEnumerator
from hrp_server.services.discovery import DiscoveryRegistry
from hrp_server.services.dispatcher import Dispatcher, ServerCommands
from hrp_server.services.interfaces import DriverLoader, load_robot_protocol
from hrp_server.services.publisher import JointPublisher
from hrp_server.services.remote_console import RemoteConsole
from hrp_server.state import RegistryState

if TYPE_CHECKING:
    from hrp_server.services.interfaces import DeviceEnumerator, DriverFactory, RobotProtocol
    from hrp_server.services.publisher import PublisherFactory


class HrpServer:
    """
    Wires the registries, the dispatch table and the remote console around one
    shared RegistryState. The local console is attached by the caller.
    """

    def __init__(
        self,
        config: ServerConfig | None = None,
        *,
        protocol: RobotProtocol | None = None,
        enumerator: DeviceEnumerator | None = None,
        load_driver: Callable[[str], DriverFactory] | None = None,
        publisher_factory: PublisherFactory = JointPublisher,
    ) -> None:
        self.config = config or ServerConfig.from_env()
        self.protocol = protocol or load_robot_protocol(self.config.robot_protocol)
        self.state = RegistryState()
        self.discovery = DiscoveryRegistry(
            self.state,
            enumerator or HidEnumerator(),
            self.protocol,
            probe_timeout=self.config.probe_timeout_s,
        )
        self.connections = ConnectionRegistry(
            self.state,
            self.protocol,
            load_driver or DriverLoader(self.config.driver_package),
            config=self.config,
            publisher_factory=publisher_factory,
        )
        self.commands = ServerCommands(
            self.discovery,
            self.connections,
            self.protocol,
            on_exit=self.request_exit,
            default_driver=self.config.default_driver,
            io_timeout=self.config.stage_timeout_s,
        )
        self.dispatcher = Dispatcher(self.commands.table())
        self.remote: RemoteConsole | None = None
        self._exit = asyncio.Event()
        self._closing = False

    @property
    def exit_requested(self) -> bool:
        return self._exit.is_set()

    async def start(self) -> None:
        if self.config.with_remote and self.remote is None:
            self.remote = RemoteConsole(
                self.dispatcher, self.discovery, endpoint=self.config.remote_endpoint
            )
            try:
                self.remote.start()
            except Exception as e:
                logging.error("Could not initiate remote console: %s", e)
                self.remote = None
            else:
                self.connections.add_release_listener(self.remote.notify_released)

    async def request_exit(self) -> None:
        """Unbind every connection, then let ``serve_forever`` shut the channels."""
        if self._closing:
            await self._exit.wait()
            return
        self._closing = True
        try:
            logging.info("Unbinding all active connections...")
            await self.connections.unbind_all()
        finally:
            self._exit.set()

    async def shutdown(self) -> None:
        if not self._exit.is_set():
            await self.request_exit()
        await self.connections.drain_notifications()
        if self.remote is not None:
            logging.info("Closing remote console...")
            await self.remote.close()
            self.remote = None
        logging.info("Closing server...")

    async def serve_forever(self) -> None:
        await self.start()
        try:
            await self._exit.wait()
        finally:
            await self.shutdown()
