from __future__ import annotations

import asyncio
import logging
import re
import sys
import threading
from datetime import datetime
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from hrp_server.errors import HrpServerError
from hrp_server.services.discovery import BOUND_DEVICES_NOTE

if TYPE_CHECKING:
    from hrp_server.server import HrpServer
    from hrp_server.state import CommandEntry

_COMMAND_RE = re.compile(r"^[a-zA-Z]+$")
PROMPT = "--> "

ReadLine = Callable[[str], Awaitable["str | None"]]


class StdinReader:
    """Daemon thread feeding stdin lines into the event loop.

    A daemon thread (rather than the default executor) so that a pending
    ``readline`` never keeps the process alive after ``exit``.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._thread: threading.Thread | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    def _run(self) -> None:
        assert self._loop is not None
        while True:
            line = sys.stdin.readline()
            if not line:
                self._loop.call_soon_threadsafe(self._queue.put_nowait, None)
                return
            self._loop.call_soon_threadsafe(self._queue.put_nowait, line.rstrip("\r\n"))

    async def __call__(self, prompt: str) -> str | None:
        if self._thread is None:
            self._loop = asyncio.get_running_loop()
            self._thread = threading.Thread(target=self._run, name="stdin-reader", daemon=True)
            self._thread.start()
        sys.stdout.write(prompt)
        sys.stdout.flush()
        return await self._queue.get()


class LocalConsole:
    """
    Interactive prompt over the shared dispatch table.

    Missing arguments are collected here, one prompt per ParamSpec, before the
    command is dispatched with ``local=True``. Handlers never prompt.
    """

    def __init__(
        self,
        server: HrpServer,
        read_line: ReadLine | None = None,
        write: Callable[[str], Any] = print,
    ) -> None:
        self.server = server
        self.read_line = read_line or StdinReader()
        self.write = write

    def welcome(self) -> None:
        now = datetime.now()
        self.write("\n*\tWelcome to hrp-server")
        self.write("*")
        self.write(f"*\tToday is: {now:%x}")
        self.write(f"*\tThe time is: {now:%X}")
        self.write("*\n*\thrp-server started in console mode. Press h for help.")
        if self.server.remote is not None:
            self.write(f"*\tRemote console listening on {self.server.remote.endpoint}")
        self.write("")

    async def resolve_args(self, entry: CommandEntry) -> list[str] | None:
        """Prompt for every parameter; None when the operator ends input."""
        values: list[str] = []
        for spec in entry.params:
            while True:
                hint = f" [{spec.default}]" if spec.default is not None else ""
                raw = await self.read_line(f"*\t{spec.label}{hint}: ")
                if raw is None:
                    return None
                value = raw.strip() or (spec.default or "")
                if re.fullmatch(spec.pattern, value):
                    values.append(value)
                    break
                self.write(f"*\tInvalid {spec.name}: {value!r}")
        return values

    async def run_command(self, name: str) -> list[Any] | None:
        entry = self.server.dispatcher.get(name)
        args = await self.resolve_args(entry)
        if args is None:
            return None
        try:
            result = await self.server.dispatcher.dispatch(name, args, local=True)
        except HrpServerError as e:
            self.write(f"*\tError: {e}")
            return None
        self.render(name, result)
        return result

    def render(self, name: str, result: list[Any]) -> None:
        if name == "h":
            self.write("\n*\thrp-server help:\n*")
            for line in result:
                cmd, _, desc = line.partition(": ")
                self.write(f"*\t{cmd}\t:\t{desc}")
            self.write("")
        elif name in ("robs", "joys"):
            kind = "Robot" if name == "robs" else "Controller"
            paths = result[1]
            self.write(f"\n*\t{BOUND_DEVICES_NOTE}\n*")
            if not paths:
                self.write(f"*\tNo {kind.lower()}s connected")
            else:
                self.write(f"*\t{kind}s connected: {len(paths)}\n*")
            for i, path in enumerate(paths, 1):
                self.write(f"*\t\t{kind} {i}\t:\t{path}")
            self.write("")
        elif name == "conn":
            conns = self.server.connections.connections
            self.write(f"*\tActive connections: {len(conns) or 'None'}")
            for i, conn in enumerate(conns, 1):
                st = conn.stats
                self.write(f"*\tConnection {i}")
                self.write(f"*\tRobot: {conn.robot_path}")
                self.write(f"*\tController: {conn.controller_path} ({conn.driver_name})")
                self.write(f"*\tJoints on: {conn.publisher.endpoint}")
                self.write(
                    f"*\tTicks: {st.ticks} published: {st.published} "
                    f"failed: {st.failures} skipped: {st.skipped}"
                )
        elif name == "info":
            info, index = result
            self.write(f"\n*\tInfo for Robot {index}:")
            try:
                self.write(str(self.server.protocol.decode_info(info)))
            except Exception as e:
                logging.debug("Robot info decode failed: %s", e)
                self.write(str(info))
            self.write("")
        elif name == "clear":
            self.write("\033c")
        elif name in ("bind", "pbind", "ubind", "pubind"):
            self.write(f"*\t{name}: {'OK' if result and result[0] else 'FAILED'}")

    async def run(self) -> None:
        self.welcome()
        while not self.server.exit_requested:
            line = await self.read_line(PROMPT)
            if line is None:
                await self.server.request_exit()
                break
            command = line.strip()
            if not command:
                continue
            if not _COMMAND_RE.match(command) or command not in self.server.dispatcher:
                self.write("Command not recognized. Press 'h' for help")
                continue
            await self.run_command(command)
        self.write("*\tBye !")
