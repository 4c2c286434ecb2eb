"""
Desk daemon.

One process owns the BLE link and serves any number of clients over a Unix
socket. Protocol: JSON lines. Each request is one object terminated by a
newline, each response one JSON value on its own line.

Request format:
    {"op": "moveTo", "pos": 42} | {"op": "wait"} | {"op": "getStatus"} | {"op": "stop"}

Response format:
    moveTo/wait/stop -> true or false
    getStatus -> {"ready": bool, "height": float, "pos": "standing"|"sitting", "sittingTime": int}
    unknown op -> false

Lines that are not valid JSON get no response and leave the connection open.
"""

import asyncio
import json
import logging
import math
import signal
import time
from collections.abc import Awaitable, Callable
from contextlib import suppress

from idasen_control.config import Config
from idasen_control.errors import DaemonAlreadyRunning, DeskError
from idasen_control.idle import get_idle_seconds
from idasen_control.manager import DeskManager
from idasen_control.pidfile import daemon_running, read_pid, remove_file, write_pid

_LOGGER = logging.getLogger(__name__)

STATUS_TIMEOUT = 0.05
SITTING_INTERVAL = 5.0


def decode_request(line: bytes):
    """
    Parse one request line.

    Raises:
        ValueError: If the line is not UTF-8 encoded JSON
    """
    return json.loads(line.decode("utf-8"))


def encode_response(value) -> bytes:
    return (json.dumps(value) + "\n").encode("utf-8")


class SittingTracker:
    """Seconds spent sitting without a break, reset by standing up or going idle."""

    def __init__(
        self,
        config: Config,
        idle_sampler: Callable[[], Awaitable[float]] = get_idle_seconds,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.sitting_time = 0.0
        self.interval = SITTING_INTERVAL
        self._idle_sampler = idle_sampler
        self._clock = clock
        self._last_sample: float | None = None

    def position_label(self, height: float) -> str:
        return "standing" if height >= self.config.stand_threshold else "sitting"

    def update(self, height: float, idle_seconds: float) -> float:
        """Fold one sample into the counter and return the new sitting time."""
        now = self._clock()
        elapsed = 0.0 if self._last_sample is None else now - self._last_sample
        self._last_sample = now

        if height < self.config.stand_threshold and idle_seconds <= self.config.sitting_break_time:
            self.sitting_time += elapsed
        else:
            self.sitting_time = 0.0
        return self.sitting_time

    async def run(self, manager: DeskManager) -> None:
        while True:
            desk = manager.current_session
            if desk is None:
                # Time without a desk does not count
                self._last_sample = None
            else:
                self.update(desk.position, await self._idle_sampler())
            await asyncio.sleep(self.interval)


class DeskServer:
    """Unix socket server dispatching JSON-line requests against the desk manager."""

    def __init__(
        self,
        config: Config,
        manager: DeskManager | None = None,
        idle_sampler: Callable[[], Awaitable[float]] = get_idle_seconds,
    ):
        self.config = config
        self.manager = manager or DeskManager(config)
        self.tracker = SittingTracker(config, idle_sampler)
        self._server: asyncio.AbstractServer | None = None
        self._tracker_task: asyncio.Task | None = None
        self._connections: set[asyncio.Task] = set()
        self._stopping: asyncio.Event | None = None
        self._handlers = {
            "moveTo": self._op_move_to,
            "wait": self._op_wait,
            "getStatus": self._op_get_status,
            "stop": self._op_stop,
        }

    async def start(self) -> None:
        """
        Bind the socket, record our pid and start desk discovery.

        Raises:
            DaemonAlreadyRunning: If the pid file names a live process
        """
        if daemon_running(self.config):
            pid = read_pid(self.config.pid_file_path)
            raise DaemonAlreadyRunning(f"Daemon already running with pid {pid}")

        self._stopping = asyncio.Event()
        remove_file(self.config.socket_path)
        self._server = await asyncio.start_unix_server(
            self._handle_connection, path=self.config.socket_path
        )
        write_pid(self.config.pid_file_path)
        _LOGGER.info("Listening on %s", self.config.socket_path)

        await self.manager.start()
        self._tracker_task = asyncio.ensure_future(self.tracker.run(self.manager))

    def shutdown(self) -> None:
        if self._stopping is not None:
            self._stopping.set()

    async def serve_forever(self) -> None:
        """Run until SIGINT/SIGTERM or shutdown(), then clean up."""
        loop = asyncio.get_running_loop()
        signals = (signal.SIGINT, signal.SIGTERM)
        for sig in signals:
            with suppress(NotImplementedError):
                loop.add_signal_handler(sig, self.shutdown)
        try:
            await self._stopping.wait()
        finally:
            for sig in signals:
                with suppress(NotImplementedError):
                    loop.remove_signal_handler(sig)
            await self.close()

    async def close(self) -> None:
        """Stop serving, drop the desk and remove the socket and pid files."""
        _LOGGER.info("Shutting down")
        if self._tracker_task is not None:
            self._tracker_task.cancel()
            try:
                await self._tracker_task
            except asyncio.CancelledError:
                pass
            except Exception:
                _LOGGER.exception("Sitting tracker failed")
            self._tracker_task = None

        for task in list(self._connections):
            task.cancel()
        if self._connections:
            await asyncio.wait(list(self._connections))

        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        await self.manager.close()
        remove_file(self.config.socket_path)
        remove_file(self.config.pid_file_path)

    # --- connections ---

    async def _handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        task = asyncio.current_task()
        self._connections.add(task)
        try:
            while True:
                try:
                    line = await reader.readline()
                except (ConnectionError, ValueError) as e:
                    _LOGGER.debug("Dropping connection: %s", e)
                    break
                # EOF; an unterminated trailing line is never a request
                if not line.endswith(b"\n"):
                    break

                try:
                    request = decode_request(line)
                except ValueError:
                    _LOGGER.debug("Discarding malformed request %r", line)
                    continue

                try:
                    response = await self.dispatch(request)
                except Exception:
                    _LOGGER.exception("Request %r failed", request)
                    response = False
                await self._respond(writer, response)
        finally:
            self._connections.discard(task)
            writer.close()
            with suppress(ConnectionError):
                await writer.wait_closed()

    async def _respond(self, writer: asyncio.StreamWriter, response) -> None:
        if writer.is_closing():
            _LOGGER.debug("Client went away, dropping response %r", response)
            return
        writer.write(encode_response(response))
        try:
            await writer.drain()
        except ConnectionError:
            _LOGGER.debug("Client went away, dropping response %r", response)

    # --- dispatch ---

    async def dispatch(self, request):
        """Run one parsed request and return its JSON-serialisable response."""
        op = request.get("op") if isinstance(request, dict) else None
        handler = self._handlers.get(op) if isinstance(op, str) else None
        if handler is None:
            return False
        return await handler(request)

    async def _op_move_to(self, request: dict) -> bool:
        pos = request.get("pos")
        if isinstance(pos, bool) or not isinstance(pos, (int, float)):
            return False
        try:
            target = float(pos)
        except OverflowError:
            return False
        if not math.isfinite(target):
            return False

        desk = await self.manager.await_session()
        try:
            await desk.move_to(target)
        except DeskError as e:
            _LOGGER.error("Move to %s failed: %s", pos, e)
            return False
        return True

    async def _op_wait(self, request: dict) -> bool:
        await self.manager.await_session()
        return True

    async def _op_get_status(self, request: dict) -> dict:
        try:
            desk = await asyncio.wait_for(self.manager.await_session(), STATUS_TIMEOUT)
        except asyncio.TimeoutError:
            return {"ready": False}
        return {
            "ready": True,
            "height": desk.position,
            "pos": self.tracker.position_label(desk.position),
            "sittingTime": round(self.tracker.sitting_time),
        }

    async def _op_stop(self, request: dict) -> bool:
        desk = self.manager.current_session
        if desk is None:
            return False
        try:
            await desk.stop()
        except DeskError as e:
            _LOGGER.error("Stop failed: %s", e)
            return False
        return True


async def serve(config: Config) -> None:
    server = DeskServer(config)
    await server.start()
    await server.serve_forever()


def run_daemon(config: Config) -> int:
    """Run the daemon in the foreground. An already running daemon is not an error."""
    try:
        asyncio.run(serve(config))
    except DaemonAlreadyRunning as e:
        _LOGGER.info("%s", e)
    return 0
