"""
Desk session: one desk's BLE link and its closed-loop motor control.

The desk has no "go to height" command. Moving is done by repeatedly
writing the up/down opcode while polling the position characteristic, then
writing stop once the target is reached or the desk stalls.
"""

import asyncio
import logging
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass, field
from enum import Enum

from bleak import BleakClient
from bleak.exc import BleakError

from idasen_control.config import Config
from idasen_control.errors import DeskCommunicationError, DeskConnectionError, FrameError
from idasen_control.protocol import (
    CMD_STOP,
    UUID_CONTROL,
    UUID_POSITION,
    decode_position,
    motor_command,
)

_LOGGER = logging.getLogger(__name__)


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"


class SessionEvent(Enum):
    POSITION = "position"
    STATE = "state"


SessionListener = Callable[[SessionEvent, "DeskSession"], None]


@dataclass
class _Move:
    """One control-loop run and the token used to cancel it."""

    target: float
    cancelled: asyncio.Event = field(default_factory=asyncio.Event)
    task: asyncio.Task | None = None


class DeskSession:
    """Connection and motor-control state for a single desk."""

    RECONNECT_DELAY = 5.0
    STOP_TOLERANCE = 1.0
    POLL_INTERVAL = 0.1
    COMMAND_INTERVAL = 0.3
    STALL_LIMIT = 5

    def __init__(self, device, config: Config, client_factory=BleakClient):
        self.device = device
        self.config = config
        self.client = None
        self.position = 0.0
        self.speed = 0
        self.movement_active = False
        self.state = ConnectionState.DISCONNECTED
        self._address = device.address
        self._client_factory = client_factory
        self._position_char = None
        self._control_char = None
        self._should_disconnect = False
        self._connect_lock = asyncio.Lock()
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._connect_task: asyncio.Task | None = None
        self._move: _Move | None = None
        self._listeners: list[SessionListener] = []

    def __repr__(self) -> str:
        return f"<DeskSession {self.address} {self.state.value} {self.position:.2f}cm>"

    @property
    def address(self) -> str:
        return self._address

    # --- events ---

    def subscribe(self, callback: SessionListener) -> Callable[[], None]:
        """
        Register a listener for position and connection-state changes.

        Returns:
            A callable that removes the listener again
        """
        self._listeners.append(callback)

        def unsubscribe() -> None:
            with suppress(ValueError):
                self._listeners.remove(callback)

        return unsubscribe

    def _emit(self, event: SessionEvent) -> None:
        for callback in list(self._listeners):
            callback(event, self)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self.state:
            return
        _LOGGER.debug("Desk %s: %s -> %s", self.address, self.state.value, state.value)
        self.state = state
        self._emit(SessionEvent.STATE)

    # --- connection ---

    def start(self) -> None:
        """Connect in the background, retrying until it works or disconnect() is called."""
        self._reconnect_handle = None
        if self._should_disconnect:
            return
        self._connect_task = asyncio.ensure_future(self._connect_or_retry())

    async def _connect_or_retry(self) -> None:
        try:
            await self.ensure_connection()
        except DeskConnectionError as e:
            _LOGGER.warning("Failed to connect to desk %s: %s", self.address, e)
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._should_disconnect:
            return
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(self.RECONNECT_DELAY, self.start)

    async def ensure_connection(self) -> None:
        """
        Make sure the desk is connected and both characteristics are usable.

        Returns immediately when already ready. Otherwise connects, resolves
        the position and control characteristics, reads the initial position
        and subscribes to position notifications.

        Raises:
            DeskConnectionError: If any step fails or disconnect() was requested
        """
        if self.state is ConnectionState.READY:
            return

        async with self._connect_lock:
            # Another caller may have finished connecting while we waited
            if self.state is ConnectionState.READY:
                return
            if self._should_disconnect:
                raise DeskConnectionError("Desk session was disconnected")

            self._set_state(ConnectionState.CONNECTING)
            try:
                await self._connect()
            except asyncio.TimeoutError as e:
                self._reset_connection()
                raise DeskConnectionError("Connection timed out") from e
            except (BleakError, FrameError, OSError) as e:
                self._reset_connection()
                raise DeskConnectionError(f"BLE error: {e}") from e
            except DeskConnectionError:
                self._reset_connection()
                raise

            self._set_state(ConnectionState.READY)
            _LOGGER.info("Connected to desk %s at %.2fcm", self.address, self.position)

    async def _connect(self) -> None:
        if self.client is None:
            self.client = self._client_factory(
                self.device,
                timeout=self.config.connect_timeout,
                disconnected_callback=self._on_disconnect,
            )
        if not self.client.is_connected:
            await self.client.connect()

        if self._should_disconnect:
            with suppress(BleakError):
                await self.client.disconnect()
            raise DeskConnectionError("Desk session was disconnected")

        position_char = self.client.services.get_characteristic(UUID_POSITION)
        if position_char is None:
            raise DeskConnectionError("Missing position characteristic")
        control_char = self.client.services.get_characteristic(UUID_CONTROL)
        if control_char is None:
            raise DeskConnectionError("Missing control characteristic")

        data = await self.client.read_gatt_char(position_char)
        self.update_position(data)
        await self.client.start_notify(position_char, self._on_notify)

        self._position_char = position_char
        self._control_char = control_char

    def _reset_connection(self) -> None:
        self._position_char = None
        self._control_char = None
        self._set_state(ConnectionState.DISCONNECTED)

    def _on_disconnect(self, client) -> None:
        """bleak disconnected_callback: the link is gone, handles are stale."""
        if self.state is not ConnectionState.DISCONNECTED:
            _LOGGER.info("Desk %s disconnected", self.address)
        self._reset_connection()

    async def disconnect(self) -> None:
        """Disconnect for good; no reconnect is scheduled after this."""
        # The running move still needs the link for its stop command
        await self.stop_moving()
        self._should_disconnect = True
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None
        if self.client is not None:
            with suppress(BleakError, OSError, asyncio.TimeoutError):
                await self.client.disconnect()
        self._reset_connection()

    # --- position ---

    def _on_notify(self, sender, data: bytearray) -> None:
        try:
            self.update_position(data)
        except FrameError as e:
            _LOGGER.debug("Ignoring position notification: %s", e)

    def update_position(self, data: bytes) -> bool:
        """
        Apply a position payload.

        Returns:
            False if the position equals the stored one and the update was dropped
        """
        frame = decode_position(data)
        if frame.position == self.position:
            return False
        self.position = frame.position
        self.speed = frame.speed
        self._emit(SessionEvent.POSITION)
        return True

    async def read_position(self) -> float:
        """Read the position characteristic and return the position in cm."""
        await self.ensure_connection()
        try:
            data = await self.client.read_gatt_char(self._position_char)
        except (BleakError, OSError) as e:
            raise DeskCommunicationError(f"Failed to read position: {e}") from e
        try:
            self.update_position(data)
        except FrameError as e:
            raise DeskCommunicationError(str(e)) from e
        return self.position

    async def _write(self, command: bytes) -> None:
        await self.ensure_connection()
        try:
            await self.client.write_gatt_char(self._control_char, command, response=False)
        except (BleakError, OSError) as e:
            raise DeskCommunicationError(f"Failed to write command: {e}") from e

    # --- movement ---

    async def move_to(self, target: float) -> bool:
        """
        Move the desk to a position in cm.

        The target is clamped to the configured maximum. Any move already
        running is cancelled and awaited first, including its stop command.

        Returns:
            False if the desk was already within tolerance and nothing was sent

        Raises:
            DeskConnectionError: If the desk cannot be reached during the move
            DeskCommunicationError: If a read or write fails during the move
        """
        target = min(target, self.config.desk_max_position)

        # A concurrent caller may start its own move while we wait; last call wins
        while self._move is not None:
            await self.stop_moving()

        if abs(self.position - target) <= self.STOP_TOLERANCE:
            return False

        move = _Move(target)
        move.task = asyncio.ensure_future(self._run_move(move))
        move.task.add_done_callback(lambda task: self._move_finished(move, task))
        self._move = move

        # Shielded so a cancelled caller never skips the stop command
        await asyncio.shield(move.task)
        return True

    def _move_finished(self, move: _Move, task: asyncio.Task) -> None:
        if self._move is move:
            self._move = None
        if not task.cancelled() and task.exception() is not None:
            _LOGGER.debug("Move to %.2fcm failed: %s", move.target, task.exception())

    def _remaining(self, target: float, moving_up: bool) -> float:
        return target - self.position if moving_up else self.position - target

    async def _run_move(self, move: _Move) -> None:
        self.movement_active = True
        moving_up = move.target > self.position
        command = motor_command(moving_up)
        loop = asyncio.get_running_loop()

        last_position = self.position
        last_speed = 0
        stall_count = 0
        last_command = None

        _LOGGER.info(
            "Moving desk %s from %.2fcm to %.2fcm",
            "up" if moving_up else "down",
            self.position,
            move.target,
        )
        try:
            while (
                not move.cancelled.is_set()
                and self._remaining(move.target, moving_up) > self.STOP_TOLERANCE
            ):
                if last_command is None or loop.time() - last_command >= self.COMMAND_INTERVAL:
                    await self._write(command)
                    last_command = loop.time()

                await asyncio.sleep(self.POLL_INTERVAL)
                await self.read_position()

                if self.position == last_position or (last_speed != 0 and self.speed == 0):
                    stall_count += 1
                else:
                    stall_count = 0

                if stall_count >= self.STALL_LIMIT:
                    _LOGGER.info("Desk stopped moving at %.2fcm", self.position)
                    break

                last_position = self.position
                last_speed = self.speed

            await self._write(CMD_STOP)
            _LOGGER.info("Desk at %.2fcm (target %.2fcm)", self.position, move.target)
        finally:
            self.movement_active = False

    async def stop_moving(self) -> None:
        """Cancel the running move, if any, and wait until its stop command is sent."""
        self.movement_active = False
        move = self._move
        if move is None:
            return
        move.cancelled.set()
        # The move's own caller sees its exception, not us
        await asyncio.wait([move.task])
        if self._move is move:
            self._move = None

    async def stop(self) -> None:
        """Emergency stop desk movement."""
        await self.stop_moving()
        await self._write(CMD_STOP)
