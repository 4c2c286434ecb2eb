"""
Desk discovery: scan for the desk, bind a session and re-acquire it after loss.
"""

import asyncio
import logging
from collections.abc import Callable
from contextlib import suppress
from enum import Enum

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError

from idasen_control.config import Config
from idasen_control.desk import ConnectionState, DeskSession, SessionEvent
from idasen_control.protocol import UUID_CONTROL_SERVICE

_LOGGER = logging.getLogger(__name__)


class ManagerState(Enum):
    ADAPTER_OFF = "adapter_off"
    SCANNING = "scanning"
    BINDING = "binding"
    OWNING = "owning"


class ReadySignal:
    """
    Single-assignment "desk is ready" signal that can be re-armed.

    Waiters always await the current handle. Once a resolved session is
    lost, rearm() drops the resolved handle so later waiters block again.
    """

    def __init__(self):
        self._future: asyncio.Future | None = None

    def _current(self) -> asyncio.Future:
        if self._future is None:
            self._future = asyncio.get_running_loop().create_future()
        return self._future

    def set(self, session: DeskSession) -> None:
        if self._future is not None and self._future.done():
            self._future = None
        self._current().set_result(session)

    def rearm(self) -> None:
        if self._future is not None and self._future.done():
            self._future = None

    def peek(self) -> DeskSession | None:
        if self._future is not None and self._future.done():
            return self._future.result()
        return None

    async def wait(self) -> DeskSession:
        # Shielded: a timed-out waiter must not cancel the shared handle
        return await asyncio.shield(self._current())


class DeskManager:
    """Finds the desk and owns at most one DeskSession at a time."""

    SCAN_RETRY_DELAY = 5.0

    def __init__(
        self,
        config: Config,
        scanner_factory=BleakScanner,
        client_factory=BleakClient,
    ):
        self.config = config
        self.state = ManagerState.ADAPTER_OFF
        self.desk: DeskSession | None = None
        self._scanner_factory = scanner_factory
        self._client_factory = client_factory
        self._scanner = None
        self._powered = False
        self._probing = False
        self._probed: list = []
        self._ready = ReadySignal()
        self._retry_handle: asyncio.TimerHandle | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self._listeners: list[Callable[[DeskSession], None]] = []
        self._tasks: set[asyncio.Task] = set()

    @property
    def current_session(self) -> DeskSession | None:
        """The owned session if it has become ready, else None."""
        return self._ready.peek()

    async def await_session(self) -> DeskSession:
        """Wait until a desk session is ready and return it."""
        return await self._ready.wait()

    def listen(self, callback: Callable[[DeskSession], None]) -> Callable[[], None]:
        """Relay position changes of whichever session is currently owned."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            with suppress(ValueError):
                self._listeners.remove(callback)

        return unsubscribe

    def _set_state(self, state: ManagerState) -> None:
        if state is not self.state:
            _LOGGER.debug("Manager: %s -> %s", self.state.value, state.value)
            self.state = state

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # --- adapter / scanning ---

    async def start(self) -> None:
        """Start BLE discovery."""
        _LOGGER.info("Starting BLE")
        await self.set_adapter_powered(True)

    async def set_adapter_powered(self, powered: bool) -> None:
        """React to the Bluetooth adapter being switched on or off."""
        self._powered = powered
        if powered:
            await self.scan()
            return

        _LOGGER.info("Bluetooth adapter powered off")
        self._cancel_retry()
        await self._stop_scanner()
        desk = self._release_session()
        if desk is not None:
            await desk.disconnect()
        self._set_state(ManagerState.ADAPTER_OFF)

    async def scan(self) -> None:
        """Start scanning unless a desk is already bound."""
        if self.desk is not None or not self._powered:
            return
        self._cancel_retry()
        if self._scanner is not None:
            return

        _LOGGER.info("Starting scan")
        scanner = self._scanner_factory(detection_callback=self._on_detection)
        try:
            await scanner.start()
        except (BleakError, OSError) as e:
            _LOGGER.warning("BLE scan failed: %s", e)
            self._set_state(ManagerState.ADAPTER_OFF)
            self._schedule_scan()
            return

        self._scanner = scanner
        self._set_state(ManagerState.SCANNING)

    def _schedule_scan(self) -> None:
        loop = asyncio.get_running_loop()
        self._retry_handle = loop.call_later(
            self.SCAN_RETRY_DELAY, lambda: self._spawn(self.scan())
        )

    def _cancel_retry(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

    async def _stop_scanner(self) -> None:
        scanner, self._scanner = self._scanner, None
        if scanner is None:
            return
        # We don't really care if stopping fails
        with suppress(BleakError, OSError):
            await scanner.stop()

    # --- peripherals ---

    def is_desk_peripheral(self, device, advertisement) -> bool:
        """Match the configured address, or the desk's control service when none is set."""
        if self.config.desk_address:
            return device.address.lower() == self.config.desk_address.lower()
        service_uuids = getattr(advertisement, "service_uuids", None) or []
        return UUID_CONTROL_SERVICE in (uuid.lower() for uuid in service_uuids)

    def _on_detection(self, device, advertisement) -> None:
        if self.desk is None:
            self._spawn(self.process_peripheral(device, advertisement))

    async def process_peripheral(self, device, advertisement) -> bool:
        """
        Bind the peripheral if it is the desk.

        Returns:
            True if a session was created for this peripheral
        """
        if self.desk is not None:
            return False
        if not device.address and not await self.ensure_address_known(device):
            return False
        if self.desk is not None or not self.is_desk_peripheral(device, advertisement):
            return False

        await self._bind(device)
        return True

    async def ensure_address_known(self, device) -> bool:
        """
        Connect to the peripheral once so the platform resolves its address.

        Only one probe runs at a time; others are skipped until it finishes.
        Each peripheral is probed at most once.
        """
        if self._probing:
            return False
        if any(seen is device for seen in self._probed):
            return bool(device.address)

        self._probing = True
        self._probed.append(device)
        try:
            client = self._client_factory(device, timeout=self.config.connect_timeout)
            await client.connect()
            await client.disconnect()
        except (BleakError, asyncio.TimeoutError, OSError) as e:
            _LOGGER.debug("Address probe failed: %s", e)
            return False
        finally:
            self._probing = False
        return bool(device.address)

    async def _bind(self, device) -> None:
        self._set_state(ManagerState.BINDING)
        desk = DeskSession(device, self.config, client_factory=self._client_factory)
        self.desk = desk
        self._unsubscribe = desk.subscribe(self._on_session_event)
        _LOGGER.info("Found desk %s", device.address)

        await self._stop_scanner()
        if self.desk is desk:
            desk.start()

    def _release_session(self) -> DeskSession | None:
        desk, self.desk = self.desk, None
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._ready.rearm()
        return desk

    def _on_session_event(self, event: SessionEvent, session: DeskSession) -> None:
        if session is not self.desk:
            return

        if event is SessionEvent.POSITION:
            for callback in list(self._listeners):
                callback(session)
        elif session.state is ConnectionState.READY:
            if self.state is not ManagerState.OWNING:
                self._set_state(ManagerState.OWNING)
                self._ready.set(session)
        elif session.state is ConnectionState.DISCONNECTED and self.state is ManagerState.OWNING:
            _LOGGER.info("Desk disconnected, going back to scanning")
            self._release_session()
            self._set_state(ManagerState.SCANNING)
            self._spawn(self._rescan_after_loss(session))

    async def _rescan_after_loss(self, session: DeskSession) -> None:
        await session.disconnect()
        await self.scan()

    async def close(self) -> None:
        """Stop scanning and drop the session."""
        self._powered = False
        self._cancel_retry()
        await self._stop_scanner()
        desk = self._release_session()
        if desk is not None:
            await desk.disconnect()
        for task in list(self._tasks):
            task.cancel()
        self._set_state(ManagerState.ADAPTER_OFF)
