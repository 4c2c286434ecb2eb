"""Fixtures for desk tests: in-memory stand-ins for bleak's client and scanner."""

from __future__ import annotations

import asyncio
import tempfile
from dataclasses import dataclass
from pathlib import Path
from types import SimpleNamespace

import pytest
from bleak.exc import BleakError

from idasen_control.config import Config
from idasen_control.protocol import (
    CMD_DOWN,
    CMD_STOP,
    CMD_UP,
    UUID_CONTROL,
    UUID_CONTROL_SERVICE,
    UUID_POSITION,
    encode_position,
)


@dataclass
class FakeDevice:
    """Subset of bleak's BLEDevice the desk code reads."""

    address: str
    name: str | None = "Desk 1234"


class FakeServices:
    def __init__(self, uuids):
        self._chars = {uuid: SimpleNamespace(uuid=uuid) for uuid in uuids}

    def get_characteristic(self, uuid):
        return self._chars.get(uuid)


class FakeDeskClient:
    """
    Simulated desk behind a BleakClient-shaped interface.

    While an up/down command is active the desk moves ``step`` cm per read.
    With ``coast_after`` set, the motor reports speed 0 after that many moving
    reads, drifts one more step and then stays put.
    """

    def __init__(self, device, timeout=None, disconnected_callback=None, **kwargs):
        self.device = device
        self.timeout = timeout
        self.disconnected_callback = disconnected_callback
        self.is_connected = False
        self.position = kwargs.get("position", 20.0)
        self.step = kwargs.get("step", 0.0)
        self.services = FakeServices(kwargs.get("characteristics", [UUID_POSITION, UUID_CONTROL]))
        self.connect_error = kwargs.get("connect_error")
        self.fail_reads_after = kwargs.get("fail_reads_after")
        self.coast_after = kwargs.get("coast_after")
        self.on_connect = None
        self.direction = 0
        self.connect_calls = 0
        self.reads = 0
        self.moving_reads = 0
        self.writes: list[bytes] = []
        self.write_times: list[float] = []
        self.notify_callback = None

    async def connect(self):
        self.connect_calls += 1
        if self.connect_error is not None:
            raise self.connect_error
        self.is_connected = True
        if self.on_connect is not None:
            self.on_connect()
        return True

    async def disconnect(self):
        was_connected = self.is_connected
        self.is_connected = False
        if was_connected and self.disconnected_callback is not None:
            self.disconnected_callback(self)
        return True

    def drop_link(self):
        """Simulate the desk going out of range."""
        self.is_connected = False
        self.direction = 0
        if self.disconnected_callback is not None:
            self.disconnected_callback(self)

    async def read_gatt_char(self, char):
        if self.fail_reads_after is not None and self.reads >= self.fail_reads_after:
            raise BleakError("read failed")
        self.reads += 1
        speed = 0
        if self.direction and self.step:
            self.moving_reads += 1
            coasting = self.coast_after is not None and self.moving_reads > self.coast_after
            if not coasting or self.moving_reads == self.coast_after + 1:
                self.position += self.direction * self.step
            speed = 0 if coasting else 100
        return bytearray(encode_position(self.position, speed))

    async def start_notify(self, char, callback):
        self.notify_callback = callback

    async def write_gatt_char(self, char, data, response=True):
        self.writes.append(bytes(data))
        self.write_times.append(asyncio.get_running_loop().time())
        if data == CMD_UP:
            self.direction = 1
        elif data == CMD_DOWN:
            self.direction = -1
        elif data == CMD_STOP:
            self.direction = 0

    def notify(self, position: float, speed: int = 0):
        self.notify_callback(UUID_POSITION, bytearray(encode_position(position, speed)))


class FakeClientFactory:
    """Drop-in for the BleakClient class that records every client it builds."""

    def __init__(self, **defaults):
        self.defaults = defaults
        self.clients: list[FakeDeskClient] = []

    def __call__(self, device, **kwargs):
        client = FakeDeskClient(device, **{**self.defaults, **kwargs})
        self.clients.append(client)
        return client

    @property
    def last(self) -> FakeDeskClient:
        return self.clients[-1]


class FakeScanner:
    def __init__(self, detection_callback=None, start_error=None):
        self.detection_callback = detection_callback
        self.start_error = start_error
        self.running = False

    async def start(self):
        if self.start_error is not None:
            raise self.start_error
        self.running = True

    async def stop(self):
        self.running = False

    def advertise(self, device, service_uuids=()):
        self.detection_callback(device, SimpleNamespace(service_uuids=list(service_uuids)))


class FakeScannerFactory:
    def __init__(self):
        self.scanners: list[FakeScanner] = []
        self.failures: list[Exception] = []

    def __call__(self, detection_callback=None):
        error = self.failures.pop(0) if self.failures else None
        scanner = FakeScanner(detection_callback, start_error=error)
        self.scanners.append(scanner)
        return scanner

    @property
    def last(self) -> FakeScanner:
        return self.scanners[-1]


@pytest.fixture
def config() -> Config:
    return Config(desk_max_position=58, connect_timeout=1.0)


@pytest.fixture
def fake_device() -> FakeDevice:
    return FakeDevice(address="E8:5B:5B:24:22:E4")


@pytest.fixture
def client_factory() -> FakeClientFactory:
    return FakeClientFactory()


@pytest.fixture
def scanner_factory() -> FakeScannerFactory:
    return FakeScannerFactory()


@pytest.fixture
def desk_service_uuids() -> list[str]:
    return [UUID_CONTROL_SERVICE]


@pytest.fixture
def short_tmp():
    """A short directory; Unix socket paths are limited to about 100 bytes."""
    with tempfile.TemporaryDirectory(prefix="idc") as path:
        yield Path(path)


@pytest.fixture
def make_device():
    return FakeDevice
