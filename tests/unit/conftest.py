"""Shared fakes and fixtures for unit tests (no BLE radio needed)."""

from __future__ import annotations

import asyncio
import io
from dataclasses import dataclass, field
from typing import Any, Callable

import pytest
from rich.console import Console

from bleconsole.controller import GattController
from bleconsole.display import DisplayManager
from bleconsole.errors import TransportFailure
from bleconsole.session import ReadLog, Session
from bleconsole.transport import DeviceInfo, DeviceWatcher


@dataclass
class FakeCharacteristic:
    uuid: str
    description: str
    handle: int
    properties: list[str] = field(default_factory=lambda: ["read", "write", "notify"])


@dataclass
class FakeService:
    uuid: str
    description: str
    handle: int
    characteristics: list[FakeCharacteristic] = field(default_factory=list)


LEVEL = FakeCharacteristic(
    "00002a19-0000-1000-8000-00805f9b34fb", "Level", 3, ["read", "notify"]
)
RX = FakeCharacteristic("0000ffe1-0000-1000-8000-00805f9b34fb", "Unknown", 12, ["write"])
TX = FakeCharacteristic("0000ffe2-0000-1000-8000-00805f9b34fb", "Unknown", 14, ["notify"])

BATTERY = FakeService("0000180f-0000-1000-8000-00805f9b34fb", "Battery", 1, [LEVEL])
UART = FakeService("0000ffe0-0000-1000-8000-00805f9b34fb", "Vendor specific", 10, [RX, TX])


class FakeTransport:
    """In-memory GattTransport recording every call."""

    def __init__(self, services: list[FakeService]) -> None:
        self.services = services
        self.connected = False
        self.fail_connect = False
        self.fail_write: set[int] = set()
        self.fail_subscribe: set[int] = set()
        self.fail_unsubscribe: set[int] = set()
        # handle -> value sent from inside start_notify, before it returns
        self.prime_on_subscribe: dict[int, bytes] = {}

        # handle -> scripted responses; the last one repeats once the rest are used
        self.read_script: dict[int, list[bytes | Exception]] = {}
        self.read_calls: list[int] = []
        self.writes: list[tuple[int, bytes]] = []
        self.enumerations: list[int] = []
        self.callbacks: dict[int, tuple[Any, Callable[[Any, bytes], None]]] = {}
        self.stopped: list[int] = []
        self.disconnects = 0

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def connect(self, device: DeviceInfo, timeout: float) -> None:
        if self.fail_connect:
            raise TransportFailure("Unreachable")
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False
        self.disconnects += 1

    async def get_services(self) -> list[FakeService]:
        return list(self.services)

    async def get_characteristics(self, service: FakeService) -> list[FakeCharacteristic]:
        self.enumerations.append(service.handle)
        return list(service.characteristics)

    async def read(self, characteristic: FakeCharacteristic) -> bytes:
        self.read_calls.append(characteristic.handle)
        script = self.read_script.get(characteristic.handle, [b""])
        response = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(response, Exception):
            raise response
        return response

    async def write(self, characteristic: FakeCharacteristic, data: bytes) -> None:
        if characteristic.handle in self.fail_write:
            raise TransportFailure("AccessDenied")
        self.writes.append((characteristic.handle, data))

    async def start_notify(self, characteristic: FakeCharacteristic, callback) -> None:
        if characteristic.handle in self.fail_subscribe:
            raise TransportFailure("Unreachable")
        self.callbacks[characteristic.handle] = (characteristic, callback)
        if characteristic.handle in self.prime_on_subscribe:
            callback(characteristic, self.prime_on_subscribe[characteristic.handle])
            await asyncio.sleep(0.01)

    async def stop_notify(self, characteristic: FakeCharacteristic) -> None:
        if characteristic.handle in self.fail_unsubscribe:
            raise TransportFailure("Unreachable")
        self.callbacks.pop(characteristic.handle, None)
        self.stopped.append(characteristic.handle)

    def notify(self, handle: int, data: bytes) -> None:
        characteristic, callback = self.callbacks[handle]
        callback(characteristic, data)


class StaticWatcher(DeviceWatcher):
    """DeviceWatcher with a fixed device list and no scanner."""

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport([BATTERY, UART])


@pytest.fixture
def watcher() -> StaticWatcher:
    watcher = StaticWatcher()
    watcher.add(DeviceInfo(address="AA:BB:CC:DD:EE:02", name="Sensor-B"))
    watcher.add(DeviceInfo(address="AA:BB:CC:DD:EE:01", name="Sensor-A"))
    return watcher


@pytest.fixture
def output() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def display(output: io.StringIO) -> DisplayManager:
    console = Console(file=output, width=200, color_system=None, force_terminal=False)
    return DisplayManager(console=console, interactive=True)


@pytest.fixture
def session(tmp_path) -> Session:
    return Session(read_log=ReadLog(tmp_path))


@pytest.fixture
def controller(transport, session, display, watcher) -> GattController:
    return GattController(transport, session, display, watcher, retry_interval=0)
