"""
BLE transport and device discovery built on bleak.

``BleakTransport`` owns at most one ``BleakClient`` at a time and converts
every bleak failure into ``TransportFailure`` so the engine only ever sees
the bleconsole error taxonomy. ``DeviceWatcher`` keeps a background scanner
running and collects advertising devices.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError

from .errors import ConnectTimeoutError, NoDeviceConnectedError, TransportFailure

logger = logging.getLogger(__name__)

NotifyCallback = Callable[[Any, bytes], None]


@dataclass(frozen=True)
class DeviceInfo:
    """A device seen by the discovery watcher."""

    address: str
    name: str
    ble_device: Any = None


class GattTransport(Protocol):
    """GATT operations the engine consumes.

    Every method raises ``TransportFailure`` when the peripheral or the OS
    stack reports a failure.
    """

    @property
    def is_connected(self) -> bool: ...

    async def connect(self, device: DeviceInfo, timeout: float) -> None: ...

    async def disconnect(self) -> None: ...

    async def get_services(self) -> list[Any]: ...

    async def get_characteristics(self, service: Any) -> list[Any]: ...

    async def read(self, characteristic: Any) -> bytes: ...

    async def write(self, characteristic: Any, data: bytes) -> None: ...

    async def start_notify(
        self, characteristic: Any, callback: NotifyCallback
    ) -> None: ...

    async def stop_notify(self, characteristic: Any) -> None: ...


class BleakTransport:
    """GattTransport backed by a single ``BleakClient``.

    Connect is the only call bounded by a timeout here; the other operations
    wait as long as the bleak backend does.
    """

    def __init__(self, on_disconnect: Optional[Callable[[], None]] = None) -> None:
        self._client: Optional[BleakClient] = None
        self._on_disconnect = on_disconnect

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._client.is_connected

    async def connect(self, device: DeviceInfo, timeout: float) -> None:
        if self._client is not None:
            await self.disconnect()

        client = BleakClient(
            device.ble_device or device.address,
            disconnected_callback=self._handle_disconnect,
            timeout=timeout,
        )
        try:
            await client.connect()
        except asyncio.TimeoutError as e:
            raise ConnectTimeoutError(
                f"Timed out connecting to {device.name} after {timeout:g} s"
            ) from e
        except (BleakError, OSError) as e:
            raise TransportFailure(f"Connect failed: {e}") from e

        self._client = client
        logger.info(f"Connected to {device.name} ({device.address})")

    async def disconnect(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await client.disconnect()
            logger.info(f"Disconnected from {client.address}")
        except (BleakError, OSError) as e:
            logger.warning(f"Disconnect failed: {e}")

    async def get_services(self) -> list[Any]:
        client = self._require_client()
        # bleak resolves the service tree while connecting
        return list(client.services)

    async def get_characteristics(self, service: Any) -> list[Any]:
        self._require_client()
        return list(service.characteristics)

    async def read(self, characteristic: Any) -> bytes:
        client = self._require_client()
        try:
            return bytes(await client.read_gatt_char(characteristic))
        except (BleakError, OSError, asyncio.TimeoutError) as e:
            raise TransportFailure(_status(e)) from e

    async def write(self, characteristic: Any, data: bytes) -> None:
        client = self._require_client()
        try:
            await client.write_gatt_char(characteristic, data, response=True)
        except (BleakError, OSError, asyncio.TimeoutError) as e:
            raise TransportFailure(_status(e)) from e

    async def start_notify(self, characteristic: Any, callback: NotifyCallback) -> None:
        client = self._require_client()

        def _forward(_sender: Any, data: bytearray) -> None:
            callback(characteristic, bytes(data))

        try:
            await client.start_notify(characteristic, _forward)
        except (BleakError, OSError, asyncio.TimeoutError) as e:
            raise TransportFailure(_status(e)) from e

    async def stop_notify(self, characteristic: Any) -> None:
        client = self._require_client()
        try:
            await client.stop_notify(characteristic)
        except (BleakError, OSError, asyncio.TimeoutError) as e:
            raise TransportFailure(_status(e)) from e

    def _require_client(self) -> BleakClient:
        if self._client is None:
            raise NoDeviceConnectedError("No BLE device connected.")
        return self._client

    def _handle_disconnect(self, client: BleakClient) -> None:
        logger.warning(f"Device {client.address} disconnected")
        if self._on_disconnect:
            try:
                self._on_disconnect()
            except Exception as e:
                logger.error(f"Disconnect callback error: {e}")


class DeviceWatcher:
    """Background BLE scanner keeping a list of named devices.

    Devices are added in arrival order and never duplicated by address or name.
    """

    def __init__(self) -> None:
        self._devices: list[DeviceInfo] = []
        self._scanner: Optional[BleakScanner] = None

    @property
    def devices(self) -> list[DeviceInfo]:
        return list(self._devices)

    def named_devices(self) -> list[DeviceInfo]:
        """Devices with a name, sorted by name as listed to the user."""
        return sorted((d for d in self._devices if d.name), key=lambda d: d.name)

    def add(self, device: DeviceInfo) -> bool:
        for i, known in enumerate(self._devices):
            if known.address == device.address:
                # the name often arrives later in a scan response
                if device.name and not known.name:
                    self._devices[i] = device
                    return True
                return False
            if device.name and known.name == device.name:
                return False
        self._devices.append(device)
        logger.debug(f"Discovered {device.name or '<unnamed>'} ({device.address})")
        return True

    def _on_detection(self, device: Any, advertisement_data: Any) -> None:
        name = device.name or getattr(advertisement_data, "local_name", None) or ""
        self.add(DeviceInfo(address=device.address, name=name, ble_device=device))

    async def start(self) -> None:
        if self._scanner is not None:
            return
        self._scanner = BleakScanner(detection_callback=self._on_detection)
        try:
            await self._scanner.start()
            logger.info("Device watcher started")
        except (BleakError, OSError) as e:
            self._scanner = None
            raise TransportFailure(f"Discovery failed: {e}") from e

    async def stop(self) -> None:
        scanner, self._scanner = self._scanner, None
        if scanner is None:
            return
        try:
            await scanner.stop()
            logger.info("Device watcher stopped")
        except (BleakError, OSError) as e:
            logger.warning(f"Failed to stop device watcher: {e}")


def _status(error: BaseException) -> str:
    if isinstance(error, asyncio.TimeoutError):
        return "Timeout"
    return str(error) or type(error).__name__
