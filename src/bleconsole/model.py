"""
In-memory model of the connected device's GATT tree and current selection.

Services and characteristics are wrapped in ``Attribute`` objects that own
the transport handle (a bleak service or characteristic object). Handles are
released together when the device is closed or replaced, and a
characteristic collection is released whenever another service is selected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional

from .errors import AttributeNotFoundError, NoDeviceConnectedError, NoServiceSelectedError
from .resolver import find

logger = logging.getLogger(__name__)

# Descriptions bleak reports for UUIDs it has no name for
_UNNAMED_DESCRIPTIONS = {"", "unknown", "vendor specific"}


class DeviceStatus(Enum):
    DISCONNECTED = "Disconnected"
    CONNECTING = "Connecting"
    CONNECTED = "Connected"


@dataclass
class Device:
    """The selected peripheral."""

    address: str
    name: str
    status: DeviceStatus = DeviceStatus.DISCONNECTED

    @property
    def is_connected(self) -> bool:
        return self.status is DeviceStatus.CONNECTED


def attribute_name(uuid: str, description: Optional[str]) -> str:
    """Build a single-token display name for a service or characteristic.

    Known UUIDs use their description with spaces removed ("Battery Level"
    becomes "BatteryLevel"); everything else is named by its UUID.
    """
    if description and description.strip().lower() not in _UNNAMED_DESCRIPTIONS:
        return "".join(description.split())
    return str(uuid)


@dataclass
class Attribute:
    """A service or characteristic together with its transport handle."""

    name: str
    uuid: str
    handle: Any
    properties: tuple[str, ...] = ()

    @classmethod
    def from_handle(cls, handle: Any) -> "Attribute":
        """Wrap a bleak-style GATT object (uuid, description, properties)."""
        uuid = str(handle.uuid)
        return cls(
            name=attribute_name(uuid, getattr(handle, "description", None)),
            uuid=uuid,
            handle=handle,
            properties=tuple(getattr(handle, "properties", ()) or ()),
        )

    @property
    def key(self) -> Any:
        """Identity of the underlying attribute, stable across enumerations."""
        if self.handle is None:
            return None
        return getattr(self.handle, "handle", id(self.handle))

    @property
    def is_valid(self) -> bool:
        return self.handle is not None

    @property
    def descriptor(self) -> str:
        """Short property string such as ``read, write, notify``."""
        return ", ".join(self.properties)

    def release(self) -> None:
        self.handle = None


@dataclass(frozen=True)
class ResolvedTarget:
    """A fully resolved characteristic address."""

    service: Optional[Attribute]
    characteristic: Attribute


@dataclass
class GattTree:
    """Services, characteristics and the device/service/characteristic selection."""

    device: Optional[Device] = None
    services: list[Attribute] = field(default_factory=list)
    characteristics: list[Attribute] = field(default_factory=list)
    selected_service: Optional[Attribute] = None
    selected_characteristic: Optional[Attribute] = None

    def set_device(self, device: Device) -> None:
        """Make a device current, releasing everything held for the previous one."""
        self.clear()
        self.device = device

    def clear(self) -> None:
        """Release every attribute handle and empty the selection."""
        released = _release_all(self.characteristics) + _release_all(self.services)
        if released:
            logger.debug(f"Released {released} GATT attribute handles")
        self.services = []
        self.characteristics = []
        self.selected_service = None
        self.selected_characteristic = None
        self.device = None

    def invalidate(self) -> None:
        """Release every attribute handle after a link drop, keeping the device."""
        device = self.device
        self.clear()
        self.device = device

    def set_services(self, handles: Iterable[Any]) -> list[Attribute]:
        """Replace the service collection wholesale."""
        self._require_connected()
        _release_all(self.characteristics)
        _release_all(self.services)
        self.services = [Attribute.from_handle(h) for h in handles]
        self.characteristics = []
        self.selected_service = None
        self.selected_characteristic = None
        return self.services

    def find_service(self, token: str) -> Attribute:
        service = find(self.services, token)
        if service is None:
            raise AttributeNotFoundError(f"Invalid service name or number: {token}")
        return service

    def select_service(self, token: str) -> Attribute:
        """Select a service by name or ``#N``; clears the characteristic selection."""
        self._require_connected()
        service = self.find_service(token)
        self.selected_service = service
        self.selected_characteristic = None
        _release_all(self.characteristics)
        self.characteristics = []
        return service

    def set_characteristics(self, handles: Iterable[Any]) -> list[Attribute]:
        """Replace the characteristic collection of the selected service."""
        if self.selected_service is None:
            raise NoServiceSelectedError("No service is selected.")
        _release_all(self.characteristics)
        self.characteristics = [Attribute.from_handle(h) for h in handles]
        self.selected_characteristic = None
        return self.characteristics

    def select_characteristic(self, token: str) -> Attribute:
        characteristic = find(self.characteristics, token)
        if characteristic is None:
            raise AttributeNotFoundError(f"Invalid characteristic {token}")
        self.selected_characteristic = characteristic
        return characteristic

    def _require_connected(self) -> None:
        if self.device is None or not self.device.is_connected:
            raise NoDeviceConnectedError("No BLE device connected.")


def _release_all(attributes: list[Attribute]) -> int:
    count = 0
    for attribute in attributes:
        if attribute.is_valid:
            attribute.release()
            count += 1
    return count
