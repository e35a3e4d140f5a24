"""
Variable expansion for the ``print`` command.

Device variables: ``%id``, ``%addr``, ``%mac``, ``%name``, ``%stat``.
Date/time variables: ``%NOW``, ``%now``, ``%HH``, ``%hh``, ``%mm``, ``%ss``,
``%D``, ``%d``, ``%T``, ``%t``, ``%z``.
"""

import re
from datetime import datetime
from typing import Optional

from .codec import expand_escapes
from .errors import NoDeviceConnectedError
from .model import Device

DEVICE_VARIABLES = ("%mac", "%addr", "%name", "%stat", "%id")

_MAC = re.compile(r"([0-9A-Fa-f]{2}[:-]){5}[0-9A-Fa-f]{2}")


def uses_device_variables(text: str) -> bool:
    return any(var in text for var in DEVICE_VARIABLES)


def _timezone(now: datetime) -> str:
    offset = now.strftime("%z")
    if not offset:
        return "GMT"
    return f"GMT {offset[:3]}:{offset[3:]}"


def _date_time_values(now: datetime) -> list[tuple[str, str]]:
    long_date = now.strftime("%A, %B %d, %Y")
    short_date = now.strftime("%x")
    long_time = now.strftime("%I:%M:%S %p")
    short_time = now.strftime("%I:%M %p")
    zone = _timezone(now)
    return [
        ("%NOW", f"{long_date} {long_time} {zone}"),
        ("%now", f"{short_date} {short_time}"),
        ("%HH", now.strftime("%H")),
        ("%hh", now.strftime("%I")),
        ("%mm", now.strftime("%M")),
        ("%ss", now.strftime("%S")),
        ("%D", long_date),
        ("%d", short_date),
        ("%T", f"{long_time} {zone}"),
        ("%t", short_time),
        ("%z", zone),
    ]


def _device_values(device: Device) -> list[tuple[str, str]]:
    address = device.address
    if _MAC.fullmatch(address):
        mac = address.replace("-", ":").upper()
        addr = str(int(mac.replace(":", ""), 16))
    else:
        # macOS reports a CoreBluetooth UUID instead of a MAC address
        mac = addr = address
    return [
        ("%mac", mac),
        ("%addr", addr),
        ("%name", device.name),
        ("%id", address),
        ("%stat", str(device.is_connected)),
    ]


def expand(text: str, device: Optional[Device], now: Optional[datetime] = None) -> str:
    """Expand escapes and variables in ``print`` text.

    Args:
        text: Raw text typed after ``print``
        device: Selected device, if any
        now: Time to render (defaults to the current local time)

    Returns:
        Expanded text

    Raises:
        NoDeviceConnectedError: If device variables are used without a connected device
    """
    needs_device = uses_device_variables(text)
    if needs_device and (device is None or not device.is_connected):
        raise NoDeviceConnectedError("No BLE device connected.")

    now = (now or datetime.now()).astimezone()
    for variable, value in _date_time_values(now):
        text = text.replace(variable, value)
    # Device values go in last so a device name is never expanded itself
    if needs_device:
        for variable, value in _device_values(device):
            text = text.replace(variable, value)
    return expand_escapes(text)
