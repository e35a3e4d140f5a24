"""Tests for print-command variable expansion."""

from datetime import datetime

import pytest

from bleconsole.errors import NoDeviceConnectedError
from bleconsole.model import Device, DeviceStatus
from bleconsole.variables import expand, uses_device_variables

NOW = datetime(2024, 1, 2, 15, 4, 5)


@pytest.fixture
def device() -> Device:
    return Device("aa:bb:cc:dd:ee:01", "Sensor-A", DeviceStatus.CONNECTED)


def test_time_fields():
    assert expand("%HH:%mm:%ss", None, NOW) == "15:04:05"
    assert expand("%hh", None, NOW) == "03"


def test_time_zone_is_rendered_as_gmt_offset():
    assert expand("%z", None, NOW).startswith("GMT")


def test_device_fields(device):
    assert expand("%name %id", device, NOW) == "Sensor-A aa:bb:cc:dd:ee:01"
    assert expand("%mac", device, NOW) == "AA:BB:CC:DD:EE:01"
    assert expand("%addr", device, NOW) == str(0xAABBCCDDEE01)
    assert expand("%stat", device, NOW) == "True"


def test_non_mac_address_is_passed_through():
    device = Device("5C2F1D3A-0000-4000-8000-000000000000", "Mac", DeviceStatus.CONNECTED)
    assert expand("%mac", device, NOW) == device.address


def test_device_name_is_not_expanded(device):
    device.name = "%HH"
    assert expand("%name", device, NOW) == "%HH"


def test_device_variables_need_connection(device):
    with pytest.raises(NoDeviceConnectedError):
        expand("%name", None, NOW)
    device.status = DeviceStatus.DISCONNECTED
    with pytest.raises(NoDeviceConnectedError):
        expand("%mac", device, NOW)


def test_plain_text_and_escapes():
    assert expand("a\\tb", None, NOW) == "a\tb"
    assert not uses_device_variables("%HH %now")
