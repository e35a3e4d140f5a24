"""Tests for service/characteristic address parsing."""

import pytest

from bleconsole.address import AddressParser
from bleconsole.errors import (
    AttributeNotFoundError,
    MalformedAddressError,
    NoServiceSelectedError,
)
from bleconsole.model import Attribute, Device, DeviceStatus, GattTree

from conftest import BATTERY, RX, TX, UART


@pytest.fixture
def tree() -> GattTree:
    tree = GattTree()
    tree.set_device(Device("AA:BB", "Sensor-A", DeviceStatus.CONNECTED))
    tree.set_services([BATTERY, UART])
    return tree


@pytest.mark.asyncio
async def test_two_part_address_enumerates_service(tree, transport):
    parser = AddressParser(tree, transport)
    target = await parser.parse("Battery/Level")
    assert target.service.name == "Battery"
    assert target.characteristic.name == "Level"
    assert transport.enumerations == [BATTERY.handle]


@pytest.mark.asyncio
async def test_two_part_address_by_index(tree, transport):
    parser = AddressParser(tree, transport)
    target = await parser.parse("#01/#01")
    assert target.characteristic.uuid == TX.uuid


@pytest.mark.asyncio
async def test_two_part_address_reenumerates_even_if_selected(tree, transport):
    tree.select_service("Battery")
    tree.set_characteristics(BATTERY.characteristics)
    parser = AddressParser(tree, transport)
    await parser.parse("Battery/Level")
    await parser.parse("Battery/Level")
    assert transport.enumerations == [BATTERY.handle, BATTERY.handle]


@pytest.mark.asyncio
async def test_bare_characteristic_uses_selected_service(tree, transport):
    tree.select_service("Battery")
    tree.set_characteristics(BATTERY.characteristics)
    parser = AddressParser(tree, transport)
    target = await parser.parse("#00")
    assert target.characteristic is tree.characteristics[0]
    assert transport.enumerations == []


@pytest.mark.asyncio
async def test_bare_characteristic_without_service(tree, transport):
    parser = AddressParser(tree, transport)
    with pytest.raises(NoServiceSelectedError):
        await parser.parse("Level")


@pytest.mark.asyncio
@pytest.mark.parametrize("token", ["Heart/Level", "Battery/Voltage", "Battery/", "#07/#00"])
async def test_unresolved_parts(tree, transport, token):
    parser = AddressParser(tree, transport)
    with pytest.raises(AttributeNotFoundError):
        await parser.parse(token)


@pytest.mark.asyncio
@pytest.mark.parametrize("token", ["a/b/c", "", "   "])
async def test_malformed(tree, transport, token):
    parser = AddressParser(tree, transport)
    with pytest.raises(MalformedAddressError):
        await parser.parse(token)


@pytest.mark.asyncio
async def test_two_part_address_releases_unused_characteristics(tree, transport, monkeypatch):
    released = []
    release = Attribute.release

    def _recording_release(attribute):
        released.append(attribute.uuid)
        release(attribute)

    monkeypatch.setattr(Attribute, "release", _recording_release)
    parser = AddressParser(tree, transport)

    target = await parser.parse("#01/#01")

    assert released == [RX.uuid]
    assert target.characteristic.is_valid
