"""
BLEConsole - Interactive BLE GATT Console

A Python library and console for exploring Bluetooth Low Energy peripherals:
connect, walk the service/characteristic tree, and read, write or subscribe
to characteristics in a selectable display format.
"""

from .core import __description__, __version__
from .controller import GattController
from .display import DisplayManager
from .session import Session

__all__ = ["GattController", "DisplayManager", "Session", "__version__", "__description__"]
