"""
Operation engine for the BLE console.

Every command-level operation resolves its target, talks to the transport,
reports the outcome through the display and returns a number of errors
(0 = success) instead of raising. Notifications arrive on the transport's
callback path and are handed to the command context through a queue.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncGenerator, Optional

from .address import AddressParser
from .codec import DataFormat, decode, encode, expand_escapes
from .core import MEANINGFUL_LENGTH, RETRY_INTERVAL, RETRY_TIMEOUT_EXIT_CODE
from .display import DisplayManager
from .errors import (
    AlreadySubscribedError,
    BleConsoleError,
    FormatError,
    NoDeviceConnectedError,
    NotSubscribedError,
    TransportFailure,
)
from .model import Device, DeviceStatus, ResolvedTarget
from .resolver import find
from .session import Session, WaitResult
from .transport import DeviceWatcher, GattTransport

logger = logging.getLogger(__name__)


class ReadOutcome(Enum):
    SUCCESS = "success"
    TIMEOUT = "timeout"
    FAILED = "failed"


@dataclass(frozen=True)
class RetryReadResult:
    """Outcome of the bounded "read until meaningful" protocol."""

    outcome: ReadOutcome
    text: str = ""

    @property
    def success(self) -> bool:
        return self.outcome is ReadOutcome.SUCCESS

    @property
    def exit_code(self) -> int:
        if self.outcome is ReadOutcome.SUCCESS:
            return 0
        if self.outcome is ReadOutcome.TIMEOUT:
            return RETRY_TIMEOUT_EXIT_CODE
        return 1


@dataclass
class Subscription:
    key: Any
    name: str
    uuid: str
    handle: Any
    primed: bool = False


@dataclass(frozen=True)
class Notification:
    key: Any
    data: bytes


class GattController:
    """Runs read/write/subscribe operations against the connected device."""

    def __init__(
        self,
        transport: GattTransport,
        session: Session,
        display: DisplayManager,
        watcher: Optional[DeviceWatcher] = None,
        retry_interval: float = RETRY_INTERVAL,
    ) -> None:
        """Initialize the engine.

        Args:
            transport: GATT transport collaborator
            session: Session state shared with the command loop
            display: Output sink for values and messages
            watcher: Discovery watcher used to resolve devices for "open"
            retry_interval: Pause between retry-read attempts in seconds
        """
        self.transport = transport
        self.session = session
        self.display = display
        self.watcher = watcher
        self.retry_interval = retry_interval
        self.parser = AddressParser(session.tree, transport)

        self._subscriptions: dict[Any, Subscription] = {}
        self._notify_queue: asyncio.Queue = asyncio.Queue(maxsize=100)
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def tree(self):
        return self.session.tree

    @property
    def data_format(self) -> DataFormat:
        return self.session.data_format

    @property
    def is_connected(self) -> bool:
        device = self.tree.device
        return (
            device is not None and device.is_connected and self.transport.is_connected
        )

    @property
    def subscriptions(self) -> list[str]:
        """Names of subscribed characteristics in subscription order."""
        return [sub.name for sub in self._subscriptions.values()]

    def refresh_status(self) -> bool:
        """Pick up a link drop reported by the transport.

        The device stays selected with status DISCONNECTED; every service and
        characteristic handle is released and the subscriptions are dropped.

        Returns:
            True if a drop was observed by this call
        """
        device = self.tree.device
        if device is None or not device.is_connected or self.transport.is_connected:
            return False

        logger.info(f"Device {device.name} is no longer connected")
        device.status = DeviceStatus.DISCONNECTED
        self.tree.invalidate()
        if self._subscriptions:
            logger.info(f"Dropped {len(self._subscriptions)} subscriptions")
            self._subscriptions.clear()
        return True

    # ========== Connection ==========

    async def open_device(self, token: str) -> int:
        """Connect to a discovered device by name or ``#NN`` and list its services.

        Args:
            token: Device name or index into the sorted device list

        Returns:
            Number of errors
        """
        token = token.strip()
        if not token:
            self.display.print_error("Device name can not be empty.")
            return 1

        devices = self.watcher.named_devices() if self.watcher else []
        info = find(devices, token)
        if info is None:
            self.display.print_error(f"Device {token} not found.")
            return 1

        await self.close_device()

        device = Device(address=info.address, name=info.name, status=DeviceStatus.CONNECTING)
        self.tree.set_device(device)
        self.display.print_info(f"Connecting to {info.name}.")
        try:
            await self.transport.connect(info, self.session.timeout)
            device.status = DeviceStatus.CONNECTED
            services = self.tree.set_services(await self.transport.get_services())
        except BleConsoleError as e:
            logger.error(f"Open {info.name} failed: {e}")
            self.display.print_error(f"Device {token} is unreachable.")
            await self.transport.disconnect()
            self.tree.clear()
            return 1

        self.session.read_log.configure(info.name)
        self.display.print_info(f"Found {len(services)} services:")
        if self.display.interactive:
            self.display.print_services(services)
        return 0

    async def close_device(self) -> int:
        """Unsubscribe everything, release the GATT tree and disconnect."""
        if self._subscriptions:
            await self.unsubscribe("all")

        device = self.tree.device
        if device is None:
            return 0

        await self.transport.disconnect()
        device.status = DeviceStatus.DISCONNECTED
        self.tree.clear()
        self.display.print_info(f"Device {device.name} is disconnected.")
        return 0

    async def set_service(self, token: str) -> int:
        """Select a service and enumerate its characteristics.

        Args:
            token: Service name or ``#NN``

        Returns:
            Number of errors
        """
        if not self.is_connected:
            self.display.print_error("Nothing to use, no BLE device connected.")
            return 1
        if not token.strip():
            self.display.print_error("Invalid service name or number")
            return 1

        try:
            service = self.tree.find_service(token)
            handles = await self.transport.get_characteristics(service.handle)
        except TransportFailure as e:
            self.display.print_error(f"Restricted service. Can't read characteristics: {e.status}")
            return 1
        except BleConsoleError as e:
            self.display.print_error(str(e))
            return 1

        self.tree.select_service(service.name)
        characteristics = self.tree.set_characteristics(handles)
        self.display.print_info(f"Selected service {service.name}.")
        if not characteristics:
            self.display.print_error("Service doesn't have any characteristic.")
            return 1
        if self.display.interactive:
            self.display.print_characteristics(characteristics)
        return 0

    # ========== Operations ==========

    async def read(self, token: str) -> int:
        """Read a characteristic once and print its value.

        Returns:
            Number of errors
        """
        target = await self._resolve(token)
        if target is None:
            return 1

        try:
            data = await self.transport.read(target.characteristic.handle)
        except TransportFailure as e:
            self.display.print_error(f"Read failed: {e.status}")
            return 1

        self.display.print_value(decode(data, self.data_format))
        return 0

    async def write(self, args: str) -> int:
        """Write a payload to a characteristic.

        Args:
            args: ``<target> <payload>``; the payload is everything after the
                first space and is parsed in the active display format

        Returns:
            Number of errors
        """
        if not self.is_connected:
            self.display.print_error("No BLE device connected.")
            return 1

        token, _, payload = args.lstrip().partition(" ")
        if not token or not payload:
            self.display.print_error(
                "Insufficient data for write, please provide characteristic name and data."
            )
            return 1

        if self.data_format in (DataFormat.UTF8, DataFormat.ASCII):
            payload = expand_escapes(payload)
        try:
            buffer = encode(payload, self.data_format)
        except FormatError as e:
            self.display.print_error(f"Incorrect data format: {e}")
            return 1

        target = await self._resolve(token)
        if target is None:
            return 1

        try:
            await self.transport.write(target.characteristic.handle, buffer)
        except TransportFailure as e:
            self.display.print_error(f"Write failed: {e.status}")
            return 1
        logger.debug(f"Wrote {len(buffer)} bytes to {target.characteristic.name}")
        return 0

    async def retry_read(self, retries: int, token: str) -> RetryReadResult:
        """Read until the rendered value is meaningful or retries run out.

        One initial read is followed by up to ``retries`` more, each after
        ``retry_interval``. A meaningful final value is appended to the
        session's read log.

        Args:
            retries: Additional read attempts after the first one
            token: Characteristic address

        Returns:
            RetryReadResult with SUCCESS, TIMEOUT, or FAILED (unresolvable target)
        """
        target = await self._resolve(token)
        if target is None:
            return RetryReadResult(ReadOutcome.FAILED)

        handle = target.characteristic.handle
        data, status = await self._try_read(handle)
        for attempt in range(max(retries, 0)):
            if data is not None and self._is_meaningful(data):
                break
            self.display.print_info(f"Read try {attempt}")
            await asyncio.sleep(self.retry_interval)
            data, status = await self._try_read(handle)

        if data is None:
            self.display.print_error(f"Read failed: {status}")
            return RetryReadResult(ReadOutcome.TIMEOUT)

        text = decode(data, self.data_format)
        self.display.print_value(text)
        if len(text) > MEANINGFUL_LENGTH:
            path = self.session.read_log.append(text)
            logger.debug(f"Logged value of {target.characteristic.name} to {path}")
            return RetryReadResult(ReadOutcome.SUCCESS, text)
        return RetryReadResult(ReadOutcome.TIMEOUT, text)

    async def write_retry_repeat(
        self, repeats: int, retries: int, token: str, payload: str
    ) -> int:
        """Write then retry-read, repeating the cycle until a meaningful read.

        Both a timed-out and a failed retry-read (e.g. the target could not be
        resolved) start another cycle; failed cycles are spaced by
        ``retry_interval``.

        Args:
            repeats: Maximum number of cycles, 0 for no limit
            retries: Retries for each retry-read
            token: Characteristic address
            payload: Text to write in the active display format

        Returns:
            Write errors of all cycles plus the exit code of the last retry-read
        """
        errors = 0
        remaining = repeats
        cycle = 0
        while True:
            cycle += 1
            logger.debug(f"wrrr cycle {cycle}")
            errors += await self.write(f"{token} {payload}")
            result = await self.retry_read(retries, token)
            if result.success:
                break
            if repeats > 0:
                remaining -= 1
                if remaining <= 0:
                    break
            if result.outcome is ReadOutcome.FAILED:
                await asyncio.sleep(self.retry_interval)
        return errors + result.exit_code

    async def subscribe(self, token: str) -> int:
        """Register for change notifications of a characteristic.

        Returns:
            Number of errors
        """
        target = await self._resolve(token)
        if target is None:
            return 1

        characteristic = target.characteristic
        key = characteristic.key
        try:
            if key in self._subscriptions:
                raise AlreadySubscribedError(
                    f"Already subscribed to characteristic {characteristic.name}"
                )
            self._loop = asyncio.get_running_loop()
            # the priming value may arrive before start_notify returns
            self._subscriptions[key] = Subscription(
                key=key,
                name=characteristic.name,
                uuid=characteristic.uuid,
                handle=characteristic.handle,
            )
            await self.transport.start_notify(characteristic.handle, self._on_value_changed)
        except TransportFailure as e:
            del self._subscriptions[key]
            self.display.print_error(
                f"Can't subscribe to characteristic {characteristic.name}: {e.status}"
            )
            return 1
        except AlreadySubscribedError as e:
            self.display.print_error(str(e))
            return 1

        logger.info(f"Subscribed to {characteristic.name}")
        return 0

    async def unsubscribe(self, token: str) -> int:
        """Stop notifications for one characteristic or for ``all``.

        Returns:
            Number of errors
        """
        token = token.strip()
        if not self._subscriptions:
            self.display.print_info("No subscription for value changes found.")
            return 0
        if not token:
            self.display.print_error(
                "Please specify characteristic name or # (for single subscription) "
                "or type \"unsub all\" to remove all subscriptions"
            )
            return 1

        if token.replace("/", "").lower() == "all":
            return await self._unsubscribe_all()

        target = await self._resolve(token)
        if target is None:
            return 1

        characteristic = target.characteristic
        try:
            subscription = self._subscriptions.get(characteristic.key)
            if subscription is None:
                raise NotSubscribedError(
                    f"Not subscribed to characteristic {characteristic.name}"
                )
            await self.transport.stop_notify(subscription.handle)
        except TransportFailure as e:
            self.display.print_error(
                f"Can't unsubscribe from characteristic {characteristic.name}: {e.status}"
            )
            return 1
        except NotSubscribedError as e:
            self.display.print_error(str(e))
            return 1

        del self._subscriptions[characteristic.key]
        logger.info(f"Unsubscribed from {characteristic.name}")
        return 0

    async def _unsubscribe_all(self) -> int:
        errors = 0
        subscriptions = list(self._subscriptions.values())
        self._subscriptions.clear()
        for subscription in subscriptions:
            try:
                await self.transport.stop_notify(subscription.handle)
            except BleConsoleError as e:
                logger.warning(f"Failed to unsubscribe from {subscription.name}: {e}")
                self.display.print_error(
                    f"Can't unsubscribe from characteristic {subscription.name}"
                )
                errors += 1
        return errors

    async def wait_for_notification(self) -> WaitResult:
        """Block until the next delivered notification or the session timeout."""
        return await self.session.waiter.wait(self.session.timeout)

    async def delay(self, milliseconds: int) -> WaitResult:
        return await self.session.waiter.wait(milliseconds / 1000)

    # ========== Notifications ==========

    async def notifications(self) -> AsyncGenerator[tuple[str, str], None]:
        """Async generator that yields delivered notifications.

        The first notification after each subscription is discarded. Each
        delivered one releases an outstanding "wait".

        Yields:
            (characteristic uuid, rendered value) tuples
        """
        while True:
            notification = await self._notify_queue.get()
            delivered = self._deliver(notification)
            if delivered is not None:
                yield delivered

    def _deliver(self, notification: Notification) -> Optional[tuple[str, str]]:
        subscription = self._subscriptions.get(notification.key)
        if subscription is None:
            logger.debug("Dropped notification for a removed subscription")
            return None
        if not subscription.primed:
            subscription.primed = True
            logger.debug(f"Discarded priming notification from {subscription.name}")
            return None

        text = decode(notification.data, self.data_format)
        self.session.waiter.release()
        return subscription.uuid, text

    def _on_value_changed(self, handle: Any, data: bytes) -> None:
        """Transport callback; may run outside the command context."""
        key = getattr(handle, "handle", id(handle))
        notification = Notification(key=key, data=bytes(data))
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._enqueue, notification)

    def _enqueue(self, notification: Notification) -> None:
        try:
            self._notify_queue.put_nowait(notification)
        except asyncio.QueueFull:
            logger.warning("Notification queue full, dropping value")

    # ========== Helpers ==========

    async def _resolve(self, token: str) -> Optional[ResolvedTarget]:
        """Resolve a characteristic address, reporting any failure."""
        try:
            if not self.is_connected:
                raise NoDeviceConnectedError("No BLE device connected.")
            target = await self.parser.parse(token)
        except TransportFailure as e:
            self.display.print_error(f"Restricted service. Can't read characteristics: {e.status}")
            return None
        except BleConsoleError as e:
            self.display.print_error(str(e))
            return None

        if any(c is target.characteristic for c in self.tree.characteristics):
            self.tree.selected_characteristic = target.characteristic
        return target

    async def _try_read(self, handle: Any) -> tuple[Optional[bytes], Optional[str]]:
        try:
            return await self.transport.read(handle), None
        except TransportFailure as e:
            logger.debug(f"Read attempt failed: {e.status}")
            return None, e.status

    def _is_meaningful(self, data: bytes) -> bool:
        return len(decode(data, self.data_format)) > MEANINGFUL_LENGTH
