"""Push-based enumeration of attached Nordic and SEGGER devices."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field

import usb.core
import usb.util

from nrf_device_setup.core.errors import DeviceSetupError, EnumerationError, ProbeError, UsbTransferError
from nrf_device_setup.core.model import DeviceSnapshot, SerialPortInfo, Trait, UsbInfo
from nrf_device_setup.transports.base import DeviceMap
from nrf_device_setup.transports.jlink import list_jlink_serial_numbers
from nrf_device_setup.transports.serialport import list_serial_ports
from nrf_device_setup.transports.usb import PyUsbDevice

NORDIC_VENDOR_ID = 0x1915
SEGGER_VENDOR_ID = 0x1366
LOGGER = logging.getLogger(__name__)


class ListenerSubscription:
    """Handle returned by `subscribe`; closing it deregisters the listener."""

    def __init__(
        self,
        lister: PollingDeviceLister,
        on_change: Callable[[DeviceMap], None],
        on_error: Callable[[Exception], None] | None,
    ) -> None:
        self._lister = lister
        self._on_change = on_change
        self._on_error = on_error
        self.closed = False

    def notify(self, devices: DeviceMap) -> None:
        if not self.closed:
            self._on_change(devices)

    def fail(self, exc: Exception) -> None:
        if not self.closed and self._on_error is not None:
            self._on_error(exc)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._lister._unsubscribe(self)

    def __enter__(self) -> ListenerSubscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class PollingDeviceLister(ABC):
    """Polls `enumerate()` while anyone is subscribed and pushes changed device maps.

    The poll task runs on the loop of the first subscriber and stops when
    the last subscription closes.
    """

    def __init__(self, *, poll_interval_s: float = 0.5) -> None:
        self.poll_interval_s = poll_interval_s
        self._subscriptions: list[ListenerSubscription] = []
        self._task: asyncio.Task[None] | None = None
        self._devices: dict[str, DeviceSnapshot] | None = None

    @abstractmethod
    def enumerate(self) -> dict[str, DeviceSnapshot]:
        """Blocking scan of attached devices, keyed by serial number."""

    @property
    def running(self) -> bool:
        return self._task is not None

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def reenumerate(self) -> dict[str, DeviceSnapshot]:
        return await asyncio.to_thread(self.enumerate)

    def subscribe(
        self,
        on_change: Callable[[DeviceMap], None],
        on_error: Callable[[Exception], None] | None = None,
    ) -> ListenerSubscription:
        subscription = ListenerSubscription(self, on_change, on_error)
        self._subscriptions.append(subscription)
        if self._task is None:
            self._devices = None
            self._task = asyncio.get_running_loop().create_task(self._poll())
        elif self._devices is not None:
            asyncio.get_running_loop().call_soon(subscription.notify, self._devices)
        return subscription

    def _unsubscribe(self, subscription: ListenerSubscription) -> None:
        self._subscriptions.remove(subscription)
        if not self._subscriptions and self._task is not None:
            self._task.cancel()
            self._task = None
            self._devices = None

    def _fail(self, exc: DeviceSetupError) -> None:
        LOGGER.debug("Device enumeration failed: %s", exc)
        for subscription in list(self._subscriptions):
            subscription.fail(exc)

    async def _poll(self) -> None:
        while True:
            try:
                devices = await self.reenumerate()
            except DeviceSetupError as exc:
                self._fail(exc)
            except Exception as exc:
                error = EnumerationError(f"Device enumeration failed: {exc}")
                error.__cause__ = exc
                self._fail(error)
            else:
                if devices != self._devices:
                    self._devices = devices
                    for subscription in list(self._subscriptions):
                        subscription.notify(devices)
            await asyncio.sleep(self.poll_interval_s)


@dataclass
class _Found:
    usb: UsbInfo | None = None
    serialport: SerialPortInfo | None = None
    traits: set[Trait] = field(default_factory=set)


def _normalize_serial(serial_number: str, vendor_id: int | None) -> str:
    # J-Link serial strings are zero-padded over USB but not in nrfjprog.
    if vendor_id == SEGGER_VENDOR_ID:
        return serial_number.lstrip("0") or serial_number
    return serial_number


class HostDeviceLister(PollingDeviceLister):
    def __init__(
        self,
        *,
        poll_interval_s: float = 0.5,
        vendor_ids: tuple[int, ...] = (NORDIC_VENDOR_ID, SEGGER_VENDOR_ID),
        include_jlink: bool = True,
    ) -> None:
        super().__init__(poll_interval_s=poll_interval_s)
        self.vendor_ids = vendor_ids
        self.include_jlink = include_jlink

    def enumerate(self) -> dict[str, DeviceSnapshot]:
        found: dict[str, _Found] = {}

        for device in self._usb_devices():
            try:
                serial_number = usb.util.get_string(device, device.iSerialNumber)
            except (usb.core.USBError, ValueError) as exc:
                LOGGER.debug("Skipping USB device %04x:%04x: %s", device.idVendor, device.idProduct, exc)
                continue
            if not serial_number:
                continue
            entry = found.setdefault(_normalize_serial(serial_number, device.idVendor), _Found())
            entry.usb = UsbInfo(
                vendor_id=device.idVendor,
                product_id=device.idProduct,
                device=PyUsbDevice(device),
            )
            entry.traits.add(Trait.USB)

        for port in list_serial_ports():
            if port.vid not in self.vendor_ids:
                continue
            entry = found.setdefault(_normalize_serial(port.serial_number, port.vid), _Found())
            entry.serialport = SerialPortInfo(
                path=port.device,
                vendor_id=port.vid,
                product_id=port.pid,
                manufacturer=port.manufacturer,
            )
            entry.traits.add(Trait.SERIALPORT)

        if self.include_jlink:
            try:
                jlinks = list_jlink_serial_numbers()
            except ProbeError as exc:
                LOGGER.debug("Skipping J-Link enumeration: %s", exc)
                jlinks = []
            for serial_number in jlinks:
                found.setdefault(serial_number, _Found()).traits.add(Trait.JLINK)

        return {
            serial_number: DeviceSnapshot(
                serial_number=serial_number,
                traits=frozenset(entry.traits),
                usb=entry.usb,
                serialport=entry.serialport,
            )
            for serial_number, entry in found.items()
        }

    def _usb_devices(self) -> list[usb.core.Device]:
        try:
            return list(
                usb.core.find(find_all=True, custom_match=lambda d: d.idVendor in self.vendor_ids)
            )
        except usb.core.NoBackendError as exc:
            raise UsbTransferError(f"No libusb backend available: {exc}") from exc
        except usb.core.USBError as exc:
            raise UsbTransferError(f"USB enumeration failed: {exc}", code=exc.backend_error_code) from exc
