"""Transport interfaces."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from typing import Protocol

from nrf_device_setup.core.model import (
    DeviceSnapshot,
    DfuUpdate,
    FirmwareVersion,
    ProbeDeviceInfo,
    UsbInterface,
)

DeviceMap = Mapping[str, DeviceSnapshot]


class UsbDevice(Protocol):
    """Blocking handle onto one USB device.

    Failures raise `UsbTransferError` carrying the libusb error code.
    """

    @property
    def is_open(self) -> bool: ...

    def open(self) -> None: ...

    def close(self) -> None: ...

    def interfaces(self) -> Sequence[UsbInterface]: ...

    def serial_number_index(self) -> int: ...

    def get_string_descriptor(self, index: int) -> str: ...

    def claim_interface(self, number: int) -> None: ...

    def release_interface(self, number: int) -> None: ...

    def control_transfer_in(self, request: int, value: int, index: int, length: int) -> bytes: ...

    def control_transfer_out(self, request: int, value: int, index: int, data: bytes) -> None: ...


class Subscription(Protocol):
    def close(self) -> None: ...

    def __enter__(self) -> Subscription: ...

    def __exit__(self, *exc_info: object) -> None: ...


class DeviceLister(Protocol):
    def subscribe(
        self,
        on_change: Callable[[DeviceMap], None],
        on_error: Callable[[Exception], None] | None = None,
    ) -> Subscription:
        """Register for device-set notifications, starting the lister if needed.

        Callbacks run on the event loop. The first notification carries the
        current device map.
        """

    async def reenumerate(self) -> dict[str, DeviceSnapshot]:
        """Return a one-shot snapshot of all attached devices by serial number."""


class DfuProtocol(Protocol):
    async def perform(self, port: str, updates: Sequence[DfuUpdate]) -> None:
        """Transfer the (init packet, image) pairs in order as one DFU session."""

    async def read_firmware_versions(self, port: str) -> list[FirmwareVersion]: ...

    async def load_bundle(self, archive: Path) -> list[DfuUpdate]: ...


class DebugProbe(Protocol):
    async def open(self, serial_number: str) -> None: ...

    async def close(self, serial_number: str) -> None: ...

    async def device_info(self, serial_number: str) -> ProbeDeviceInfo: ...

    async def read(self, serial_number: str, address: int, length: int) -> bytes: ...

    async def erase(self, serial_number: str) -> None: ...

    async def program(self, serial_number: str, firmware: Path | bytes) -> None: ...


class SerialPortOpener(Protocol):
    def verify(self, path: str) -> None:
        """Open and close the port, raising `SerialPortError` if that fails."""
