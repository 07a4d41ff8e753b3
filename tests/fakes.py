from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import replace
from pathlib import Path

from nrf_device_setup.core.config import DEFAULT_CONFIG, LIBUSB_ERROR_PIPE
from nrf_device_setup.core.errors import DfuTransportError, ProbeError, SerialPortError, UsbTransferError
from nrf_device_setup.core.model import (
    DeviceSnapshot,
    DfuUpdate,
    FirmwareVersion,
    ProbeDeviceInfo,
    SerialPortInfo,
    Trait,
    UsbInfo,
    UsbInterface,
)
from nrf_device_setup.transports.lister import PollingDeviceLister

FAST = replace(
    DEFAULT_CONFIG,
    wait_timeout_s=0.3,
    wait_retries=2,
    wait_retry_delay_s=0.01,
    serial_open_backoff_s=0.001,
    poll_interval_s=0.01,
)

TRIGGER = UsbInterface(number=2, interface_class=255, interface_subclass=1, interface_protocol=1)
CDC = UsbInterface(number=0, interface_class=2, interface_subclass=2, interface_protocol=1)

# Four bytes 01 02 03 04 at address 0.
APP_HEX = b":0400000001020304F2\n:00000001FF\n"
# AA BB at 0x0000, CC DD at 0x0004.
GAPPED_HEX = b":02000000AABB99\n:02000400CCDD51\n:00000001FF\n"

DFU_INFO = (
    (0x1000).to_bytes(4, "little")
    + (0x2000).to_bytes(4, "little")
    + (1).to_bytes(2, "little")
    + (2).to_bytes(2, "little")
    + (0xABCD).to_bytes(4, "little")
    + (0x100000).to_bytes(4, "little")
    + (0x1000).to_bytes(4, "little")
)


class FakeUsbDevice:
    def __init__(
        self,
        *,
        serial_number: str = "APP1",
        semver: str = "fw 1.0.0",
        interfaces: Sequence[UsbInterface] = (CDC, TRIGGER),
        dfu_info: bytes = DFU_INFO,
        detach_error_code: int | None = LIBUSB_ERROR_PIPE,
        fail_open: bool = False,
        on_detach: Callable[[], None] | None = None,
    ) -> None:
        self.serial_number = serial_number
        self.semver = semver
        self._interfaces = list(interfaces)
        self.dfu_info = dfu_info
        self.detach_error_code = detach_error_code
        self.fail_open = fail_open
        self.on_detach = on_detach
        self._open = False
        self.open_count = 0
        self.claimed: list[int] = []
        self.released: list[int] = []
        self.detached = False

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        if self.fail_open:
            raise UsbTransferError("open failed", code=-3)
        self._open = True
        self.open_count += 1

    def close(self) -> None:
        self._open = False

    def interfaces(self) -> list[UsbInterface]:
        return list(self._interfaces)

    def serial_number_index(self) -> int:
        return 3

    def get_string_descriptor(self, index: int) -> str:
        return self.serial_number

    def claim_interface(self, number: int) -> None:
        self.claimed.append(number)

    def release_interface(self, number: int) -> None:
        self.released.append(number)

    def control_transfer_in(self, request: int, value: int, index: int, length: int) -> bytes:
        if request == DEFAULT_CONFIG.semver_request:
            return self.semver.encode("latin-1").ljust(length, b"\0")
        if request == DEFAULT_CONFIG.dfu_info_request:
            return self.dfu_info[:length]
        raise UsbTransferError(f"unexpected request {request}", code=-9)

    def control_transfer_out(self, request: int, value: int, index: int, data: bytes) -> None:
        self.detached = True
        if self.on_detach is not None:
            self.on_detach()
        if self.detach_error_code is not None:
            raise UsbTransferError("pipe error", code=self.detach_error_code)


class FakeLister(PollingDeviceLister):
    def __init__(self, devices: dict[str, DeviceSnapshot] | None = None) -> None:
        super().__init__(poll_interval_s=0.01)
        self.devices = dict(devices or {})
        self.enumerations = 0

    def enumerate(self) -> dict[str, DeviceSnapshot]:
        self.enumerations += 1
        return dict(self.devices)

    def show(self, *devices: DeviceSnapshot) -> None:
        self.devices = {device.serial_number: device for device in devices}


class FakeDfu:
    def __init__(
        self,
        *,
        versions: list[FirmwareVersion] | None = None,
        bundle: list[DfuUpdate] | None = None,
        fail: bool = False,
        on_perform: Callable[[list[DfuUpdate]], None] | None = None,
    ) -> None:
        self.versions = versions or []
        self.bundle = bundle or []
        self.fail = fail
        self.on_perform = on_perform
        self.performed: list[tuple[str, list[DfuUpdate]]] = []
        self.loaded: list[Path] = []

    async def perform(self, port: str, updates: Sequence[DfuUpdate]) -> None:
        if self.fail:
            raise DfuTransportError("transfer failed")
        self.performed.append((port, list(updates)))
        if self.on_perform is not None:
            self.on_perform(list(updates))

    async def read_firmware_versions(self, port: str) -> list[FirmwareVersion]:
        return list(self.versions)

    async def load_bundle(self, archive: Path) -> list[DfuUpdate]:
        self.loaded.append(archive)
        return list(self.bundle)


class FakeProbe:
    def __init__(
        self,
        *,
        family: str = "nrf52",
        memory: dict[int, bytes] | None = None,
        fail_program: bool = False,
    ) -> None:
        self.family = family
        self.memory = memory or {}
        self.fail_program = fail_program
        self.sessions: set[str] = set()
        self.programmed: list[tuple[str, object]] = []

    async def open(self, serial_number: str) -> None:
        if serial_number in self.sessions:
            raise ProbeError(f"J-Link {serial_number} is already open")
        self.sessions.add(serial_number)

    async def close(self, serial_number: str) -> None:
        self.sessions.discard(serial_number)

    async def device_info(self, serial_number: str) -> ProbeDeviceInfo:
        self._check(serial_number)
        return ProbeDeviceInfo(family=self.family)

    async def read(self, serial_number: str, address: int, length: int) -> bytes:
        self._check(serial_number)
        return self.memory.get(address, b"\xff" * length)[:length]

    async def erase(self, serial_number: str) -> None:
        self._check(serial_number)

    async def program(self, serial_number: str, firmware: Path | bytes) -> None:
        self._check(serial_number)
        if self.fail_program:
            raise ProbeError("flash write failed")
        self.programmed.append((serial_number, firmware))

    def _check(self, serial_number: str) -> None:
        if serial_number not in self.sessions:
            raise ProbeError(f"J-Link {serial_number} is not open")


class FakeSerialOpener:
    def __init__(self, *, failures: int = 0) -> None:
        self.failures = failures
        self.attempts: list[str] = []

    def verify(self, path: str) -> None:
        self.attempts.append(path)
        if len(self.attempts) <= self.failures:
            raise SerialPortError(f"Could not open serial port {path}")


def bootloader_device(serial_number: str = "BOOT1", port: str | None = "/dev/ttyACM0") -> DeviceSnapshot:
    traits = {Trait.USB}
    serialport = None
    if port is not None:
        traits.add(Trait.SERIALPORT)
        serialport = SerialPortInfo(path=port, vendor_id=0x1915, product_id=0x521F)
    return DeviceSnapshot(
        serial_number=serial_number,
        traits=frozenset(traits),
        usb=UsbInfo(vendor_id=0x1915, product_id=0x521F),
        serialport=serialport,
    )


def app_device(
    usbdev: FakeUsbDevice,
    serial_number: str = "APP1",
    port: str | None = "/dev/ttyACM1",
) -> DeviceSnapshot:
    traits = {Trait.USB}
    serialport = None
    if port is not None:
        traits.add(Trait.SERIALPORT)
        serialport = SerialPortInfo(path=port, vendor_id=0x1915, product_id=0xC00A)
    return DeviceSnapshot(
        serial_number=serial_number,
        traits=frozenset(traits),
        usb=UsbInfo(vendor_id=0x1915, product_id=0xC00A, device=usbdev),
        serialport=serialport,
    )


def jlink_device(serial_number: str = "683000001", port: str | None = "/dev/ttyACM2") -> DeviceSnapshot:
    traits = {Trait.JLINK}
    serialport = None
    if port is not None:
        traits.add(Trait.SERIALPORT)
        serialport = SerialPortInfo(path=port, vendor_id=0x1366, product_id=0x1015)
    return DeviceSnapshot(serial_number=serial_number, traits=frozenset(traits), serialport=serialport)
