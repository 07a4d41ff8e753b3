"""Core data models used across the resolver, orchestrators, and CLI."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from nrf_device_setup.transports.base import UsbDevice

FirmwareSource = Union[bytes, Path]


class Trait(str, Enum):
    USB = "usb"
    SERIALPORT = "serialport"
    JLINK = "jlink"


class SetupMode(str, Enum):
    READY = "ready"
    NEEDS_DFU = "dfu"
    NEEDS_JLINK = "jlink"
    IMPOSSIBLE = "impossible"


class ImageType(int, Enum):
    SOFTDEVICE = 0x00
    APPLICATION = 0x01
    BOOTLOADER = 0x02
    UNKNOWN = 0xFF


@dataclass(frozen=True)
class UsbInterface:
    number: int
    interface_class: int
    interface_subclass: int
    interface_protocol: int


@dataclass(frozen=True)
class UsbInfo:
    vendor_id: int
    product_id: int
    manufacturer: str | None = None
    product: str | None = None
    device: UsbDevice | None = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class SerialPortInfo:
    path: str
    vendor_id: int | None = None
    product_id: int | None = None
    manufacturer: str | None = None


@dataclass(frozen=True)
class DeviceSnapshot:
    """One physical device as seen by a single enumeration pass."""

    serial_number: str
    traits: frozenset[Trait]
    usb: UsbInfo | None = None
    serialport: SerialPortInfo | None = None

    def has(self, *traits: Trait) -> bool:
        return all(trait in self.traits for trait in traits)


@dataclass(frozen=True)
class ProbeResult:
    in_bootloader: bool
    has_trigger_interface: bool
    trigger_interface: int


@dataclass(frozen=True)
class DfuInfo:
    address: int
    firmware_size: int
    version_major: int
    version_minor: int
    firmware_id: int
    flash_size: int
    flash_page_size: int


@dataclass(frozen=True)
class DfuParams:
    hw_version: int = 52
    fw_version: int = 4
    sd_req: tuple[int, ...] = (0xFE,)
    sd_id: tuple[int, ...] = ()


@dataclass(frozen=True)
class DfuFirmware:
    application: FirmwareSource
    semver: str | None = None
    softdevice: FirmwareSource | None = None
    params: DfuParams = DfuParams()


@dataclass(frozen=True)
class FirmwareValidator:
    """Checks the bytes read from the firmware id address."""

    length: int
    validator: Callable[[bytes], bool]


@dataclass(frozen=True)
class JprogFirmware:
    fw: FirmwareSource
    fw_version: bytes | str | FirmwareValidator
    fw_id_address: int

    @property
    def id_length(self) -> int:
        if isinstance(self.fw_version, FirmwareValidator):
            return self.fw_version.length
        if isinstance(self.fw_version, str):
            return len(self.fw_version.encode("utf-8"))
        return len(self.fw_version)


@dataclass(frozen=True)
class BootloaderUpdate:
    bundle: Path
    min_version: int | None = None


@dataclass(frozen=True)
class FirmwareSpec:
    dfu: dict[str, DfuFirmware] = field(default_factory=dict)
    jprog: dict[str, JprogFirmware] = field(default_factory=dict)
    need_serialport: bool = False
    bootloader: BootloaderUpdate | None = None


@dataclass(frozen=True)
class Profile:
    id: str
    name: str
    spec: FirmwareSpec


@dataclass(frozen=True)
class FirmwareVersion:
    image_type: ImageType
    version: int
    address: int = 0
    length: int = 0


@dataclass(frozen=True)
class DfuUpdate:
    init_packet: bytes
    firmware_image: bytes
    # Package manifest key, such as "softdevice_bootloader", plus any extra manifest fields.
    key: str = "application"
    manifest: dict[str, object] = field(default_factory=dict, hash=False)


@dataclass(frozen=True)
class ProbeDeviceInfo:
    family: str
    device_type: str | None = None


@dataclass(frozen=True)
class SetupResult:
    device: DeviceSnapshot
    was_programmed: bool
    details: str | None = None


@dataclass(frozen=True)
class TriggerReport:
    """What an application-mode device reports over its DFU trigger interface."""

    serial_number: str
    semver: str
    dfu_info: DfuInfo
    predicted_serial_number: str
