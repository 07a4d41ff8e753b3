"""Stable public API for building tooling on top of nrf-device-setup.

This module is the supported integration surface for third-party callers.
Every operation has a blocking form, which runs its own event loop, and an
`*_async` twin for callers that already run one.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

from nrf_device_setup.core.config import DEFAULT_CONFIG, SetupConfig
from nrf_device_setup.core.errors import (
    DetachFailedError,
    DeviceNotFoundError,
    DeviceSetupError,
    DfuFailedError,
    DfuTransportError,
    EnumerationError,
    FirmwareImageError,
    MissingSerialPortError,
    ProbeError,
    ProfileLoadError,
    ProfileValidationError,
    ProgrammingFailedError,
    SerialPortError,
    SetupCancelledError,
    TransportError,
    UnsupportedFamilyError,
    UsbTransferError,
)
from nrf_device_setup.core.interaction import Interaction
from nrf_device_setup.core.model import (
    BootloaderUpdate,
    DeviceSnapshot,
    DfuFirmware,
    DfuParams,
    FirmwareSpec,
    FirmwareValidator,
    JprogFirmware,
    Profile,
    SetupMode,
    SetupResult,
    Trait,
    TriggerReport,
)
from nrf_device_setup.core.profiles import load_profile_file, load_profiles
from nrf_device_setup.core.service import DeviceSetup
from nrf_device_setup.transports.base import DebugProbe, DeviceLister, DfuProtocol, SerialPortOpener

__all__ = [
    "DeviceSetupError",
    "DeviceNotFoundError",
    "DetachFailedError",
    "MissingSerialPortError",
    "UnsupportedFamilyError",
    "DfuFailedError",
    "ProgrammingFailedError",
    "SetupCancelledError",
    "FirmwareImageError",
    "ProfileLoadError",
    "ProfileValidationError",
    "TransportError",
    "UsbTransferError",
    "SerialPortError",
    "ProbeError",
    "DfuTransportError",
    "EnumerationError",
    "BootloaderUpdate",
    "DeviceSnapshot",
    "DfuFirmware",
    "DfuParams",
    "FirmwareSpec",
    "FirmwareValidator",
    "JprogFirmware",
    "Profile",
    "SetupMode",
    "SetupResult",
    "Trait",
    "TriggerReport",
    "Interaction",
    "SetupConfig",
    "DEFAULT_CONFIG",
    "Client",
]


class Client:
    """Public client wrapping device listing, mode resolution and preparation.

    Collaborators default to the host adapters (pyusb, pyserial, nrfutil,
    pynrfjprog). Confirmation and choice hooks go in `interaction`.
    """

    def __init__(
        self,
        *,
        lister: DeviceLister | None = None,
        dfu: DfuProtocol | None = None,
        probe: DebugProbe | None = None,
        serial: SerialPortOpener | None = None,
        interaction: Interaction | None = None,
        config: SetupConfig = DEFAULT_CONFIG,
        platform: str | None = None,
    ) -> None:
        self._service = DeviceSetup(
            lister=lister,
            dfu=dfu,
            probe=probe,
            serial=serial,
            interaction=interaction,
            config=config,
            platform=platform,
        )
        self._load_warnings: tuple[str, ...] = ()

    @property
    def load_warnings(self) -> tuple[str, ...]:
        return self._load_warnings

    def list_profiles(self) -> list[Profile]:
        loaded = load_profiles()
        self._load_warnings = loaded.warnings
        return [loaded.profiles[key] for key in sorted(loaded.profiles)]

    def get_profile(self, profile: str) -> Profile:
        """Look up a profile by id, or load it from a YAML file path."""
        if profile.endswith((".yml", ".yaml")):
            return load_profile_file(Path(profile))
        profiles = {p.id: p for p in self.list_profiles()}
        if profile not in profiles:
            raise ProfileLoadError(f"Unknown profile '{profile}'")
        return profiles[profile]

    async def list_devices_async(self) -> list[DeviceSnapshot]:
        return await self._service.list_devices()

    def list_devices(self) -> list[DeviceSnapshot]:
        return asyncio.run(self.list_devices_async())

    async def device_by_serial_number_async(self, serial_number: str) -> DeviceSnapshot:
        return await self._service.device_by_serial_number(serial_number)

    def device_by_serial_number(self, serial_number: str) -> DeviceSnapshot:
        return asyncio.run(self.device_by_serial_number_async(serial_number))

    async def resolve_mode_async(self, device: DeviceSnapshot, spec: FirmwareSpec) -> SetupMode:
        return await self._service.resolve_mode(device, spec)

    def resolve_mode(self, device: DeviceSnapshot, spec: FirmwareSpec) -> SetupMode:
        return asyncio.run(self.resolve_mode_async(device, spec))

    async def resolve_mode_for_serial_number_async(
        self, serial_number: str, spec: FirmwareSpec
    ) -> SetupMode:
        return await self._service.resolve_mode_for_serial_number(serial_number, spec)

    def resolve_mode_for_serial_number(self, serial_number: str, spec: FirmwareSpec) -> SetupMode:
        return asyncio.run(self.resolve_mode_for_serial_number_async(serial_number, spec))

    async def prepare_async(self, device: DeviceSnapshot, spec: FirmwareSpec) -> SetupResult:
        return await self._service.prepare(device, spec)

    def prepare(self, device: DeviceSnapshot, spec: FirmwareSpec) -> SetupResult:
        return asyncio.run(self.prepare_async(device, spec))

    async def prepare_serial_number_async(self, serial_number: str, spec: FirmwareSpec) -> SetupResult:
        return await self._service.prepare_serial_number(serial_number, spec)

    def prepare_serial_number(self, serial_number: str, spec: FirmwareSpec) -> SetupResult:
        return asyncio.run(self.prepare_serial_number_async(serial_number, spec))

    async def ensure_bootloader_mode_async(self, device: DeviceSnapshot) -> DeviceSnapshot:
        return await self._service.ensure_bootloader_mode(device)

    def ensure_bootloader_mode(self, device: DeviceSnapshot) -> DeviceSnapshot:
        return asyncio.run(self.ensure_bootloader_mode_async(device))

    async def read_trigger_report_async(self, device: DeviceSnapshot) -> TriggerReport:
        return await self._service.read_trigger_report(device)

    def read_trigger_report(self, device: DeviceSnapshot) -> TriggerReport:
        return asyncio.run(self.read_trigger_report_async(device))
