"""Service layer used by the public client and the CLI."""

from __future__ import annotations

import asyncio
import logging

from nrf_device_setup.core.config import DEFAULT_CONFIG, SetupConfig
from nrf_device_setup.core.dfu import DfuOrchestrator
from nrf_device_setup.core.errors import DfuFailedError, UsbTransferError
from nrf_device_setup.core.interaction import Interaction
from nrf_device_setup.core.jlink import JlinkOrchestrator
from nrf_device_setup.core.model import DeviceSnapshot, FirmwareSpec, SetupMode, SetupResult, TriggerReport
from nrf_device_setup.core.probe import classify, predict_serial_number, read_dfu_info, read_sem_version
from nrf_device_setup.core.resolver import resolve_mode
from nrf_device_setup.core.waiter import device_by_serial_number
from nrf_device_setup.transports.base import DebugProbe, DeviceLister, DfuProtocol, SerialPortOpener
from nrf_device_setup.transports.dfu import NrfutilDfu
from nrf_device_setup.transports.jlink import NrfjprogProbe
from nrf_device_setup.transports.lister import HostDeviceLister
from nrf_device_setup.transports.serialport import PySerialOpener

LOGGER = logging.getLogger(__name__)


class DeviceSetup:
    """Prepare one device at a time for a firmware spec.

    Collaborators default to the host adapters; pass fakes to test or to
    drive other hardware.
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
        lister = lister or HostDeviceLister(poll_interval_s=config.poll_interval_s)
        dfu = dfu or NrfutilDfu(baud_rate=config.dfu_baud_rate)
        serial = serial or PySerialOpener()

        self.lister = lister
        self.probe = probe or NrfjprogProbe()
        self.config = config
        self.interaction = interaction or Interaction()
        self.dfu = DfuOrchestrator(
            lister, dfu, serial, self.interaction, config, platform=platform
        )
        self.jlink = JlinkOrchestrator(lister, self.probe, serial, self.interaction, config)

    async def list_devices(self) -> list[DeviceSnapshot]:
        devices = await self.lister.reenumerate()
        return [devices[serial] for serial in sorted(devices)]

    async def device_by_serial_number(self, serial_number: str) -> DeviceSnapshot:
        return await device_by_serial_number(self.lister, serial_number)

    async def resolve_mode(self, device: DeviceSnapshot, spec: FirmwareSpec) -> SetupMode:
        return await resolve_mode(device, spec, probe=self.probe, config=self.config)

    async def resolve_mode_for_serial_number(self, serial_number: str, spec: FirmwareSpec) -> SetupMode:
        return await self.resolve_mode(await self.device_by_serial_number(serial_number), spec)

    async def prepare(self, device: DeviceSnapshot, spec: FirmwareSpec) -> SetupResult:
        mode = await self.resolve_mode(device, spec)
        LOGGER.info("Setup mode for %s is: %s", device.serial_number, mode.value)

        if mode is SetupMode.READY:
            return SetupResult(device=device, was_programmed=False, details="Device is ready")
        if mode is SetupMode.IMPOSSIBLE:
            # Cannot be set up; the caller may still be able to use it as is.
            return SetupResult(device=device, was_programmed=False, details="Device cannot be set up")
        if mode is SetupMode.NEEDS_DFU:
            return await self.dfu.run(device, spec)
        return await self.jlink.run(device, spec)

    async def prepare_serial_number(self, serial_number: str, spec: FirmwareSpec) -> SetupResult:
        return await self.prepare(await self.device_by_serial_number(serial_number), spec)

    async def ensure_bootloader_mode(self, device: DeviceSnapshot) -> DeviceSnapshot:
        return await self.dfu.ensure_bootloader(device)

    async def read_trigger_report(self, device: DeviceSnapshot) -> TriggerReport:
        probed = await asyncio.to_thread(classify, device, self.config)
        if not probed.has_trigger_interface:
            raise DfuFailedError(f"Device {device.serial_number} has no DFU trigger interface")
        usbdev = device.usb.device
        interface = probed.trigger_interface
        try:
            return TriggerReport(
                serial_number=device.serial_number,
                semver=await asyncio.to_thread(read_sem_version, usbdev, interface, self.config),
                dfu_info=await asyncio.to_thread(read_dfu_info, usbdev, interface, self.config),
                predicted_serial_number=await asyncio.to_thread(predict_serial_number, usbdev),
            )
        except UsbTransferError as exc:
            raise UsbTransferError(
                f"Could not read trigger interface of {device.serial_number}: {exc}", code=exc.code
            ) from exc
