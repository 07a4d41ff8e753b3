"""Program devices over the DFU bootloader's serial transport."""

from __future__ import annotations

import asyncio
import logging

from nrf_device_setup.core.config import DEFAULT_CONFIG, SetupConfig
from nrf_device_setup.core.errors import (
    DeviceNotFoundError,
    DeviceSetupError,
    DfuFailedError,
    SerialPortError,
    SetupCancelledError,
)
from nrf_device_setup.core.firmware import load_image
from nrf_device_setup.core.handshake import detach_and_wait
from nrf_device_setup.core.init_packet import for_application, for_softdevice
from nrf_device_setup.core.interaction import Interaction
from nrf_device_setup.core.model import (
    DeviceSnapshot,
    DfuFirmware,
    DfuUpdate,
    FirmwareSpec,
    ImageType,
    SetupResult,
    Trait,
)
from nrf_device_setup.core.probe import classify, predict_serial_number
from nrf_device_setup.core.waiter import wait_for_device
from nrf_device_setup.transports.base import DeviceLister, DfuProtocol, SerialPortOpener

LOGGER = logging.getLogger(__name__)


class DfuOrchestrator:
    def __init__(
        self,
        lister: DeviceLister,
        dfu: DfuProtocol,
        serial: SerialPortOpener,
        interaction: Interaction,
        config: SetupConfig = DEFAULT_CONFIG,
        *,
        platform: str | None = None,
    ) -> None:
        self.lister = lister
        self.dfu = dfu
        self.serial = serial
        self.interaction = interaction
        self.config = config
        self.platform = platform

    async def run(self, device: DeviceSnapshot, spec: FirmwareSpec) -> SetupResult:
        if not await self.interaction.ask_confirm("Device must be programmed, do you want to proceed?"):
            raise SetupCancelledError(device=device)
        choice = await self.interaction.ask_choice(
            "Which firmware do you want to program?", list(spec.dfu)
        )
        if choice not in spec.dfu:
            raise DfuFailedError(f"Unknown firmware choice '{choice}'")
        firmware = spec.dfu[choice]

        try:
            device = await self.ensure_bootloader(device)
            device = await self._update_bootloader(device, spec)
            device = await self._transfer(device, firmware)
            if spec.need_serialport:
                await self._verify_serial_port(device)
        except (SetupCancelledError, DfuFailedError):
            raise
        except DeviceSetupError as exc:
            raise DfuFailedError(f"DFU of {device.serial_number} failed: {exc}") from exc

        return SetupResult(device=device, was_programmed=True, details=f"Programmed {choice} via DFU")

    async def ensure_bootloader(self, device: DeviceSnapshot) -> DeviceSnapshot:
        """Bring `device` into its DFU bootloader with a serial port attached."""
        probed = await asyncio.to_thread(classify, device, self.config)
        if not probed.in_bootloader:
            if not probed.has_trigger_interface:
                raise DfuFailedError(
                    f"Device {device.serial_number} is not in bootloader and has no DFU trigger interface"
                )
            usbdev = device.usb.device
            LOGGER.debug("Switching to bootloader mode.")
            serial_number = await asyncio.to_thread(predict_serial_number, usbdev)
            LOGGER.debug("Serial number after reset should be: %s", serial_number)
            device = await detach_and_wait(
                self.lister,
                usbdev,
                probed.trigger_interface,
                serial_number,
                config=self.config,
                platform=self.platform,
            )
        elif not device.has(Trait.SERIALPORT):
            device = await self._wait(device.serial_number)

        LOGGER.info("%s on %s is now in DFU-Bootloader", device.serial_number, device.serialport.path)
        return device

    async def _update_bootloader(self, device: DeviceSnapshot, spec: FirmwareSpec) -> DeviceSnapshot:
        if spec.bootloader is None:
            return device
        minimum = spec.bootloader.min_version or self.config.latest_bootloader_version
        versions = await self.dfu.read_firmware_versions(device.serialport.path)
        installed = next((v.version for v in versions if v.image_type == ImageType.BOOTLOADER), None)
        LOGGER.debug("Installed bootloader version: %s", installed)
        if installed is None or installed >= minimum:
            return device
        if not await self.interaction.ask_confirm(
            "Newer version of the bootloader is available, do you want to update it?"
        ):
            LOGGER.info("Continuing with bootloader version %s", installed)
            return device

        updates = await self.dfu.load_bundle(spec.bootloader.bundle)
        LOGGER.info("Updating bootloader of %s", device.serial_number)
        await self.dfu.perform(device.serialport.path, updates)
        device = await self._wait(device.serial_number)
        return await self.ensure_bootloader(device)

    async def _transfer(self, device: DeviceSnapshot, firmware: DfuFirmware) -> DeviceSnapshot:
        params = firmware.params
        if firmware.softdevice is not None:
            image = await asyncio.to_thread(load_image, firmware.softdevice)
            packet = for_softdevice(image, hw_version=params.hw_version, sd_req=params.sd_req)
            update = DfuUpdate(packet.encode(), image, key="softdevice")
            await self.dfu.perform(device.serialport.path, [update])
            LOGGER.info("SoftDevice DFU completed successfully!")
            try:
                device = await self._wait(device.serial_number)
            except DeviceNotFoundError as exc:
                LOGGER.warning("%s", exc)

        image = await asyncio.to_thread(load_image, firmware.application)
        packet = for_application(
            image,
            fw_version=params.fw_version,
            hw_version=params.hw_version,
            sd_req=params.sd_id,
        )
        await self.dfu.perform(device.serialport.path, [DfuUpdate(packet.encode(), image)])
        LOGGER.info("Application DFU completed successfully!")
        return await self._wait(device.serial_number)

    async def _verify_serial_port(self, device: DeviceSnapshot) -> None:
        delay = self.config.serial_open_backoff_s
        for attempt in range(1, self.config.serial_open_attempts + 1):
            try:
                await asyncio.to_thread(self.serial.verify, device.serialport.path)
                return
            except SerialPortError as exc:
                if attempt == self.config.serial_open_attempts:
                    raise
                LOGGER.debug("Serial port %s not ready (%s), retrying", device.serialport.path, exc)
                await asyncio.sleep(delay)
                delay *= 2

    async def _wait(self, serial_number: str) -> DeviceSnapshot:
        return await wait_for_device(
            self.lister, serial_number, timeout_s=self.config.wait_timeout_s
        )
