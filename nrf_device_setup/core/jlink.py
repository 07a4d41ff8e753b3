"""Program devices through a J-Link debug probe."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from nrf_device_setup.core.config import DEFAULT_CONFIG, SetupConfig
from nrf_device_setup.core.errors import (
    MissingSerialPortError,
    ProbeError,
    ProgrammingFailedError,
    SerialPortError,
    SetupCancelledError,
    UnsupportedFamilyError,
)
from nrf_device_setup.core.interaction import Interaction
from nrf_device_setup.core.model import (
    DeviceSnapshot,
    FirmwareSpec,
    FirmwareValidator,
    JprogFirmware,
    SetupResult,
    Trait,
)
from nrf_device_setup.core.waiter import wait_for_device
from nrf_device_setup.transports.base import DebugProbe, DeviceLister, SerialPortOpener

LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def probe_lease(probe: DebugProbe, serial_number: str) -> AsyncIterator[DebugProbe]:
    """Hold the debug probe open for the block; it is closed on every exit path."""
    LOGGER.debug("Opening J-Link %s", serial_number)
    await probe.open(serial_number)
    try:
        yield probe
    finally:
        LOGGER.debug("Closing J-Link %s", serial_number)
        try:
            await asyncio.shield(probe.close(serial_number))
        except ProbeError as exc:
            LOGGER.warning("Closing J-Link %s failed: %s", serial_number, exc)


async def firmware_for_device(probe: DebugProbe, serial_number: str, spec: FirmwareSpec) -> JprogFirmware:
    info = await probe.device_info(serial_number)
    firmware = spec.jprog.get(info.family)
    if firmware is None:
        raise UnsupportedFamilyError(
            f"No firmware defined for {info.family} family", family=info.family
        )
    return firmware


async def validate_firmware(probe: DebugProbe, serial_number: str, firmware: JprogFirmware) -> bool:
    """Compare the firmware id at `fw_id_address` with the expected identity."""
    try:
        contents = await probe.read(serial_number, firmware.fw_id_address, firmware.id_length)
    except ProbeError as exc:
        raise ProbeError(f"Error when validating firmware on {serial_number}: {exc}") from exc

    expected = firmware.fw_version
    if isinstance(expected, FirmwareValidator):
        return bool(expected.validator(bytes(contents)))
    if isinstance(expected, str):
        expected = expected.encode("utf-8")
    return bytes(contents) == expected


class JlinkOrchestrator:
    def __init__(
        self,
        lister: DeviceLister,
        probe: DebugProbe,
        serial: SerialPortOpener,
        interaction: Interaction,
        config: SetupConfig = DEFAULT_CONFIG,
    ) -> None:
        self.lister = lister
        self.probe = probe
        self.serial = serial
        self.interaction = interaction
        self.config = config

    async def verify_serial_port(self, device: DeviceSnapshot) -> None:
        """Open and close the port; a wedged J-Link would otherwise hang the probe calls."""
        if device.serialport is None:
            raise MissingSerialPortError(
                f"No serial port available for device with serial number {device.serial_number}"
            )
        await asyncio.to_thread(self.serial.verify, device.serialport.path)

    async def run(self, device: DeviceSnapshot, spec: FirmwareSpec) -> SetupResult:
        serial_number = device.serial_number
        if spec.need_serialport:
            try:
                await self.verify_serial_port(device)
            except SerialPortError as exc:
                raise ProgrammingFailedError(
                    f"Serial port of J-Link {serial_number} is not available: {exc}"
                ) from exc

        async with probe_lease(self.probe, serial_number):
            firmware = await firmware_for_device(self.probe, serial_number, spec)
            if not await self.interaction.ask_confirm("Device must be programmed, do you want to proceed?"):
                raise SetupCancelledError(device=device)
            LOGGER.info("Programming %s with %s", serial_number, _describe(firmware))
            try:
                await self.probe.program(serial_number, firmware.fw)
            except ProbeError as exc:
                raise ProgrammingFailedError(
                    f"Error when programming {serial_number}: {exc}"
                ) from exc

        traits = [Trait.JLINK]
        if spec.need_serialport:
            traits.append(Trait.SERIALPORT)
        prepared = await wait_for_device(
            self.lister, serial_number, traits=traits, timeout_s=self.config.wait_timeout_s
        )
        return SetupResult(
            device=prepared,
            was_programmed=True,
            details=f"Programmed {_describe(firmware)} via J-Link",
        )


def _describe(firmware: JprogFirmware) -> str:
    if isinstance(firmware.fw, bytes):
        return f"<{len(firmware.fw)} bytes>"
    return str(firmware.fw)
