"""Decide what a device needs before it can be used with a firmware spec."""

from __future__ import annotations

import asyncio
import logging

from nrf_device_setup.core.config import DEFAULT_CONFIG, SetupConfig
from nrf_device_setup.core.errors import MissingSerialPortError, UsbTransferError
from nrf_device_setup.core.jlink import firmware_for_device, probe_lease, validate_firmware
from nrf_device_setup.core.model import DeviceSnapshot, FirmwareSpec, SetupMode, Trait
from nrf_device_setup.core.probe import classify, read_sem_version
from nrf_device_setup.transports.base import DebugProbe

LOGGER = logging.getLogger(__name__)


async def resolve_mode(
    device: DeviceSnapshot,
    spec: FirmwareSpec,
    *,
    probe: DebugProbe | None = None,
    config: SetupConfig = DEFAULT_CONFIG,
) -> SetupMode:
    """Classify `device` against `spec` without changing device state.

    Order: bootloader with DFU spec, trigger interface with DFU spec,
    J-Link with jprog spec, otherwise impossible.
    """
    if spec.dfu:
        probed = await asyncio.to_thread(classify, device, config)
        if probed.in_bootloader:
            LOGGER.debug("Device is in DFU-Bootloader, DFU is defined")
            return SetupMode.NEEDS_DFU

        if probed.has_trigger_interface:
            LOGGER.debug("Device has DFU trigger interface, probably in Application mode")
            try:
                semver = await asyncio.to_thread(
                    read_sem_version, device.usb.device, probed.trigger_interface, config
                )
            except UsbTransferError as exc:
                raise UsbTransferError(
                    f"Could not read semver from {device.serial_number}: {exc}", code=exc.code
                ) from exc
            LOGGER.debug("Device reports semver '%s'", semver)
            expected = {fw.semver for fw in spec.dfu.values() if fw.semver is not None}
            if semver not in expected:
                LOGGER.debug("Device requires different firmware")
                return SetupMode.NEEDS_DFU
            if spec.need_serialport and not device.has(Trait.SERIALPORT):
                raise MissingSerialPortError(
                    f"Device {device.serial_number} runs the expected firmware but has no serial port"
                )
            LOGGER.debug("Device is running the correct fw version")
            return SetupMode.READY

        LOGGER.debug("Device is not in DFU-Bootloader and has no DFU trigger interface")

    if spec.jprog and probe is not None and device.has(Trait.JLINK):
        async with probe_lease(probe, device.serial_number):
            firmware = await firmware_for_device(probe, device.serial_number, spec)
            valid = await validate_firmware(probe, device.serial_number, firmware)
        return SetupMode.READY if valid else SetupMode.NEEDS_JLINK

    LOGGER.debug("Selected device cannot be prepared, maybe the app still can use it")
    return SetupMode.IMPOSSIBLE
