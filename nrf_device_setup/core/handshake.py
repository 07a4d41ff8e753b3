"""Detach an application-mode device into its bootloader and wait for it to return."""

from __future__ import annotations

import asyncio
import contextlib
import logging

from nrf_device_setup.core.config import DEFAULT_CONFIG, SetupConfig, detach_succeeded
from nrf_device_setup.core.errors import DetachFailedError, DeviceNotFoundError, DeviceSetupError, UsbTransferError
from nrf_device_setup.core.model import DeviceSnapshot, Trait
from nrf_device_setup.core.probe import assert_trigger_interface, is_in_bootloader, usb_lease
from nrf_device_setup.core.waiter import wait_for_device
from nrf_device_setup.transports.base import DeviceLister, UsbDevice

_DETACH_PAYLOAD = b"0"
LOGGER = logging.getLogger(__name__)


def send_detach_request(
    usbdev: UsbDevice,
    interface: int,
    *,
    config: SetupConfig = DEFAULT_CONFIG,
    platform: str | None = None,
) -> None:
    """Send the DFU detach request, raising `DetachFailedError` unless the device rebooted."""
    try:
        with usb_lease(usbdev):
            assert_trigger_interface(usbdev, interface, config)
            LOGGER.debug("Claiming interface %d", interface)
            usbdev.claim_interface(interface)
            code = None
            try:
                LOGGER.debug("Sending DFU detach request")
                usbdev.control_transfer_out(config.detach_request, 0, interface, _DETACH_PAYLOAD)
            except UsbTransferError as exc:
                code = exc.code
            finally:
                LOGGER.debug("Releasing interface %d", interface)
                with contextlib.suppress(UsbTransferError):
                    usbdev.release_interface(interface)
    except UsbTransferError as exc:
        raise DetachFailedError(f"Could not send DFU detach request: {exc}") from exc

    if not detach_succeeded(code, platform=platform):
        LOGGER.debug("DFU detach request did not stall as expected (code=%s)", code)
        raise DetachFailedError(
            "USB DFU detach request sent, but device does not seem to have rebooted"
        )


async def _wait_for_reattach(
    lister: DeviceLister,
    serial_number: str,
    config: SetupConfig,
) -> DeviceSnapshot:
    try:
        return await wait_for_device(lister, serial_number, timeout_s=config.wait_timeout_s)
    except DeviceNotFoundError:
        LOGGER.warning("Device did not return as predicted serial number %s", serial_number)

    for attempt in range(1, config.wait_retries + 1):
        await asyncio.sleep(config.wait_retry_delay_s)
        devices = await lister.reenumerate()
        device = devices.get(serial_number)
        if device is not None and device.has(Trait.SERIALPORT):
            return device
        candidates = [
            d for d in devices.values() if is_in_bootloader(d, config) and d.has(Trait.SERIALPORT)
        ]
        if len(candidates) == 1:
            LOGGER.warning(
                "Using bootloader %s in place of predicted serial number %s",
                candidates[0].serial_number,
                serial_number,
            )
            return candidates[0]
        LOGGER.debug(
            "Retry #%d: %d bootloader candidates for %s", attempt, len(candidates), serial_number
        )

    raise DeviceNotFoundError(
        f"Expected device {serial_number} not found after detach",
        serial_number=serial_number,
    )


async def _detach_then_wait(
    lister: DeviceLister,
    usbdev: UsbDevice,
    interface: int,
    serial_number: str,
    config: SetupConfig,
    platform: str | None,
) -> DeviceSnapshot:
    await asyncio.to_thread(
        send_detach_request, usbdev, interface, config=config, platform=platform
    )
    return await _wait_for_reattach(lister, serial_number, config)


async def detach_and_wait(
    lister: DeviceLister,
    usbdev: UsbDevice,
    interface: int,
    serial_number: str,
    *,
    config: SetupConfig = DEFAULT_CONFIG,
    platform: str | None = None,
) -> DeviceSnapshot:
    """Detach the device and resolve to its reattached bootloader snapshot.

    The detach request and the reattach wait run as one shielded task, so
    cancelling this coroutine mid-request still waits for the device to
    reattach before `CancelledError` propagates.
    """
    LOGGER.debug("Sending detach, will wait for attach")
    handshake = asyncio.ensure_future(
        _detach_then_wait(lister, usbdev, interface, serial_number, config, platform)
    )
    try:
        return await asyncio.shield(handshake)
    except asyncio.CancelledError:
        LOGGER.info("Cancelled during detach; waiting for %s to reattach", serial_number)
        with contextlib.suppress(DeviceSetupError):
            await handshake
        raise
