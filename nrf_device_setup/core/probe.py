"""Classify a device's current mode and query its DFU trigger interface.

All functions here are blocking; async callers run them via
`asyncio.to_thread`.
"""

from __future__ import annotations

import logging
import struct
from collections.abc import Iterator
from contextlib import contextmanager

from nrf_device_setup.core.config import DEFAULT_CONFIG, SetupConfig
from nrf_device_setup.core.errors import UsbTransferError
from nrf_device_setup.core.model import DeviceSnapshot, DfuInfo, ProbeResult, UsbInterface
from nrf_device_setup.transports.base import UsbDevice

NO_TRIGGER_INTERFACE = -1
LOGGER = logging.getLogger(__name__)


def is_in_bootloader(device: DeviceSnapshot | None, config: SetupConfig = DEFAULT_CONFIG) -> bool:
    if device is None:
        return False
    ids = (config.bootloader_vendor_id, config.bootloader_product_id)
    if device.usb is not None:
        return (device.usb.vendor_id, device.usb.product_id) == ids
    if device.serialport is not None:
        return (device.serialport.vendor_id, device.serialport.product_id) == ids
    return False


@contextmanager
def usb_lease(usbdev: UsbDevice) -> Iterator[UsbDevice]:
    """Keep `usbdev` open for the block, restoring its prior open/closed state."""
    was_closed = not usbdev.is_open
    if was_closed:
        usbdev.open()
    try:
        yield usbdev
    finally:
        if was_closed:
            try:
                usbdev.close()
            except UsbTransferError as exc:
                LOGGER.debug("Closing USB device failed: %s", exc)


def _is_trigger_interface(iface: UsbInterface, config: SetupConfig) -> bool:
    return (
        iface.interface_class == config.trigger_interface_class
        and iface.interface_subclass == config.trigger_interface_subclass
        and iface.interface_protocol == config.trigger_interface_protocol
    )


def find_trigger_interface(usbdev: UsbDevice, config: SetupConfig = DEFAULT_CONFIG) -> int:
    """Return the DFU trigger interface number, or -1 if there is none or the device won't open."""
    try:
        with usb_lease(usbdev):
            for iface in usbdev.interfaces():
                if _is_trigger_interface(iface, config):
                    return iface.number
    except UsbTransferError as exc:
        LOGGER.debug("Could not inspect USB interfaces: %s", exc)
    return NO_TRIGGER_INTERFACE


def classify(device: DeviceSnapshot, config: SetupConfig = DEFAULT_CONFIG) -> ProbeResult:
    in_bootloader = is_in_bootloader(device, config)
    interface = NO_TRIGGER_INTERFACE
    if not in_bootloader and device.usb is not None and device.usb.device is not None:
        interface = find_trigger_interface(device.usb.device, config)
    return ProbeResult(
        in_bootloader=in_bootloader,
        has_trigger_interface=interface >= 0,
        trigger_interface=interface,
    )


def assert_trigger_interface(
    usbdev: UsbDevice,
    interface: int,
    config: SetupConfig = DEFAULT_CONFIG,
) -> None:
    """Raise unless `interface` exists on the (open) device and looks like a trigger interface."""
    if not usbdev.is_open:
        raise UsbTransferError("USB device must be open before using the DFU trigger interface")
    iface = next((i for i in usbdev.interfaces() if i.number == interface), None)
    if iface is None:
        raise UsbTransferError(
            f"Interface number {interface} does not exist on USB device; "
            "cannot perform DFU trigger operation."
        )
    if not _is_trigger_interface(iface, config):
        raise UsbTransferError(
            f"Interface number {interface} does not look like a DFU trigger interface; "
            "cannot perform DFU trigger operation."
        )


def read_sem_version(usbdev: UsbDevice, interface: int, config: SetupConfig = DEFAULT_CONFIG) -> str:
    with usb_lease(usbdev):
        assert_trigger_interface(usbdev, interface, config)
        data = usbdev.control_transfer_in(config.semver_request, 0, interface, config.semver_length)
    return bytes(data).decode("latin-1").rstrip("\0")


def read_dfu_info(usbdev: UsbDevice, interface: int, config: SetupConfig = DEFAULT_CONFIG) -> DfuInfo:
    with usb_lease(usbdev):
        assert_trigger_interface(usbdev, interface, config)
        data = usbdev.control_transfer_in(
            config.dfu_info_request, 0, interface, config.dfu_info_struct_size
        )
    if len(data) < config.dfu_info_struct_size:
        raise UsbTransferError(f"Short DFU info response ({len(data)} bytes)")
    address, size, major, minor, firmware_id, flash_size, page_size = struct.unpack_from(
        "<IIHHIII", bytes(data)
    )
    return DfuInfo(
        address=address,
        firmware_size=size,
        version_major=major,
        version_minor=minor,
        firmware_id=firmware_id,
        flash_size=flash_size,
        flash_page_size=page_size,
    )


def predict_serial_number(usbdev: UsbDevice) -> str:
    """Serial number the device is expected to have after a reset.

    Read from the iSerialNumber string descriptor. No firmware contract
    guarantees the bootloader reuses it; callers must tolerate a mismatch.
    """
    with usb_lease(usbdev):
        return usbdev.get_string_descriptor(usbdev.serial_number_index())
