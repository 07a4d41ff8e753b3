"""USB device handle backed by pyusb."""

from __future__ import annotations

import usb.core
import usb.util

from nrf_device_setup.core.errors import UsbTransferError
from nrf_device_setup.core.model import UsbInterface

_REQ_TYPE_IN = usb.util.build_request_type(
    usb.util.CTRL_IN, usb.util.CTRL_TYPE_CLASS, usb.util.CTRL_RECIPIENT_INTERFACE
)
_REQ_TYPE_OUT = usb.util.build_request_type(
    usb.util.CTRL_OUT, usb.util.CTRL_TYPE_CLASS, usb.util.CTRL_RECIPIENT_INTERFACE
)


def _transfer_error(action: str, exc: usb.core.USBError) -> UsbTransferError:
    return UsbTransferError(f"USB {action} failed: {exc}", code=exc.backend_error_code)


class PyUsbDevice:
    def __init__(self, device: usb.core.Device, *, timeout_ms: int = 1000) -> None:
        self.device = device
        self.timeout_ms = timeout_ms
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        try:
            self.device.get_active_configuration()
        except usb.core.USBError as exc:
            raise _transfer_error("open", exc) from exc
        self._open = True

    def close(self) -> None:
        self._open = False
        try:
            usb.util.dispose_resources(self.device)
        except usb.core.USBError as exc:
            raise _transfer_error("close", exc) from exc

    def interfaces(self) -> list[UsbInterface]:
        try:
            config = self.device.get_active_configuration()
        except usb.core.USBError as exc:
            raise _transfer_error("configuration read", exc) from exc
        return [
            UsbInterface(
                number=iface.bInterfaceNumber,
                interface_class=iface.bInterfaceClass,
                interface_subclass=iface.bInterfaceSubClass,
                interface_protocol=iface.bInterfaceProtocol,
            )
            for iface in config
            if iface.bAlternateSetting == 0
        ]

    def serial_number_index(self) -> int:
        return self.device.iSerialNumber

    def get_string_descriptor(self, index: int) -> str:
        try:
            return usb.util.get_string(self.device, index) or ""
        except (usb.core.USBError, ValueError) as exc:
            raise UsbTransferError(f"USB string descriptor read failed: {exc}") from exc

    def claim_interface(self, number: int) -> None:
        try:
            usb.util.claim_interface(self.device, number)
        except usb.core.USBError as exc:
            raise _transfer_error(f"claim of interface {number}", exc) from exc

    def release_interface(self, number: int) -> None:
        try:
            usb.util.release_interface(self.device, number)
        except usb.core.USBError as exc:
            raise _transfer_error(f"release of interface {number}", exc) from exc

    def control_transfer_in(self, request: int, value: int, index: int, length: int) -> bytes:
        try:
            data = self.device.ctrl_transfer(_REQ_TYPE_IN, request, value, index, length, self.timeout_ms)
        except usb.core.USBError as exc:
            raise _transfer_error(f"control transfer (request {request})", exc) from exc
        return bytes(data)

    def control_transfer_out(self, request: int, value: int, index: int, data: bytes) -> None:
        try:
            self.device.ctrl_transfer(_REQ_TYPE_OUT, request, value, index, data, self.timeout_ms)
        except usb.core.USBError as exc:
            raise _transfer_error(f"control transfer (request {request})", exc) from exc
