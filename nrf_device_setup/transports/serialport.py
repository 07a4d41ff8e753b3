"""Serial port access using pyserial."""

from __future__ import annotations

import serial
from serial.tools import list_ports
from serial.tools.list_ports_common import ListPortInfo

from nrf_device_setup.core.errors import SerialPortError


class PySerialOpener:
    def verify(self, path: str) -> None:
        try:
            port = serial.Serial(path)
        except (serial.SerialException, OSError) as exc:
            raise SerialPortError(f"Could not open serial port {path}: {exc}") from exc
        try:
            port.close()
        except (serial.SerialException, OSError) as exc:
            raise SerialPortError(f"Could not close serial port {path}: {exc}") from exc


def list_serial_ports() -> list[ListPortInfo]:
    return [port for port in list_ports.comports() if port.serial_number]
