"""J-Link debug probe access using pynrfjprog."""

from __future__ import annotations

import asyncio
import logging
import tempfile
from pathlib import Path
from typing import Any

from nrf_device_setup.core.errors import ProbeError
from nrf_device_setup.core.model import ProbeDeviceInfo

LOGGER = logging.getLogger(__name__)


def _low_level() -> Any:
    try:
        from pynrfjprog import LowLevel  # type: ignore
    except ImportError as exc:
        raise ProbeError(
            "J-Link support requires 'pynrfjprog'. Install the 'jlink' extra and retry."
        ) from exc
    return LowLevel


def _api_error() -> type[Exception]:
    from pynrfjprog.APIError import APIError  # type: ignore

    return APIError


def list_jlink_serial_numbers() -> list[str]:
    low_level = _low_level()
    try:
        with low_level.API(low_level.DeviceFamily.UNKNOWN) as api:
            return [str(snr) for snr in api.enum_emu_snr() or []]
    except _api_error() as exc:
        raise ProbeError(f"Could not enumerate J-Link probes: {exc}") from exc


class NrfjprogProbe:
    """One pynrfjprog session per open probe, keyed by serial number."""

    def __init__(self) -> None:
        self._sessions: dict[str, Any] = {}

    async def open(self, serial_number: str) -> None:
        if serial_number in self._sessions:
            raise ProbeError(f"J-Link {serial_number} is already open")
        self._sessions[serial_number] = None
        try:
            self._sessions[serial_number] = await asyncio.to_thread(self._connect, serial_number)
        except BaseException:
            del self._sessions[serial_number]
            raise

    async def close(self, serial_number: str) -> None:
        api = self._sessions.pop(serial_number, None)
        if api is not None:
            await asyncio.to_thread(self._disconnect, serial_number, api)

    async def device_info(self, serial_number: str) -> ProbeDeviceInfo:
        return await self._call(serial_number, "read device info", self._device_info)

    async def read(self, serial_number: str, address: int, length: int) -> bytes:
        return await self._call(
            serial_number, "read", lambda api: bytes(api.read(address, length))
        )

    async def erase(self, serial_number: str) -> None:
        await self._call(serial_number, "erase", lambda api: api.erase_all())

    async def program(self, serial_number: str, firmware: Path | bytes) -> None:
        await self._call(serial_number, "program", lambda api: self._program(api, firmware))

    def _connect(self, serial_number: str) -> Any:
        low_level = _low_level()
        api = low_level.API(low_level.DeviceFamily.UNKNOWN)
        try:
            api.open()
            api.connect_to_emu_with_snr(int(serial_number))
        except _api_error() as exc:
            api.close()
            raise ProbeError(f"Could not open J-Link {serial_number}: {exc}") from exc
        return api

    def _disconnect(self, serial_number: str, api: Any) -> None:
        try:
            api.disconnect_from_emu()
        except _api_error() as exc:
            LOGGER.debug("Disconnecting J-Link %s failed: %s", serial_number, exc)
        finally:
            api.close()

    async def _call(self, serial_number: str, action: str, func: Any) -> Any:
        api = self._sessions.get(serial_number)
        if api is None:
            raise ProbeError(f"J-Link {serial_number} is not open")
        try:
            return await asyncio.to_thread(func, api)
        except _api_error() as exc:
            raise ProbeError(f"J-Link {serial_number} {action} failed: {exc}") from exc

    @staticmethod
    def _device_info(api: Any) -> ProbeDeviceInfo:
        family = api.read_device_family()
        family = str(getattr(family, "name", family)).lower()
        device_type = None
        try:
            version = api.read_device_info()[0]
            device_type = getattr(version, "name", str(version))
        except _api_error() as exc:
            LOGGER.debug("Could not read device type: %s", exc)
        return ProbeDeviceInfo(family=family, device_type=device_type)

    @staticmethod
    def _program(api: Any, firmware: Path | bytes) -> None:
        api.erase_all()
        if isinstance(firmware, bytes):
            with tempfile.TemporaryDirectory() as tmp:
                path = Path(tmp) / "firmware.hex"
                path.write_bytes(firmware)
                api.program_file(str(path))
        else:
            api.program_file(str(firmware))
        api.sys_reset()
        api.go()
