"""Wait for a device to (re)appear in the host's device listing."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

from nrf_device_setup.core.config import DEFAULT_CONFIG
from nrf_device_setup.core.errors import DeviceNotFoundError
from nrf_device_setup.core.model import DeviceSnapshot, Trait
from nrf_device_setup.transports.base import DeviceLister, DeviceMap

LOGGER = logging.getLogger(__name__)


async def wait_for_device(
    lister: DeviceLister,
    serial_number: str,
    *,
    traits: Iterable[Trait] = (Trait.SERIALPORT,),
    timeout_s: float = DEFAULT_CONFIG.wait_timeout_s,
) -> DeviceSnapshot:
    """Resolve to the first listed device with `serial_number` and all `traits`.

    Raises `DeviceNotFoundError` once `timeout_s` elapses. The lister
    subscription is released on every exit path.
    """
    required = frozenset(traits)
    found: asyncio.Future[DeviceSnapshot] = asyncio.get_running_loop().create_future()

    def check(devices: DeviceMap) -> None:
        device = devices.get(serial_number)
        if device is not None and device.has(*required) and not found.done():
            LOGGER.debug("... found %s", serial_number)
            found.set_result(device)

    def report(exc: Exception) -> None:
        LOGGER.debug("Device listing error while waiting for %s: %s", serial_number, exc)

    LOGGER.debug("Will wait for device %s", serial_number)
    with lister.subscribe(check, report):
        try:
            return await asyncio.wait_for(found, timeout_s)
        except asyncio.TimeoutError as exc:
            LOGGER.debug("Timeout when waiting for attachment of device %s", serial_number)
            raise DeviceNotFoundError(
                f"Timeout while waiting for device {serial_number} to be attached and enumerated",
                serial_number=serial_number,
            ) from exc


async def device_by_serial_number(lister: DeviceLister, serial_number: str) -> DeviceSnapshot:
    devices = await lister.reenumerate()
    device = devices.get(serial_number)
    if device is None:
        raise DeviceNotFoundError(
            f"There is no device with serial number {serial_number}",
            serial_number=serial_number,
        )
    return device
