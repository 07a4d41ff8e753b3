"""Process-wide constants for device setup.

`DEFAULT_CONFIG` is shared and read-only. Tune by building a copy with
`dataclasses.replace(DEFAULT_CONFIG, ...)` and passing it in.
"""

from __future__ import annotations

import sys
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

ANY = "*"

# libusb error codes (libusb.h)
LIBUSB_ERROR_IO = -1
LIBUSB_ERROR_PIPE = -9


@dataclass(frozen=True)
class SetupConfig:
    bootloader_vendor_id: int = 0x1915
    bootloader_product_id: int = 0x521F

    trigger_interface_class: int = 255
    trigger_interface_subclass: int = 1
    trigger_interface_protocol: int = 1

    semver_request: int = 8
    dfu_info_request: int = 7
    detach_request: int = 0
    semver_length: int = 256
    dfu_info_struct_size: int = 24  # 5 DWORD and 2 WORD
    control_timeout_ms: int = 1000

    wait_timeout_s: float = 5.0
    wait_retries: int = 3
    wait_retry_delay_s: float = 0.5

    serial_open_attempts: int = 5
    serial_open_backoff_s: float = 0.2

    dfu_baud_rate: int = 115200
    latest_bootloader_version: int = 4
    poll_interval_s: float = 0.5


DEFAULT_CONFIG = SetupConfig()

# (platform, libusb error code or None for a clean transfer) -> detach succeeded.
# A device that detaches reboots before it answers, so the transfer is expected
# to fail. Each entry needs hardware-in-the-loop verification on its platform.
DETACH_OUTCOMES: Mapping[tuple[str, object], bool] = MappingProxyType(
    {
        (ANY, LIBUSB_ERROR_PIPE): True,
        # Seen with the "libusb" kernel driver on win32 (not winusb/libusbk).
        (ANY, LIBUSB_ERROR_IO): True,
        # macOS does not stall on detach.
        ("darwin", ANY): True,
    }
)


def normalize_platform(platform: str | None = None) -> str:
    platform = platform or sys.platform
    if platform.startswith("linux"):
        return "linux"
    return platform


def detach_succeeded(
    code: int | None,
    *,
    platform: str | None = None,
    outcomes: Mapping[tuple[str, object], bool] = DETACH_OUTCOMES,
) -> bool:
    platform = normalize_platform(platform)
    for key in ((platform, code), (ANY, code), (platform, ANY)):
        if key in outcomes:
            return outcomes[key]
    return False
