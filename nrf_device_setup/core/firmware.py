"""Load firmware images from Intel HEX sources."""

from __future__ import annotations

import io
import logging
from pathlib import Path

from intelhex import HexRecordError, IntelHex

from nrf_device_setup.core.errors import FirmwareImageError
from nrf_device_setup.core.model import FirmwareSource

_PADDING = 0xFF
LOGGER = logging.getLogger(__name__)


def read_hex(source: FirmwareSource) -> IntelHex:
    ih = IntelHex()
    try:
        if isinstance(source, (bytes, bytearray)):
            ih.loadhex(io.StringIO(bytes(source).decode("ascii")))
        else:
            ih.loadhex(str(source))
    except (OSError, UnicodeDecodeError) as exc:
        raise FirmwareImageError(f"Could not read firmware image {_describe(source)}: {exc}") from exc
    except HexRecordError as exc:
        raise FirmwareImageError(f"Invalid HEX in {_describe(source)}: {exc}") from exc
    return ih


def load_image(source: FirmwareSource) -> bytes:
    """Contiguous image from the lowest to the highest address, gaps padded with 0xFF."""
    ih = read_hex(source)
    start, end = ih.minaddr(), ih.maxaddr()
    if start is None or end is None:
        raise FirmwareImageError(f"Firmware image {_describe(source)} is empty")
    ih.padding = _PADDING
    image = ih.tobinstr(start=start, end=end)
    LOGGER.debug("Loaded %d bytes from %s (0x%08x-0x%08x)", len(image), _describe(source), start, end)
    return image


def _describe(source: FirmwareSource) -> str:
    if isinstance(source, (str, Path)):
        return str(source)
    return f"<{len(source)} bytes>"
