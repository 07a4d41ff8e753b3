from __future__ import annotations

from pathlib import Path

import pytest

from fakes import APP_HEX, GAPPED_HEX
from nrf_device_setup.core.errors import FirmwareImageError
from nrf_device_setup.core.firmware import load_image


def test_load_image_from_bytes() -> None:
    assert load_image(APP_HEX) == bytes([1, 2, 3, 4])


def test_gaps_are_padded_with_ff(tmp_path: Path) -> None:
    path = tmp_path / "softdevice.hex"
    path.write_bytes(GAPPED_HEX)

    assert load_image(path) == bytes([0xAA, 0xBB, 0xFF, 0xFF, 0xCC, 0xDD])


def test_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FirmwareImageError, match="Could not read"):
        load_image(tmp_path / "missing.hex")


def test_malformed_hex() -> None:
    with pytest.raises(FirmwareImageError, match="Invalid HEX"):
        load_image(b"this is not hex\n")


def test_empty_image() -> None:
    with pytest.raises(FirmwareImageError, match="empty"):
        load_image(b":00000001FF\n")
