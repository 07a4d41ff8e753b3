"""DFU collaborator: transfers through nrfutil, version reads over SLIP serial."""

from __future__ import annotations

import asyncio
import json
import logging
import shlex
import struct
import tempfile
import zipfile
from collections.abc import Sequence
from pathlib import Path

import serial

from nrf_device_setup.core.errors import DfuTransportError, FirmwareImageError
from nrf_device_setup.core.model import DfuUpdate, FirmwareVersion, ImageType

SLIP_END = 0xC0
SLIP_ESC = 0xDB
SLIP_ESC_END = 0xDC
SLIP_ESC_ESC = 0xDD

NRF_DFU_OP_FIRMWARE_VERSION = 0x0B
NRF_DFU_OP_RESPONSE = 0x60
NRF_DFU_RES_CODE_SUCCESS = 0x01

# Order in which nrfutil applies the images of a package.
BUNDLE_ORDER = ("softdevice_bootloader", "softdevice", "bootloader", "application")
_MAX_IMAGES = 8
LOGGER = logging.getLogger(__name__)


def slip_encode(data: bytes) -> bytes:
    out = bytearray()
    for byte in data:
        if byte == SLIP_END:
            out += bytes([SLIP_ESC, SLIP_ESC_END])
        elif byte == SLIP_ESC:
            out += bytes([SLIP_ESC, SLIP_ESC_ESC])
        else:
            out.append(byte)
    out.append(SLIP_END)
    return bytes(out)


def slip_decode(data: bytes) -> bytes:
    out = bytearray()
    escape = False
    for byte in data:
        if escape:
            out.append({SLIP_ESC_END: SLIP_END, SLIP_ESC_ESC: SLIP_ESC}.get(byte, byte))
            escape = False
        elif byte == SLIP_ESC:
            escape = True
        elif byte != SLIP_END:
            out.append(byte)
    return bytes(out)


def _read_frame(port: serial.Serial) -> bytes:
    buffer = bytearray()
    while True:
        chunk = port.read(1)
        if not chunk:
            raise DfuTransportError(f"Timeout waiting for DFU response on {port.port}")
        if chunk[0] == SLIP_END:
            if buffer:
                return slip_decode(bytes(buffer))
            continue
        buffer += chunk


def _image_type(value: int) -> ImageType:
    try:
        return ImageType(value)
    except ValueError:
        return ImageType.UNKNOWN


def read_firmware_versions(port: str, baud_rate: int, timeout_s: float = 1.0) -> list[FirmwareVersion]:
    """Ask the bootloader for the version of each installed image."""
    versions: list[FirmwareVersion] = []
    try:
        with serial.Serial(port, baud_rate, timeout=timeout_s) as conn:
            conn.reset_input_buffer()
            for index in range(_MAX_IMAGES):
                conn.write(slip_encode(bytes([NRF_DFU_OP_FIRMWARE_VERSION, index])))
                response = _read_frame(conn)
                if (
                    len(response) < 3
                    or response[0] != NRF_DFU_OP_RESPONSE
                    or response[1] != NRF_DFU_OP_FIRMWARE_VERSION
                ):
                    raise DfuTransportError(f"Unexpected DFU response: {response.hex()}")
                if response[2] != NRF_DFU_RES_CODE_SUCCESS or len(response) < 16:
                    break
                image_type, version, address, length = struct.unpack_from("<BIII", response, 3)
                if _image_type(image_type) is ImageType.UNKNOWN:
                    break
                versions.append(
                    FirmwareVersion(
                        image_type=_image_type(image_type),
                        version=version,
                        address=address,
                        length=length,
                    )
                )
    except (serial.SerialException, OSError) as exc:
        raise DfuTransportError(f"Could not read firmware versions on {port}: {exc}") from exc
    return versions


def load_bundle(archive: Path) -> list[DfuUpdate]:
    """Read the (init packet, image) pairs of a DFU zip package in apply order."""
    try:
        with zipfile.ZipFile(archive) as bundle:
            manifest = json.loads(bundle.read("manifest.json"))["manifest"]
            return [
                DfuUpdate(
                    init_packet=bundle.read(manifest[key]["dat_file"]),
                    firmware_image=bundle.read(manifest[key]["bin_file"]),
                    key=key,
                    manifest={
                        name: value
                        for name, value in manifest[key].items()
                        if name not in ("bin_file", "dat_file")
                    },
                )
                for key in BUNDLE_ORDER
                if key in manifest
            ]
    except (OSError, KeyError, ValueError, zipfile.BadZipFile) as exc:
        raise FirmwareImageError(f"Could not load DFU bundle {archive}: {exc}") from exc


def write_package(directory: Path, updates: Sequence[DfuUpdate]) -> Path:
    """Write `updates` into a single nrfutil package, one manifest entry per image."""
    manifest: dict[str, dict[str, object]] = {}
    for update in updates:
        if update.key not in BUNDLE_ORDER:
            raise DfuTransportError(f"Unsupported DFU image '{update.key}'")
        if update.key in manifest:
            raise DfuTransportError(f"Duplicate DFU image '{update.key}' in one package")
        manifest[update.key] = {
            **update.manifest,
            "bin_file": f"{update.key}.bin",
            "dat_file": f"{update.key}.dat",
        }

    package = directory / "update.zip"
    with zipfile.ZipFile(package, "w") as bundle:
        bundle.writestr("manifest.json", json.dumps({"manifest": manifest}))
        for update in updates:
            bundle.writestr(f"{update.key}.dat", update.init_packet)
            bundle.writestr(f"{update.key}.bin", update.firmware_image)
    return package


class NrfutilDfu:
    def __init__(
        self,
        *,
        executable: str = "nrfutil",
        baud_rate: int = 115200,
        timeout_s: float = 120.0,
    ) -> None:
        self.executable = executable
        self.baud_rate = baud_rate
        self.timeout_s = timeout_s

    async def perform(self, port: str, updates: Sequence[DfuUpdate]) -> None:
        # nrfutil applies all images of one package in a single session.
        with tempfile.TemporaryDirectory() as tmp:
            package = write_package(Path(tmp), updates)
            await self._run(
                [
                    self.executable,
                    "dfu",
                    "serial",
                    "-pkg",
                    str(package),
                    "-p",
                    port,
                    "-b",
                    str(self.baud_rate),
                ]
            )

    async def read_firmware_versions(self, port: str) -> list[FirmwareVersion]:
        return await asyncio.to_thread(read_firmware_versions, port, self.baud_rate)

    async def load_bundle(self, archive: Path) -> list[DfuUpdate]:
        return await asyncio.to_thread(load_bundle, archive)

    async def _run(self, command: list[str]) -> None:
        LOGGER.info("CMD: %s", shlex.join(command))
        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except FileNotFoundError as exc:
            raise DfuTransportError(f"'{self.executable}' not found; install nrfutil and retry") from exc
        try:
            output, _ = await asyncio.wait_for(proc.communicate(), self.timeout_s)
        except asyncio.TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise DfuTransportError(f"Timed out: {shlex.join(command)}") from exc
        if proc.returncode:
            LOGGER.error("Failed command: %s", shlex.join(command))
            LOGGER.info("%s", output.decode(errors="replace"))
            raise DfuTransportError(
                f"DFU transfer failed with exit code {proc.returncode}: "
                f"{output.decode(errors='replace').strip()}"
            )
