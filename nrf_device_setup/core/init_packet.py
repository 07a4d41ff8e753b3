"""DFU init packets in the Nordic `dfu-cc` protobuf layout.

Only the fields needed for unsigned SHA-256 updates are encoded:

    Packet        { Command command = 1; }
    Command       { OpCode op_code = 1; InitCommand init = 2; }
    InitCommand   { fw_version = 1; hw_version = 2; repeated sd_req = 3 [packed];
                    FwType type = 4; sd_size = 5; bl_size = 6; app_size = 7;
                    Hash hash = 8; }
    Hash          { HashType hash_type = 1; bytes hash = 2; }
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import IntEnum

_VARINT = 0
_LENGTH_DELIMITED = 2
_OP_CODE_INIT = 1


class FwType(IntEnum):
    APPLICATION = 0
    SOFTDEVICE = 1
    BOOTLOADER = 2
    SOFTDEVICE_BOOTLOADER = 3


class HashType(IntEnum):
    NO_HASH = 0
    CRC = 1
    SHA128 = 2
    SHA256 = 3
    SHA512 = 4


@dataclass(frozen=True)
class InitPacket:
    fw_type: FwType
    fw_version: int
    hw_version: int
    hash: bytes
    hash_type: HashType = HashType.SHA256
    sd_req: tuple[int, ...] = ()
    sd_size: int = 0
    bl_size: int = 0
    app_size: int = 0

    def encode(self) -> bytes:
        init = b"".join(
            [
                _uint_field(1, self.fw_version),
                _uint_field(2, self.hw_version),
                _packed_field(3, self.sd_req),
                _uint_field(4, self.fw_type),
                _uint_field(5, self.sd_size) if self.sd_size else b"",
                _uint_field(6, self.bl_size) if self.bl_size else b"",
                _uint_field(7, self.app_size) if self.app_size else b"",
                _bytes_field(8, _uint_field(1, self.hash_type) + _bytes_field(2, self.hash)),
            ]
        )
        command = _uint_field(1, _OP_CODE_INIT) + _bytes_field(2, init)
        return _bytes_field(1, command)


def sha256_digest(image: bytes) -> bytes:
    """SHA-256 of `image`, byte-reversed as the bootloader expects."""
    return hashlib.sha256(image).digest()[::-1]


def for_softdevice(image: bytes, *, hw_version: int, sd_req: tuple[int, ...]) -> InitPacket:
    return InitPacket(
        fw_type=FwType.SOFTDEVICE,
        fw_version=0xFFFFFFFF,
        hw_version=hw_version,
        hash=sha256_digest(image),
        sd_req=sd_req,
        sd_size=len(image),
    )


def for_application(
    image: bytes,
    *,
    fw_version: int,
    hw_version: int,
    sd_req: tuple[int, ...],
) -> InitPacket:
    return InitPacket(
        fw_type=FwType.APPLICATION,
        fw_version=fw_version,
        hw_version=hw_version,
        hash=sha256_digest(image),
        sd_req=sd_req,
        app_size=len(image),
    )


def _varint(value: int) -> bytes:
    if value < 0:
        raise ValueError("init packet fields are unsigned")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _key(field: int, wire_type: int) -> bytes:
    return _varint(field << 3 | wire_type)


def _uint_field(field: int, value: int) -> bytes:
    return _key(field, _VARINT) + _varint(int(value))


def _bytes_field(field: int, payload: bytes) -> bytes:
    return _key(field, _LENGTH_DELIMITED) + _varint(len(payload)) + payload


def _packed_field(field: int, values: tuple[int, ...]) -> bytes:
    if not values:
        return b""
    return _bytes_field(field, b"".join(_varint(v) for v in values))
