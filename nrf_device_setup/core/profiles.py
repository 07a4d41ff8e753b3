"""Firmware profile loading and validation for YAML-based profiles."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from nrf_device_setup.core.errors import ProfileLoadError, ProfileValidationError
from nrf_device_setup.core.model import (
    BootloaderUpdate,
    DfuFirmware,
    DfuParams,
    FirmwareSpec,
    JprogFirmware,
    Profile,
)

_HEX_RE = re.compile(r"^[0-9a-f]+$")
LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ProfileValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class LoadedProfiles:
    profiles: dict[str, Profile]
    warnings: tuple[str, ...]


def _load_schema_validator() -> Any:
    schema_text = resources.files("nrf_device_setup.schemas").joinpath("profile.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def profile_dirs() -> tuple[Path, Path]:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return xdg_config / "nrf-device-setup/profiles", xdg_data / "nrf-device-setup/profiles"


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ProfileLoadError(f"Could not read profile file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ProfileValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ProfileValidationError(f"Profile file {path} must contain a mapping at root")
    return loaded


def _normalize_hex(value: str, *, context: str) -> bytes:
    normalized = value.strip().lower().replace(" ", "")
    if len(normalized) % 2 != 0:
        raise ProfileValidationError(f"{context} must have even-length hex")
    if not _HEX_RE.match(normalized):
        raise ProfileValidationError(f"{context} must contain only [0-9a-f]")
    return bytes.fromhex(normalized)


def _resolve(base: Path, value: str) -> Path:
    path = Path(os.path.expanduser(value))
    return path if path.is_absolute() else base / path


def _build_profile(doc: dict[str, Any], source: Path) -> Profile:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ProfileValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    base = source.parent
    dfu: dict[str, DfuFirmware] = {}
    for key, entry in doc.get("dfu", {}).items():
        params = entry.get("params", {})
        dfu[key] = DfuFirmware(
            application=_resolve(base, entry["application"]),
            softdevice=_resolve(base, entry["softdevice"]) if "softdevice" in entry else None,
            semver=entry.get("semver"),
            params=DfuParams(
                hw_version=params.get("hw_version", DfuParams.hw_version),
                fw_version=params.get("fw_version", DfuParams.fw_version),
                sd_req=tuple(params.get("sd_req", DfuParams.sd_req)),
                sd_id=tuple(params.get("sd_id", DfuParams.sd_id)),
            ),
        )

    jprog: dict[str, JprogFirmware] = {}
    for family, entry in doc.get("jprog", {}).items():
        if "fw_version_hex" in entry:
            fw_version: bytes | str = _normalize_hex(
                entry["fw_version_hex"], context=f"{doc['id']}.jprog.{family}.fw_version_hex"
            )
        else:
            fw_version = entry["fw_version"]
        jprog[family.lower()] = JprogFirmware(
            fw=_resolve(base, entry["fw"]),
            fw_version=fw_version,
            fw_id_address=entry["fw_id_address"],
        )

    bootloader = None
    if "bootloader" in doc:
        bootloader = BootloaderUpdate(
            bundle=_resolve(base, doc["bootloader"]["bundle"]),
            min_version=doc["bootloader"].get("min_version"),
        )

    return Profile(
        id=doc["id"],
        name=doc["name"],
        spec=FirmwareSpec(
            dfu=dfu,
            jprog=jprog,
            need_serialport=doc.get("need_serialport", False),
            bootloader=bootloader,
        ),
    )


def load_profile_file(path: Path) -> Profile:
    return _build_profile(_read_yaml(path), path)


def _iter_user_profile_paths() -> list[Path]:
    paths: list[Path] = []
    # Data dir first so that config dir profiles override it.
    for directory in reversed(profile_dirs()):
        if not directory.exists() or not directory.is_dir():
            continue
        paths.extend(sorted(p for p in directory.iterdir() if p.suffix in {".yml", ".yaml"}))
    return paths


def load_profiles() -> LoadedProfiles:
    profiles: dict[str, Profile] = {}
    warnings: list[str] = []

    for path in _iter_user_profile_paths():
        profile = load_profile_file(path)
        if profile.id in profiles:
            warning = f"Profile '{profile.id}' from {path} overrides an earlier definition"
            LOGGER.warning(warning)
            warnings.append(warning)
        profiles[profile.id] = profile

    return LoadedProfiles(profiles=profiles, warnings=tuple(warnings))
