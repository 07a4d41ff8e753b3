from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from fakes import bootloader_device
from nrf_device_setup import cli
from nrf_device_setup.core.errors import DeviceNotFoundError
from nrf_device_setup.core.model import (
    DfuFirmware,
    DfuInfo,
    FirmwareSpec,
    Profile,
    SetupMode,
    SetupResult,
    TriggerReport,
)

PROFILE = Profile(
    id="pca10059",
    name="nRF52840 Dongle",
    spec=FirmwareSpec(dfu={"connectivity": DfuFirmware(application=Path("c.hex"), semver="fw 1.0.0")}),
)


class FakeClient:
    instances: list[FakeClient] = []

    def __init__(self, *, interaction) -> None:
        self.interaction = interaction
        self.prepared: list[tuple[str, FirmwareSpec]] = []
        self.load_warnings: tuple[str, ...] = ()
        FakeClient.instances.append(self)

    def list_devices(self):
        return [bootloader_device("BOOT1")]

    def list_profiles(self):
        return [PROFILE]

    def get_profile(self, profile: str) -> Profile:
        return PROFILE

    def device_by_serial_number(self, serial_number: str):
        if serial_number != "BOOT1":
            raise DeviceNotFoundError(f"There is no device with serial number {serial_number}")
        return bootloader_device(serial_number)

    def resolve_mode_for_serial_number(self, serial_number: str, spec: FirmwareSpec) -> SetupMode:
        self.device_by_serial_number(serial_number)
        return SetupMode.NEEDS_DFU

    def prepare_serial_number(self, serial_number: str, spec: FirmwareSpec) -> SetupResult:
        self.prepared.append((serial_number, spec))
        return SetupResult(
            device=self.device_by_serial_number(serial_number),
            was_programmed=True,
            details="Programmed connectivity via DFU",
        )

    def read_trigger_report(self, device) -> TriggerReport:
        return TriggerReport(
            serial_number=device.serial_number,
            semver="fw 1.0.0",
            dfu_info=DfuInfo(0x1000, 0x2000, 1, 2, 0xABCD, 0x100000, 0x1000),
            predicted_serial_number="BOOT1",
        )

    def ensure_bootloader_mode(self, device):
        return device


@pytest.fixture(autouse=True)
def fake_client(monkeypatch: pytest.MonkeyPatch) -> None:
    FakeClient.instances = []
    monkeypatch.setattr(cli, "Client", FakeClient)


def test_cli_devices() -> None:
    runner = CliRunner()
    result = runner.invoke(cli.app, ["devices"])
    assert result.exit_code == 0
    assert "BOOT1 [serialport,usb] usb=1915:521f port=/dev/ttyACM0" in result.stdout


def test_cli_profiles() -> None:
    runner = CliRunner()
    result = runner.invoke(cli.app, ["profiles"])
    assert result.exit_code == 0
    assert "pca10059: nRF52840 Dongle" in result.stdout
    assert "dfu: connectivity" in result.stdout


def test_cli_mode() -> None:
    runner = CliRunner()
    result = runner.invoke(cli.app, ["mode", "BOOT1", "--profile", "pca10059"])
    assert result.exit_code == 0
    assert "BOOT1: dfu" in result.stdout


def test_cli_info() -> None:
    runner = CliRunner()
    result = runner.invoke(cli.app, ["info", "BOOT1"])
    assert result.exit_code == 0
    assert "Semver: fw 1.0.0" in result.stdout
    assert "Bootloader version: 1.2" in result.stdout


def test_cli_prepare_yes_skips_prompts() -> None:
    runner = CliRunner()
    result = runner.invoke(cli.app, ["-v", "prepare", "BOOT1", "--profile", "pca10059", "--yes"])
    assert result.exit_code == 0
    assert "programmed" in result.stdout
    client = FakeClient.instances[-1]
    assert client.interaction.confirm is None
    assert client.prepared[0][1] == PROFILE.spec


def test_cli_prepare_prompts_by_default() -> None:
    runner = CliRunner()
    runner.invoke(cli.app, ["prepare", "BOOT1", "--profile", "pca10059"])
    assert FakeClient.instances[-1].interaction.confirm is not None


def test_cli_unknown_device_exits_1() -> None:
    runner = CliRunner()
    result = runner.invoke(cli.app, ["bootloader", "NOPE"])
    assert result.exit_code == 1
    assert "Error: There is no device with serial number NOPE" in result.output


def test_cli_dfu_builds_adhoc_spec(tmp_path: Path) -> None:
    app = tmp_path / "blinky.hex"
    runner = CliRunner()
    result = runner.invoke(
        cli.app,
        ["dfu", "BOOT1", "--application", str(app), "--sd-id", "0x0100", "--sd-id", "b6", "--yes"],
    )
    assert result.exit_code == 0
    spec = FakeClient.instances[-1].prepared[0][1]
    firmware = spec.dfu["blinky"]
    assert firmware.application == app
    assert firmware.params.sd_id == (0x0100, 0xB6)
    assert firmware.params.hw_version == 52


def test_cli_dfu_rejects_bad_sd_id(tmp_path: Path) -> None:
    runner = CliRunner()
    result = runner.invoke(
        cli.app, ["dfu", "BOOT1", "--application", str(tmp_path / "a.hex"), "--sd-id", "zz"]
    )
    assert result.exit_code == 2
