"""Typer CLI entrypoint."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

import typer

from nrf_device_setup.api import Client
from nrf_device_setup.core.errors import DeviceSetupError
from nrf_device_setup.core.interaction import Interaction
from nrf_device_setup.core.model import DeviceSnapshot, DfuFirmware, DfuParams, FirmwareSpec, SetupResult

app = typer.Typer(help="Prepare Nordic devices for a firmware through DFU or J-Link")


@app.callback()
def main(
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="Log progress; repeat for debug"),
) -> None:
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG if verbose > 1 else logging.INFO,
            format="%(levelname)s %(name)s: %(message)s",
        )


def _choose(message: str, options: Sequence[str]) -> str:
    typer.echo(message)
    for index, option in enumerate(options, start=1):
        typer.echo(f"  {index}) {option}")
    index = typer.prompt("Choice", type=int, default=1)
    if 1 <= index <= len(options):
        return options[index - 1]
    return str(index)


def _build_client(*, assume_yes: bool = False) -> Client:
    interaction = Interaction() if assume_yes else Interaction(confirm=typer.confirm, choose=_choose)
    return Client(interaction=interaction)


def _describe(device: DeviceSnapshot) -> str:
    traits = ",".join(sorted(trait.value for trait in device.traits))
    parts = [device.serial_number, f"[{traits}]"]
    if device.usb is not None:
        parts.append(f"usb={device.usb.vendor_id:04x}:{device.usb.product_id:04x}")
    if device.serialport is not None:
        parts.append(f"port={device.serialport.path}")
    return " ".join(parts)


def _load_spec(client: Client, profile: str) -> FirmwareSpec:
    loaded = client.get_profile(profile)
    for warning in client.load_warnings:
        typer.echo(f"Warning: {warning}", err=True)
    return loaded.spec


@app.command("devices")
def list_devices() -> None:
    """List attached Nordic and J-Link devices."""
    try:
        devices = _build_client().list_devices()
        if not devices:
            typer.echo("No devices found")
            return
        for device in devices:
            typer.echo(_describe(device))
    except DeviceSetupError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("profiles")
def list_profiles() -> None:
    """List installed firmware profiles."""
    try:
        client = _build_client()
        profiles = client.list_profiles()
        for warning in client.load_warnings:
            typer.echo(f"Warning: {warning}", err=True)
        if not profiles:
            typer.echo("No profiles loaded")
            raise typer.Exit(code=1)

        for profile in profiles:
            typer.echo(f"{profile.id}: {profile.name}")
            if profile.spec.dfu:
                typer.echo(f"  dfu: {', '.join(sorted(profile.spec.dfu))}")
            if profile.spec.jprog:
                typer.echo(f"  jprog: {', '.join(sorted(profile.spec.jprog))}")
    except DeviceSetupError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("info")
def device_info(serial_number: str) -> None:
    """Show what an application-mode device reports over its DFU trigger interface."""
    try:
        client = _build_client()
        report = client.read_trigger_report(client.device_by_serial_number(serial_number))
        info = report.dfu_info
        typer.echo(f"Serial number: {report.serial_number}")
        typer.echo(f"Semver: {report.semver}")
        typer.echo(f"Serial number after reset: {report.predicted_serial_number}")
        typer.echo(f"Firmware: 0x{info.address:08x} ({info.firmware_size} bytes), id 0x{info.firmware_id:08x}")
        typer.echo(f"Bootloader version: {info.version_major}.{info.version_minor}")
        typer.echo(f"Flash: {info.flash_size} bytes, {info.flash_page_size} byte pages")
    except DeviceSetupError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("mode")
def resolve_mode(
    serial_number: str,
    profile: str = typer.Option(..., "--profile", "-p", help="Profile ID or YAML file"),
) -> None:
    """Show what a device needs before it runs the profile's firmware."""
    try:
        client = _build_client()
        spec = _load_spec(client, profile)
        mode = client.resolve_mode_for_serial_number(serial_number, spec)
        typer.echo(f"{serial_number}: {mode.value}")
    except DeviceSetupError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def _report(result: SetupResult) -> None:
    status = "programmed" if result.was_programmed else "unchanged"
    typer.echo(f"{_describe(result.device)}: {status}")
    if result.details:
        typer.echo(result.details)


@app.command("prepare")
def prepare(
    serial_number: str,
    profile: str = typer.Option(..., "--profile", "-p", help="Profile ID or YAML file"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask before programming"),
) -> None:
    """Bring a device to the profile's firmware, programming it if needed."""
    try:
        client = _build_client(assume_yes=yes)
        spec = _load_spec(client, profile)
        _report(client.prepare_serial_number(serial_number, spec))
    except DeviceSetupError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("bootloader")
def bootloader(serial_number: str) -> None:
    """Reboot an application-mode device into its DFU bootloader."""
    try:
        client = _build_client()
        device = client.ensure_bootloader_mode(client.device_by_serial_number(serial_number))
        typer.echo(f"{_describe(device)}: in bootloader")
    except DeviceSetupError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("dfu")
def dfu(
    serial_number: str,
    application: Path = typer.Option(..., "--application", help="Application HEX file"),
    softdevice: Path | None = typer.Option(None, "--softdevice", help="SoftDevice HEX file"),
    semver: str | None = typer.Option(None, "--semver", help="Semver the application reports"),
    sd_id: list[str] = typer.Option([], "--sd-id", help="SoftDevice ID the application needs (hex)"),
    hw_version: int = typer.Option(DfuParams.hw_version, "--hw-version"),
    fw_version: int = typer.Option(DfuParams.fw_version, "--fw-version"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask before programming"),
) -> None:
    """Program HEX images over DFU without a profile."""
    try:
        sd_ids = tuple(int(value, 16) for value in sd_id)
    except ValueError:
        typer.echo(f"Error: --sd-id values must be hex, got {', '.join(sd_id)}", err=True)
        raise typer.Exit(code=2) from None

    spec = FirmwareSpec(
        dfu={
            application.stem: DfuFirmware(
                application=application,
                softdevice=softdevice,
                semver=semver,
                params=DfuParams(hw_version=hw_version, fw_version=fw_version, sd_id=sd_ids),
            )
        }
    )
    try:
        _report(_build_client(assume_yes=yes).prepare_serial_number(serial_number, spec))
    except DeviceSetupError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
