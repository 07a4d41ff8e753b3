from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from fakes import (
    APP_HEX,
    CDC,
    FAST,
    GAPPED_HEX,
    FakeDfu,
    FakeLister,
    FakeProbe,
    FakeSerialOpener,
    FakeUsbDevice,
    app_device,
    bootloader_device,
)
from nrf_device_setup.core.errors import DfuFailedError, SetupCancelledError
from nrf_device_setup.core.init_packet import for_application, for_softdevice
from nrf_device_setup.core.interaction import Interaction
from nrf_device_setup.core.model import (
    BootloaderUpdate,
    DfuFirmware,
    DfuParams,
    DfuUpdate,
    FirmwareSpec,
    FirmwareVersion,
    ImageType,
    Trait,
)
from nrf_device_setup.core.service import DeviceSetup

SPEC = FirmwareSpec(dfu={"app": DfuFirmware(application=APP_HEX, semver="fw 1.0.0")})


def _setup(
    lister: FakeLister,
    dfu: FakeDfu,
    *,
    interaction: Interaction | None = None,
    serial: FakeSerialOpener | None = None,
) -> DeviceSetup:
    return DeviceSetup(
        lister=lister,
        dfu=dfu,
        probe=FakeProbe(),
        serial=serial or FakeSerialOpener(),
        interaction=interaction,
        config=FAST,
        platform="linux",
    )


def test_bootloader_device_is_programmed_without_prompts() -> None:
    device = bootloader_device("BOOT1")
    lister = FakeLister()
    lister.show(device)
    dfu = FakeDfu()

    result = asyncio.run(_setup(lister, dfu).prepare(device, SPEC))

    assert result.was_programmed
    assert result.device.has(Trait.SERIALPORT)
    assert len(dfu.performed) == 1
    port, updates = dfu.performed[0]
    assert port == "/dev/ttyACM0"
    assert updates[0].firmware_image == bytes([1, 2, 3, 4])
    expected = for_application(bytes([1, 2, 3, 4]), fw_version=4, hw_version=52, sd_req=())
    assert updates[0].init_packet == expected.encode()


def test_application_device_is_detached_then_programmed() -> None:
    lister = FakeLister()
    usbdev = FakeUsbDevice(serial_number="APP1", semver="fw 0.9.0")
    usbdev.on_detach = lambda: lister.show(bootloader_device("APP1"))
    device = app_device(usbdev, "APP1")
    lister.show(device)
    dfu = FakeDfu()
    prompts: list[str] = []

    def confirm(message: str) -> bool:
        prompts.append(message)
        return True

    result = asyncio.run(_setup(lister, dfu, interaction=Interaction(confirm=confirm)).prepare(device, SPEC))

    assert usbdev.detached
    assert result.was_programmed
    assert result.details == "Programmed app via DFU"
    assert prompts == ["Device must be programmed, do you want to proceed?"]
    assert dfu.performed[0][0] == "/dev/ttyACM0"


def test_declined_confirmation_leaves_device_alone() -> None:
    lister = FakeLister()
    usbdev = FakeUsbDevice(semver="fw 0.9.0")
    device = app_device(usbdev)
    lister.show(device)
    dfu = FakeDfu()

    with pytest.raises(SetupCancelledError) as excinfo:
        asyncio.run(_setup(lister, dfu, interaction=Interaction(confirm=lambda m: False)).prepare(device, SPEC))

    assert excinfo.value.device == device
    assert excinfo.value.device.traits == device.traits
    assert not excinfo.value.was_programmed
    assert not usbdev.detached
    assert dfu.performed == []


def test_softdevice_goes_before_application() -> None:
    device = bootloader_device("BOOT1")
    lister = FakeLister()
    lister.show(device)
    dfu = FakeDfu()
    spec = FirmwareSpec(
        dfu={
            "app": DfuFirmware(
                application=APP_HEX,
                softdevice=GAPPED_HEX,
                params=DfuParams(sd_id=(0x0100,)),
            )
        }
    )

    asyncio.run(_setup(lister, dfu).prepare(device, spec))

    softdevice = bytes([0xAA, 0xBB, 0xFF, 0xFF, 0xCC, 0xDD])
    assert [updates[0].firmware_image for _, updates in dfu.performed] == [softdevice, bytes([1, 2, 3, 4])]
    assert [updates[0].key for _, updates in dfu.performed] == ["softdevice", "application"]
    assert dfu.performed[0][1][0].init_packet == for_softdevice(softdevice, hw_version=52, sd_req=(0xFE,)).encode()
    assert dfu.performed[1][1][0].init_packet == for_application(
        bytes([1, 2, 3, 4]), fw_version=4, hw_version=52, sd_req=(0x0100,)
    ).encode()


def test_application_follows_when_device_is_gone_after_softdevice() -> None:
    device = bootloader_device("BOOT1")
    lister = FakeLister()
    lister.show(device)

    def replug(updates: list[DfuUpdate]) -> None:
        if updates[0].key == "softdevice":
            lister.show()
        else:
            lister.show(device)

    dfu = FakeDfu(on_perform=replug)
    spec = FirmwareSpec(dfu={"app": DfuFirmware(application=APP_HEX, softdevice=GAPPED_HEX)})

    result = asyncio.run(_setup(lister, dfu).prepare(device, spec))

    assert result.was_programmed
    assert result.device.serial_number == "BOOT1"
    assert [updates[0].key for _, updates in dfu.performed] == ["softdevice", "application"]


def test_async_choice_hook_selects_firmware() -> None:
    device = bootloader_device("BOOT1")
    lister = FakeLister()
    lister.show(device)
    dfu = FakeDfu()
    spec = FirmwareSpec(
        dfu={
            "first": DfuFirmware(application=GAPPED_HEX),
            "second": DfuFirmware(application=APP_HEX),
        }
    )
    offered: list[list[str]] = []

    async def choose(message: str, options) -> str:
        offered.append(list(options))
        return "second"

    result = asyncio.run(_setup(lister, dfu, interaction=Interaction(choose=choose)).prepare(device, spec))

    assert offered == [["first", "second"]]
    assert dfu.performed[0][1][0].firmware_image == bytes([1, 2, 3, 4])
    assert result.details == "Programmed second via DFU"


def test_unknown_choice_fails() -> None:
    device = bootloader_device("BOOT1")
    lister = FakeLister()
    lister.show(device)
    spec = FirmwareSpec(dfu={"a": DfuFirmware(application=APP_HEX), "b": DfuFirmware(application=APP_HEX)})
    interaction = Interaction(choose=lambda message, options: "c")

    with pytest.raises(DfuFailedError, match="Unknown firmware choice"):
        asyncio.run(_setup(lister, FakeDfu(), interaction=interaction).prepare(device, spec))


def test_transfer_failure_is_wrapped() -> None:
    device = bootloader_device("BOOT1")
    lister = FakeLister()
    lister.show(device)

    with pytest.raises(DfuFailedError, match="BOOT1") as excinfo:
        asyncio.run(_setup(lister, FakeDfu(fail=True)).prepare(device, SPEC))

    assert "transfer failed" in str(excinfo.value.__cause__)


def test_old_bootloader_is_updated_first() -> None:
    device = bootloader_device("BOOT1")
    lister = FakeLister()
    lister.show(device)
    bundle = [
        DfuUpdate(init_packet=b"s", firmware_image=b"S", key="softdevice"),
        DfuUpdate(init_packet=b"b", firmware_image=b"B", key="bootloader"),
    ]
    dfu = FakeDfu(versions=[FirmwareVersion(image_type=ImageType.BOOTLOADER, version=2)], bundle=bundle)
    spec = FirmwareSpec(dfu=SPEC.dfu, bootloader=BootloaderUpdate(bundle=Path("bl.zip")))

    asyncio.run(_setup(lister, dfu).prepare(device, spec))

    assert dfu.loaded == [Path("bl.zip")]
    assert dfu.performed[0][1] == bundle
    assert len(dfu.performed) == 2


def test_declined_bootloader_update_continues() -> None:
    device = bootloader_device("BOOT1")
    lister = FakeLister()
    lister.show(device)
    dfu = FakeDfu(versions=[FirmwareVersion(image_type=ImageType.BOOTLOADER, version=2)])
    spec = FirmwareSpec(dfu=SPEC.dfu, bootloader=BootloaderUpdate(bundle=Path("bl.zip"), min_version=3))
    interaction = Interaction(confirm=lambda message: "bootloader" not in message)

    result = asyncio.run(_setup(lister, dfu, interaction=interaction).prepare(device, spec))

    assert result.was_programmed
    assert dfu.loaded == []
    assert len(dfu.performed) == 1


def test_serial_port_check_retries() -> None:
    device = bootloader_device("BOOT1")
    lister = FakeLister()
    lister.show(device)
    serial = FakeSerialOpener(failures=2)
    spec = FirmwareSpec(dfu=SPEC.dfu, need_serialport=True)

    asyncio.run(_setup(lister, FakeDfu(), serial=serial).prepare(device, spec))

    assert serial.attempts == ["/dev/ttyACM0"] * 3


def test_ensure_bootloader_mode() -> None:
    lister = FakeLister()
    usbdev = FakeUsbDevice(serial_number="APP1")
    usbdev.on_detach = lambda: lister.show(bootloader_device("APP1"))
    setup = _setup(lister, FakeDfu())

    device = asyncio.run(setup.ensure_bootloader_mode(app_device(usbdev, "APP1")))

    assert device.usb.product_id == 0x521F


def test_ensure_bootloader_needs_trigger_interface() -> None:
    device = app_device(FakeUsbDevice(interfaces=[CDC]))

    with pytest.raises(DfuFailedError, match="no DFU trigger interface"):
        asyncio.run(_setup(FakeLister(), FakeDfu()).ensure_bootloader_mode(device))
