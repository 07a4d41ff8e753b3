"""Domain-specific errors for nrf-device-setup."""


class DeviceSetupError(Exception):
    """Base error for nrf-device-setup."""

    retryable = False


class DeviceNotFoundError(DeviceSetupError):
    """Raised when an expected device is not (re)enumerated in time."""

    retryable = True

    def __init__(self, message: str, *, serial_number: str | None = None) -> None:
        super().__init__(message)
        self.serial_number = serial_number


class DetachFailedError(DeviceSetupError):
    """Raised when a detach request is rejected for an unrecognized reason."""


class MissingSerialPortError(DeviceSetupError):
    """Raised when a required serial port is absent after classification."""


class UnsupportedFamilyError(DeviceSetupError):
    """Raised when no firmware entry exists for the detected device family."""

    def __init__(self, message: str, *, family: str | None = None) -> None:
        super().__init__(message)
        self.family = family


class DfuFailedError(DeviceSetupError):
    """Raised when any DFU step fails for a reason other than cancellation."""


class ProgrammingFailedError(DeviceSetupError):
    """Raised when J-Link programming fails."""


class SetupCancelledError(DeviceSetupError):
    """Raised when the user declines at a confirmation gate.

    The device is left as it was; `device` is the snapshot the flow held
    when it was cancelled.
    """

    was_programmed = False

    def __init__(self, message: str = "Preparation cancelled by user", *, device=None) -> None:
        super().__init__(message)
        self.device = device


class FirmwareImageError(DeviceSetupError):
    """Raised when a firmware image cannot be read or parsed."""


class ProfileLoadError(DeviceSetupError):
    """Raised when reading profile sources fails."""


class ProfileValidationError(DeviceSetupError):
    """Raised when a profile does not conform to schema or semantics."""


class TransportError(DeviceSetupError):
    """Base transport error."""


class UsbTransferError(TransportError):
    """Raised when a USB operation fails; `code` is the libusb error code."""

    def __init__(self, message: str, *, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


class SerialPortError(TransportError):
    """Raised when a serial port cannot be opened or used."""


class ProbeError(TransportError):
    """Raised on debug probe failures."""


class DfuTransportError(TransportError):
    """Raised when the DFU collaborator fails."""


class EnumerationError(TransportError):
    """Raised when listing attached devices fails."""
