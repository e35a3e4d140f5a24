"""Domain-specific errors for bleconsole."""


class BleConsoleError(Exception):
    """Base error for bleconsole."""


class AddressError(BleConsoleError):
    """Raised when a characteristic address cannot be resolved."""


class MalformedAddressError(AddressError):
    """Raised when an address token is empty or has more than one '/'."""


class AttributeNotFoundError(AddressError):
    """Raised when a service or characteristic name/index does not match."""


class NoServiceSelectedError(AddressError):
    """Raised when a bare characteristic is addressed with no service selected."""


class FormatError(BleConsoleError):
    """Raised when text cannot be encoded in the active display format."""


class InvalidCharacterError(FormatError):
    """Raised when the input holds a character the format does not allow."""


class InvalidLengthError(FormatError):
    """Raised when the input has the wrong number of digits."""


class OutOfRangeError(FormatError):
    """Raised when a value does not fit in a byte (or in 7-bit ASCII)."""


class TransportFailure(BleConsoleError):
    """Raised when the GATT transport reports a non-success status."""

    def __init__(self, status: str) -> None:
        super().__init__(status)
        self.status = status


class ConnectTimeoutError(TransportFailure):
    """Raised when connecting to a device exceeds the configured timeout."""


class StateError(BleConsoleError):
    """Raised when an operation is not valid in the current session state."""


class NoDeviceConnectedError(StateError):
    """Raised when an operation needs a connected device."""


class AlreadySubscribedError(StateError):
    """Raised when subscribing to a characteristic that is already subscribed."""


class NotSubscribedError(StateError):
    """Raised when unsubscribing from a characteristic that is not subscribed."""
