"""Domain-specific errors for nirctl."""


class NirctlError(Exception):
    """Base error for nirctl."""


class ProfileValidationError(NirctlError):
    """Raised when a profile file does not conform to schema or semantics."""


class ProfileLoadError(NirctlError):
    """Raised when loading profile sources fails."""


class ProfileResolutionError(NirctlError):
    """Raised when a requested profile id is unknown."""


class TransportError(NirctlError):
    """Base transport error."""


class TransportUnavailableError(TransportError):
    """Raised when the platform lacks the serial or BLE capability."""


class OpenFailedError(TransportError):
    """Raised when a port or device is busy or permission is denied."""


class NoDeviceFoundError(TransportError):
    """Raised when no matching serial port or BLE device was selected."""


class ServiceNotFoundError(TransportError):
    """Raised when the GATT service or characteristic cannot be resolved."""


class HandshakeTimeoutError(TransportError):
    """Raised when a negotiation candidate never answered."""


class WriteFailureError(TransportError):
    """Raised when the transport rejects a write."""


class UnexpectedDisconnectError(TransportError):
    """Raised when the link drops underneath an open channel."""


class ProtocolError(NirctlError):
    """Base command protocol error."""


class NotConnectedError(ProtocolError):
    """Raised when a command is sent without an open channel."""


class AcquisitionBusyError(NirctlError):
    """Raised when an exchange is started while another is in flight."""
