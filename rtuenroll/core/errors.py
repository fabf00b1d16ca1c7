"""Domain-specific errors for rtuenroll."""


class EnrollError(Exception):
    """Base error for rtuenroll."""


class ConfigError(EnrollError):
    """Raised when the configuration file cannot be read or validated."""


class TargetSourceError(EnrollError):
    """Raised when a target list cannot be loaded or persisted."""


class TargetValidationError(TargetSourceError):
    """Raised when a target file does not conform to schema or semantics."""


class TransportError(EnrollError):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised when the serial channel cannot be opened."""


class TransportNotConnectedError(TransportError):
    """Raised when a bus operation is attempted on a disconnected transport."""


class BusTimeoutError(EnrollError):
    """Raised when a device gives no, a garbled, or an exception response."""


class AddressCollisionError(EnrollError):
    """Raised when the target address already answers before it is written."""


class VerificationError(EnrollError):
    """Raised when a device never stabilizes at its new address."""


class OperationCanceled(EnrollError):
    """Raised when the operator cancels the enrollment run."""
