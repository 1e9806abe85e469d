"""Domain-specific errors for encoderctl."""

from __future__ import annotations

from enum import IntEnum


class DeviceErrorCode(IntEnum):
    SUCCESS = 0
    FAIL = 1
    BAD_PARAM = 2
    COMM_ERROR_3 = 3
    COMM_ERROR_4 = 4
    COMM_ERROR_5 = 5
    BAD_HOTEL_INFO = 13
    CARD_MISPLACED = 101
    KEY_MISMATCH = 106


class EncoderctlError(Exception):
    """Base error for encoderctl."""


class ConfigError(EncoderctlError):
    """Raised when configuration cannot be loaded or fails validation."""


class InvalidRecordError(EncoderctlError):
    """Raised when a caller-supplied record has out-of-range or malformed fields."""


class OperationTimeoutError(EncoderctlError):
    """Raised when a subprocess or HTTP call exceeds its configured bound."""


class TransportError(EncoderctlError):
    """Base bridge transport error."""


class SpawnFailure(TransportError):
    """Raised when the bridge executable cannot be launched."""


class TransportFailure(TransportError):
    """Raised when the bridge process exits with a nonzero status."""

    def __init__(self, exit_code: int, stderr: str) -> None:
        self.exit_code = exit_code
        self.stderr = stderr
        detail = f": {stderr}" if stderr else ""
        super().__init__(f"Bridge command failed with code {exit_code}{detail}")


class BridgeTimeoutError(TransportError, OperationTimeoutError):
    """Raised when a bridge invocation exceeds its timeout."""


class MalformedResponseError(EncoderctlError):
    """Raised when bridge output does not match the `Label: value` grammar."""

    def __init__(self, message: str, line: str | None = None) -> None:
        self.line = line
        super().__init__(message)


class DeviceError(EncoderctlError):
    """Raised when the device reports a nonzero result code."""

    def __init__(self, code: int, operation: str | None = None) -> None:
        try:
            self.code: DeviceErrorCode | int = DeviceErrorCode(code)
        except ValueError:
            self.code = code
        self.operation = operation
        prefix = f"{operation} failed" if operation else "Device command failed"
        super().__init__(f"{prefix} with code {code} ({self.code_name})")

    @property
    def code_name(self) -> str:
        if isinstance(self.code, DeviceErrorCode):
            return self.code.name
        return "UNKNOWN"


class CloudError(EncoderctlError):
    """Base error for hotel-management cloud calls."""


class CloudApiError(CloudError):
    """Raised when the cloud response envelope reports a nonzero errcode."""

    def __init__(self, errcode: object, errmsg: str) -> None:
        self.errcode = errcode
        self.errmsg = errmsg
        super().__init__(f"Cloud API error {errcode}: {errmsg}")


class CloudTransportError(CloudError):
    """Raised on HTTP-level failures talking to the cloud service."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class CloudTimeoutError(CloudTransportError, OperationTimeoutError):
    """Raised when a cloud HTTP call times out."""


class CredentialUnavailableError(EncoderctlError):
    """Raised when hotel credential material cannot be resolved."""


class SessionStateError(EncoderctlError):
    """Base error for commands issued in the wrong connection state."""


class NotConnectedError(SessionStateError):
    """Raised when a device command is issued while disconnected."""


class AlreadyConnectedError(SessionStateError):
    """Raised when connecting while bound to a different port."""


class SessionBusyError(EncoderctlError):
    """Raised under the fail-fast policy when a command is already in flight."""
