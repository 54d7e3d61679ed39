"""
Result and Error Model

Every engine operation returns a ``Result``: either ``Success(value)`` or
``Failure(error)``.  Negative outcomes that are expected ("not rooted",
"no devices found") are successes carrying ``False`` or an empty list;
only operations that could not run at all come back as failures.
"""

import traceback
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Generic, Optional, TypeVar, Union

T = TypeVar("T")


class ErrorKind(Enum):
    """Closed set of failure categories."""

    DEVICE_NOT_ROOTED = "device_not_rooted"
    NETWORK_SCAN = "network_scan"
    BLOCK_DEVICE = "block_device"
    UNBLOCK_DEVICE = "unblock_device"
    NETWORK_ACCESS = "network_access"
    COMMAND_EXECUTION = "command_execution"
    NATIVE_LIBRARY = "native_library"
    INVALID_IP_ADDRESS = "invalid_ip_address"
    INVALID_MAC_ADDRESS = "invalid_mac_address"
    UNKNOWN = "unknown"


_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.DEVICE_NOT_ROOTED: "Device is not rooted",
    ErrorKind.NETWORK_SCAN: "Error scanning network",
    ErrorKind.BLOCK_DEVICE: "Error blocking device",
    ErrorKind.UNBLOCK_DEVICE: "Error unblocking device",
    ErrorKind.NETWORK_ACCESS: "Network access error",
    ErrorKind.COMMAND_EXECUTION: "Error executing network command",
    ErrorKind.NATIVE_LIBRARY: "Native library/helper error",
    ErrorKind.INVALID_IP_ADDRESS: "Invalid IP address",
    ErrorKind.INVALID_MAC_ADDRESS: "Invalid MAC address",
    ErrorKind.UNKNOWN: "Unknown error occurred",
}


@dataclass(frozen=True)
class NetworkError:
    """A classified failure with an optional underlying exception."""

    kind: ErrorKind
    cause: Optional[BaseException] = None
    detail: Optional[str] = None

    @property
    def message(self) -> str:
        base = _MESSAGES[self.kind]
        return f"{base}: {self.detail}" if self.detail else base

    def stack_trace(self) -> str:
        if self.cause is None:
            return "No stack trace available"
        return "".join(
            traceback.format_exception(
                type(self.cause), self.cause, self.cause.__traceback__
            )
        )

    def detailed_report(self) -> str:
        """Message plus cause type, cause text and stack trace."""
        lines = [f"Error: {self.message}"]
        if self.cause is not None:
            lines.append(f"Cause: {type(self.cause).__name__}")
            lines.append(f"Message: {self.cause}")
            lines.append("Stack Trace:")
            lines.append(self.stack_trace())
        return "\n".join(lines)

    def to_dict(self) -> Dict:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "cause": repr(self.cause) if self.cause is not None else None,
        }

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message} ({type(self.cause).__name__}: {self.cause})"
        return self.message


class NetworkOperationError(Exception):
    """Raised by ``unwrap()`` when a failure is forced into a value."""

    def __init__(self, error: NetworkError):
        super().__init__(str(error))
        self.error = error


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Failure:
    error: NetworkError

    @property
    def ok(self) -> bool:
        return False

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind

    def unwrap(self):
        raise NetworkOperationError(self.error)


Result = Union[Success[T], Failure]


def success(value: T) -> Success[T]:
    return Success(value)


def failure(
    kind: ErrorKind,
    cause: Optional[BaseException] = None,
    detail: Optional[str] = None,
) -> Failure:
    return Failure(NetworkError(kind=kind, cause=cause, detail=detail))
