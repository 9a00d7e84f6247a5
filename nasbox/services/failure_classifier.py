"""Classification of share transport failures."""

import asyncio
import socket
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Type

from nasbox.services.share_client import (
    ShareAuthenticationError,
    ShareInterruptedError,
    ShareNotFoundError,
    SharePermissionError,
    ShareTimeoutError,
    ShareUnreachableError,
)


class ShareFailure(str, Enum):
    HOST_UNREACHABLE = "HOST_UNREACHABLE"
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
    SHARE_NOT_FOUND = "SHARE_NOT_FOUND"
    REMOTE_PERMISSION_DENIED = "REMOTE_PERMISSION_DENIED"
    TIMEOUT = "TIMEOUT"
    NETWORK_INTERRUPTION = "NETWORK_INTERRUPTION"
    UNKNOWN = "UNKNOWN"


class ErrorCategory(str, Enum):
    """Connection-test outcome category shown to the user."""

    NONE = "NONE"
    HOST_UNREACHABLE = "HOST_UNREACHABLE"
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
    SHARE_NOT_FOUND = "SHARE_NOT_FOUND"
    REMOTE_PERMISSION_DENIED = "REMOTE_PERMISSION_DENIED"
    TIMEOUT_OR_INTERRUPTED = "TIMEOUT_OR_INTERRUPTED"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class MappedError:
    category: ErrorCategory
    message: str
    recovery_hint: str


# Checked in order; socket.gaierror and TimeoutError are OSError subclasses,
# so the typed table must run before any broader match.
TYPED_FAILURES: Tuple[Tuple[Tuple[Type[BaseException], ...], ShareFailure], ...] = (
    ((ShareUnreachableError,), ShareFailure.HOST_UNREACHABLE),
    ((ShareAuthenticationError,), ShareFailure.AUTHENTICATION_FAILED),
    ((ShareNotFoundError,), ShareFailure.SHARE_NOT_FOUND),
    ((SharePermissionError,), ShareFailure.REMOTE_PERMISSION_DENIED),
    ((ShareTimeoutError,), ShareFailure.TIMEOUT),
    ((ShareInterruptedError,), ShareFailure.NETWORK_INTERRUPTION),
    ((socket.gaierror, socket.herror, ConnectionRefusedError), ShareFailure.HOST_UNREACHABLE),
    ((TimeoutError, asyncio.TimeoutError, socket.timeout), ShareFailure.TIMEOUT),
    (
        (ConnectionResetError, ConnectionAbortedError, BrokenPipeError, asyncio.IncompleteReadError, EOFError),
        ShareFailure.NETWORK_INTERRUPTION,
    ),
)

MESSAGE_PHRASES: Tuple[Tuple[Tuple[str, ...], ShareFailure], ...] = (
    (("logon failure", "status_logon_failure"), ShareFailure.AUTHENTICATION_FAILED),
    (("bad network name", "status_bad_network_name"), ShareFailure.SHARE_NOT_FOUND),
    (("access denied", "access is denied", "status_access_denied"), ShareFailure.REMOTE_PERMISSION_DENIED),
    (("timeout", "timed out"), ShareFailure.TIMEOUT),
    (("name or service not known", "no route to host", "connection refused"), ShareFailure.HOST_UNREACHABLE),
)

UPLOAD_FAILURE_MESSAGES = {
    ShareFailure.HOST_UNREACHABLE: "Server is unreachable.",
    ShareFailure.AUTHENTICATION_FAILED: "Authentication failed. Verify username and password.",
    ShareFailure.SHARE_NOT_FOUND: "SMB share not found.",
    ShareFailure.REMOTE_PERMISSION_DENIED: "Remote permissions denied upload access.",
    ShareFailure.TIMEOUT: "Connection timed out while uploading.",
    ShareFailure.NETWORK_INTERRUPTION: "Network interrupted during upload.",
    ShareFailure.UNKNOWN: "Upload failed due to an unknown connection issue.",
}

CONNECTION_TEST_ERRORS = {
    ShareFailure.HOST_UNREACHABLE: MappedError(
        ErrorCategory.HOST_UNREACHABLE,
        "Unable to reach the host.",
        "Check host name/IP and network connectivity.",
    ),
    ShareFailure.AUTHENTICATION_FAILED: MappedError(
        ErrorCategory.AUTHENTICATION_FAILED,
        "Authentication failed.",
        "Verify username and password.",
    ),
    ShareFailure.SHARE_NOT_FOUND: MappedError(
        ErrorCategory.SHARE_NOT_FOUND,
        "SMB share not found.",
        "Check the configured share name.",
    ),
    ShareFailure.REMOTE_PERMISSION_DENIED: MappedError(
        ErrorCategory.REMOTE_PERMISSION_DENIED,
        "Remote permission denied.",
        "Ensure the account has permission to access the share.",
    ),
    ShareFailure.TIMEOUT: MappedError(
        ErrorCategory.TIMEOUT_OR_INTERRUPTED,
        "Connection timed out or was interrupted.",
        "Retry on a stable network and validate SMB server availability.",
    ),
    ShareFailure.NETWORK_INTERRUPTION: MappedError(
        ErrorCategory.TIMEOUT_OR_INTERRUPTED,
        "Connection timed out or was interrupted.",
        "Retry on a stable network and validate SMB server availability.",
    ),
    ShareFailure.UNKNOWN: MappedError(
        ErrorCategory.UNKNOWN,
        "Connection test failed.",
        "Review server details and try again.",
    ),
}

_missing = [
    failure for failure in ShareFailure
    if failure not in UPLOAD_FAILURE_MESSAGES or failure not in CONNECTION_TEST_ERRORS
]
if _missing:
    raise RuntimeError(f"Failure mappings are missing entries for {_missing}")


def _message_of(error: BaseException) -> str:
    try:
        return str(error).lower()
    except Exception:
        return ""


def _classify_single(error: BaseException) -> Optional[ShareFailure]:
    for types, failure in TYPED_FAILURES:
        if isinstance(error, types):
            return failure

    message = _message_of(error)
    for phrases, failure in MESSAGE_PHRASES:
        if any(phrase in message for phrase in phrases):
            return failure
    return None


def classify(error: Optional[BaseException]) -> ShareFailure:
    """Map a transport error to a ShareFailure.

    The error itself is checked first by type, then by message. When neither
    matches, the chain of causes (``__cause__`` then ``__context__``) is
    walked the same way. Never raises.

    Args:
        error: The exception raised by the share client.

    Returns:
        The matching failure, or ShareFailure.UNKNOWN.
    """
    seen = set()
    current = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        failure = _classify_single(current)
        if failure is not None:
            return failure
        current = current.__cause__ or current.__context__
    return ShareFailure.UNKNOWN


def upload_failure_message(failure: ShareFailure) -> str:
    return UPLOAD_FAILURE_MESSAGES[failure]


def connection_test_error(failure: ShareFailure) -> MappedError:
    return CONNECTION_TEST_ERRORS[failure]


def describe_error(error: Optional[BaseException]) -> Optional[str]:
    """Short ``Type: message`` detail for log lines."""
    if error is None:
        return None
    try:
        message = str(error)
    except Exception:
        message = ""
    return f"{type(error).__name__}: {message}".strip()
