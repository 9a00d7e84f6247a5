"""Tests for share failure classification."""

import asyncio
import socket

import pytest

from nasbox.services.failure_classifier import (
    CONNECTION_TEST_ERRORS,
    UPLOAD_FAILURE_MESSAGES,
    ErrorCategory,
    ShareFailure,
    classify,
    connection_test_error,
    describe_error,
    upload_failure_message,
)
from nasbox.services.share_client import (
    ShareAuthenticationError,
    ShareInterruptedError,
    ShareNotFoundError,
    SharePermissionError,
    ShareTimeoutError,
    ShareUnreachableError,
)


class TestClassifyByType:
    """Typed errors are classified before messages are inspected."""

    @pytest.mark.parametrize("error, expected", [
        (ShareUnreachableError("x"), ShareFailure.HOST_UNREACHABLE),
        (ShareAuthenticationError("x"), ShareFailure.AUTHENTICATION_FAILED),
        (ShareNotFoundError("x"), ShareFailure.SHARE_NOT_FOUND),
        (SharePermissionError("x"), ShareFailure.REMOTE_PERMISSION_DENIED),
        (ShareTimeoutError("x"), ShareFailure.TIMEOUT),
        (ShareInterruptedError("x"), ShareFailure.NETWORK_INTERRUPTION),
        (socket.gaierror(-2, "Name or service not known"), ShareFailure.HOST_UNREACHABLE),
        (ConnectionRefusedError(111, "refused"), ShareFailure.HOST_UNREACHABLE),
        (TimeoutError(), ShareFailure.TIMEOUT),
        (asyncio.TimeoutError(), ShareFailure.TIMEOUT),
        (ConnectionResetError(104, "reset by peer"), ShareFailure.NETWORK_INTERRUPTION),
        (BrokenPipeError(32, "broken pipe"), ShareFailure.NETWORK_INTERRUPTION),
    ])
    def test_typed_errors(self, error, expected):
        assert classify(error) is expected

    def test_type_wins_over_message(self):
        assert classify(ShareNotFoundError("STATUS_LOGON_FAILURE")) is ShareFailure.SHARE_NOT_FOUND


class TestClassifyByMessage:
    """Untyped errors are matched on their message, case-insensitively."""

    @pytest.mark.parametrize("message, expected", [
        ("STATUS_LOGON_FAILURE: The attempted logon is invalid", ShareFailure.AUTHENTICATION_FAILED),
        ("Logon Failure", ShareFailure.AUTHENTICATION_FAILED),
        ("STATUS_BAD_NETWORK_NAME", ShareFailure.SHARE_NOT_FOUND),
        ("Bad network name for share", ShareFailure.SHARE_NOT_FOUND),
        ("Access is denied.", ShareFailure.REMOTE_PERMISSION_DENIED),
        ("STATUS_ACCESS_DENIED", ShareFailure.REMOTE_PERMISSION_DENIED),
        ("Operation TIMED OUT", ShareFailure.TIMEOUT),
        ("read timeout", ShareFailure.TIMEOUT),
        ("something odd happened", ShareFailure.UNKNOWN),
        ("", ShareFailure.UNKNOWN),
    ])
    def test_messages(self, message, expected):
        assert classify(RuntimeError(message)) is expected

    def test_cause_chain_is_walked(self):
        try:
            try:
                raise ConnectionResetError(104, "reset")
            except ConnectionResetError as inner:
                raise RuntimeError("wrapped") from inner
        except RuntimeError as outer:
            assert classify(outer) is ShareFailure.NETWORK_INTERRUPTION

    def test_cyclic_chain_terminates(self):
        first = RuntimeError("first")
        second = RuntimeError("second")
        first.__cause__ = second
        second.__cause__ = first
        assert classify(first) is ShareFailure.UNKNOWN

    def test_unprintable_error_is_unknown(self):
        class Unprintable(Exception):
            def __str__(self):
                raise ValueError("no")

        assert classify(Unprintable()) is ShareFailure.UNKNOWN

    def test_none_is_unknown(self):
        assert classify(None) is ShareFailure.UNKNOWN


class TestMappings:
    """Every failure maps to a user message and a connection-test category."""

    def test_tables_cover_every_failure(self):
        assert set(UPLOAD_FAILURE_MESSAGES) == set(ShareFailure)
        assert set(CONNECTION_TEST_ERRORS) == set(ShareFailure)

    def test_upload_message(self):
        assert upload_failure_message(ShareFailure.AUTHENTICATION_FAILED) == (
            "Authentication failed. Verify username and password."
        )

    def test_timeout_and_interruption_share_category(self):
        assert connection_test_error(ShareFailure.TIMEOUT).category is ErrorCategory.TIMEOUT_OR_INTERRUPTED
        assert connection_test_error(ShareFailure.NETWORK_INTERRUPTION).category is (
            ErrorCategory.TIMEOUT_OR_INTERRUPTED
        )

    def test_describe_error(self):
        assert describe_error(ValueError("bad value")) == "ValueError: bad value"
        assert describe_error(None) is None
