"""Tests for the exception hierarchy."""

from __future__ import annotations

import pytest

from maclient.exceptions import (
    MAAuthError,
    MACommandError,
    MAConnectionError,
    MADetectionError,
    MADetectionTimeoutError,
    MAError,
    MANotConnectedError,
    MASSLError,
    MATimeoutError,
    MAValidationError,
    user_message,
)


class TestHierarchy:
    """Tests for exception inheritance."""

    @pytest.mark.parametrize(
        ("exc_class", "parent"),
        [
            (MAValidationError, MAError),
            (MADetectionError, MAError),
            (MADetectionTimeoutError, MADetectionError),
            (MAAuthError, MAError),
            (MAConnectionError, MAError),
            (MATimeoutError, MAConnectionError),
            (MASSLError, MAConnectionError),
            (MANotConnectedError, MAConnectionError),
            (MACommandError, MAError),
        ],
    )
    def test_inheritance(self, exc_class: type[Exception], parent: type[Exception]) -> None:
        """Test every error can be caught by its parent."""
        assert issubclass(exc_class, parent)

    def test_translation_keys(self) -> None:
        """Test subclasses override the translation key."""
        assert MAConnectionError("x").translation_key == "connection_failed"
        assert MATimeoutError("x").translation_key == "timeout"
        assert MASSLError("x").translation_key == "ssl_error"
        assert MADetectionTimeoutError("x").translation_key == "detection_timeout"

    def test_command_error(self) -> None:
        """Test command errors keep the server's code and details."""
        err = MACommandError("auth/login", 20, "Invalid credentials")
        assert err.error_code == 20
        assert err.command == "auth/login"
        assert str(err) == "auth/login failed: 20 Invalid credentials"
        assert err.translation_placeholders == {"command": "auth/login", "code": "20"}


class TestUserMessage:
    """Tests for user_message."""

    def test_placeholder_substituted(self) -> None:
        """Test the field name ends up in the message."""
        assert user_message(MAValidationError("x", field="server_url")) == (
            "Please check the server_url field."
        )

    def test_auth_message(self) -> None:
        """Test the wrong credentials message."""
        assert "credentials" in user_message(MAAuthError("rejected", strategy="basic"))

    def test_unknown_error(self) -> None:
        """Test non-library errors get a generic message."""
        assert user_message(RuntimeError("boom")) == "Something went wrong. Please try again."
