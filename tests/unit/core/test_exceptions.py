"""
Unit tests for core.exceptions module.

Tests:
- Hierarchy: every error derives from RoostrError through its category base
- ConnectionClosedError close code and reason
- SubscriptionCancelledError subscription id and message
- Catching by category base
"""

import pytest

from roostr.core.exceptions import (
    Bech32Error,
    ConfigurationError,
    ConnectionClosedError,
    ConnectivityError,
    EventIdMismatchError,
    EventVerificationError,
    FrameError,
    HandshakeError,
    IdentityError,
    InvalidChecksumError,
    InvalidDataError,
    InvalidHrpError,
    InvalidNpubError,
    InvalidPubkeyError,
    MalformedEventError,
    MessageTooLargeError,
    Nip05Error,
    Nip05FetchError,
    Nip05FormatError,
    Nip05InvalidPubkeyError,
    Nip05NotFoundError,
    ProtocolError,
    RelayMessageError,
    RelaySSLError,
    RelayTimeoutError,
    RoostrError,
    SignatureMismatchError,
    StorageError,
    SubscriptionCancelledError,
    SyncInProgressError,
)


class TestHierarchy:
    """Exception class hierarchy."""

    @pytest.mark.parametrize(
        ("exc_class", "base"),
        [
            (ConfigurationError, RoostrError),
            (ConnectivityError, RoostrError),
            (RelayTimeoutError, ConnectivityError),
            (RelaySSLError, ConnectivityError),
            (HandshakeError, ConnectivityError),
            (ConnectionClosedError, ConnectivityError),
            (ProtocolError, RoostrError),
            (FrameError, ProtocolError),
            (MessageTooLargeError, FrameError),
            (RelayMessageError, ProtocolError),
            (EventVerificationError, RoostrError),
            (MalformedEventError, EventVerificationError),
            (EventIdMismatchError, EventVerificationError),
            (SignatureMismatchError, EventVerificationError),
            (Bech32Error, RoostrError),
            (InvalidChecksumError, Bech32Error),
            (InvalidHrpError, Bech32Error),
            (InvalidDataError, Bech32Error),
            (InvalidNpubError, Bech32Error),
            (IdentityError, RoostrError),
            (InvalidPubkeyError, IdentityError),
            (Nip05Error, IdentityError),
            (Nip05FormatError, Nip05Error),
            (Nip05FetchError, Nip05Error),
            (Nip05NotFoundError, Nip05Error),
            (Nip05InvalidPubkeyError, Nip05Error),
            (SubscriptionCancelledError, RoostrError),
            (StorageError, RoostrError),
            (SyncInProgressError, RoostrError),
        ],
    )
    def test_subclass(self, exc_class: type[Exception], base: type[Exception]) -> None:
        assert issubclass(exc_class, base)

    def test_base_is_exception(self) -> None:
        assert issubclass(RoostrError, Exception)

    def test_verification_is_not_connectivity(self) -> None:
        assert not issubclass(EventVerificationError, ConnectivityError)
        assert not issubclass(RelayMessageError, ConnectivityError)

    def test_catch_by_category(self) -> None:
        with pytest.raises(ConnectivityError):
            raise RelayTimeoutError("timed out")
        with pytest.raises(IdentityError):
            raise Nip05NotFoundError("bob not found")


class TestConnectionClosedError:
    """ConnectionClosedError attributes."""

    def test_defaults(self) -> None:
        err = ConnectionClosedError()
        assert str(err) == "connection closed"
        assert err.code is None
        assert err.reason == ""

    def test_code_and_reason(self) -> None:
        err = ConnectionClosedError("closed by peer", code=1001, reason="going away")
        assert str(err) == "closed by peer"
        assert err.code == 1001
        assert err.reason == "going away"


class TestSubscriptionCancelledError:
    """SubscriptionCancelledError attributes."""

    def test_message_and_id(self) -> None:
        err = SubscriptionCancelledError("sub-3")
        assert err.subscription_id == "sub-3"
        assert str(err) == "subscription sub-3 cancelled"
