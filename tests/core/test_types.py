"""Tests for shared types and the error taxonomy."""

from __future__ import annotations

import pytest

from davsync.core.errors import ErrorKind, StorageError
from davsync.core.types import (
    ConnectionState,
    ConnectionTracker,
    QuotaInfo,
    SyncReport,
)


class TestQuotaInfo:
    """Tests for QuotaInfo."""

    def test_default_unknown(self) -> None:
        """Default quota should be all unknown."""
        quota = QuotaInfo()
        assert (quota.used, quota.available, quota.total) == (-1, -1, -1)
        assert not quota.is_known

    def test_total_computed_when_both_known(self) -> None:
        """Total should be the sum when both counts are known."""
        quota = QuotaInfo.from_counts(100, 900)
        assert quota.total == 1000
        assert quota.is_known

    def test_total_unknown_when_one_missing(self) -> None:
        """Total should stay unknown if either count is unknown."""
        assert QuotaInfo.from_counts(100, -1).total == -1
        assert QuotaInfo.from_counts(-1, 900).total == -1


class TestConnectionTracker:
    """Tests for the connection state machine."""

    def test_happy_path(self) -> None:
        """DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED is legal."""
        tracker = ConnectionTracker()
        assert tracker.state is ConnectionState.DISCONNECTED
        tracker.transition(ConnectionState.CONNECTING)
        tracker.transition(ConnectionState.CONNECTED)
        tracker.transition(ConnectionState.DISCONNECTED)
        assert tracker.state is ConnectionState.DISCONNECTED

    def test_connecting_to_error(self) -> None:
        """A failed connection should land in ERROR."""
        tracker = ConnectionTracker()
        tracker.transition(ConnectionState.CONNECTING)
        tracker.transition(ConnectionState.ERROR)
        assert tracker.state is ConnectionState.ERROR

    @pytest.mark.parametrize(
        "target",
        [ConnectionState.CONNECTED, ConnectionState.ERROR, ConnectionState.DISCONNECTED],
    )
    def test_illegal_from_disconnected(self, target: ConnectionState) -> None:
        """Only CONNECTING may follow DISCONNECTED."""
        tracker = ConnectionTracker()
        with pytest.raises(StorageError) as exc_info:
            tracker.transition(target)
        assert exc_info.value.kind is ErrorKind.INVALID_OPERATION
        assert tracker.state is ConnectionState.DISCONNECTED

    def test_error_is_terminal(self) -> None:
        """No transition should leave ERROR."""
        tracker = ConnectionTracker()
        tracker.transition(ConnectionState.CONNECTING)
        tracker.transition(ConnectionState.ERROR)
        for target in ConnectionState:
            assert not tracker.can_transition(target)


class TestSyncReport:
    """Tests for SyncReport."""

    def test_change_count_excludes_skipped(self) -> None:
        report = SyncReport(uploaded=["a"], downloaded=["b"], skipped=["c"])
        assert report.change_count == 2
        assert not report.has_failures

    def test_merge(self) -> None:
        """Merging should concatenate lists and keep unverified paths unique."""
        first = SyncReport(uploaded=["a"], unverified=["x"])
        second = SyncReport(deleted=["b"], failed={"c": "boom"}, unverified=["x", "y"])
        first.merge(second)
        assert first.uploaded == ["a"]
        assert first.deleted == ["b"]
        assert first.failed == {"c": "boom"}
        assert first.unverified == ["x", "y"]
        assert first.has_failures


class TestStorageError:
    """Tests for StorageError."""

    def test_str_with_status(self) -> None:
        error = StorageError(ErrorKind.NOT_FOUND, "missing", status_code=404)
        assert str(error) == "[NOT_FOUND] missing (HTTP 404)"

    def test_str_without_status(self) -> None:
        assert str(StorageError(ErrorKind.TIMEOUT, "slow")) == "[TIMEOUT] slow"

    @pytest.mark.parametrize(
        ("kind", "transient"),
        [
            (ErrorKind.SERVICE_UNAVAILABLE, True),
            (ErrorKind.NETWORK_ERROR, True),
            (ErrorKind.RATE_LIMITED, True),
            (ErrorKind.NOT_FOUND, False),
            (ErrorKind.AUTH_FAILED, False),
        ],
    )
    def test_is_transient(self, kind: ErrorKind, transient: bool) -> None:
        assert StorageError(kind, "x").is_transient is transient
