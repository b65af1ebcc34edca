"""Tests for retry handling of remote operations."""

import threading
from unittest.mock import Mock, patch

import pytest

from pycsync.exceptions import (
    RemoteAuthError,
    RemoteNetworkError,
    RemotePermanentError,
    RemoteQuotaError,
    RemoteRateLimitError,
    RemoteTransientError,
    is_retryable,
)
from pycsync.sync.operations import RetryPolicy, SyncOperations


class TestIsRetryable:
    """Test error classification."""

    @pytest.mark.parametrize(
        "exc,expected",
        [
            (RemoteTransientError("x"), True),
            (RemoteNetworkError("x"), True),
            (RemoteRateLimitError("x"), True),
            (RemoteAuthError("x"), False),
            (RemoteQuotaError("x"), False),
            (RemotePermanentError("x"), False),
            (TimeoutError(), True),
            (ConnectionResetError(), True),
            (ValueError("x"), False),
        ],
    )
    def test_classification(self, exc, expected):
        assert is_retryable(exc) is expected


class TestRetryPolicy:
    """Test RetryPolicy."""

    def test_negative_attempts_rejected(self):
        with pytest.raises(ValueError):
            RetryPolicy(attempts=-1)

    def test_success_without_retry(self):
        func = Mock(return_value="ok")
        assert RetryPolicy(attempts=3, delay=0).call(func) == "ok"
        assert func.call_count == 1

    def test_transient_error_is_retried(self):
        """A transient failure followed by success returns the result."""
        func = Mock(side_effect=[RemoteTransientError("503"), "ok"])
        assert RetryPolicy(attempts=3, delay=0).call(func) == "ok"
        assert func.call_count == 2

    def test_retries_exhausted(self):
        """After attempts + 1 tries the last error is raised."""
        func = Mock(side_effect=RemoteNetworkError("down"))
        with pytest.raises(RemoteNetworkError):
            RetryPolicy(attempts=2, delay=0).call(func)
        assert func.call_count == 3

    def test_zero_attempts_disables_retry(self):
        func = Mock(side_effect=RemoteNetworkError("down"))
        with pytest.raises(RemoteNetworkError):
            RetryPolicy(attempts=0, delay=0).call(func)
        assert func.call_count == 1

    @pytest.mark.parametrize(
        "exc", [RemoteAuthError("401"), RemoteQuotaError("403"), RemotePermanentError("400")]
    )
    def test_non_retryable_errors_raise_immediately(self, exc):
        func = Mock(side_effect=exc)
        with pytest.raises(type(exc)):
            RetryPolicy(attempts=5, delay=0).call(func)
        assert func.call_count == 1

    def test_rate_limit_honours_retry_after(self):
        """The wait is at least the server supplied delay."""
        func = Mock(side_effect=[RemoteRateLimitError("429", retry_after=7), "ok"])
        with patch("pycsync.sync.operations.time.sleep") as sleep:
            assert RetryPolicy(attempts=1, delay=0.01).call(func) == "ok"
        assert sleep.call_args[0][0] == pytest.approx(7)

    def test_cancel_event_aborts_backoff(self):
        """A set cancel event stops retrying and re-raises."""
        cancel = threading.Event()
        cancel.set()
        func = Mock(side_effect=RemoteNetworkError("down"))
        with pytest.raises(RemoteNetworkError):
            RetryPolicy(attempts=5, delay=10).call(func, cancel_event=cancel)
        assert func.call_count == 1

    def test_backoff_bounds(self):
        """Backoff grows exponentially within the jitter band and is capped."""
        policy = RetryPolicy(attempts=5, delay=1.0, max_delay=10.0, jitter=0.25)
        for attempt, base in [(0, 1.0), (1, 2.0), (2, 4.0), (5, 10.0)]:
            delay = policy.backoff(attempt)
            assert base * 0.75 <= delay <= base * 1.25


class TestSyncOperations:
    """Test SyncOperations wrappers."""

    def test_lookup_retries(self, memory_store):
        memory_store.metadata_failures["a.txt"] = [RemoteTransientError("busy")]
        ops = SyncOperations(memory_store, RetryPolicy(attempts=1, delay=0))

        assert ops.lookup("a.txt") is None
        assert memory_store.calls == [("get_metadata", "a.txt")] * 2

    def test_upload_and_create_folder(self, memory_store, temp_dir):
        local = temp_dir / "c.txt"
        local.write_bytes(b"data")
        ops = SyncOperations(memory_store, RetryPolicy(attempts=0))

        assert ops.create_folder("b") is True
        assert ops.create_folder("b") is False
        info = ops.upload_file(local, "b/c.txt")

        assert info.size == 4
        assert memory_store.files["b/c.txt"] == b"data"
