"""
Unit tests for resilience utilities.
"""

from unittest.mock import AsyncMock, patch

import pytest

from scaffold_sync.models import ErrorRecord
from scaffold_sync.providers.base import RateLimitError, SubmissionError
from scaffold_sync.utils.resilience import ErrorRecoveryManager, retry_with_backoff


@pytest.mark.asyncio
async def test_retry_succeeds_after_rate_limit():
    calls = []

    @retry_with_backoff(max_retries=3, base_delay=1.0, exceptions=(RateLimitError,))
    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise RateLimitError("slow down")
        return "ok"

    with patch("scaffold_sync.utils.resilience.asyncio.sleep", new=AsyncMock()) as sleep:
        assert await flaky() == "ok"

    assert len(calls) == 3
    assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]


@pytest.mark.asyncio
async def test_retry_does_not_retry_other_errors():
    calls = []

    @retry_with_backoff(max_retries=3, exceptions=(RateLimitError,))
    async def rejected():
        calls.append(1)
        raise SubmissionError("branch exists")

    with pytest.raises(SubmissionError):
        await rejected()

    assert len(calls) == 1


@pytest.mark.asyncio
async def test_retry_raises_after_max_attempts():
    @retry_with_backoff(max_retries=2, exceptions=(RateLimitError,))
    async def always_limited():
        raise RateLimitError("slow down")

    with patch("scaffold_sync.utils.resilience.asyncio.sleep", new=AsyncMock()):
        with pytest.raises(RateLimitError):
            await always_limited()


@pytest.mark.asyncio
async def test_retry_honors_retry_after_capped_by_max_delay():
    attempts = []

    @retry_with_backoff(max_retries=3, base_delay=1.0, max_delay=30.0, exceptions=(RateLimitError,))
    async def limited():
        attempts.append(1)
        if len(attempts) == 1:
            raise RateLimitError("wait", retry_after=12.0)
        if len(attempts) == 2:
            raise RateLimitError("wait", retry_after=120.0)
        return "ok"

    with patch("scaffold_sync.utils.resilience.asyncio.sleep", new=AsyncMock()) as sleep:
        await limited()

    assert [c.args[0] for c in sleep.await_args_list] == [12.0, 30.0]


def test_retry_sync_function():
    calls = []

    @retry_with_backoff(max_retries=2, exceptions=(RateLimitError,))
    def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise RateLimitError("slow down")
        return 42

    with patch("scaffold_sync.utils.resilience.time.sleep"):
        assert flaky() == 42


def test_build_error_record():
    try:
        raise SubmissionError("rejected")
    except SubmissionError as e:
        record = ErrorRecoveryManager.build_error_record(e, "submit_pull_request")

    assert isinstance(record, ErrorRecord)
    assert record.phase == "submit_pull_request"
    assert record.error_type == "SubmissionError"
    assert record.message == "rejected"
    assert "SubmissionError" in record.stack_trace


def test_build_error_record_without_traceback():
    record = ErrorRecoveryManager.build_error_record(TimeoutError(), "diff")

    assert record.message == "TimeoutError"
    assert record.stack_trace is None


def test_handle_partial_failure_logs_warning(caplog):
    with caplog.at_level("INFO", logger="scaffold_sync.utils.resilience"):
        ErrorRecoveryManager.handle_partial_failure("sync_template", 3, 2, ["a: boom"], {"run_id": "sync_1"})

    assert "Partial failure in sync_template: 2/3 succeeded, 1 failed" in caplog.text
