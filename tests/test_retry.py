"""Tests for the backoff retry helper."""

import pytest

from kubevirt_migrator.core.retry import retry_with_backoff


class FakeSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.mark.asyncio
class TestRetryWithBackoff:
    """Test attempt counting and delay growth."""

    async def test_success_on_first_attempt(self):
        sleep = FakeSleep()

        async def predicate():
            return True

        result = await retry_with_backoff(predicate, attempts=3, base_delay=5, sleep=sleep)
        assert result.success
        assert result.attempts == 1
        assert sleep.delays == []

    async def test_exhausts_attempts_with_doubling_delays(self):
        sleep = FakeSleep()
        calls = []

        async def predicate():
            calls.append(1)
            return False

        result = await retry_with_backoff(predicate, attempts=3, base_delay=5, sleep=sleep)
        assert not result.success
        assert len(calls) == 3
        assert result.attempts == 3
        assert sleep.delays == [5, 10]
        assert result.delays == [5, 10]

    async def test_exceptions_count_as_failures(self):
        sleep = FakeSleep()
        outcomes = [RuntimeError("not yet"), False, True]

        async def predicate():
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        result = await retry_with_backoff(predicate, attempts=5, base_delay=1, factor=3, sleep=sleep)
        assert result.success
        assert result.attempts == 3
        assert sleep.delays == [1, 3]

    async def test_last_error_is_kept(self):
        async def predicate():
            raise ValueError("still broken")

        result = await retry_with_backoff(predicate, attempts=2, base_delay=0, sleep=FakeSleep())
        assert not result.success
        assert isinstance(result.last_error, ValueError)

    async def test_attempts_must_be_positive(self):
        async def predicate():
            return True

        with pytest.raises(ValueError):
            await retry_with_backoff(predicate, attempts=0, base_delay=1)
