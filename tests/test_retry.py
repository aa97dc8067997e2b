"""
Tests for async retry with exponential backoff.
"""

import pytest

from persona_core.errors import PersonaNotFound, PersonaSwitchError
from persona_core.utils.retry import (
    async_exponential_backoff_retry,
    RetryPolicy,
    COLLABORATOR_RETRY_POLICY,
    NO_RETRY_POLICY,
)


class TestAsyncExponentialBackoffRetry:
    """Test the async retry decorator."""

    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self):
        call_count = 0

        @async_exponential_backoff_retry(max_attempts=3)
        async def successful_func():
            nonlocal call_count
            call_count += 1
            return "success"

        assert await successful_func() == "success"
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_success_after_retries(self):
        """Function succeeds after two failures."""
        call_count = 0

        @async_exponential_backoff_retry(max_attempts=5, base_delay=0.01, jitter=False)
        async def flaky_func():
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise ValueError("Temporary failure")
            return "success"

        assert await flaky_func() == "success"
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_max_attempts_exceeded(self):
        call_count = 0

        @async_exponential_backoff_retry(max_attempts=3, base_delay=0.0, jitter=False)
        async def always_fails():
            nonlocal call_count
            call_count += 1
            raise RuntimeError("Permanent failure")

        with pytest.raises(RuntimeError, match="Permanent failure"):
            await always_fails()
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_only_listed_exceptions_are_retried(self):
        call_count = 0

        @async_exponential_backoff_retry(max_attempts=3, base_delay=0.0, exceptions=(ConnectionError,))
        async def wrong_error():
            nonlocal call_count
            call_count += 1
            raise KeyError("not retryable")

        with pytest.raises(KeyError):
            await wrong_error()
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_exponential_delays_and_callback(self):
        seen = []

        @async_exponential_backoff_retry(
            max_attempts=4,
            base_delay=0.001,
            backoff_factor=2.0,
            jitter=False,
            on_retry=lambda attempt, exc, delay: seen.append((attempt, delay)),
        )
        async def always_fails():
            raise ValueError("boom")

        with pytest.raises(ValueError):
            await always_fails()
        assert [a for a, _ in seen] == [1, 2, 3]
        assert [d for _, d in seen] == pytest.approx([0.001, 0.002, 0.004])

    @pytest.mark.asyncio
    async def test_delay_is_capped(self):
        delays = []

        @async_exponential_backoff_retry(
            max_attempts=3,
            base_delay=0.01,
            max_delay=0.01,
            backoff_factor=10.0,
            jitter=False,
            on_retry=lambda attempt, exc, delay: delays.append(delay),
        )
        async def always_fails():
            raise ValueError("boom")

        with pytest.raises(ValueError):
            await always_fails()
        assert delays == [0.01, 0.01]

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_stop_retries(self):
        call_count = 0

        def bad_callback(attempt, exc, delay):
            raise RuntimeError("callback broke")

        @async_exponential_backoff_retry(max_attempts=2, base_delay=0.0, on_retry=bad_callback)
        async def flaky_func():
            nonlocal call_count
            call_count += 1
            if call_count < 2:
                raise ValueError("once")
            return "ok"

        assert await flaky_func() == "ok"


class TestRetryPolicy:
    """Test reusable retry policies."""

    @pytest.mark.asyncio
    async def test_wrap(self):
        calls = []

        async def inject(request):
            calls.append(request)
            if len(calls) == 1:
                raise ConnectionError("unavailable")
            return f"enhanced {request}"

        guarded = RetryPolicy(max_attempts=2, base_delay=0.0, jitter=False).wrap(inject)
        assert await guarded("prompt") == "enhanced prompt"
        assert calls == ["prompt", "prompt"]

    @pytest.mark.asyncio
    async def test_no_retry_policy(self):
        calls = 0

        async def inject(request):
            nonlocal calls
            calls += 1
            raise ConnectionError("unavailable")

        with pytest.raises(ConnectionError):
            await NO_RETRY_POLICY.wrap(inject)("prompt")
        assert calls == 1

    def test_collaborator_policy(self):
        assert COLLABORATOR_RETRY_POLICY.max_attempts == 3
        assert COLLABORATOR_RETRY_POLICY.max_delay == 2.0
        assert COLLABORATOR_RETRY_POLICY.exceptions == (Exception,)
        assert COLLABORATOR_RETRY_POLICY.give_up_on == (PersonaSwitchError,)

    @pytest.mark.asyncio
    async def test_collaborator_policy_does_not_retry_unknown_persona(self):
        calls = 0

        async def find_one(persona_id):
            nonlocal calls
            calls += 1
            raise PersonaNotFound(persona_id)

        with pytest.raises(PersonaNotFound):
            await COLLABORATOR_RETRY_POLICY.wrap(find_one)("ghost")
        assert calls == 1


class TestGiveUpOn:
    @pytest.mark.asyncio
    async def test_give_up_on_wins_over_exceptions(self):
        call_count = 0

        @async_exponential_backoff_retry(max_attempts=3, base_delay=0.0, give_up_on=(LookupError,))
        async def lookup():
            nonlocal call_count
            call_count += 1
            raise KeyError("missing")

        with pytest.raises(KeyError):
            await lookup()
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_other_errors_still_retried(self):
        call_count = 0

        @async_exponential_backoff_retry(max_attempts=3, base_delay=0.0, jitter=False, give_up_on=(LookupError,))
        async def lookup():
            nonlocal call_count
            call_count += 1
            if call_count < 2:
                raise ConnectionError("reset")
            return "found"

        assert await lookup() == "found"
        assert call_count == 2
