import random

import pytest

from rewards_engine.config import RetryPolicyConfig
from rewards_engine.errors import ActivityTimeoutError, HandlerError, QuizFailedError
from rewards_engine.solver.retry import RetryPolicy, is_retryable


class TestIsRetryable:
    def test_classification(self):
        assert is_retryable(RuntimeError("boom"))
        assert is_retryable(HandlerError("transient"))
        assert not is_retryable(HandlerError("unsupported", retryable=False))
        assert not is_retryable(QuizFailedError("exhausted"))
        assert not is_retryable(ActivityTimeoutError("Quiz", 60000))


class TestRetryPolicy:
    def _policy(self, slept, **kwargs):
        async def fake_sleep(seconds):
            slept.append(seconds)

        config = RetryPolicyConfig(**kwargs)
        return RetryPolicy(config, rng=random.Random(1), sleep=fake_sleep)

    def test_delays_grow_and_cap(self):
        policy = self._policy([], base_delay="1s", max_delay="3s", multiplier=2.0, jitter=0)
        assert [policy.delay_ms(n) for n in (1, 2, 3, 4)] == [1000, 2000, 3000, 3000]

    def test_jitter_stays_within_band(self):
        policy = self._policy([], base_delay="1s", jitter=0.2)
        for _ in range(50):
            assert 800 <= policy.delay_ms(1) <= 1200

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        slept = []
        policy = self._policy(slept, max_attempts=3, jitter=0)
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise RuntimeError("not yet")
            return "done"

        assert await policy.run(flaky) == "done"
        assert len(calls) == 3
        assert slept == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        policy = self._policy([], max_attempts=2)
        calls = []

        async def always_fails():
            calls.append(1)
            raise RuntimeError("still broken")

        with pytest.raises(RuntimeError):
            await policy.run(always_fails)
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_non_retryable_raises_immediately(self):
        slept = []
        policy = self._policy(slept, max_attempts=5)
        calls = []

        async def quiz_failed():
            calls.append(1)
            raise QuizFailedError("refresh-failed")

        with pytest.raises(QuizFailedError):
            await policy.run(quiz_failed)
        assert calls == [1]
        assert slept == []
