import pytest

from live_coach.domain.backoff import BackoffPolicy, is_retryable, poll_until, retry_with_backoff
from live_coach.domain.errors import (
    AbnormalClose,
    AuthFailure,
    AuthRejected,
    ConnectTimeout,
    ProtocolFailure,
    RetriesExhausted,
    TransientFailure,
)


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class Flaky:
    def __init__(self, failures: list[Exception], result: str = "ok") -> None:
        self._failures = list(failures)
        self._result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self._failures:
            raise self._failures.pop(0)
        return self._result


class TestBackoffPolicy:
    def test_exponential_schedule(self):
        assert BackoffPolicy().delays() == [1.0, 2.0, 4.0, 8.0]

    def test_capped(self):
        policy = BackoffPolicy(base_seconds=1.0, cap_seconds=5.0, max_attempts=10)
        assert policy.delay(3) == 4.0
        assert policy.delay(4) == 5.0
        assert policy.delay(9) == 5.0

    def test_attempt_zero_has_no_delay(self):
        assert BackoffPolicy().delay(0) == 0.0


class TestRetryable:
    @pytest.mark.parametrize(
        "error",
        [TransientFailure("x"), ConnectTimeout("x"), AbnormalClose(1006, "lost")],
    )
    def test_retryable(self, error):
        assert is_retryable(error)

    @pytest.mark.parametrize(
        "error",
        [AuthFailure("x"), AuthRejected("x"), ProtocolFailure("x"), RuntimeError("x")],
    )
    def test_fatal(self, error):
        assert not is_retryable(error)


class TestRetryWithBackoff:
    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self):
        sleep = RecordingSleep()
        operation = Flaky([TransientFailure("503"), ConnectTimeout("slow")])

        result = await retry_with_backoff(operation, BackoffPolicy(), sleep=sleep)

        assert result == "ok"
        assert operation.calls == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_fatal_error_is_not_retried(self):
        sleep = RecordingSleep()
        operation = Flaky([AuthFailure("bad key")])

        with pytest.raises(AuthFailure):
            await retry_with_backoff(operation, BackoffPolicy(), sleep=sleep)

        assert operation.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        sleep = RecordingSleep()
        operation = Flaky([TransientFailure(str(i)) for i in range(10)])

        with pytest.raises(RetriesExhausted) as exc_info:
            await retry_with_backoff(operation, BackoffPolicy(max_attempts=3), sleep=sleep)

        assert operation.calls == 3
        assert sleep.delays == [1.0, 2.0]
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, TransientFailure)

    @pytest.mark.asyncio
    async def test_initial_delay(self):
        sleep = RecordingSleep()
        await retry_with_backoff(Flaky([]), BackoffPolicy(), sleep=sleep, initial_delay=1.0)
        assert sleep.delays == [1.0]

    @pytest.mark.asyncio
    async def test_on_retry_callback(self):
        seen = []
        operation = Flaky([TransientFailure("a")])
        await retry_with_backoff(
            operation,
            BackoffPolicy(),
            sleep=RecordingSleep(),
            on_retry=lambda attempt, delay, error: seen.append((attempt, delay, str(error))),
        )
        assert seen == [(1, 1.0, "a")]

    @pytest.mark.asyncio
    async def test_custom_retry_predicate(self):
        operation = Flaky([ValueError("flaky parse")])
        result = await retry_with_backoff(
            operation,
            BackoffPolicy(),
            should_retry=lambda exc: isinstance(exc, ValueError),
            sleep=RecordingSleep(),
        )
        assert result == "ok"


class TestPollUntil:
    @pytest.mark.asyncio
    async def test_polls_until_done(self):
        statuses = iter(["queued", "processing", "completed"])
        sleep = RecordingSleep()

        async def check() -> str:
            return next(statuses)

        result = await poll_until(check, lambda status: status == "completed", BackoffPolicy(), sleep=sleep)

        assert result == "completed"
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_gives_up(self):
        sleep = RecordingSleep()

        async def check() -> str:
            return "processing"

        with pytest.raises(RetriesExhausted):
            await poll_until(check, lambda status: status == "completed", BackoffPolicy(max_attempts=3), sleep=sleep)
        assert sleep.delays == [1.0, 2.0]
