import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from live_coach.domain.errors import RetriesExhausted, TranscriptionError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class BackoffPolicy:
    base_seconds: float = 1.0
    cap_seconds: float = 30.0
    max_attempts: int = 5

    def delay(self, attempt: int) -> float:
        if attempt < 1:
            return 0.0
        return min(self.base_seconds * 2 ** (attempt - 1), self.cap_seconds)

    def delays(self) -> list[float]:
        return [self.delay(attempt) for attempt in range(1, self.max_attempts)]


def is_retryable(error: BaseException) -> bool:
    return isinstance(error, TranscriptionError) and error.retryable


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: BackoffPolicy,
    should_retry: Callable[[BaseException], bool] = is_retryable,
    sleep: Sleep = asyncio.sleep,
    on_retry: Callable[[int, float, BaseException], None] | None = None,
    initial_delay: float = 0.0,
) -> T:
    if initial_delay > 0:
        await sleep(initial_delay)
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            if not should_retry(exc):
                raise
            attempt += 1
            if attempt >= policy.max_attempts:
                raise RetriesExhausted(attempt, exc) from exc
            delay = policy.delay(attempt)
            logger.warning("Retry %d/%d in %.1fs after: %s", attempt, policy.max_attempts, delay, exc)
            if on_retry is not None:
                on_retry(attempt, delay, exc)
            await sleep(delay)


async def poll_until(
    check: Callable[[], Awaitable[T]],
    is_done: Callable[[T], bool],
    policy: BackoffPolicy,
    sleep: Sleep = asyncio.sleep,
) -> T:
    result = await check()
    attempt = 0
    while not is_done(result):
        attempt += 1
        if attempt >= policy.max_attempts:
            raise RetriesExhausted(attempt, None)
        delay = policy.delay(attempt)
        logger.debug("Not done yet, polling again in %.1fs", delay)
        await sleep(delay)
        result = await check()
    return result
