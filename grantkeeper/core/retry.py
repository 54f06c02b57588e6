"""
Bounded retry with Fibonacci backoff.

Cloud control planes (IAM Identity Center in particular) are asynchronous and
eventually consistent, so every mutation is followed by a status poll and some
deletions must be retried for a short while after creation. All providers go
through `do()` rather than writing their own sleep loops.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterator, Optional, TypeVar

from grantkeeper.core.context import Context
from grantkeeper.errors import CancelledError, RetryTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryableError(Exception):
    """
    Raised from inside a retried operation to mark the failure as temporary.
    Chain the real error with `raise RetryableError(...) from err` so it is
    preserved if the retry budget runs out.
    """
    pass


@dataclass(frozen=True)
class Backoff:
    """
    Fibonacci backoff (1s, 1s, 2s, 3s, 5s, ...) capped by total elapsed time.

    Attributes:
        initial: First delay in seconds.
        max_duration: Total time budget in seconds across all attempts.
    """
    initial: float = 1.0
    max_duration: float = 120.0

    def delays(self) -> Iterator[float]:
        a, b = self.initial, self.initial
        while True:
            yield a
            a, b = b, a + b


# Budgets used across providers
POLL_BACKOFF = Backoff(initial=1.0, max_duration=120.0)
CONFLICT_BACKOFF = Backoff(initial=1.0, max_duration=60.0)


def do(
    ctx: Context,
    fn: Callable[[Context], T],
    backoff: Optional[Backoff] = None,
    is_retryable: Optional[Callable[[Exception], bool]] = None,
) -> T:
    """
    Calls fn(ctx) until it returns, raises a fatal error, or the budget runs out.

    Args:
        ctx: Caller context. Cancellation or an expired deadline aborts the wait.
        fn: The operation. Raise RetryableError (or an error accepted by
            is_retryable) to request another attempt.
        backoff: Delay schedule and time budget (defaults to POLL_BACKOFF).
        is_retryable: Optional predicate classifying other exceptions.

    Returns:
        Whatever fn returned on its first successful attempt.

    Raises:
        RetryTimeoutError: Budget exhausted. Chained from the last error.
        CancelledError: The context was cancelled while waiting.
        Exception: Any error fn raised that is not retryable, unchanged.
    """
    backoff = backoff or POLL_BACKOFF
    delays = backoff.delays()
    started = time.monotonic()
    attempt = 0

    while True:
        if ctx.done():
            raise CancelledError("context cancelled before retry attempt")

        attempt += 1
        try:
            return fn(ctx)
        except RetryableError as e:
            last_error = e.__cause__ or e
        except CancelledError:
            raise
        except Exception as e:
            if is_retryable is None or not is_retryable(e):
                raise
            last_error = e

        budget_left = backoff.max_duration - (time.monotonic() - started)
        if budget_left <= 0:
            raise RetryTimeoutError(
                f"gave up after {attempt} attempts in {backoff.max_duration:g}s: {last_error}",
                last_error=last_error,
            ) from last_error

        delay = min(next(delays), budget_left)
        logger.debug(f"Attempt {attempt} not done ({last_error}), retrying in {delay:.2f}s")

        if not ctx.wait(delay):
            raise CancelledError(f"context ended while waiting to retry: {last_error}") from last_error
