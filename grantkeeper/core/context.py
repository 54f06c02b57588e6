import threading
import time
from typing import Optional


class Context:
    """
    Carries a caller's cancellation signal and deadline into long-running calls.

    Bounded polling loops wait on the context instead of calling time.sleep(),
    so cancelling it (or reaching the deadline) wakes them immediately.
    """
    def __init__(self, deadline: Optional[float] = None):
        # deadline is a time.monotonic() value
        self.deadline = deadline
        self._cancelled = threading.Event()

    def __repr__(self):
        return f"Context(deadline={self.deadline}, cancelled={self.cancelled})"

    @classmethod
    def background(cls) -> "Context":
        """A context that is never cancelled and has no deadline."""
        return cls()

    @classmethod
    def with_timeout(cls, seconds: float) -> "Context":
        return cls(deadline=time.monotonic() + seconds)

    @classmethod
    def from_lambda(cls, lambda_context, margin_seconds: float = 1.0) -> "Context":
        """
        Builds a context that expires slightly before the Lambda invocation does.
        Accepts None so handlers can be called directly in tests.
        """
        if lambda_context is None or not hasattr(lambda_context, "get_remaining_time_in_millis"):
            return cls.background()
        remaining = lambda_context.get_remaining_time_in_millis() / 1000.0
        return cls.with_timeout(max(0.0, remaining - margin_seconds))

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> Optional[float]:
        """Seconds left until the deadline, or None if there is no deadline."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def done(self) -> bool:
        return self.cancelled or self.remaining() == 0.0

    def wait(self, seconds: float) -> bool:
        """
        Sleeps for up to `seconds`, returning early if cancelled or past the deadline.
        Returns True if the full wait completed, False if the context ended it.
        """
        remaining = self.remaining()
        if remaining is not None and remaining < seconds:
            self._cancelled.wait(remaining)
            return False
        return not self._cancelled.wait(seconds)
