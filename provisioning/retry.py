"""
Bounded polling with an injectable clock.

Every wait in the provisioning flow (DNS propagation, authorization
polling, the overall issuance deadline) goes through a Clock so tests can
substitute a fake one instead of sleeping.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Type

from .errors import IssuanceDeadlineExceeded

logger = logging.getLogger(__name__)


class Clock:
    """Wall-clock time source backed by the time module."""

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-delay retry budget, optionally growing by a backoff factor."""

    attempts: int = 3
    delay: float = 5.0
    backoff: float = 1.0
    max_delay: Optional[float] = None

    def __post_init__(self):
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")
        if self.delay < 0:
            raise ValueError("delay must not be negative")
        if self.backoff < 1.0:
            raise ValueError("backoff must be at least 1.0")

    def delay_after(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        delay = self.delay * (self.backoff ** (attempt - 1))
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay


class Deadline:
    """An absolute point in time after which work must stop."""

    def __init__(self, clock: Clock, seconds: Optional[float]):
        self.clock = clock
        self.seconds = seconds
        self._expires_at = None if seconds is None else clock.monotonic() + seconds

    def remaining(self) -> Optional[float]:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self.clock.monotonic())

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def check(self, step: str) -> None:
        """Raise IssuanceDeadlineExceeded if the deadline has passed."""
        if self.expired():
            raise IssuanceDeadlineExceeded(
                f"Issuance deadline of {self.seconds}s exceeded before {step}"
            )

    def sleep(self, seconds: float, step: str) -> None:
        """Sleep, but never past the deadline."""
        remaining = self.remaining()
        if remaining is not None and seconds >= remaining:
            self.clock.sleep(remaining)
            self.check(step)
        else:
            self.clock.sleep(seconds)


def poll(
    check: Callable[[], bool],
    policy: RetryPolicy,
    clock: Clock,
    deadline: Optional[Deadline] = None,
    description: str = "condition",
    retry_on: Tuple[Type[BaseException], ...] = (),
) -> bool:
    """
    Call check() until it returns True or the retry budget runs out.

    check() is called at most policy.attempts times, with policy delays
    between calls (never after the last one). Exceptions listed in
    retry_on count as a failed attempt; anything else propagates.

    Returns:
        True if check() succeeded within the budget, False otherwise
    """
    for attempt in range(1, policy.attempts + 1):
        if deadline is not None:
            deadline.check(description)
        try:
            if check():
                logger.debug(f"{description} satisfied on attempt {attempt}")
                return True
            logger.debug(
                f"{description} not yet satisfied (attempt {attempt}/{policy.attempts})"
            )
        except retry_on as e:
            logger.debug(
                f"{description} check failed (attempt {attempt}/{policy.attempts}): {e}"
            )

        if attempt < policy.attempts:
            delay = policy.delay_after(attempt)
            if deadline is not None:
                deadline.sleep(delay, description)
            else:
                clock.sleep(delay)

    logger.warning(f"{description} not satisfied after {policy.attempts} attempts")
    return False
