# sniper/retry.py
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional


class Backoff(Enum):
    FIXED = "fixed"
    EXPONENTIAL = "exponential"


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """
    How often, and how patiently, to repeat an action.
    max_attempts=None means retry forever. interval and cap are seconds.
    """
    max_attempts: Optional[int] = None
    backoff: Backoff = Backoff.FIXED
    interval: float = 0.0
    cap: Optional[float] = None

    @property
    def bounded(self) -> bool:
        return self.max_attempts is not None

    def delay(self, attempt: int) -> float:
        """Pause before the retry that follows attempt number `attempt` (0-based)."""
        if self.backoff is Backoff.EXPONENTIAL:
            value = self.interval * (2 ** attempt)
        else:
            value = self.interval
        if self.cap is not None:
            value = min(value, self.cap)
        return value

    def exhausted(self, attempts: int) -> bool:
        return self.max_attempts is not None and attempts >= self.max_attempts


@dataclass(slots=True)
class RetryResult:
    value: Any = None
    attempts: int = 0
    satisfied: bool = False
    last_error: Optional[BaseException] = None

    @property
    def retries(self) -> int:
        return max(0, self.attempts - 1)


async def retry_until(
    action: Callable[[], Awaitable[Any]],
    policy: RetryPolicy,
    accept: Optional[Callable[[Any], bool]] = None,
    logger: Optional[logging.Logger] = None,
    label: str = "action",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> RetryResult:
    """
    Runs `action` until `accept(value)` holds or the policy runs out of attempts.

    An exception from `action` counts as a failed attempt. Without `accept`,
    any returned value is good enough. Bounded and unbounded loops share this
    code; only the policy differs.
    """
    result = RetryResult()

    while True:
        result.attempts += 1
        try:
            value = await action()
            result.value = value
            result.last_error = None
            if accept is None or accept(value):
                result.satisfied = True
                return result
            reason = f"got {value}"
        except Exception as e:
            result.value = None
            result.last_error = e
            reason = f"error: {e}"

        if policy.exhausted(result.attempts):
            if logger:
                logger.warning(f"⚠️ {label}: giving up after {result.attempts} attempt(s) ({reason})")
            return result

        pause = policy.delay(result.attempts - 1)
        if logger:
            logger.warning(f"🔁 {label}: attempt {result.attempts} failed ({reason}), retrying in {pause * 1000:.0f}ms")
        await sleep(pause)
