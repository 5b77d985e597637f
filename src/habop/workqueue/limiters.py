import dataclasses
import time

from typing import Callable, Dict, Tuple


class RateLimiter:
    """Decides how long a failed item waits before it is queued again.

    `delay` records one more failure of the item, `forget` clears its
    history once it has been processed successfully.
    """

    def delay(self, item, min_delay=0):
        raise NotImplementedError()

    def forget(self, item):
        raise NotImplementedError()

    def count(self, item):
        raise NotImplementedError()


@dataclasses.dataclass
class RequestBackoff(RateLimiter):
    """Per item exponential backoff.

    The n-th failure waits `base_delay * 2**(n-1)` seconds, capped at
    `max_delay`. A handler asking for a longer wait, e.g. through
    TemporaryError.delay, gets it via `min_delay`.
    """

    base_delay: float = 0.005
    max_delay: float = 1000
    failures: Dict[object, int] = dataclasses.field(default_factory=dict, init=False)

    def delay(self, item, min_delay=0):
        n = self.failures.get(item, 0)
        self.failures[item] = n + 1
        # 2**64 seconds is beyond any sane max_delay.
        backoff = min(self.base_delay * 2 ** min(n, 64), self.max_delay)
        return max(backoff, min_delay)

    def forget(self, item):
        self.failures.pop(item, None)

    def count(self, item):
        return self.failures.get(item, 0)


@dataclasses.dataclass
class TokenBucket(RateLimiter):
    """Limits the retries of all items together.

    Every retry takes a token, tokens come back at `rate` per second up to
    `capacity`. Once the bucket is empty each retry waits `penalty`
    seconds longer than the one before.
    """

    capacity: int = 100
    rate: float = 10
    penalty: float = 0.1
    clock: Callable[[], float] = time.monotonic

    def __post_init__(self):
        self._tokens = float(self.capacity)
        self._refilled_at = self.clock()
        self._overdrawn = 0

    def _refill(self):
        now = self.clock()
        self._tokens = min(self.capacity, self._tokens + (now - self._refilled_at) * self.rate)
        self._refilled_at = now

    def delay(self, item, min_delay=0):
        self._refill()
        if self._tokens >= 1:
            self._tokens -= 1
            self._overdrawn = 0
            return 0
        self._overdrawn += 1
        return self._overdrawn * self.penalty

    def forget(self, item):
        pass

    def count(self, item):
        return 0


class LongestDelay(RateLimiter):
    """Asks all given limiters and waits as long as the strictest one."""

    limiters: Tuple[RateLimiter, ...]

    def __init__(self, *limiters):
        self.limiters = limiters

    def __repr__(self):
        return f'{self.__class__.__name__}{self.limiters!r}'

    def delay(self, item, min_delay=0):
        return max(limiter.delay(item, min_delay=min_delay) for limiter in self.limiters)

    def forget(self, item):
        for limiter in self.limiters:
            limiter.forget(item)

    def count(self, item):
        return max(limiter.count(item) for limiter in self.limiters)
