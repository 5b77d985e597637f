from .queue import Workqueue
from .limiters import (
    LongestDelay,
    RateLimiter,
    RequestBackoff,
    TokenBucket,
)

__all__ = [
    'LongestDelay',
    'RateLimiter',
    'RequestBackoff',
    'TokenBucket',
    'Workqueue',
]
