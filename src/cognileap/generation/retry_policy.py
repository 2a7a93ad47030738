"""Per-error-category retry policies.

Each category gets its own attempt budget and backoff schedule. The
schedule does not need one entry per attempt: once it runs out, the last
configured delay is reused.

Policy table
------------
  overloaded     3 retries   15s, 30s, 60s
  rate_limited   2 retries   60s, 120s
  internal       2 retries   30s, 45s
  timeout        2 retries   15s, 30s
  network        2 retries   15s, 30s
  default        1 retry     30s
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from cognileap.core.errors import ErrorCategory

DEFAULT_DELAY_MS = 30_000


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and backoff schedule for one error category."""

    category: ErrorCategory | None
    max_retries: int
    delays_ms: tuple[int, ...]

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")

    def delay_for(self, attempt: int) -> int:
        """Backoff in ms after the given 1-based attempt failed."""
        if not self.delays_ms:
            return DEFAULT_DELAY_MS
        index = min(max(attempt - 1, 0), len(self.delays_ms) - 1)
        return self.delays_ms[index]


DEFAULT_POLICY = RetryPolicy(category=None, max_retries=1, delays_ms=(30_000,))

RETRY_POLICIES: dict[ErrorCategory, RetryPolicy] = {
    ErrorCategory.OVERLOADED: RetryPolicy(
        ErrorCategory.OVERLOADED, max_retries=3, delays_ms=(15_000, 30_000, 60_000),
    ),
    ErrorCategory.RATE_LIMITED: RetryPolicy(
        ErrorCategory.RATE_LIMITED, max_retries=2, delays_ms=(60_000, 120_000),
    ),
    ErrorCategory.INTERNAL: RetryPolicy(
        ErrorCategory.INTERNAL, max_retries=2, delays_ms=(30_000, 45_000),
    ),
    ErrorCategory.TIMEOUT: RetryPolicy(
        ErrorCategory.TIMEOUT, max_retries=2, delays_ms=(15_000, 30_000),
    ),
    ErrorCategory.NETWORK: RetryPolicy(
        ErrorCategory.NETWORK, max_retries=2, delays_ms=(15_000, 30_000),
    ),
}


class RetryPolicyTable:
    """Lookup of RetryPolicy by ErrorCategory with a default fallback."""

    def __init__(
        self,
        policies: Mapping[ErrorCategory, RetryPolicy] | None = None,
        default: RetryPolicy = DEFAULT_POLICY,
    ) -> None:
        self._policies = dict(RETRY_POLICIES if policies is None else policies)
        self._default = default

    @property
    def default(self) -> RetryPolicy:
        return self._default

    def for_category(self, category: ErrorCategory) -> RetryPolicy:
        return self._policies.get(category, self._default)
