"""Exponential reconnect policy for the pipeline stream."""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class ReconnectPolicy:
    """Tracks reconnect attempts and computes the delay before each one.

    ``delay_ms(n)`` is ``min(base_delay_ms * 2**n, max_delay_ms)``; once
    ``max_attempts`` reconnects have been scheduled the policy refuses
    further retries until ``reset()`` is called (on a successful open).

    Example:
        >>> policy = ReconnectPolicy()
        >>> [policy.schedule() for _ in range(6)]
        [1000, 2000, 4000, 8000, 16000, None]
    """

    max_attempts: int = 5
    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    attempt: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 0:
            raise ValueError(f"max_attempts must be >= 0, got {self.max_attempts}")
        if self.base_delay_ms <= 0:
            raise ValueError(f"base_delay_ms must be > 0, got {self.base_delay_ms}")
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError(
                f"max_delay_ms ({self.max_delay_ms}) must be >= base_delay_ms ({self.base_delay_ms})"
            )

    @classmethod
    def from_config(cls, stream_config) -> "ReconnectPolicy":
        return cls(
            max_attempts=stream_config.max_reconnect_attempts,
            base_delay_ms=stream_config.base_delay_ms,
            max_delay_ms=stream_config.max_delay_ms,
        )

    def delay_ms(self, attempt: int) -> int:
        return min(self.base_delay_ms * (2 ** attempt), self.max_delay_ms)

    def can_retry(self, attempt: Optional[int] = None) -> bool:
        if attempt is None:
            attempt = self.attempt
        return attempt < self.max_attempts

    def schedule(self) -> Optional[int]:
        """Claim the next attempt.

        Returns:
            Delay in milliseconds before reconnecting, or None when retries are exhausted
        """
        if not self.can_retry():
            return None
        delay = self.delay_ms(self.attempt)
        self.attempt += 1
        return delay

    def reset(self) -> None:
        self.attempt = 0
