"""Token Bucket algorithm implementation."""

from __future__ import annotations


class TokenBucket:
    """In-memory token bucket for a single client.

    The bucket is not synchronized; callers sharing it between threads must
    hold their own lock around ``consume`` and ``refill``.
    """

    __slots__ = ("_capacity", "_refill_rate", "_tokens", "_last_refill")

    def __init__(self, capacity: int, refill_rate: float, now: float):
        """
        Initialize Token Bucket.

        Args:
            capacity: Maximum tokens in bucket (burst capacity)
            refill_rate: Tokens per second to add
            now: Monotonic timestamp the bucket is created at
        """
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        if refill_rate <= 0:
            raise ValueError("refill_rate must be > 0")

        self._capacity = capacity
        self._refill_rate = float(refill_rate)
        self._tokens = float(capacity)
        self._last_refill = now

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def refill_rate(self) -> float:
        return self._refill_rate

    @property
    def tokens(self) -> float:
        return self._tokens

    @property
    def last_refill(self) -> float:
        return self._last_refill

    def refill(self, now: float) -> None:
        """Add tokens for the time elapsed since the last refill."""
        elapsed = now - self._last_refill
        if elapsed <= 0:
            # Clock did not advance
            return
        self._tokens = min(float(self._capacity), self._tokens + elapsed * self._refill_rate)
        self._last_refill = now

    def consume(self, now: float, tokens: int = 1) -> bool:
        """
        Try to consume tokens from the bucket.

        Args:
            now: Monotonic timestamp of the request
            tokens: Number of tokens to consume (default 1)

        Returns:
            True if the tokens were available and have been debited.
        """
        self.refill(now)
        if self._tokens >= tokens:
            self._tokens -= tokens
            return True
        return False

    def wait_time(self, tokens: int = 1) -> float:
        """Seconds until ``tokens`` would be available, 0 if they already are."""
        missing = tokens - self._tokens
        if missing <= 0:
            return 0.0
        return missing / self._refill_rate

    def __repr__(self) -> str:
        return (
            f"TokenBucket(capacity={self._capacity}, refill_rate={self._refill_rate}, "
            f"tokens={self._tokens:.3f})"
        )
