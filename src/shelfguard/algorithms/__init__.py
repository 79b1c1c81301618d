"""Rate limiting algorithms."""

from shelfguard.algorithms.token_bucket import TokenBucket

__all__ = ["TokenBucket"]
