"""
Token-bucket rate limiter kernel.

A bucket refills linearly up to ``capacity``; each transfer consumes its
amount. ``available`` always stays in ``[0, capacity]`` and a rejected
consumption leaves the bucket untouched.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from .errors import RateLimitExceeded


@dataclass(frozen=True)
class RateLimitBucket:
    capacity: int
    refill_per_second: int
    available: int
    last_refill: int = 0

    def __post_init__(self) -> None:
        for name in ("capacity", "refill_per_second", "available", "last_refill"):
            v = getattr(self, name)
            if not isinstance(v, int) or isinstance(v, bool):
                raise TypeError(f"{name} must be an int")
            if v < 0:
                raise ValueError(f"{name} must be non-negative: {v}")
        if self.available > self.capacity:
            raise ValueError(f"available {self.available} exceeds capacity {self.capacity}")


def full_bucket(capacity: int, refill_per_second: int, now: int = 0) -> RateLimitBucket:
    return RateLimitBucket(
        capacity=capacity,
        refill_per_second=refill_per_second,
        available=capacity,
        last_refill=now,
    )


def refill(bucket: RateLimitBucket, now: int) -> RateLimitBucket:
    """``available = min(capacity, available + elapsed * refill_per_second)``.

    A clock that moves backwards refills nothing and keeps ``last_refill``.
    """
    if now <= bucket.last_refill:
        return bucket
    elapsed = now - bucket.last_refill
    available = min(bucket.capacity, bucket.available + elapsed * bucket.refill_per_second)
    return replace(bucket, available=available, last_refill=now)


def consume(bucket: RateLimitBucket, amount: int, now: int) -> RateLimitBucket:
    """Refill, then deduct ``amount``. Raises ``RateLimitExceeded`` without side effects."""
    refilled = refill(bucket, now)
    if amount > refilled.available:
        raise RateLimitExceeded(
            f"amount {amount} exceeds available {refilled.available}",
            amount=amount,
            available=refilled.available,
        )
    return replace(refilled, available=refilled.available - amount)


def reconfigure(bucket: RateLimitBucket, capacity: int, refill_per_second: int, now: int) -> RateLimitBucket:
    """Apply new limits, keeping accrued tokens but never above the new capacity."""
    refilled = refill(bucket, now)
    return RateLimitBucket(
        capacity=capacity,
        refill_per_second=refill_per_second,
        available=min(refilled.available, capacity),
        last_refill=max(refilled.last_refill, now),
    )
