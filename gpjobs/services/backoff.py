"""Delay schedule for status polling."""

from __future__ import annotations

import random
from collections.abc import Iterator

from gpjobs.domain.models import PollingPolicy


def next_delay(policy: PollingPolicy, delay: float) -> float:
    """Grow ``delay`` by the policy multiplier, capped at ``max_delay``."""

    return min(delay * policy.backoff_multiplier, policy.max_delay)


def delay_schedule(policy: PollingPolicy) -> Iterator[float]:
    """Yield the successive base delays of a policy, without end.

    Delays never decrease and never exceed ``max_delay``.
    """

    delay = policy.initial_delay
    while True:
        yield delay
        delay = next_delay(policy, delay)


def jittered(
    delay: float, policy: PollingPolicy, rng: random.Random | None = None
) -> float:
    """Shorten ``delay`` by a random fraction of at most ``jitter_ratio``."""

    if policy.jitter_ratio <= 0:
        return delay
    source = rng or random
    return delay * (1.0 - policy.jitter_ratio * source.random())


__all__ = ["delay_schedule", "jittered", "next_delay"]
