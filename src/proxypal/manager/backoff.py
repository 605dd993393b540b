"""Exponential backoff calculator for tunnel reconnects.

Delays grow geometrically from a base delay up to a cap, with optional
random jitter so several tunnels dropped by the same network event do not
reconnect in lockstep.
"""

from __future__ import annotations

__all__ = ["ExponentialBackoff"]

import random
from dataclasses import dataclass

from proxypal.constants import (
    TUNNEL_RETRY_BACKOFF_MULTIPLIER,
    TUNNEL_RETRY_INITIAL_DELAY,
    TUNNEL_RETRY_JITTER,
    TUNNEL_RETRY_MAX_DELAY,
)


@dataclass(frozen=True, slots=True)
class ExponentialBackoff:
    """Exponential backoff calculator with jitter.

    The delay formula is:
        delay = min(base * (multiplier ^ attempt), max_delay)
        delay = delay +/- (delay * jitter / 2)

    Attributes:
        base: Base delay in seconds for the first retry.
        max_delay: Maximum delay in seconds.
        multiplier: Factor to multiply delay for each attempt.
        jitter: Fraction of delay to randomize (0.0-1.0).
    """

    base: float = TUNNEL_RETRY_INITIAL_DELAY
    max_delay: float = TUNNEL_RETRY_MAX_DELAY
    multiplier: float = TUNNEL_RETRY_BACKOFF_MULTIPLIER
    jitter: float = TUNNEL_RETRY_JITTER

    def delay(self, attempt: int) -> float:
        """Calculate the delay for a given attempt number.

        Args:
            attempt: The attempt number (0-indexed, where 0 is the first retry).

        Returns:
            The delay in seconds before the next retry attempt.
        """
        capped_delay = min(self.base * (self.multiplier**attempt), self.max_delay)

        if self.jitter > 0:
            jitter_range = capped_delay * self.jitter
            capped_delay += random.uniform(-jitter_range / 2, jitter_range / 2)  # noqa: S311

        return max(0.0, capped_delay)
