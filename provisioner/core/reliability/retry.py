"""
Retry policy — how many times an action is re-attempted, and how long
to wait between attempts.

Backoff is either fixed or exponential, capped at ``max_delay``, with
optional jitter so that parallel branches hitting the same mirror do
not retry in lockstep.
"""

from __future__ import annotations

import random
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class RetryPolicy(BaseModel):
    """Per-action retry settings.

    ``max_retries`` counts re-attempts, so an action is tried at most
    ``max_retries + 1`` times.
    """

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=0, ge=0)
    backoff: Literal["fixed", "exponential"] = "exponential"
    base_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=60.0, ge=0)
    jitter: float = Field(default=0.0, ge=0, le=1)

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before the given retry (1 = first retry)."""
        if attempt < 1:
            return 0.0
        if self.backoff == "fixed":
            delay = self.base_delay
        else:
            delay = self.base_delay * (2 ** (attempt - 1))
        if self.jitter:
            delay += random.uniform(0, delay * self.jitter)
        return min(delay, self.max_delay)
