"""
Run deadline and stage attempt tracking.

One ``Deadline`` covers a pipeline run from admission to settlement.
``StageAttempt`` is the explicit retry state machine used by the
inference-backed stages:

    PENDING -> SUCCEEDED
    PENDING -> RETRYING -> SUCCEEDED | FAILED
    PENDING -> FAILED            (when no retry is allowed)
"""

import time
from enum import Enum
from typing import Callable, List, Optional

from .errors import PipelineTimeout


class Deadline:
    """Monotonic deadline shared by every stage of one run."""

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        if seconds <= 0:
            raise ValueError("deadline seconds must be > 0")
        self._clock = clock
        self.seconds = seconds
        self._expires_at = clock() + seconds

    def remaining(self) -> float:
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0

    def check(self, stage: str) -> None:
        """Raise ``PipelineTimeout`` if the deadline has passed."""
        if self.expired:
            raise PipelineTimeout(
                f"Pipeline deadline of {self.seconds:.0f}s exceeded during {stage}",
                stage=stage,
            )

    def call_timeout(self, cap: float) -> float:
        """Timeout for one inference call: the configured cap or what is left."""
        return min(cap, self.remaining())


class AttemptState(Enum):
    PENDING = "pending"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class StageAttempt:
    """Bounded attempts of one stage unit (the blueprint, or one module)."""

    def __init__(self, label: str, max_attempts: int = 2):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.label = label
        self.max_attempts = max_attempts
        self.state = AttemptState.PENDING
        self.attempts = 0
        self.failures: List[str] = []

    @property
    def done(self) -> bool:
        return self.state in (AttemptState.SUCCEEDED, AttemptState.FAILED)

    @property
    def last_failure(self) -> Optional[str]:
        return self.failures[-1] if self.failures else None

    def begin(self) -> int:
        """Start the next attempt and return its 1-based number."""
        if self.done:
            raise RuntimeError(f"{self.label}: no attempt left in state {self.state.value}")
        self.attempts += 1
        return self.attempts

    def succeed(self) -> None:
        if self.done or self.attempts == 0:
            raise RuntimeError(f"{self.label}: cannot succeed from state {self.state.value}")
        self.state = AttemptState.SUCCEEDED

    def fail(self, reason: str) -> AttemptState:
        """Record a failed attempt; moves to RETRYING or FAILED."""
        if self.done or self.attempts == 0:
            raise RuntimeError(f"{self.label}: cannot fail from state {self.state.value}")
        self.failures.append(reason)
        if self.attempts < self.max_attempts:
            self.state = AttemptState.RETRYING
        else:
            self.state = AttemptState.FAILED
        return self.state

    def abandon(self, reason: str) -> None:
        """Fail immediately, skipping any remaining retry."""
        self.failures.append(reason)
        self.state = AttemptState.FAILED
