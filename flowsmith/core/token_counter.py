"""
Token counting and usage metering.

Accumulates measured token usage across every inference call of one
pipeline run. Settlement prices the run from these numbers.
"""

import threading
from dataclasses import dataclass
from typing import Dict


@dataclass(frozen=True)
class TokenUsage:
    """Token usage reported by the inference service for one or more calls."""
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
        )


class UsageMeter:
    """Thread-safe accumulator shared by the stages of one run.

    Module synthesis records from worker threads, so every update goes
    through a lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._total = TokenUsage()
        self._calls: Dict[str, int] = {}

    def record(self, role: str, usage: TokenUsage) -> None:
        with self._lock:
            self._total = self._total + usage
            self._calls[role] = self._calls.get(role, 0) + 1

    @property
    def total(self) -> TokenUsage:
        with self._lock:
            return self._total

    @property
    def call_count(self) -> int:
        with self._lock:
            return sum(self._calls.values())

    def calls_by_role(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._calls)
