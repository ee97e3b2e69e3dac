"""Exponential backoff with a capped number of reconnection attempts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class ReconnectionPolicy:
    base_delay_ms: int = 1000
    max_attempts: int = 5
    attempts: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        if self.base_delay_ms <= 0:
            raise ValueError("base_delay_ms must be positive")
        if self.max_attempts < 0:
            raise ValueError("max_attempts must not be negative")

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    @property
    def current_delay_ms(self) -> int:
        """Delay the next scheduled attempt would use."""

        return self.base_delay_ms * 2 ** self.attempts

    def next_delay_ms(self) -> Optional[int]:
        """Consume one attempt and return its delay, or ``None`` once exhausted."""

        if self.exhausted:
            return None
        self.attempts += 1
        return self.base_delay_ms * 2 ** (self.attempts - 1)

    def reset(self) -> None:
        self.attempts = 0

    def schedule(self) -> List[int]:
        """Full delay sequence from a fresh state, handy for logs and tests."""

        return [self.base_delay_ms * 2 ** index for index in range(self.max_attempts)]
