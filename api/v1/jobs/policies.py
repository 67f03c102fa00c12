from dataclasses import dataclass

from api.config.settings import Settings


@dataclass(frozen=True)
class EnqueuePolicy:
    """
    Bounded immediate-retry policy for accepting a queue entry.

    ``attempts`` bounds how often enqueue is tried, ``backoff(attempt)`` gives
    the pause after a failed attempt, and ``timeout_s`` is the overall
    deadline covering every attempt and pause.
    """

    attempts: int = 3
    delay_s: float = 0.2
    timeout_s: float = 5.0

    def __post_init__(self):
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")
        if self.delay_s < 0:
            raise ValueError("delay_s must not be negative")
        if self.timeout_s <= 0:
            raise ValueError("timeout_s must be positive")

    def backoff(self, attempt: int) -> float:
        """Delay before the attempt following ``attempt`` (fixed)."""
        return self.delay_s

    @classmethod
    def from_settings(cls, settings: Settings) -> "EnqueuePolicy":
        return cls(
            attempts=settings.enqueue_retry_attempts,
            delay_s=settings.enqueue_retry_delay_ms / 1000,
            timeout_s=settings.enqueue_timeout_ms / 1000,
        )
