"""
Page Retry Policy

Optional retry behaviour for page fetches. The default policy makes a
single attempt, so a failing page is reported instead of retried.
"""

from dataclasses import dataclass

from report_engine.config import EngineSettings


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and exponential backoff curve for one page"""
    max_attempts: int = 1
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    
    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("Retry delays cannot be negative")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")
    
    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given failed attempt (1-based)"""
        return min(self.base_delay * self.multiplier ** (attempt - 1), self.max_delay)
    
    @classmethod
    def from_settings(cls, engine: EngineSettings) -> "RetryPolicy":
        return cls(
            max_attempts=engine.retry_max_attempts,
            base_delay=engine.retry_base_delay_seconds,
            multiplier=engine.retry_backoff_multiplier,
            max_delay=engine.retry_max_delay_seconds,
        )


NO_RETRY = RetryPolicy()
