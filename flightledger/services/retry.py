"""
FlightLedger - Commit retry policy

Exponential backoff for records whose ledger commit failed:

    delay(attempts) = min(base * 2^(attempts - 1), cap)

After `max_attempts` failures the record is dead-lettered and no longer swept.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel

from flightledger.core.config import Settings


class RetryDecision(BaseModel):
    commit_attempts: int
    next_attempt_at: Optional[datetime] = None
    dead_lettered: bool = False


class RetryPolicy(BaseModel):
    base_seconds: float = 30.0
    cap_seconds: float = 3600.0
    max_attempts: int = 8

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            base_seconds=settings.SWEEP_BACKOFF_BASE_SECONDS,
            cap_seconds=settings.SWEEP_BACKOFF_CAP_SECONDS,
            max_attempts=settings.SWEEP_MAX_ATTEMPTS,
        )

    def delay_seconds(self, attempts: int) -> float:
        if attempts < 1:
            return 0.0
        return min(self.base_seconds * (2 ** (attempts - 1)), self.cap_seconds)

    def after_failure(
        self, previous_attempts: int, now: Optional[datetime] = None, retryable: bool = True
    ) -> RetryDecision:
        """
        Bookkeeping for a record whose commit just failed.

        Non-retryable failures (bad signing credentials) wait the full cap so an
        operator can fix configuration before the next attempt.
        """
        now = now or datetime.now(timezone.utc)
        attempts = previous_attempts + 1
        if attempts >= self.max_attempts:
            return RetryDecision(commit_attempts=attempts, dead_lettered=True)
        delay = self.delay_seconds(attempts) if retryable else self.cap_seconds
        return RetryDecision(commit_attempts=attempts, next_attempt_at=now + timedelta(seconds=delay))
