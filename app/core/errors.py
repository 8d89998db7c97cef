"""Exception taxonomy shared by the insight generation stack."""
from __future__ import annotations


class InsightsError(Exception):
    """Base class for errors raised above the rule/statistics boundary."""


class AuthError(InsightsError):
    """Missing or invalid credentials (shared secret or session)."""


class DataAccessError(InsightsError):
    """A persistence read or write failed."""


class KeyValueStoreError(InsightsError):
    """The external key-value store could not serve a request."""


class RateLimitExceeded(InsightsError):
    """The actor used up its window; carries the seconds until a retry may succeed."""

    def __init__(self, remaining_seconds: int) -> None:
        super().__init__(f"Rate limit exceeded, retry in {remaining_seconds}s")
        self.remaining_seconds = remaining_seconds


class TriggerFailure(InsightsError):
    """Background generation gave up after exhausting its retries."""

    def __init__(self, user_id: int, attempts: int, cause: BaseException | None = None) -> None:
        super().__init__(f"Insight generation for user {user_id} failed after {attempts} attempt(s)")
        self.user_id = user_id
        self.attempts = attempts
        self.cause = cause


__all__ = [
    "AuthError",
    "DataAccessError",
    "InsightsError",
    "KeyValueStoreError",
    "RateLimitExceeded",
    "TriggerFailure",
]
