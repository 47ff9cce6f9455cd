"""Sync failure taxonomy.

Worker-side failures never cross into the hub: the worker turns them into
a status update plus a `sync_error` event. HTTP handlers map the account
errors onto 404/409 responses.
"""

from __future__ import annotations


class SyncError(Exception):
    code = "SYNC_ERROR"


class ProviderError(SyncError):
    code = "PROVIDER_ERROR"


class ProviderUnavailable(ProviderError):
    """Network failure, timeout or 5xx from the match provider."""

    code = "PROVIDER_UNAVAILABLE"


class ProviderRateLimited(ProviderError):
    """The provider refused the request with a hard rate-limit stop."""

    code = "RATE_LIMITED"

    def __init__(self, message: str = "rate limited by match provider", retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class MatchNotFound(ProviderError):
    code = "MATCH_NOT_FOUND"


class PersistenceFailure(SyncError):
    code = "PERSISTENCE_FAILURE"


class AccountNotFound(SyncError):
    code = "ACCOUNT_NOT_FOUND"


class SyncInProgress(SyncError):
    code = "SYNC_IN_PROGRESS"
