"""Exception hierarchy shared by adapters, storage, and the sync scheduler."""

from __future__ import annotations


class OdinError(Exception):
    """Base class for all errors raised by the sync engine."""


class FetchError(OdinError):
    """A transient network or server failure while fetching a page.

    Retried with exponential backoff by the pagination engine.
    """


class ServerOverloadedError(FetchError):
    """The remote server reported it is too busy to answer right now.

    Retried after the adapter's overload cooldown instead of the ordinary
    backoff delay, when the adapter configures one.
    """

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class AuthenticationError(OdinError):
    """Login or token refresh was rejected. Never retried by backoff."""


class CredentialsMissingError(AuthenticationError):
    """No credentials are configured for a source that requires them."""


class PartialSyncError(OdinError):
    """An adapter run failed after some records were already committed."""

    def __init__(self, message: str, fetched: int, upserted: int) -> None:
        super().__init__(message)
        self.fetched = fetched
        self.upserted = upserted


class UnknownAdapterError(ValueError):
    """A sync was requested for an adapter name that is not registered."""


class SettingsError(ValueError):
    """A settings write named an unknown key or carried an invalid value."""
