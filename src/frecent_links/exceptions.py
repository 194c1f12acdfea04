"""Unified exception hierarchy for frecent-links."""


class FrecentLinksError(Exception):
    """Base exception for all frecent-links errors."""


# History
class HistoryError(FrecentLinksError):
    """Base exception for history service operations."""


class InvalidInputError(HistoryError):
    """Ineligible url or malformed visit data. Not retryable."""


class StoreError(HistoryError):
    """The underlying visit store failed to read or write."""


class NotFoundError(HistoryError):
    """No page is recorded for the requested url."""


class ProviderStateError(HistoryError):
    """Operation not allowed in the provider's current lifecycle state."""

