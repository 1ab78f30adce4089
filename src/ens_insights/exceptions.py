"""Custom exceptions for the ENS Insights application."""


class EnsInsightsError(Exception):
    """Base exception for all ENS Insights errors."""
    pass


class APIError(EnsInsightsError):
    """Raised when there's an error with the marketplace API."""
    pass


class TransientFetchError(APIError):
    """Raised for a single-page network or timeout failure.

    The activity fetcher retries these and downgrades them to an empty,
    incomplete page once retries are exhausted; they never escape it.
    """

    def __init__(self, message: str, is_timeout: bool = False):
        super().__init__(message)
        self.is_timeout = is_timeout


class ConfigurationError(EnsInsightsError):
    """Raised when mandatory input or configuration is missing or invalid."""
    pass


class OperationTimeoutError(EnsInsightsError):
    """Raised when a bounded external operation loses the race to its timer."""
    pass
