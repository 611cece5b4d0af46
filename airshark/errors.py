from __future__ import annotations


class ConfigError(RuntimeError):
    """Raised when configuration is missing or invalid."""


class ProviderError(RuntimeError):
    """Raised when a search provider request fails."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderAuthError(ProviderError):
    """Raised when the provider rejects the API key (401/403)."""


class ProviderRateLimitError(ProviderError):
    """Raised when the provider answers 429."""


class ProviderResponseError(ProviderError):
    """Raised when the provider payload is missing the expected post array."""


class StorageError(RuntimeError):
    """Raised when reading or writing the SQLite post cache fails."""
