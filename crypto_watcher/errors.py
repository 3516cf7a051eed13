from __future__ import annotations


class WatcherError(Exception):
    """Base error for the watcher."""


class ConfigError(WatcherError):
    """Invalid or missing configuration value."""


class FetchError(WatcherError):
    """Network or HTTP failure talking to an upstream API."""

    def __init__(self, message: str, *, source: str = "") -> None:
        self.source = source
        super().__init__(message)


class ValidationError(FetchError):
    """Upstream payload did not have the expected shape."""


class StoreWriteError(WatcherError):
    """Price history or state could not be persisted."""


class VolatilityError(WatcherError):
    """A look-back reference price made the change undefined."""

    def __init__(self, message: str, *, symbol: str = "") -> None:
        self.symbol = symbol
        super().__init__(message)


class StoreReadError(WatcherError):
    """Price history could not be queried."""
