from __future__ import annotations


class HttpBaseError(Exception):
    """Base class for errors raised by httpbase."""


class ConfigError(HttpBaseError):
    """Settings or flags could not be parsed; raised before any listener is opened."""


class ShutdownTimeoutError(HttpBaseError):
    """In-flight requests did not finish within the shutdown grace period."""

    def __init__(self, grace_period: float) -> None:
        super().__init__(f"graceful shutdown exceeded {grace_period:g}s grace period")
        self.grace_period = grace_period


class AbortHandler(Exception):
    """Raised by a handler to abandon its response on purpose.

    The recovery middleware swallows it without logging or writing a response.
    """
