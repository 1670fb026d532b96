"""Exception types raised by reflex-recon-grid."""

from typing import Any


class ReconGridError(Exception):
    """Base class for every error raised by this package."""


class UnknownColumnError(ReconGridError, KeyError):
    """A column name that is not present in the column registry."""

    def __init__(self, column: str) -> None:
        super().__init__(column)
        self.column = column

    def __str__(self) -> str:
        return f"Unknown column: {self.column!r}"


class FilterTypeError(ReconGridError, ValueError):
    """A filter edit that does not match the column's value type."""


class ConfigError(ReconGridError, ValueError):
    """An environment setting that cannot be parsed."""


class ReconApiError(ReconGridError):
    """A failed call to the remote reconciliation API.

    Attributes:
        message: Human-readable description (server message when given).
        status_code: HTTP status, ``408`` for timeouts, ``0`` for
            transport failures.
        code: Short machine code: ``API_ERROR``, ``TIMEOUT``,
            ``NETWORK_ERROR`` or ``BAD_PAYLOAD``.
        details: Decoded response body, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int = 0,
        code: str = "API_ERROR",
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details

    def __str__(self) -> str:
        if self.status_code:
            return f"{self.code} ({self.status_code}): {self.message}"
        return f"{self.code}: {self.message}"
