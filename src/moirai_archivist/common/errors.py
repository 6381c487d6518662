"""Exception types raised by the fragment client."""
from __future__ import annotations


class ArchivistError(Exception):
    """Base class for every failure surfaced to fragment callers."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(ArchivistError):
    """Credential or endpoint missing. Raised before any network attempt."""


class ValidationError(ArchivistError):
    """Invalid caller input, or a response that does not match the fragment shape."""


class TransportError(ArchivistError):
    """
    The service could not be reached or refused the request.

    Attributes:
        status_code: HTTP status of the last response, or None for network failures.
        attempts: Number of network attempts made before giving up.
    """

    def __init__(self, message: str, status_code: int | None = None, attempts: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.attempts = attempts


class RequestCancelled(ArchivistError):
    """The caller's deadline expired before the fragment arrived."""
