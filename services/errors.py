from __future__ import annotations


class CurtailmentError(Exception):
    """Base class for reconciliation failures."""


class NetworkError(CurtailmentError):
    """Settlement API transport failure (timeout, 5xx, 429) after retries."""

    def __init__(self, message: str, *, timeout: bool = False, status_code: int | None = None):
        super().__init__(message)
        self.timeout = timeout
        self.status_code = status_code


class ValidationError(CurtailmentError):
    """A single raw entry is malformed or cannot be attributed to a wind farm."""

    def __init__(self, message: str, *, reason: str = "malformed"):
        super().__init__(message)
        self.reason = reason


class PersistenceError(CurtailmentError):
    """Write to the record store failed.

    corrupted=False means the transaction rolled back and the partition is in
    its pre-attempt state.
    """

    def __init__(self, message: str, *, corrupted: bool = False):
        super().__init__(message)
        self.corrupted = corrupted


class InvalidDifficultyError(CurtailmentError):
    pass


class InvalidModelError(CurtailmentError):
    pass


class FatalError(CurtailmentError):
    """Reference data or store unavailable; the run cannot start."""
