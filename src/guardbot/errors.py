from __future__ import annotations


class GuardbotError(Exception):
    """Base class for errors raised by the guard collection pipeline."""


class SourceUnavailable(GuardbotError):
    """The remote guard list API could not be reached or answered badly."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MalformedRecordError(GuardbotError):
    """A single raw guard entry does not have the expected structure."""


class MalformedRosterError(GuardbotError):
    """A channel produced no usable roster."""


class PersistenceError(GuardbotError):
    """A key/value store operation failed."""
