"""Error taxonomy shared by the ingestion and query pipelines."""

from __future__ import annotations


class BetfairNlpError(Exception):
    """Base class for pipeline errors."""


class LineParseError(BetfairNlpError):
    """A single feed line could not be parsed into a change message."""

    def __init__(self, message: str, line_number: int | None = None) -> None:
        super().__init__(message)
        self.line_number = line_number


class DuplicateKeyError(BetfairNlpError):
    """The store rejected a record whose identity key already exists."""


class PersistenceError(BetfairNlpError):
    """Any store write failure other than a duplicate key."""


class TranslationFailed(BetfairNlpError):
    """The model response did not contain a usable structured payload."""


class BackendUnavailable(BetfairNlpError):
    """The language-model backend could not be reached or is not configured."""


class UnsafeScript(BetfairNlpError):
    """A generated script was rejected by the sanitizer."""
