"""Error types raised by the review scheduling core."""

from __future__ import annotations


class StudyCoreError(Exception):
    """Base class for scheduling errors surfaced to callers."""


class ValidationError(StudyCoreError, ValueError):
    """Malformed input: missing owner or date, or a non-future custom date."""


class NotFoundError(StudyCoreError, LookupError):
    """The referenced owner or review item does not exist."""


class PersistenceFailure(StudyCoreError):
    """A durable write failed; no partial state was committed."""


__all__ = [
    "NotFoundError",
    "PersistenceFailure",
    "StudyCoreError",
    "ValidationError",
]
