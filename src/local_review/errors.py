"""Error taxonomy shared by the review components and both transports."""

from __future__ import annotations


class ReviewError(Exception):
    """Base class for errors surfaced to tool and HTTP callers."""

    kind: str = "internal"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class RefResolutionError(ReviewError):
    """A branch, commit, or path could not be resolved by git."""

    kind = "ref_resolution"


class ValidationError(ReviewError):
    """A request is missing a required field or carries an invalid value."""

    kind = "validation"


class NotFoundError(ReviewError):
    """A referenced session or comment does not exist."""

    kind = "not_found"


class StoreError(ReviewError):
    """The database rejected or failed a read or write."""

    kind = "store"
