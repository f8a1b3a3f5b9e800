from __future__ import annotations


class InvalidDateError(ValueError):
    """Raised when a date argument is not a date or a ``YYYY-MM-DD`` string.

    This is a caller bug rather than degraded data, so planning code lets it
    propagate instead of turning it into a warning.
    """
