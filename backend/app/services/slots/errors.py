# backend/app/services/slots/errors.py
"""
Errors raised at the availability engine boundary.
"""


class InvalidWindowError(ValueError):
    """Availability window violates its invariants (capacity, ordering, tz)."""


class FeedUnavailableError(RuntimeError):
    """Change feed subscription could not be established."""
