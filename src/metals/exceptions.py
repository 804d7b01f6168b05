"""Custom exceptions for the metals price service.

Kept in one module so sources, stores and the HTTP layer can share them
without circular imports.
"""


class MetalsError(Exception):
    """Base exception for all service errors."""


class UpstreamUnavailable(MetalsError):
    """Raised when an external price source times out, errors or returns junk.

    Always recovered locally by the caller falling through to the next
    tier or fallback.
    """


class InvalidRequest(MetalsError):
    """Raised for malformed client input (bad date/time, oversized batch)."""


class NotFound(MetalsError):
    """Raised when no data exists for a date that only the static table covers."""


class StoreError(MetalsError):
    """Raised when the datastore rejects a read or write."""
