from typing import Any, Optional


class RepricerError(Exception):
    """Base class for errors raised by the repricing core."""


class ValidationError(RepricerError):
    """A strategy, rule or listing is missing data or violates an invariant."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class NotFoundError(RepricerError):
    def __init__(self, kind: str, identifier: Any):
        super().__init__(f"{kind} '{identifier}' not found")
        self.kind = kind
        self.identifier = identifier


class ExternalApiError(RepricerError):
    """
    A marketplace call failed or timed out.

    ``detail`` is one of the typed error payloads stored on the price history
    record (see ``price_history_entity.ErrorDetail``).
    """

    def __init__(self, message: str, detail: Any = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class ConcurrencyConflict(RepricerError):
    """An optimistic listing write kept losing to another writer."""
