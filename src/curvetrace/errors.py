"""Exception hierarchy for curve extraction and refinement."""

from __future__ import annotations


class CurveExtractionError(Exception):
    """Base class for every error raised by curvetrace."""


class InvalidInputError(CurveExtractionError, ValueError):
    """Inputs have mismatched shapes, out-of-range values or empty regions."""


class UnsupportedConfigurationError(CurveExtractionError, ValueError):
    """A recognised option that this implementation refuses to run."""


class SearchExhaustedError(CurveExtractionError):
    """The frontier emptied before any end state was reached."""

    def __init__(self, message: str, *, evaluations: int = 0) -> None:
        super().__init__(message)
        self.evaluations = evaluations


class ResourceLimitExceededError(CurveExtractionError):
    """The search enqueued more distinct states than allowed."""

    def __init__(
        self, message: str, *, evaluations: int = 0, queue_size: int = 0
    ) -> None:
        super().__init__(message)
        self.evaluations = evaluations
        self.queue_size = queue_size
