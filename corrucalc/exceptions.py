"""Error taxonomy shared by the pricing core and its channels."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal


class CorruCalcError(Exception):
    """Base class for all CorruCalc domain errors."""


class ValidationFailed(CorruCalcError):
    """Malformed or out-of-range input. Recoverable by the caller."""

    def __init__(self, errors: list[str], message: str = "Validation failed"):
        super().__init__(message)
        self.message = message
        self.errors = list(errors)


class TooManyLines(ValidationFailed):
    """More box lines than a single quote accepts."""

    def __init__(self, count: int, max_lines: int):
        super().__init__(
            [f"boxes must contain at most {max_lines} items (got {count})"],
            message=f"Maximum {max_lines} boxes per request",
        )
        self.count = count
        self.max_lines = max_lines


class BelowAbsoluteMinimum(CorruCalcError):
    """Total area is under the hard production floor."""

    def __init__(self, total_area: Decimal, floor: Decimal):
        super().__init__(
            f"Total area {total_area} m2 is below the absolute minimum of {floor} m2"
        )
        self.total_area = total_area
        self.floor = floor


class RateLimited(CorruCalcError):
    """Caller exceeded its request quota for the current window."""

    def __init__(self, limit: int, reset_at: datetime):
        super().__init__("Rate limit exceeded. Please wait before making more requests.")
        self.limit = limit
        self.remaining = 0
        self.reset_at = reset_at


class ConfigUnavailable(CorruCalcError):
    """No active pricing configuration could be read."""


class UpstreamUnavailable(CorruCalcError):
    """A non-critical dependency (classifier, notifier, messenger) is down."""
