"""Exceptions raised by inventory operations outside the scan path.

Scan validation failures are not exceptions; they are returned as
:class:`scratchoff.domain.ScanError` values.
"""

from typing import Optional


class InventoryError(Exception):
    """Base class for inventory errors."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause:
            return f"{self.message}: {self.cause}"
        return self.message


class BoxNotFoundError(InventoryError):
    """The referenced box does not exist."""

    def __init__(self, box_number: int):
        super().__init__(f"box {box_number} not found")
        self.box_number = box_number


class InvalidConfigurationError(InventoryError):
    """A box or game configuration violates its invariants."""


class SettingsLockedError(InventoryError):
    """Store settings cannot change while the day has recorded sales."""

    def __init__(self):
        super().__init__("store settings cannot change while boxes have sales for the day")


class SummaryNotFoundError(InventoryError):
    """No archived summary exists for the requested date."""

    def __init__(self, summary_date):
        super().__init__(f"no summary archived for {summary_date}")
        self.summary_date = summary_date


class ArchiveFailedError(InventoryError):
    """The day's summary could not be written; counters were left as they were."""
