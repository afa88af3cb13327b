from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from scratchoff.barcode import Jurisdiction

ZERO = Decimal("0")


class TicketOrder(str, Enum):
    DESCENDING = "descending"
    ASCENDING = "ascending"


class ScanErrorKind(str, Enum):
    INVALID_BARCODE = "invalid_barcode"
    BOX_NOT_CONFIGURED = "box_not_configured"
    UNKNOWN_GAME = "unknown_game"
    DUPLICATE_SCAN = "duplicate_scan"
    INVALID_SEQUENCE = "invalid_sequence"
    EXCEEDS_BOOK = "exceeds_book"


@dataclass(frozen=True)
class StoreSettings:
    state_code: Jurisdiction = Jurisdiction.MD
    ticket_order: TicketOrder = TicketOrder.DESCENDING


@dataclass(frozen=True)
class GameInfo:
    game_number: str
    ticket_price: Decimal
    total_tickets_per_book: int


@dataclass(frozen=True)
class TicketBox:
    box_number: int
    ticket_price: Decimal = ZERO
    total_tickets_per_book: int = 0
    starting_ticket_number: int = 0
    last_scanned_ticket_number: Optional[int] = None
    tickets_sold: int = 0
    total_amount_sold: Decimal = ZERO
    is_configured: bool = False
    game_number: Optional[str] = None
    book_number: Optional[str] = None

    @property
    def reference_number(self) -> int:
        """Ticket number the next scan is measured against."""
        if self.last_scanned_ticket_number is not None:
            return self.last_scanned_ticket_number
        return self.starting_ticket_number


@dataclass(frozen=True)
class DailyCounter:
    tickets_sold: int = 0
    total_amount_sold: Decimal = ZERO


@dataclass(frozen=True)
class DailyTotals:
    total_tickets_sold: int
    total_amount_sold: Decimal
    active_boxes: int


@dataclass(frozen=True)
class ScanResult:
    box_number: int
    ticket_number: int
    tickets_sold: int
    amount_sold: Decimal
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    game_number: Optional[str] = None
    book_number: Optional[str] = None
    book_transition: bool = False
    success: bool = True


@dataclass(frozen=True)
class ScanError:
    kind: ScanErrorKind
    message: str

    @property
    def severity(self) -> str:
        if self.kind is ScanErrorKind.EXCEEDS_BOOK:
            return "warning"
        return "error"


@dataclass(frozen=True)
class ScanOutcome:
    """Either a result with the box state it produced, or an error."""

    result: Optional[ScanResult] = None
    error: Optional[ScanError] = None
    box: Optional[TicketBox] = None

    def __post_init__(self) -> None:
        if (self.result is None) == (self.error is None):
            raise ValueError("a scan outcome holds exactly one of result or error")
        if self.result is not None and self.box is None:
            raise ValueError("a successful scan outcome must carry the updated box")

    @property
    def ok(self) -> bool:
        return self.result is not None

    @classmethod
    def failed(cls, kind: ScanErrorKind, message: str) -> "ScanOutcome":
        return cls(error=ScanError(kind=kind, message=message))


def format_money(amount: Decimal) -> str:
    return f"${amount:.2f}"


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))
