"""Ticket scan reconciliation.

:func:`process_scan` is a pure function: it validates one scan against the
current state of a box and either returns the box state the scan produces
together with a :class:`ScanResult`, or a :class:`ScanError`. The box passed
in is never modified, so a rejected scan leaves nothing to roll back.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Union

from scratchoff.barcode import DecodedBarcode, Jurisdiction, parse_barcode
from scratchoff.domain import (
    ZERO,
    ScanErrorKind,
    ScanOutcome,
    ScanResult,
    TicketBox,
    TicketOrder,
    format_money,
)
from scratchoff.registry import GameRegistry

_WHOLE_NUMBER = re.compile(r"[0-9]+")

INVALID_MANUAL_ENTRY = "Invalid ticket number. Must be a non-negative whole number."


@dataclass(frozen=True)
class BookTransition:
    box: TicketBox
    remaining_sold: int
    remaining_amount: Decimal
    game_changed: bool


def manual_ticket_number(value: Union[str, int, float, None]) -> Optional[int]:
    """Return the ticket number typed by a clerk, or None when it is not a whole number >= 0."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, float):
        if value.is_integer() and value >= 0:
            return int(value)
        return None
    if isinstance(value, str) and _WHOLE_NUMBER.fullmatch(value.strip()):
        return int(value.strip())
    return None


def sold_between(reference: int, ticket_number: int, order: TicketOrder) -> int:
    if order is TicketOrder.DESCENDING:
        return reference - ticket_number
    return ticket_number - reference


def violates_sequence(reference: int, ticket_number: int, order: TicketOrder) -> bool:
    if order is TicketOrder.DESCENDING:
        return ticket_number > reference
    return ticket_number < reference


def roll_over_book(
    box: TicketBox,
    decoded: DecodedBarcode,
    ticket_price: Decimal,
    total_tickets_per_book: int,
    order: TicketOrder,
) -> BookTransition:
    """Close out the loaded book as fully sold and load the scanned one.

    Descending books close out the reference number of tickets and restart at
    the book size; ascending books close out `total - reference` and restart at 0.
    """
    reference = box.reference_number
    if order is TicketOrder.DESCENDING:
        remaining_sold = reference
        fresh_start = total_tickets_per_book
    else:
        remaining_sold = max(box.total_tickets_per_book - reference, 0)
        fresh_start = 0
    remaining_amount = remaining_sold * box.ticket_price
    rolled = replace(
        box,
        game_number=decoded.game_number,
        book_number=decoded.book_number,
        ticket_price=ticket_price,
        total_tickets_per_book=total_tickets_per_book,
        starting_ticket_number=fresh_start,
        last_scanned_ticket_number=None,
        tickets_sold=box.tickets_sold + remaining_sold,
        total_amount_sold=box.total_amount_sold + remaining_amount,
    )
    return BookTransition(
        box=rolled,
        remaining_sold=remaining_sold,
        remaining_amount=remaining_amount,
        game_changed=decoded.game_number != box.game_number,
    )


def detect_transition(
    box: TicketBox,
    decoded: DecodedBarcode,
    registry: GameRegistry,
    jurisdiction: Jurisdiction,
    order: TicketOrder,
) -> Union[BookTransition, ScanOutcome, None]:
    """Compare the scanned game/book with the loaded one.

    Returns None when the same book is still loaded, a :class:`BookTransition`
    when a new book was scanned, or a failed :class:`ScanOutcome` for a game
    that is not in the registry.
    """
    if box.game_number is None:
        return None
    if decoded.game_number != box.game_number:
        game = registry.lookup(decoded.game_number)
        if game is None:
            return ScanOutcome.failed(
                ScanErrorKind.UNKNOWN_GAME,
                f"Game #{decoded.game_number} is not a known game. "
                f"Add a book for this game to box {box.box_number} first.",
            )
        return roll_over_book(box, decoded, game.ticket_price, game.total_tickets_per_book, order)

    normalize = jurisdiction.barcode_format.normalize_book
    if box.book_number is not None and normalize(box.book_number) == normalize(decoded.book_number):
        return None
    game = registry.lookup(decoded.game_number)
    total_tickets = game.total_tickets_per_book if game else box.total_tickets_per_book
    return roll_over_book(box, decoded, box.ticket_price, total_tickets, order)


def _describe(
    box_number: int,
    sold: int,
    amount: Decimal,
    manual: bool,
    transition: Optional[BookTransition],
) -> str:
    sale = f"Sold {sold} tickets for {format_money(amount)}"
    if manual:
        return f"Manual entry: {sale}"
    if transition is not None:
        loaded = transition.box
        what = f"game #{loaded.game_number} book {loaded.book_number}" if transition.game_changed else f"book {loaded.book_number}"
        return (
            f"New {what} loaded in box {box_number}. "
            f"Previous book closed out: {transition.remaining_sold} tickets for "
            f"{format_money(transition.remaining_amount)}. {sale}"
        )
    return sale


def process_scan(
    raw: Union[str, int, float],
    box_number: int,
    box: Optional[TicketBox],
    registry: GameRegistry,
    jurisdiction: Jurisdiction,
    order: TicketOrder,
    manual: bool = False,
    now: Optional[datetime] = None,
) -> ScanOutcome:
    """Validate a scan (or manual ticket number) for ``box`` and compute its effect."""
    decoded: Optional[DecodedBarcode] = None
    if manual:
        ticket_number = manual_ticket_number(raw)
        if ticket_number is None:
            return ScanOutcome.failed(ScanErrorKind.INVALID_BARCODE, INVALID_MANUAL_ENTRY)
    else:
        decoded = parse_barcode(raw, jurisdiction)
        if decoded is None:
            return ScanOutcome.failed(
                ScanErrorKind.INVALID_BARCODE, jurisdiction.barcode_format.invalid_hint
            )
        ticket_number = decoded.ticket_number

    if box is None or not box.is_configured:
        return ScanOutcome.failed(
            ScanErrorKind.BOX_NOT_CONFIGURED,
            f"Box {box_number} is not configured. Please set it up first.",
        )

    transition: Optional[BookTransition] = None
    working = box
    if decoded is not None:
        detected = detect_transition(box, decoded, registry, jurisdiction, order)
        if isinstance(detected, ScanOutcome):
            return detected
        if detected is not None:
            transition = detected
            working = detected.box

    reference = working.reference_number
    if (
        working.last_scanned_ticket_number is not None
        and working.last_scanned_ticket_number == ticket_number
        and working.tickets_sold > 0
    ):
        return ScanOutcome.failed(
            ScanErrorKind.DUPLICATE_SCAN, f"Ticket #{ticket_number} was already scanned."
        )

    if violates_sequence(reference, ticket_number, order):
        descending = order is TicketOrder.DESCENDING
        return ScanOutcome.failed(
            ScanErrorKind.INVALID_SEQUENCE,
            f"Invalid sequence: Ticket #{ticket_number} is {'higher' if descending else 'lower'} "
            f"than last ticket #{reference}. "
            f"Tickets should {'decrease' if descending else 'increase'}.",
        )

    sold = sold_between(reference, ticket_number, order)
    total_after = working.tickets_sold + sold
    if transition is None and total_after > working.total_tickets_per_book:
        return ScanOutcome.failed(
            ScanErrorKind.EXCEEDS_BOOK,
            f"Warning: This would exceed book total ({total_after} > {working.total_tickets_per_book})",
        )

    amount = sold * working.ticket_price
    updated = replace(
        working,
        last_scanned_ticket_number=ticket_number,
        tickets_sold=total_after,
        total_amount_sold=working.total_amount_sold + amount,
    )
    if decoded is not None and updated.game_number is None:
        updated = replace(updated, game_number=decoded.game_number, book_number=decoded.book_number)

    remaining_sold = transition.remaining_sold if transition else 0
    remaining_amount = transition.remaining_amount if transition else ZERO
    result = ScanResult(
        box_number=box_number,
        ticket_number=ticket_number,
        tickets_sold=sold + remaining_sold,
        amount_sold=amount + remaining_amount,
        message=_describe(box_number, sold, amount, manual, transition),
        timestamp=now or datetime.now(timezone.utc),
        game_number=decoded.game_number if decoded else None,
        book_number=decoded.book_number if decoded else None,
        book_transition=transition is not None,
    )
    return ScanOutcome(result=result, box=updated)
