from decimal import Decimal

import pytest

from scratchoff.barcode import DecodedBarcode, Jurisdiction
from scratchoff.domain import GameInfo, ScanErrorKind, TicketBox, TicketOrder
from scratchoff.engine import manual_ticket_number, process_scan, roll_over_book
from scratchoff.registry import GameRegistry


def _box(**overrides) -> TicketBox:
    values = dict(
        box_number=1,
        ticket_price=Decimal("5"),
        total_tickets_per_book=60,
        starting_ticket_number=60,
        is_configured=True,
    )
    values.update(overrides)
    return TicketBox(**values)


def _md_barcode(game: str = "746", book: str = "047551", ticket: int = 55) -> str:
    return f"{game}{book}{ticket:03d}" + "0" * 8


def _scan(raw, box, registry=None, jurisdiction=Jurisdiction.MD, order=TicketOrder.DESCENDING, manual=False):
    return process_scan(
        raw,
        box.box_number if box is not None else 1,
        box,
        registry or GameRegistry(),
        jurisdiction,
        order,
        manual=manual,
    )


def test_first_scan_of_the_day_descending() -> None:
    outcome = _scan("55", _box(), manual=True)
    assert outcome.ok
    assert outcome.result.tickets_sold == 5
    assert outcome.result.amount_sold == Decimal("25")
    assert outcome.result.message == "Manual entry: Sold 5 tickets for $25.00"
    assert outcome.box.tickets_sold == 5
    assert outcome.box.total_amount_sold == Decimal("25")
    assert outcome.box.last_scanned_ticket_number == 55


def test_repeating_the_last_ticket_is_a_duplicate() -> None:
    box = _scan("55", _box(), manual=True).box
    outcome = _scan("55", box, manual=True)
    assert not outcome.ok
    assert outcome.error.kind is ScanErrorKind.DUPLICATE_SCAN
    assert outcome.error.message == "Ticket #55 was already scanned."
    assert outcome.box is None


def test_selling_exactly_to_capacity_is_accepted() -> None:
    box = _box(last_scanned_ticket_number=10, tickets_sold=50, total_amount_sold=Decimal("250"))
    outcome = _scan("0", box, manual=True)
    assert outcome.ok
    assert outcome.box.tickets_sold == 60
    assert outcome.box.total_amount_sold == Decimal("300")


def test_exceeding_capacity_is_rejected_as_warning() -> None:
    box = _box(last_scanned_ticket_number=10, tickets_sold=55)
    outcome = _scan("0", box, manual=True)
    assert outcome.error.kind is ScanErrorKind.EXCEEDS_BOOK
    assert outcome.error.severity == "warning"
    assert outcome.error.message == "Warning: This would exceed book total (65 > 60)"
    assert box.tickets_sold == 55
    assert box.last_scanned_ticket_number == 10


def test_new_book_of_same_game_closes_out_the_old_one() -> None:
    registry = GameRegistry([GameInfo("746", Decimal("5"), 60)])
    box = _box(
        game_number="746",
        book_number="047551",
        last_scanned_ticket_number=20,
        tickets_sold=40,
        total_amount_sold=Decimal("200"),
    )
    outcome = _scan(_md_barcode(book="047552", ticket=58), box, registry)
    assert outcome.ok
    result = outcome.result
    assert result.book_transition
    assert result.tickets_sold == 22
    assert result.amount_sold == Decimal("110")
    assert "Previous book closed out: 20 tickets for $100.00" in result.message
    assert outcome.box.book_number == "047552"
    assert outcome.box.starting_ticket_number == 60
    assert outcome.box.last_scanned_ticket_number == 58
    assert outcome.box.tickets_sold == 62


def test_roll_over_book_resets_the_box_to_the_new_book() -> None:
    box = _box(game_number="746", book_number="047551", last_scanned_ticket_number=20, tickets_sold=40)
    decoded = DecodedBarcode("746", "047552", 60)
    transition = roll_over_book(box, decoded, Decimal("5"), 60, TicketOrder.DESCENDING)
    assert transition.remaining_sold == 20
    assert transition.remaining_amount == Decimal("100")
    assert not transition.game_changed
    assert transition.box.starting_ticket_number == 60
    assert transition.box.last_scanned_ticket_number is None
    assert transition.box.book_number == "047552"


def test_ascending_first_ticket_equal_to_start_sells_nothing() -> None:
    box = _box(starting_ticket_number=1)
    outcome = _scan("1", box, order=TicketOrder.ASCENDING, manual=True)
    assert outcome.ok
    assert outcome.result.tickets_sold == 0
    assert outcome.result.amount_sold == Decimal("0")
    assert outcome.box.last_scanned_ticket_number == 1


def test_invalid_barcode_uses_format_hint() -> None:
    outcome = _scan("not-a-barcode", _box())
    assert outcome.error.kind is ScanErrorKind.INVALID_BARCODE
    assert outcome.error.message == "Invalid barcode format. Expected 20 digits."

    outcome = _scan("1619", _box(), jurisdiction=Jurisdiction.DC)
    assert "1619-04147-7-017" in outcome.error.message


@pytest.mark.parametrize("value", ["-3", "abc", "", 2.5, -1, True, None])
def test_invalid_manual_entry(value) -> None:
    outcome = _scan(value, _box(), manual=True)
    assert outcome.error.kind is ScanErrorKind.INVALID_BARCODE
    assert outcome.error.message == "Invalid ticket number. Must be a non-negative whole number."


def test_manual_ticket_number_accepts_whole_numbers() -> None:
    assert manual_ticket_number(" 7 ") == 7
    assert manual_ticket_number(3.0) == 3
    assert manual_ticket_number(0) == 0


def test_unconfigured_or_missing_box() -> None:
    outcome = _scan("55", None, manual=True)
    assert outcome.error.kind is ScanErrorKind.BOX_NOT_CONFIGURED
    assert outcome.error.message == "Box 1 is not configured. Please set it up first."

    outcome = _scan("55", TicketBox(box_number=3), manual=True)
    assert outcome.error.kind is ScanErrorKind.BOX_NOT_CONFIGURED


def test_unknown_game_is_rejected() -> None:
    box = _box(game_number="746", book_number="047551")
    outcome = _scan(_md_barcode(game="999"), box)
    assert outcome.error.kind is ScanErrorKind.UNKNOWN_GAME
    assert "Game #999" in outcome.error.message


def test_known_different_game_adopts_its_price_and_size() -> None:
    registry = GameRegistry([GameInfo("800", Decimal("10"), 30)])
    box = _box(game_number="746", book_number="047551", last_scanned_ticket_number=5, tickets_sold=55)
    outcome = _scan(_md_barcode(game="800", book="000001", ticket=28), box, registry)
    assert outcome.ok
    assert outcome.box.game_number == "800"
    assert outcome.box.ticket_price == Decimal("10")
    assert outcome.box.total_tickets_per_book == 30
    # five old tickets at $5, two new ones at $10
    assert outcome.result.amount_sold == Decimal("45")
    assert outcome.result.message.startswith("New game #800 book 000001 loaded in box 1.")


def test_descending_sequence_violation() -> None:
    box = _box(last_scanned_ticket_number=40, tickets_sold=20)
    outcome = _scan("41", box, manual=True)
    assert outcome.error.kind is ScanErrorKind.INVALID_SEQUENCE
    assert outcome.error.message == (
        "Invalid sequence: Ticket #41 is higher than last ticket #40. Tickets should decrease."
    )


def test_ascending_sequence_violation() -> None:
    box = _box(starting_ticket_number=10)
    outcome = _scan("9", box, order=TicketOrder.ASCENDING, manual=True)
    assert outcome.error.kind is ScanErrorKind.INVALID_SEQUENCE
    assert "is lower than last ticket #10. Tickets should increase." in outcome.error.message


def test_ascending_transition_counts_unsold_tail() -> None:
    registry = GameRegistry([GameInfo("746", Decimal("5"), 60)])
    box = _box(
        game_number="746",
        book_number="047551",
        starting_ticket_number=0,
        last_scanned_ticket_number=40,
        tickets_sold=40,
    )
    outcome = _scan(_md_barcode(book="047552", ticket=3), box, registry, order=TicketOrder.ASCENDING)
    assert outcome.ok
    assert outcome.result.tickets_sold == 23
    assert outcome.box.starting_ticket_number == 0
    assert outcome.box.last_scanned_ticket_number == 3


def test_same_book_with_different_leading_zeros_is_not_a_transition() -> None:
    box = _box(game_number="1619", book_number="04147")
    outcome = _scan("1619-4147-7-050", box, jurisdiction=Jurisdiction.DC)
    assert outcome.ok
    assert not outcome.result.book_transition
    assert outcome.box.book_number == "04147"
    assert outcome.result.tickets_sold == 10


def test_box_without_a_game_adopts_the_scanned_book() -> None:
    outcome = _scan(_md_barcode(ticket=50), _box())
    assert outcome.ok
    assert not outcome.result.book_transition
    assert outcome.box.game_number == "746"
    assert outcome.box.book_number == "047551"


def test_same_game_new_book_without_registry_entry_keeps_box_size() -> None:
    box = _box(game_number="746", book_number="047551", total_tickets_per_book=100, last_scanned_ticket_number=30)
    outcome = _scan(_md_barcode(book="047552", ticket=100), box)
    assert outcome.ok
    assert outcome.box.total_tickets_per_book == 100
    assert outcome.box.starting_ticket_number == 100
