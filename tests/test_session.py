from datetime import date
from decimal import Decimal

import pytest

from scratchoff.barcode import Jurisdiction
from scratchoff.domain import ScanErrorKind, StoreSettings, TicketBox
from scratchoff.errors import BoxNotFoundError, InvalidConfigurationError
from scratchoff.session import BoxRemoved, BoxSaved, DayClosed, GameRemoved, GameSaved, InventorySession


def _session(changes=None, **kwargs) -> InventorySession:
    kwargs.setdefault("business_date", date(2026, 3, 1))
    kwargs.setdefault("clock", lambda: date(2026, 3, 2))
    on_change = changes.append if changes is not None else None
    return InventorySession("owner-1", on_change=on_change, **kwargs)


def _loaded_session(changes=None, **kwargs) -> InventorySession:
    session = _session(changes, **kwargs)
    session.add_book_to_box(1, "746", "047551", Decimal("5"), 60, 60)
    return session


def _md_barcode(ticket: int, game: str = "746", book: str = "047551") -> str:
    return f"{game}{book}{ticket:03d}" + "0" * 8


def test_add_box_uses_lowest_free_number() -> None:
    session = _session()
    session.add_box_with_number(1)
    session.add_box_with_number(3)
    assert session.add_box().box_number == 2
    assert session.add_box().box_number == 4
    assert [box.box_number for box in session.boxes] == [1, 2, 3, 4]


def test_add_box_with_existing_number_is_a_no_op() -> None:
    changes = []
    session = _session(changes)
    first = session.add_box_with_number(5)
    assert session.add_box_with_number(5) is first
    assert len(changes) == 1


def test_add_box_rejects_non_positive_numbers() -> None:
    with pytest.raises(InvalidConfigurationError):
        _session().add_box_with_number(0)


def test_add_book_registers_unknown_game_once() -> None:
    changes = []
    session = _loaded_session(changes)
    assert [type(change) for change in changes] == [GameSaved, BoxSaved]
    box = session.box(1)
    assert box.is_configured
    assert box.reference_number == 60

    session.add_book_to_box(2, "746", "000001", Decimal("10"), 30, 30)
    assert session.registry.lookup("746").ticket_price == Decimal("5")
    assert session.box(2).ticket_price == Decimal("10")
    assert [type(change) for change in changes] == [GameSaved, BoxSaved, BoxSaved]


@pytest.mark.parametrize(
    "args",
    [("", "1", 5, 60, 0), ("746", "1", 0, 60, 0), ("746", "1", 5, 0, 0), ("746", "1", 5, 60, -1)],
)
def test_add_book_validates(args) -> None:
    with pytest.raises(InvalidConfigurationError):
        _session().add_book_to_box(1, *args)


def test_configure_box() -> None:
    session = _session()
    session.add_box_with_number(2)
    box = session.configure_box(2, ticket_price="2.50", total_tickets_per_book=100, starting_ticket_number=99)
    assert box.is_configured
    assert box.ticket_price == Decimal("2.50")
    assert session.box(2) == box

    with pytest.raises(BoxNotFoundError):
        session.configure_box(9, ticket_price=1, total_tickets_per_book=1)
    with pytest.raises(InvalidConfigurationError):
        session.configure_box(2, ticket_price=0)


def test_successful_scan_updates_box_history_and_emits() -> None:
    changes = []
    session = _loaded_session(changes)
    outcome = session.process_manual_entry("55", 1)
    assert outcome.ok
    assert session.box(1).tickets_sold == 5
    assert session.last_scan_result == outcome.result
    assert session.scan_history[0] == outcome.result
    assert session.has_undo(1)
    assert changes[-1] == BoxSaved(session.box(1), date(2026, 3, 1))


def test_rejected_scan_changes_nothing() -> None:
    changes = []
    session = _loaded_session(changes)
    session.process_manual_entry("55", 1)
    before = session.box(1)
    emitted = len(changes)

    outcome = session.process_manual_entry("56", 1)
    assert outcome.error.kind is ScanErrorKind.INVALID_SEQUENCE
    assert session.box(1) == before
    assert session.last_error == outcome.error
    assert session.last_scan_result is None
    assert len(changes) == emitted


@pytest.mark.parametrize(
    "barcode, kind",
    [
        (_md_barcode(55), ScanErrorKind.DUPLICATE_SCAN),
        (_md_barcode(40, game="999"), ScanErrorKind.UNKNOWN_GAME),
        (_md_barcode(70, book="047552"), ScanErrorKind.INVALID_SEQUENCE),
    ],
)
def test_rejected_barcode_leaves_box_history_and_undo_alone(barcode, kind) -> None:
    changes = []
    session = _loaded_session(changes)
    first = session.process_barcode(_md_barcode(55), 1)
    assert first.ok
    before = session.box(1)
    history = list(session.scan_history)
    emitted = len(changes)

    outcome = session.process_barcode(barcode, 1)
    assert outcome.error.kind is kind
    assert session.box(1) == before
    assert session.scan_history == history
    assert session.has_undo(1)
    assert session.last_scan_result is None
    assert session.last_error == outcome.error
    assert len(changes) == emitted

    # the undo snapshot still belongs to the accepted scan
    assert session.undo(1)
    assert session.box(1).last_scanned_ticket_number is None
    assert session.box(1).tickets_sold == 0


def test_scan_history_is_newest_first_and_capped() -> None:
    session = _loaded_session(history_limit=2)
    for ticket in (58, 55, 50):
        session.process_manual_entry(ticket, 1)
    assert [result.ticket_number for result in session.scan_history] == [50, 55]


def test_undo_restores_previous_box_exactly_once() -> None:
    session = _loaded_session()
    session.process_manual_entry("58", 1)
    before = session.box(1)
    outcome = session.process_manual_entry("55", 1)

    assert session.undo(1)
    assert session.box(1) == before
    assert outcome.result not in session.scan_history
    assert session.last_scan_result is None
    assert not session.undo(1)


def test_undo_reverts_a_book_transition() -> None:
    session = _loaded_session()
    session.process_barcode(_md_barcode(55), 1)
    before = session.box(1)

    outcome = session.process_barcode(_md_barcode(50, book="047552"), 1)
    assert outcome.ok
    assert outcome.result.book_transition
    assert session.box(1).book_number == "047552"

    assert session.undo(1)
    assert session.box(1) == before
    assert session.box(1).book_number == "047551"
    assert session.box(1).ticket_price == Decimal("5")
    assert session.box(1).tickets_sold == 5
    assert outcome.result not in session.scan_history


def test_undo_is_dropped_when_a_new_book_is_loaded() -> None:
    session = _loaded_session()
    session.process_manual_entry("55", 1)
    session.add_book_to_box(1, "746", "047552", Decimal("5"), 60, 60)
    assert not session.has_undo(1)
    assert not session.undo(1)


def test_remove_box() -> None:
    changes = []
    session = _loaded_session(changes)
    assert session.remove_box(1)
    assert session.box(1) is None
    assert changes[-1] == BoxRemoved(1, date(2026, 3, 1))
    assert not session.remove_box(1)


def test_totals_cover_configured_boxes() -> None:
    session = _loaded_session()
    session.add_box_with_number(2)
    session.add_book_to_box(3, "800", "000001", Decimal("10"), 30, 30)
    session.process_manual_entry("55", 1)
    totals = session.totals()
    assert totals.total_tickets_sold == 5
    assert totals.total_amount_sold == Decimal("25")
    assert totals.active_boxes == 1
    assert session.has_sales()
    assert [box.box_number for box in session.boxes_with_sales()] == [1]


def test_reset_preserving_position_starts_from_last_scan() -> None:
    changes = []
    session = _loaded_session(changes)
    session.process_manual_entry("55", 1)
    session.reset_daily(preserve_position=True)

    box = session.box(1)
    assert box.starting_ticket_number == 55
    assert box.last_scanned_ticket_number is None
    assert box.tickets_sold == 0
    assert box.total_amount_sold == Decimal("0")
    assert session.scan_history == []
    assert not session.has_undo(1)
    assert session.business_date == date(2026, 3, 2)
    assert changes[-1] == DayClosed(date(2026, 3, 1), (box,))


def test_reset_without_preserving_position_keeps_start() -> None:
    session = _loaded_session()
    session.process_manual_entry("55", 1)
    session.reset_daily(preserve_position=False)
    assert session.box(1).starting_ticket_number == 60
    assert session.box(1).tickets_sold == 0
    assert session.last_scan_result is None


def test_game_registry_operations() -> None:
    changes = []
    session = _session(changes)
    assert session.register_game("746", "5", 60)
    assert not session.register_game("746", "10", 30)
    assert session.registry.lookup("746").ticket_price == Decimal("5")

    assert session.update_game("746", "10", 30)
    assert session.registry.lookup("746").total_tickets_per_book == 30
    assert not session.update_game("999", "1", 1)

    with pytest.raises(InvalidConfigurationError):
        session.register_game("800", "0", 10)

    assert session.delete_game("746")
    assert not session.delete_game("746")
    assert changes[-1] == GameRemoved("746")


def test_deleting_a_game_leaves_boxes_alone() -> None:
    session = _loaded_session()
    session.delete_game("746")
    assert session.box(1).game_number == "746"
    assert session.box(1).ticket_price == Decimal("5")


def test_jurisdiction_follows_settings() -> None:
    session = _session(settings=StoreSettings(state_code=Jurisdiction.DC))
    session.add_book_to_box(1, "1619", "04147", Decimal("2"), 100, 100)
    outcome = session.process_barcode("1619-04147-7-090", 1)
    assert session.jurisdiction is Jurisdiction.DC
    assert outcome.result.tickets_sold == 10
    assert isinstance(session.box(1), TicketBox)
