from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from scratchoff.barcode import Jurisdiction
from scratchoff.domain import StoreSettings
from scratchoff.errors import ArchiveFailedError, SettingsLockedError, SummaryNotFoundError
from scratchoff.service import InventoryService
from scratchoff.store import BoxSaleEdit
from scratchoff.sync import SyncQueue

OWNER = "owner-1"


class Calendar:
    def __init__(self, today: date) -> None:
        self.today = today

    def __call__(self) -> date:
        return self.today


def _service(store, calendar: Calendar) -> InventoryService:
    return InventoryService(store=store, sync_queue=SyncQueue(retry_delay=0), clock=calendar)


def _load_book(service: InventoryService) -> None:
    with service.session(OWNER) as session:
        session.add_book_to_box(1, "746", "047551", Decimal("5"), 60, 60)


def test_changes_are_persisted_and_reloaded(store) -> None:
    calendar = Calendar(date(2026, 3, 2))
    service = _service(store, calendar)
    _load_book(service)
    with service.session(OWNER) as session:
        assert session.process_manual_entry("55", 1).ok
    service.close()

    assert store.load_daily_counters(OWNER, Jurisdiction.MD, date(2026, 3, 2))[1].tickets_sold == 5

    # a later restart resumes the unfinished business day
    calendar.today = date(2026, 3, 3)
    restarted = _service(store, calendar)
    with restarted.session(OWNER) as session:
        assert session.business_date == date(2026, 3, 2)
        box = session.box(1)
        assert box.tickets_sold == 5
        assert box.total_amount_sold == Decimal("25")
        assert box.last_scanned_ticket_number == 55
        assert session.registry.lookup("746") is not None
    restarted.close()


def test_undo_back_to_zero_clears_the_daily_counter(store) -> None:
    service = _service(store, Calendar(date(2026, 3, 2)))
    _load_book(service)
    with service.session(OWNER) as session:
        session.process_manual_entry("55", 1)
        session.undo(1)
    service.close()
    assert store.load_daily_counters(OWNER, Jurisdiction.MD, date(2026, 3, 2)) == {}
    assert store.load_boxes(OWNER, Jurisdiction.MD)[0].last_scanned_ticket_number is None


def test_settings_are_locked_while_the_day_has_sales(store) -> None:
    service = _service(store, Calendar(date(2026, 3, 2)))
    _load_book(service)
    with service.session(OWNER) as session:
        session.process_manual_entry("55", 1)

    with pytest.raises(SettingsLockedError):
        service.update_settings(OWNER, StoreSettings(state_code=Jurisdiction.DC))
    service.close()


def test_switching_jurisdiction_switches_box_set(store) -> None:
    service = _service(store, Calendar(date(2026, 3, 2)))
    _load_book(service)
    service.update_settings(OWNER, StoreSettings(state_code=Jurisdiction.DC))
    with service.session(OWNER) as session:
        assert session.jurisdiction is Jurisdiction.DC
        assert session.boxes == []
    assert store.load_settings(OWNER).state_code is Jurisdiction.DC

    service.update_settings(OWNER, StoreSettings(state_code=Jurisdiction.MD))
    with service.session(OWNER) as session:
        assert [box.box_number for box in session.boxes] == [1]
    service.close()


def test_archive_day_saves_summary_and_resets(store) -> None:
    calendar = Calendar(date(2026, 3, 2))
    service = _service(store, calendar)
    _load_book(service)
    with service.session(OWNER) as session:
        session.process_manual_entry("55", 1)

    calendar.today = date(2026, 3, 3)
    report = service.archive_day(OWNER)
    assert report.business_date == date(2026, 3, 2)
    assert report.message == "Summary saved to history"
    assert report.summary.total_amount_sold == Decimal("25")

    with service.session(OWNER) as session:
        assert session.business_date == date(2026, 3, 3)
        assert session.box(1).starting_ticket_number == 55
        assert session.box(1).tickets_sold == 0
    service.close()

    assert store.load_daily_counters(OWNER, Jurisdiction.MD, date(2026, 3, 2)) == {}
    assert store.load_boxes(OWNER, Jurisdiction.MD)[0].starting_ticket_number == 55
    assert service.get_summary(OWNER, date(2026, 3, 2)).box_sales[0].last_scanned_ticket_number == 55


def test_archive_without_sales_still_resets(store) -> None:
    service = _service(store, Calendar(date(2026, 3, 2)))
    _load_book(service)
    report = service.archive_day(OWNER)
    assert report.summary is None
    assert report.message == "No sales to save"
    assert service.list_summaries(OWNER) == []
    service.close()


def test_archive_failure_keeps_counters(store, monkeypatch) -> None:
    service = _service(store, Calendar(date(2026, 3, 2)))
    _load_book(service)
    with service.session(OWNER) as session:
        session.process_manual_entry("55", 1)

    def unavailable(*args, **kwargs):
        raise OperationalError("INSERT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(store, "archive_daily_summary", unavailable)
    with pytest.raises(ArchiveFailedError):
        service.archive_day(OWNER)
    with service.session(OWNER) as session:
        assert session.box(1).tickets_sold == 5
    service.close()


def test_reset_without_saving_discards_position(store) -> None:
    service = _service(store, Calendar(date(2026, 3, 2)))
    _load_book(service)
    with service.session(OWNER) as session:
        session.process_manual_entry("55", 1)
    assert service.reset_without_saving(OWNER) == date(2026, 3, 2)
    with service.session(OWNER) as session:
        assert session.box(1).starting_ticket_number == 60
    service.close()
    assert service.list_summaries(OWNER) == []


def test_summary_lookups_raise_when_missing(store) -> None:
    service = _service(store, Calendar(date(2026, 3, 2)))
    with pytest.raises(SummaryNotFoundError):
        service.get_summary(OWNER, date(2026, 3, 1))
    with pytest.raises(SummaryNotFoundError):
        service.correct_summary(OWNER, date(2026, 3, 1), [BoxSaleEdit(box_number=1, tickets_sold=1)])
    service.close()
