"""Owner-facing operations on top of sessions, the store and the sync queue."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import date, datetime
from functools import partial
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from scratchoff.barcode import Jurisdiction
from scratchoff.config import Settings
from scratchoff.domain import DailyCounter, StoreSettings
from scratchoff.errors import ArchiveFailedError, SettingsLockedError, SummaryNotFoundError
from scratchoff.log import get_logger
from scratchoff.session import (
    BoxRemoved,
    BoxSaved,
    Change,
    DayClosed,
    GameRemoved,
    GameSaved,
    InventorySession,
)
from scratchoff.store import BoxSaleEdit, InventoryStore, SqlInventoryStore, SummaryRecord
from scratchoff.sync import KeyedSerialExecutor, SyncQueue, SyncTask

log = get_logger(component="service")


@dataclass(frozen=True)
class ArchiveReport:
    business_date: date
    summary: Optional[SummaryRecord]

    @property
    def message(self) -> str:
        if self.summary is None:
            return "No sales to save"
        return "Summary saved to history"


def business_clock(timezone_name: str) -> Callable[[], date]:
    tz = ZoneInfo(timezone_name)
    return lambda: datetime.now(tz).date()


class InventoryService:
    def __init__(
        self,
        store: InventoryStore,
        sync_queue: SyncQueue,
        archiver: Optional[KeyedSerialExecutor] = None,
        history_limit: int = 50,
        clock: Callable[[], date] = date.today,
    ) -> None:
        self.store = store
        self.sync_queue = sync_queue
        self.archiver = archiver or KeyedSerialExecutor()
        self.history_limit = history_limit
        self.clock = clock
        self._sessions: Dict[Tuple[str, Jurisdiction], InventorySession] = {}
        self._settings: Dict[str, StoreSettings] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def _owner_lock(self, owner_id: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(owner_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[owner_id] = lock
            return lock

    @contextmanager
    def session(self, owner_id: str) -> Iterator[InventorySession]:
        """Hold the owner's lock and yield the session for their current jurisdiction."""
        with self._owner_lock(owner_id):
            yield self._current_session(owner_id)

    def settings_for(self, owner_id: str) -> StoreSettings:
        with self._owner_lock(owner_id):
            return self._load_settings(owner_id)

    def _load_settings(self, owner_id: str) -> StoreSettings:
        settings = self._settings.get(owner_id)
        if settings is None:
            settings = self.store.load_settings(owner_id) or StoreSettings()
            self._settings[owner_id] = settings
        return settings

    def _current_session(self, owner_id: str) -> InventorySession:
        settings = self._load_settings(owner_id)
        key = (owner_id, settings.state_code)
        session = self._sessions.get(key)
        if session is None:
            session = self._load_session(owner_id, settings)
            self._sessions[key] = session
        session.settings = settings
        return session

    def _load_session(self, owner_id: str, settings: StoreSettings) -> InventorySession:
        jurisdiction = settings.state_code
        business_date = self.store.latest_counter_date(owner_id, jurisdiction) or self.clock()
        counters = self.store.load_daily_counters(owner_id, jurisdiction, business_date)
        boxes = []
        for box in self.store.load_boxes(owner_id, jurisdiction):
            counter = counters.get(box.box_number)
            if counter is not None:
                box = replace(
                    box,
                    tickets_sold=counter.tickets_sold,
                    total_amount_sold=counter.total_amount_sold,
                )
            boxes.append(box)
        log.info(
            "session_loaded",
            owner_id=owner_id,
            state_code=jurisdiction.value,
            business_date=business_date.isoformat(),
            boxes=len(boxes),
        )
        return InventorySession(
            owner_id,
            settings=settings,
            boxes=boxes,
            games=self.store.load_game_registry(owner_id, jurisdiction),
            business_date=business_date,
            history_limit=self.history_limit,
            on_change=partial(self._enqueue, owner_id, jurisdiction),
            clock=self.clock,
        )

    def update_settings(self, owner_id: str, settings: StoreSettings) -> StoreSettings:
        with self._owner_lock(owner_id):
            if self._current_session(owner_id).has_sales():
                raise SettingsLockedError()
            self.store.save_settings(owner_id, settings)
            self._settings[owner_id] = settings
            log.info(
                "settings_updated",
                owner_id=owner_id,
                state_code=settings.state_code.value,
                ticket_order=settings.ticket_order.value,
            )
            return settings

    # writes

    def _enqueue(self, owner_id: str, jurisdiction: Jurisdiction, change: Change) -> None:
        store = self.store
        if isinstance(change, BoxSaved):
            box = change.box

            def save_box() -> None:
                store.upsert_box(owner_id, jurisdiction, box)
                if box.tickets_sold or box.total_amount_sold:
                    store.upsert_daily_counter(
                        owner_id,
                        jurisdiction,
                        change.business_date,
                        box.box_number,
                        DailyCounter(box.tickets_sold, box.total_amount_sold),
                    )
                else:
                    store.delete_daily_counter(owner_id, jurisdiction, change.business_date, box.box_number)

            self.sync_queue.submit(SyncTask(f"save_box:{box.box_number}", save_box))
        elif isinstance(change, BoxRemoved):

            def remove_box() -> None:
                store.delete_box(owner_id, jurisdiction, change.box_number)
                store.delete_daily_counter(owner_id, jurisdiction, change.business_date, change.box_number)

            self.sync_queue.submit(SyncTask(f"remove_box:{change.box_number}", remove_box))
        elif isinstance(change, GameSaved):
            self.sync_queue.submit(
                SyncTask(
                    f"save_game:{change.game.game_number}",
                    partial(store.upsert_game, owner_id, jurisdiction, change.game),
                )
            )
        elif isinstance(change, GameRemoved):
            self.sync_queue.submit(
                SyncTask(
                    f"remove_game:{change.game_number}",
                    partial(store.delete_game, owner_id, jurisdiction, change.game_number),
                )
            )
        elif isinstance(change, DayClosed):

            def close_day() -> None:
                store.delete_daily_counters_for_date(owner_id, jurisdiction, change.business_date)
                for box in change.boxes:
                    store.upsert_box(owner_id, jurisdiction, box)

            self.sync_queue.submit(SyncTask(f"close_day:{change.business_date.isoformat()}", close_day))

    # end of day

    def archive_day(self, owner_id: str) -> ArchiveReport:
        """Archive the business day and start the next one from today's stopping points.

        Requests for the same owner and jurisdiction run one after another.
        """
        with self.session(owner_id) as session:
            key = (owner_id, session.jurisdiction)
        return self.archiver.submit(key, self._archive, owner_id).result()

    def _archive(self, owner_id: str) -> ArchiveReport:
        with self.session(owner_id) as session:
            closed_date = session.business_date
            boxes = session.boxes_with_sales()
            summary = None
            if boxes:
                try:
                    summary = self.store.archive_daily_summary(
                        owner_id, session.jurisdiction, closed_date, boxes
                    )
                except SQLAlchemyError as exc:
                    log.error("archive_failed", owner_id=owner_id, business_date=closed_date.isoformat())
                    raise ArchiveFailedError("failed to save summary", cause=exc) from exc
            session.reset_daily(preserve_position=True)
            log.info(
                "day_archived",
                owner_id=owner_id,
                business_date=closed_date.isoformat(),
                boxes=len(boxes),
            )
            return ArchiveReport(business_date=closed_date, summary=summary)

    def reset_without_saving(self, owner_id: str) -> date:
        with self.session(owner_id) as session:
            closed_date = session.business_date
            session.reset_daily(preserve_position=False)
            return closed_date

    # history

    def list_summaries(
        self,
        owner_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
        day_of_week: Optional[str] = None,
    ) -> List[SummaryRecord]:
        jurisdiction = self.settings_for(owner_id).state_code
        return self.store.list_daily_summaries(owner_id, jurisdiction, start, end, day_of_week)

    def get_summary(self, owner_id: str, summary_date: date) -> SummaryRecord:
        jurisdiction = self.settings_for(owner_id).state_code
        record = self.store.get_daily_summary(owner_id, jurisdiction, summary_date)
        if record is None:
            raise SummaryNotFoundError(summary_date)
        return record

    def correct_summary(
        self, owner_id: str, summary_date: date, edits: Iterable[BoxSaleEdit]
    ) -> SummaryRecord:
        jurisdiction = self.settings_for(owner_id).state_code
        record = self.store.update_daily_box_sales(owner_id, jurisdiction, summary_date, edits)
        if record is None:
            raise SummaryNotFoundError(summary_date)
        log.info("summary_corrected", owner_id=owner_id, summary_date=summary_date.isoformat())
        return record

    def close(self) -> None:
        self.sync_queue.drain()
        self.sync_queue.close()
        self.archiver.shutdown()


def build_service(session_factory: sessionmaker, settings: Settings) -> InventoryService:
    return InventoryService(
        store=SqlInventoryStore(session_factory),
        sync_queue=SyncQueue(
            max_attempts=settings.sync_max_attempts,
            retry_delay=settings.sync_retry_delay_seconds,
        ),
        history_limit=settings.scan_history_limit,
        clock=business_clock(settings.business_timezone),
    )
