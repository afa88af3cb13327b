"""Persistence for boxes, games, daily counters, settings and archived days.

Every write is keyed by the owner, the jurisdiction (state code) and the
entity's natural id, so repeating a write is harmless.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Protocol

from sqlalchemy import func
from sqlalchemy.orm import Session, sessionmaker

from scratchoff.barcode import Jurisdiction
from scratchoff.domain import (
    ZERO,
    DailyCounter,
    GameInfo,
    StoreSettings,
    TicketBox,
    TicketOrder,
    to_decimal,
)
from scratchoff.models import (
    BoxConfiguration,
    DailyBoxSale,
    DailyScanningState,
    DailySummary,
    GameRegistryEntry,
    UserSettings,
)


@dataclass(frozen=True)
class BoxSaleRecord:
    box_number: int
    ticket_price: Decimal
    last_scanned_ticket_number: Optional[int]
    tickets_sold: int
    total_amount_sold: Decimal


@dataclass(frozen=True)
class SummaryRecord:
    summary_date: date
    day_of_week: str
    total_tickets_sold: int
    total_amount_sold: Decimal
    active_boxes: int
    box_sales: tuple = ()


@dataclass(frozen=True)
class BoxSaleEdit:
    box_number: int
    tickets_sold: int
    last_scanned_ticket_number: Optional[int] = None
    update_last_scanned: bool = False


class InventoryStore(Protocol):
    def load_settings(self, owner_id: str) -> Optional[StoreSettings]: ...

    def save_settings(self, owner_id: str, settings: StoreSettings) -> None: ...

    def load_boxes(self, owner_id: str, jurisdiction: Jurisdiction) -> List[TicketBox]: ...

    def upsert_box(self, owner_id: str, jurisdiction: Jurisdiction, box: TicketBox) -> None: ...

    def delete_box(self, owner_id: str, jurisdiction: Jurisdiction, box_number: int) -> None: ...

    def load_game_registry(self, owner_id: str, jurisdiction: Jurisdiction) -> List[GameInfo]: ...

    def upsert_game(self, owner_id: str, jurisdiction: Jurisdiction, game: GameInfo) -> None: ...

    def delete_game(self, owner_id: str, jurisdiction: Jurisdiction, game_number: str) -> None: ...

    def load_daily_counters(
        self, owner_id: str, jurisdiction: Jurisdiction, business_date: date
    ) -> Dict[int, DailyCounter]: ...

    def latest_counter_date(self, owner_id: str, jurisdiction: Jurisdiction) -> Optional[date]: ...

    def upsert_daily_counter(
        self,
        owner_id: str,
        jurisdiction: Jurisdiction,
        business_date: date,
        box_number: int,
        counter: DailyCounter,
    ) -> None: ...

    def delete_daily_counter(
        self, owner_id: str, jurisdiction: Jurisdiction, business_date: date, box_number: int
    ) -> None: ...

    def delete_daily_counters_for_date(
        self, owner_id: str, jurisdiction: Jurisdiction, business_date: date
    ) -> None: ...

    def archive_daily_summary(
        self,
        owner_id: str,
        jurisdiction: Jurisdiction,
        business_date: date,
        boxes: Iterable[TicketBox],
    ) -> SummaryRecord: ...

    def list_daily_summaries(
        self,
        owner_id: str,
        jurisdiction: Jurisdiction,
        start: Optional[date] = None,
        end: Optional[date] = None,
        day_of_week: Optional[str] = None,
    ) -> List[SummaryRecord]: ...

    def get_daily_summary(
        self, owner_id: str, jurisdiction: Jurisdiction, summary_date: date
    ) -> Optional[SummaryRecord]: ...

    def update_daily_box_sales(
        self,
        owner_id: str,
        jurisdiction: Jurisdiction,
        summary_date: date,
        edits: Iterable[BoxSaleEdit],
    ) -> Optional[SummaryRecord]: ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _box_from_row(row: BoxConfiguration) -> TicketBox:
    return TicketBox(
        box_number=row.box_number,
        ticket_price=to_decimal(row.ticket_price),
        total_tickets_per_book=row.total_tickets_per_book,
        starting_ticket_number=row.starting_ticket_number,
        last_scanned_ticket_number=row.last_scanned_ticket_number,
        is_configured=row.is_configured,
        game_number=row.game_number,
        book_number=row.book_number,
    )


def _summary_from_rows(summary: DailySummary, sales: Iterable[DailyBoxSale] = ()) -> SummaryRecord:
    return SummaryRecord(
        summary_date=summary.summary_date,
        day_of_week=summary.day_of_week,
        total_tickets_sold=summary.total_tickets_sold,
        total_amount_sold=to_decimal(summary.total_amount_sold),
        active_boxes=summary.active_boxes,
        box_sales=tuple(
            BoxSaleRecord(
                box_number=sale.box_number,
                ticket_price=to_decimal(sale.ticket_price),
                last_scanned_ticket_number=sale.last_scanned_ticket_number,
                tickets_sold=sale.tickets_sold,
                total_amount_sold=to_decimal(sale.total_amount_sold),
            )
            for sale in sales
        ),
    )


class SqlInventoryStore:
    """SQLAlchemy implementation of :class:`InventoryStore`."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    # settings

    def load_settings(self, owner_id: str) -> Optional[StoreSettings]:
        with self._session_factory() as db:
            row = db.query(UserSettings).filter(UserSettings.user_id == owner_id).first()
            if not row:
                return None
            return StoreSettings(
                state_code=Jurisdiction(row.state_code),
                ticket_order=TicketOrder(row.ticket_order),
            )

    def save_settings(self, owner_id: str, settings: StoreSettings) -> None:
        with self._session_factory() as db:
            row = db.query(UserSettings).filter(UserSettings.user_id == owner_id).first()
            if not row:
                row = UserSettings(user_id=owner_id, created_at=_now())
                db.add(row)
            row.state_code = settings.state_code.value
            row.ticket_order = settings.ticket_order.value
            row.updated_at = _now()
            db.commit()

    # boxes

    def load_boxes(self, owner_id: str, jurisdiction: Jurisdiction) -> List[TicketBox]:
        with self._session_factory() as db:
            rows = (
                db.query(BoxConfiguration)
                .filter(
                    BoxConfiguration.user_id == owner_id,
                    BoxConfiguration.state_code == jurisdiction.value,
                )
                .order_by(BoxConfiguration.box_number)
                .all()
            )
            return [_box_from_row(row) for row in rows]

    def upsert_box(self, owner_id: str, jurisdiction: Jurisdiction, box: TicketBox) -> None:
        with self._session_factory() as db:
            row = db.query(BoxConfiguration).filter(
                BoxConfiguration.user_id == owner_id,
                BoxConfiguration.state_code == jurisdiction.value,
                BoxConfiguration.box_number == box.box_number,
            ).first()
            if not row:
                row = BoxConfiguration(
                    user_id=owner_id,
                    state_code=jurisdiction.value,
                    box_number=box.box_number,
                    created_at=_now(),
                )
                db.add(row)
            row.ticket_price = box.ticket_price
            row.total_tickets_per_book = box.total_tickets_per_book
            row.starting_ticket_number = box.starting_ticket_number
            row.last_scanned_ticket_number = box.last_scanned_ticket_number
            row.is_configured = box.is_configured
            row.game_number = box.game_number
            row.book_number = box.book_number
            row.updated_at = _now()
            db.commit()

    def delete_box(self, owner_id: str, jurisdiction: Jurisdiction, box_number: int) -> None:
        with self._session_factory() as db:
            db.query(BoxConfiguration).filter(
                BoxConfiguration.user_id == owner_id,
                BoxConfiguration.state_code == jurisdiction.value,
                BoxConfiguration.box_number == box_number,
            ).delete()
            db.commit()

    # game registry

    def load_game_registry(self, owner_id: str, jurisdiction: Jurisdiction) -> List[GameInfo]:
        with self._session_factory() as db:
            rows = (
                db.query(GameRegistryEntry)
                .filter(
                    GameRegistryEntry.user_id == owner_id,
                    GameRegistryEntry.state_code == jurisdiction.value,
                )
                .order_by(GameRegistryEntry.game_number)
                .all()
            )
            return [
                GameInfo(
                    game_number=row.game_number,
                    ticket_price=to_decimal(row.ticket_price),
                    total_tickets_per_book=row.total_tickets_per_book,
                )
                for row in rows
            ]

    def upsert_game(self, owner_id: str, jurisdiction: Jurisdiction, game: GameInfo) -> None:
        with self._session_factory() as db:
            row = db.query(GameRegistryEntry).filter(
                GameRegistryEntry.user_id == owner_id,
                GameRegistryEntry.state_code == jurisdiction.value,
                GameRegistryEntry.game_number == game.game_number,
            ).first()
            if not row:
                row = GameRegistryEntry(
                    user_id=owner_id,
                    state_code=jurisdiction.value,
                    game_number=game.game_number,
                    created_at=_now(),
                )
                db.add(row)
            row.ticket_price = game.ticket_price
            row.total_tickets_per_book = game.total_tickets_per_book
            row.updated_at = _now()
            db.commit()

    def delete_game(self, owner_id: str, jurisdiction: Jurisdiction, game_number: str) -> None:
        with self._session_factory() as db:
            db.query(GameRegistryEntry).filter(
                GameRegistryEntry.user_id == owner_id,
                GameRegistryEntry.state_code == jurisdiction.value,
                GameRegistryEntry.game_number == game_number,
            ).delete()
            db.commit()

    # daily counters

    def _counter_query(self, db: Session, owner_id: str, jurisdiction: Jurisdiction, business_date: date):
        return db.query(DailyScanningState).filter(
            DailyScanningState.user_id == owner_id,
            DailyScanningState.state_code == jurisdiction.value,
            DailyScanningState.business_date == business_date,
        )

    def load_daily_counters(
        self, owner_id: str, jurisdiction: Jurisdiction, business_date: date
    ) -> Dict[int, DailyCounter]:
        with self._session_factory() as db:
            rows = self._counter_query(db, owner_id, jurisdiction, business_date).all()
            return {
                row.box_number: DailyCounter(
                    tickets_sold=row.tickets_sold,
                    total_amount_sold=to_decimal(row.total_amount_sold),
                )
                for row in rows
            }

    def latest_counter_date(self, owner_id: str, jurisdiction: Jurisdiction) -> Optional[date]:
        with self._session_factory() as db:
            return (
                db.query(func.max(DailyScanningState.business_date))
                .filter(
                    DailyScanningState.user_id == owner_id,
                    DailyScanningState.state_code == jurisdiction.value,
                )
                .scalar()
            )

    def upsert_daily_counter(
        self,
        owner_id: str,
        jurisdiction: Jurisdiction,
        business_date: date,
        box_number: int,
        counter: DailyCounter,
    ) -> None:
        with self._session_factory() as db:
            row = self._counter_query(db, owner_id, jurisdiction, business_date).filter(
                DailyScanningState.box_number == box_number
            ).first()
            if not row:
                row = DailyScanningState(
                    user_id=owner_id,
                    state_code=jurisdiction.value,
                    business_date=business_date,
                    box_number=box_number,
                )
                db.add(row)
            row.tickets_sold = counter.tickets_sold
            row.total_amount_sold = counter.total_amount_sold
            row.updated_at = _now()
            db.commit()

    def delete_daily_counter(
        self, owner_id: str, jurisdiction: Jurisdiction, business_date: date, box_number: int
    ) -> None:
        with self._session_factory() as db:
            self._counter_query(db, owner_id, jurisdiction, business_date).filter(
                DailyScanningState.box_number == box_number
            ).delete()
            db.commit()

    def delete_daily_counters_for_date(
        self, owner_id: str, jurisdiction: Jurisdiction, business_date: date
    ) -> None:
        with self._session_factory() as db:
            self._counter_query(db, owner_id, jurisdiction, business_date).delete()
            db.commit()

    # archived days

    def _summary_row(
        self, db: Session, owner_id: str, jurisdiction: Jurisdiction, summary_date: date
    ) -> Optional[DailySummary]:
        return db.query(DailySummary).filter(
            DailySummary.user_id == owner_id,
            DailySummary.state_code == jurisdiction.value,
            DailySummary.summary_date == summary_date,
        ).first()

    def _box_sale_rows(self, db: Session, summary_id: int) -> List[DailyBoxSale]:
        return (
            db.query(DailyBoxSale)
            .filter(DailyBoxSale.summary_id == summary_id)
            .order_by(DailyBoxSale.box_number)
            .all()
        )

    def archive_daily_summary(
        self,
        owner_id: str,
        jurisdiction: Jurisdiction,
        business_date: date,
        boxes: Iterable[TicketBox],
    ) -> SummaryRecord:
        """Write the day's summary and per-box rows, replacing an earlier archive of the same day."""
        boxes = list(boxes)
        with self._session_factory() as db:
            summary = self._summary_row(db, owner_id, jurisdiction, business_date)
            if summary:
                db.query(DailyBoxSale).filter(DailyBoxSale.summary_id == summary.id).delete()
            else:
                summary = DailySummary(
                    user_id=owner_id,
                    state_code=jurisdiction.value,
                    summary_date=business_date,
                    created_at=_now(),
                )
                db.add(summary)
            summary.day_of_week = business_date.strftime("%A")
            summary.total_tickets_sold = sum(box.tickets_sold for box in boxes)
            summary.total_amount_sold = sum((box.total_amount_sold for box in boxes), ZERO)
            summary.active_boxes = len(boxes)
            summary.updated_at = _now()
            db.flush()
            for box in boxes:
                db.add(
                    DailyBoxSale(
                        summary_id=summary.id,
                        user_id=owner_id,
                        state_code=jurisdiction.value,
                        box_number=box.box_number,
                        ticket_price=box.ticket_price,
                        last_scanned_ticket_number=box.last_scanned_ticket_number,
                        tickets_sold=box.tickets_sold,
                        total_amount_sold=box.total_amount_sold,
                        created_at=_now(),
                        updated_at=_now(),
                    )
                )
            db.commit()
            return _summary_from_rows(summary, self._box_sale_rows(db, summary.id))

    def list_daily_summaries(
        self,
        owner_id: str,
        jurisdiction: Jurisdiction,
        start: Optional[date] = None,
        end: Optional[date] = None,
        day_of_week: Optional[str] = None,
    ) -> List[SummaryRecord]:
        with self._session_factory() as db:
            query = db.query(DailySummary).filter(
                DailySummary.user_id == owner_id,
                DailySummary.state_code == jurisdiction.value,
            )
            if start is not None:
                query = query.filter(DailySummary.summary_date >= start)
            if end is not None:
                query = query.filter(DailySummary.summary_date <= end)
            if day_of_week is not None:
                query = query.filter(func.lower(DailySummary.day_of_week) == day_of_week.lower())
            rows = query.order_by(DailySummary.summary_date.desc()).all()
            return [_summary_from_rows(row) for row in rows]

    def get_daily_summary(
        self, owner_id: str, jurisdiction: Jurisdiction, summary_date: date
    ) -> Optional[SummaryRecord]:
        with self._session_factory() as db:
            summary = self._summary_row(db, owner_id, jurisdiction, summary_date)
            if not summary:
                return None
            return _summary_from_rows(summary, self._box_sale_rows(db, summary.id))

    def update_daily_box_sales(
        self,
        owner_id: str,
        jurisdiction: Jurisdiction,
        summary_date: date,
        edits: Iterable[BoxSaleEdit],
    ) -> Optional[SummaryRecord]:
        """Correct archived per-box figures and recompute the day's totals.

        Amounts are always recomputed from the archived ticket price.
        Edits for boxes that were not archived that day are ignored.
        """
        with self._session_factory() as db:
            summary = self._summary_row(db, owner_id, jurisdiction, summary_date)
            if not summary:
                return None
            sales = {sale.box_number: sale for sale in self._box_sale_rows(db, summary.id)}
            for edit in edits:
                sale = sales.get(edit.box_number)
                if sale is None:
                    continue
                sale.tickets_sold = edit.tickets_sold
                sale.total_amount_sold = edit.tickets_sold * to_decimal(sale.ticket_price)
                if edit.update_last_scanned:
                    sale.last_scanned_ticket_number = edit.last_scanned_ticket_number
                sale.updated_at = _now()
            summary.total_tickets_sold = sum(sale.tickets_sold for sale in sales.values())
            summary.total_amount_sold = sum(
                (to_decimal(sale.total_amount_sold) for sale in sales.values()), ZERO
            )
            summary.updated_at = _now()
            db.commit()
            return _summary_from_rows(summary, self._box_sale_rows(db, summary.id))
