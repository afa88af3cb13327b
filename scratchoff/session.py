"""The in-process aggregate for one owner's boxes in one jurisdiction.

An :class:`InventorySession` owns the box set, the game registry, the scan
history and the undo snapshots. It is loaded from the store, mutated by scan
and configuration calls, and reports every persisted change through its
``on_change`` callback so a writer can flush it in the background.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from scratchoff.barcode import Jurisdiction
from scratchoff.domain import (
    ZERO,
    DailyTotals,
    GameInfo,
    ScanError,
    ScanOutcome,
    ScanResult,
    StoreSettings,
    TicketBox,
    to_decimal,
)
from scratchoff.engine import process_scan
from scratchoff.errors import BoxNotFoundError, InvalidConfigurationError
from scratchoff.log import get_logger
from scratchoff.registry import GameRegistry

DEFAULT_HISTORY_LIMIT = 50


@dataclass(frozen=True)
class BoxSaved:
    box: TicketBox
    business_date: date


@dataclass(frozen=True)
class BoxRemoved:
    box_number: int
    business_date: date


@dataclass(frozen=True)
class GameSaved:
    game: GameInfo


@dataclass(frozen=True)
class GameRemoved:
    game_number: str


@dataclass(frozen=True)
class DayClosed:
    business_date: date
    boxes: Tuple[TicketBox, ...]


Change = Union[BoxSaved, BoxRemoved, GameSaved, GameRemoved, DayClosed]


@dataclass(frozen=True)
class UndoSnapshot:
    box: TicketBox
    result: ScanResult


def _validate_game(ticket_price: Decimal, total_tickets_per_book: int) -> None:
    if ticket_price <= 0:
        raise InvalidConfigurationError("ticket price must be greater than zero")
    if total_tickets_per_book <= 0:
        raise InvalidConfigurationError("tickets per book must be greater than zero")


class InventorySession:
    def __init__(
        self,
        owner_id: str,
        settings: StoreSettings = StoreSettings(),
        boxes: Iterable[TicketBox] = (),
        games: Iterable[GameInfo] = (),
        business_date: Optional[date] = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        on_change: Optional[Callable[[Change], None]] = None,
        clock: Callable[[], date] = date.today,
    ) -> None:
        self.owner_id = owner_id
        self.settings = settings
        self.registry = GameRegistry(games)
        self.history_limit = history_limit
        self.business_date = business_date or clock()
        self.scan_history: List[ScanResult] = []
        self.last_scan_result: Optional[ScanResult] = None
        self.last_error: Optional[ScanError] = None
        self._boxes: Dict[int, TicketBox] = {box.box_number: box for box in boxes}
        self._undo: Dict[int, UndoSnapshot] = {}
        self._on_change = on_change
        self._clock = clock
        self._log = get_logger(owner_id=owner_id, state_code=settings.state_code.value)

    @property
    def jurisdiction(self) -> Jurisdiction:
        return self.settings.state_code

    @property
    def boxes(self) -> List[TicketBox]:
        return [self._boxes[number] for number in sorted(self._boxes)]

    def box(self, box_number: int) -> Optional[TicketBox]:
        return self._boxes.get(box_number)

    def configured_boxes(self) -> List[TicketBox]:
        return [box for box in self.boxes if box.is_configured]

    def has_undo(self, box_number: int) -> bool:
        return box_number in self._undo

    def has_sales(self) -> bool:
        return any(box.tickets_sold > 0 for box in self._boxes.values())

    def totals(self) -> DailyTotals:
        configured = self.configured_boxes()
        return DailyTotals(
            total_tickets_sold=sum(box.tickets_sold for box in configured),
            total_amount_sold=sum((box.total_amount_sold for box in configured), ZERO),
            active_boxes=sum(1 for box in configured if box.tickets_sold > 0),
        )

    def boxes_with_sales(self) -> List[TicketBox]:
        return [box for box in self.configured_boxes() if box.tickets_sold > 0]

    def _emit(self, change: Change) -> None:
        if self._on_change is not None:
            self._on_change(change)

    # scanning

    def process_barcode(self, barcode: str, box_number: int) -> ScanOutcome:
        return self._process(barcode, box_number, manual=False)

    def process_manual_entry(self, ticket_number: Union[str, int, float], box_number: int) -> ScanOutcome:
        return self._process(ticket_number, box_number, manual=True)

    def _process(self, raw: Union[str, int, float], box_number: int, manual: bool) -> ScanOutcome:
        before = self._boxes.get(box_number)
        outcome = process_scan(
            raw,
            box_number,
            before,
            self.registry,
            self.settings.state_code,
            self.settings.ticket_order,
            manual=manual,
        )
        if outcome.error is not None:
            self.last_error = outcome.error
            self.last_scan_result = None
            report = self._log.warning if outcome.error.severity == "warning" else self._log.info
            report("scan_rejected", box_number=box_number, error=outcome.error.kind.value, manual=manual)
            return outcome

        result = outcome.result
        self._boxes[box_number] = outcome.box
        self._undo[box_number] = UndoSnapshot(box=before, result=result)
        self.scan_history.insert(0, result)
        del self.scan_history[self.history_limit:]
        self.last_scan_result = result
        self.last_error = None
        if result.book_transition:
            self._log.info(
                "book_transition",
                box_number=box_number,
                game_number=outcome.box.game_number,
                book_number=outcome.box.book_number,
            )
        self._log.info(
            "scan_applied",
            box_number=box_number,
            ticket_number=result.ticket_number,
            tickets_sold=result.tickets_sold,
            amount_sold=str(result.amount_sold),
            manual=manual,
        )
        self._emit(BoxSaved(outcome.box, self.business_date))
        return outcome

    def undo(self, box_number: int) -> bool:
        """Revert the most recent scan applied to ``box_number``."""
        snapshot = self._undo.pop(box_number, None)
        if snapshot is None:
            return False
        self._boxes[box_number] = snapshot.box
        for index, entry in enumerate(self.scan_history):
            if entry.box_number == box_number and entry.timestamp == snapshot.result.timestamp:
                del self.scan_history[index]
                break
        if self.last_scan_result is not None and self.last_scan_result.box_number == box_number:
            self.last_scan_result = None
        self._log.info("undo_applied", box_number=box_number, ticket_number=snapshot.result.ticket_number)
        self._emit(BoxSaved(snapshot.box, self.business_date))
        return True

    # box lifecycle

    def add_box(self) -> TicketBox:
        box_number = 1
        while box_number in self._boxes:
            box_number += 1
        return self.add_box_with_number(box_number)

    def add_box_with_number(self, box_number: int) -> TicketBox:
        if box_number <= 0:
            raise InvalidConfigurationError("box number must be a positive integer")
        existing = self._boxes.get(box_number)
        if existing is not None:
            return existing
        box = TicketBox(box_number=box_number)
        self._boxes[box_number] = box
        self._log.info("box_added", box_number=box_number)
        self._emit(BoxSaved(box, self.business_date))
        return box

    def add_book_to_box(
        self,
        box_number: int,
        game_number: str,
        book_number: str,
        ticket_price,
        total_tickets_per_book: int,
        starting_ticket_number: int,
    ) -> TicketBox:
        """Load a book into a box, creating the box when needed.

        The game is registered when unknown; a known game keeps its registry
        entry. The box's counters for the day start over with the new book.
        """
        game_number = (game_number or "").strip()
        book_number = (book_number or "").strip()
        price = to_decimal(ticket_price)
        if not game_number or not book_number:
            raise InvalidConfigurationError("game number and book number are required")
        if box_number <= 0:
            raise InvalidConfigurationError("box number must be a positive integer")
        if starting_ticket_number < 0:
            raise InvalidConfigurationError("starting ticket number cannot be negative")
        _validate_game(price, total_tickets_per_book)

        if self.registry.register(game_number, price, total_tickets_per_book):
            self._emit(GameSaved(self.registry.lookup(game_number)))

        box = TicketBox(
            box_number=box_number,
            ticket_price=price,
            total_tickets_per_book=total_tickets_per_book,
            starting_ticket_number=starting_ticket_number,
            last_scanned_ticket_number=None,
            tickets_sold=0,
            total_amount_sold=ZERO,
            is_configured=True,
            game_number=game_number,
            book_number=book_number,
        )
        self._boxes[box_number] = box
        self._undo.pop(box_number, None)
        self._log.info("book_added", box_number=box_number, game_number=game_number, book_number=book_number)
        self._emit(BoxSaved(box, self.business_date))
        return box

    def configure_box(
        self,
        box_number: int,
        ticket_price=None,
        total_tickets_per_book: Optional[int] = None,
        starting_ticket_number: Optional[int] = None,
    ) -> TicketBox:
        box = self._boxes.get(box_number)
        if box is None:
            raise BoxNotFoundError(box_number)
        updated = replace(
            box,
            ticket_price=box.ticket_price if ticket_price is None else to_decimal(ticket_price),
            total_tickets_per_book=(
                box.total_tickets_per_book if total_tickets_per_book is None else total_tickets_per_book
            ),
            starting_ticket_number=(
                box.starting_ticket_number if starting_ticket_number is None else starting_ticket_number
            ),
            is_configured=True,
        )
        _validate_game(updated.ticket_price, updated.total_tickets_per_book)
        if updated.starting_ticket_number < 0:
            raise InvalidConfigurationError("starting ticket number cannot be negative")
        self._boxes[box_number] = updated
        self._undo.pop(box_number, None)
        self._log.info("box_configured", box_number=box_number)
        self._emit(BoxSaved(updated, self.business_date))
        return updated

    def remove_box(self, box_number: int) -> bool:
        if self._boxes.pop(box_number, None) is None:
            return False
        self._undo.pop(box_number, None)
        self._log.info("box_removed", box_number=box_number)
        self._emit(BoxRemoved(box_number, self.business_date))
        return True

    # game registry

    def register_game(self, game_number: str, ticket_price, total_tickets_per_book: int) -> bool:
        price = to_decimal(ticket_price)
        _validate_game(price, total_tickets_per_book)
        inserted = self.registry.register(game_number, price, total_tickets_per_book)
        if inserted:
            self._emit(GameSaved(self.registry.lookup(game_number)))
        return inserted

    def update_game(self, game_number: str, ticket_price, total_tickets_per_book: int) -> bool:
        price = to_decimal(ticket_price)
        _validate_game(price, total_tickets_per_book)
        updated = self.registry.update(game_number, price, total_tickets_per_book)
        if updated:
            self._log.info("game_updated", game_number=game_number)
            self._emit(GameSaved(self.registry.lookup(game_number)))
        return updated

    def delete_game(self, game_number: str) -> bool:
        deleted = self.registry.delete(game_number)
        if deleted:
            self._log.info("game_deleted", game_number=game_number)
            self._emit(GameRemoved(game_number))
        return deleted

    # end of day

    def reset_daily(self, preserve_position: bool = True) -> None:
        """Zero the day's counters and start a new business date.

        With ``preserve_position`` each scanned box resumes tomorrow from
        the ticket it stopped at today; otherwise the starting numbers are
        left as they were so the same tickets can be scanned again.
        """
        closed_date = self.business_date
        for box_number, box in self._boxes.items():
            starting = box.starting_ticket_number
            if preserve_position and box.last_scanned_ticket_number is not None:
                starting = box.last_scanned_ticket_number
            self._boxes[box_number] = replace(
                box,
                starting_ticket_number=starting,
                last_scanned_ticket_number=None,
                tickets_sold=0,
                total_amount_sold=ZERO,
            )
        self.scan_history.clear()
        self._undo.clear()
        self.last_scan_result = None
        self.last_error = None
        self.business_date = self._clock()
        self._log.info(
            "daily_reset",
            closed_date=closed_date.isoformat(),
            business_date=self.business_date.isoformat(),
            preserve_position=preserve_position,
        )
        self._emit(DayClosed(closed_date, tuple(self.boxes)))
