from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from functools import lru_cache
from typing import Optional, Union
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from scratchoff.barcode import Jurisdiction
from scratchoff.config import settings
from scratchoff.db import SessionLocal, engine, init_db
from scratchoff.domain import GameInfo, ScanError, ScanOutcome, ScanResult, StoreSettings, TicketBox, TicketOrder
from scratchoff.errors import (
    ArchiveFailedError,
    BoxNotFoundError,
    InvalidConfigurationError,
    InventoryError,
    SettingsLockedError,
    SummaryNotFoundError,
)
from scratchoff.log import configure_logging
from scratchoff.service import InventoryService, build_service
from scratchoff.store import BoxSaleEdit, SummaryRecord

configure_logging(settings.log_level)

@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # queued store writes are flushed before the process exits
    if get_inventory_service.cache_info().currsize:
        await run_in_threadpool(get_inventory_service().close)
        get_inventory_service.cache_clear()


app = FastAPI(title="Scratch-off Inventory", lifespan=lifespan)

OWNER_PREFIX = "/api/v1/owners/{owner_id}"

_ERROR_STATUS = (
    (BoxNotFoundError, 404),
    (SummaryNotFoundError, 404),
    (SettingsLockedError, 409),
    (InvalidConfigurationError, 400),
    (ArchiveFailedError, 503),
)


def _meta(request_id: Optional[str] = None, warnings: Optional[list[str]] = None) -> dict:
    return {
        "request_id": request_id or f"req_{uuid4().hex}",
        "warnings": warnings or [],
    }


def _now() -> datetime:
    return datetime.now(timezone.utc)


@lru_cache(maxsize=1)
def get_inventory_service() -> InventoryService:
    init_db(engine)
    return build_service(SessionLocal, settings)


@app.exception_handler(InventoryError)
async def inventory_error_handler(request: Request, exc: InventoryError) -> JSONResponse:
    status_code = next((code for kind, code in _ERROR_STATUS if isinstance(exc, kind)), 400)
    return JSONResponse(status_code=status_code, content={"detail": exc.message})


def _money(amount: Decimal) -> float:
    return float(amount)


def _settings_data(store_settings: StoreSettings) -> dict:
    return {
        "state_code": store_settings.state_code.value,
        "state_name": store_settings.state_code.label,
        "ticket_order": store_settings.ticket_order.value,
    }


def _box_data(box: TicketBox, undo_available: bool = False) -> dict:
    return {
        "box_number": box.box_number,
        "is_configured": box.is_configured,
        "game_number": box.game_number,
        "book_number": box.book_number,
        "ticket_price": _money(box.ticket_price),
        "total_tickets_per_book": box.total_tickets_per_book,
        "starting_ticket_number": box.starting_ticket_number,
        "last_scanned_ticket_number": box.last_scanned_ticket_number,
        "tickets_sold": box.tickets_sold,
        "total_amount_sold": _money(box.total_amount_sold),
        "undo_available": undo_available,
    }


def _game_data(game: GameInfo) -> dict:
    return {
        "game_number": game.game_number,
        "ticket_price": _money(game.ticket_price),
        "total_tickets_per_book": game.total_tickets_per_book,
    }


def _result_data(result: ScanResult) -> dict:
    return {
        "box_number": result.box_number,
        "ticket_number": result.ticket_number,
        "tickets_sold": result.tickets_sold,
        "amount_sold": _money(result.amount_sold),
        "message": result.message,
        "timestamp": result.timestamp.isoformat(),
        "game_number": result.game_number,
        "book_number": result.book_number,
        "book_transition": result.book_transition,
    }


def _error_data(error: ScanError) -> dict:
    return {"type": error.kind.value, "message": error.message, "severity": error.severity}


def _summary_data(record: SummaryRecord, include_boxes: bool = True) -> dict:
    data = {
        "summary_date": record.summary_date.isoformat(),
        "day_of_week": record.day_of_week,
        "total_tickets_sold": record.total_tickets_sold,
        "total_amount_sold": _money(record.total_amount_sold),
        "active_boxes": record.active_boxes,
    }
    if include_boxes:
        data["box_sales"] = [
            {
                "box_number": sale.box_number,
                "ticket_price": _money(sale.ticket_price),
                "last_scanned_ticket_number": sale.last_scanned_ticket_number,
                "tickets_sold": sale.tickets_sold,
                "total_amount_sold": _money(sale.total_amount_sold),
            }
            for sale in record.box_sales
        ]
    return data


def _scan_response(outcome: ScanOutcome) -> dict:
    if outcome.error is not None:
        raise HTTPException(status_code=422, detail=_error_data(outcome.error))
    return {
        "data": {"result": _result_data(outcome.result), "box": _box_data(outcome.box, True)},
        "meta": _meta(),
    }


@app.get("/", tags=["root"])
def read_root() -> dict:
    return {"status": "ok"}


@app.get("/health", tags=["health"])
def health_check() -> dict:
    return {"status": "healthy"}


class SettingsUpdate(BaseModel):
    model_config = {"json_schema_extra": {"example": {"state_code": "DC", "ticket_order": "ascending"}}}
    state_code: Jurisdiction
    ticket_order: TicketOrder = TicketOrder.DESCENDING


@app.get(OWNER_PREFIX + "/settings", tags=["Settings"])
def get_settings(owner_id: str, service: InventoryService = Depends(get_inventory_service)) -> dict:
    return {"data": _settings_data(service.settings_for(owner_id)), "meta": _meta()}


@app.put(OWNER_PREFIX + "/settings", tags=["Settings"])
def update_settings(
    owner_id: str,
    payload: SettingsUpdate,
    service: InventoryService = Depends(get_inventory_service),
) -> dict:
    updated = service.update_settings(
        owner_id, StoreSettings(state_code=payload.state_code, ticket_order=payload.ticket_order)
    )
    return {"data": _settings_data(updated), "meta": _meta()}


class BoxCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {"box_number": 4}}}
    box_number: Optional[int] = Field(default=None, ge=1)


class BoxConfigure(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {"ticket_price": 5.0, "total_tickets_per_book": 60, "starting_ticket_number": 59}
        }
    }
    ticket_price: Optional[Decimal] = Field(default=None, gt=0)
    total_tickets_per_book: Optional[int] = Field(default=None, gt=0)
    starting_ticket_number: Optional[int] = Field(default=None, ge=0)


class BookAssign(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {
                "game_number": "123",
                "book_number": "4567",
                "ticket_price": 5.0,
                "total_tickets_per_book": 60,
                "starting_ticket_number": 59,
            }
        }
    }
    game_number: str = Field(min_length=1)
    book_number: str = Field(min_length=1)
    ticket_price: Decimal = Field(gt=0)
    total_tickets_per_book: int = Field(gt=0)
    starting_ticket_number: int = Field(ge=0)


@app.get(OWNER_PREFIX + "/boxes", tags=["Boxes"])
def list_boxes(
    owner_id: str,
    configured: Optional[bool] = Query(default=None),
    service: InventoryService = Depends(get_inventory_service),
) -> dict:
    with service.session(owner_id) as session:
        boxes = session.boxes
        if configured is not None:
            boxes = [box for box in boxes if box.is_configured == configured]
        data = [_box_data(box, session.has_undo(box.box_number)) for box in boxes]
    return {"data": data, "meta": _meta()}


@app.post(OWNER_PREFIX + "/boxes", tags=["Boxes"])
def add_box(
    owner_id: str,
    payload: BoxCreate,
    service: InventoryService = Depends(get_inventory_service),
) -> dict:
    with service.session(owner_id) as session:
        if payload.box_number is None:
            box = session.add_box()
        else:
            box = session.add_box_with_number(payload.box_number)
        return {"data": _box_data(box, session.has_undo(box.box_number)), "meta": _meta()}


@app.patch(OWNER_PREFIX + "/boxes/{box_number}", tags=["Boxes"])
def configure_box(
    owner_id: str,
    box_number: int,
    payload: BoxConfigure,
    service: InventoryService = Depends(get_inventory_service),
) -> dict:
    with service.session(owner_id) as session:
        box = session.configure_box(
            box_number,
            ticket_price=payload.ticket_price,
            total_tickets_per_book=payload.total_tickets_per_book,
            starting_ticket_number=payload.starting_ticket_number,
        )
    return {"data": _box_data(box), "meta": _meta()}


@app.put(OWNER_PREFIX + "/boxes/{box_number}/book", tags=["Boxes"])
def assign_book(
    owner_id: str,
    box_number: int,
    payload: BookAssign,
    service: InventoryService = Depends(get_inventory_service),
) -> dict:
    with service.session(owner_id) as session:
        box = session.add_book_to_box(
            box_number,
            payload.game_number,
            payload.book_number,
            payload.ticket_price,
            payload.total_tickets_per_book,
            payload.starting_ticket_number,
        )
    return {"data": _box_data(box), "meta": _meta()}


@app.delete(OWNER_PREFIX + "/boxes/{box_number}", tags=["Boxes"])
def remove_box(
    owner_id: str,
    box_number: int,
    service: InventoryService = Depends(get_inventory_service),
) -> dict:
    with service.session(owner_id) as session:
        if not session.remove_box(box_number):
            raise HTTPException(status_code=404, detail="box not found")
    return {"data": {"box_number": box_number, "removed": True}, "meta": _meta()}


@app.post(OWNER_PREFIX + "/boxes/{box_number}/undo", tags=["Boxes"])
def undo_scan(
    owner_id: str,
    box_number: int,
    service: InventoryService = Depends(get_inventory_service),
) -> dict:
    with service.session(owner_id) as session:
        if session.box(box_number) is None:
            raise HTTPException(status_code=404, detail="box not found")
        if not session.undo(box_number):
            raise HTTPException(status_code=409, detail="no scan to undo for this box")
        box = session.box(box_number)
    return {"data": _box_data(box), "meta": _meta()}


class GameCreate(BaseModel):
    model_config = {
        "json_schema_extra": {"example": {"game_number": "123", "ticket_price": 5.0, "total_tickets_per_book": 60}}
    }
    game_number: str = Field(min_length=1)
    ticket_price: Decimal = Field(gt=0)
    total_tickets_per_book: int = Field(gt=0)


class GameUpdate(BaseModel):
    model_config = {"json_schema_extra": {"example": {"ticket_price": 10.0, "total_tickets_per_book": 30}}}
    ticket_price: Decimal = Field(gt=0)
    total_tickets_per_book: int = Field(gt=0)


@app.get(OWNER_PREFIX + "/games", tags=["Games"])
def list_games(owner_id: str, service: InventoryService = Depends(get_inventory_service)) -> dict:
    with service.session(owner_id) as session:
        data = [_game_data(game) for game in session.registry]
    return {"data": data, "meta": _meta()}


@app.post(OWNER_PREFIX + "/games", tags=["Games"])
def register_game(
    owner_id: str,
    payload: GameCreate,
    service: InventoryService = Depends(get_inventory_service),
) -> dict:
    game_number = payload.game_number.strip()
    with service.session(owner_id) as session:
        created = session.register_game(game_number, payload.ticket_price, payload.total_tickets_per_book)
        game = session.registry.lookup(game_number)
    warnings = [] if created else ["game already registered; existing entry kept"]
    return {"data": {**_game_data(game), "created": created}, "meta": _meta(warnings=warnings)}


@app.put(OWNER_PREFIX + "/games/{game_number}", tags=["Games"])
def update_game(
    owner_id: str,
    game_number: str,
    payload: GameUpdate,
    service: InventoryService = Depends(get_inventory_service),
) -> dict:
    with service.session(owner_id) as session:
        if not session.update_game(game_number, payload.ticket_price, payload.total_tickets_per_book):
            raise HTTPException(status_code=404, detail="game not found")
        game = session.registry.lookup(game_number)
    return {"data": _game_data(game), "meta": _meta()}


@app.delete(OWNER_PREFIX + "/games/{game_number}", tags=["Games"])
def delete_game(
    owner_id: str,
    game_number: str,
    service: InventoryService = Depends(get_inventory_service),
) -> dict:
    with service.session(owner_id) as session:
        if not session.delete_game(game_number):
            raise HTTPException(status_code=404, detail="game not found")
    return {"data": {"game_number": game_number, "deleted": True}, "meta": _meta()}


class ScanCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {"box_number": 1, "barcode": "12345678901204512345"}}}
    box_number: int
    barcode: str


class ManualEntryCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {"box_number": 1, "ticket_number": 42}}}
    box_number: int
    ticket_number: Union[int, float, str]


@app.post(OWNER_PREFIX + "/scans", tags=["Scans"])
def scan_barcode(
    owner_id: str,
    payload: ScanCreate,
    service: InventoryService = Depends(get_inventory_service),
) -> dict:
    with service.session(owner_id) as session:
        outcome = session.process_barcode(payload.barcode, payload.box_number)
    return _scan_response(outcome)


@app.post(OWNER_PREFIX + "/scans:manual", tags=["Scans"])
def scan_manual(
    owner_id: str,
    payload: ManualEntryCreate,
    service: InventoryService = Depends(get_inventory_service),
) -> dict:
    with service.session(owner_id) as session:
        outcome = session.process_manual_entry(payload.ticket_number, payload.box_number)
    return _scan_response(outcome)


@app.get(OWNER_PREFIX + "/scans", tags=["Scans"])
def scan_history(owner_id: str, service: InventoryService = Depends(get_inventory_service)) -> dict:
    with service.session(owner_id) as session:
        data = {
            "history": [_result_data(result) for result in session.scan_history],
            "last_result": _result_data(session.last_scan_result) if session.last_scan_result else None,
            "last_error": _error_data(session.last_error) if session.last_error else None,
        }
    return {"data": data, "meta": _meta()}


@app.get(OWNER_PREFIX + "/totals", tags=["Totals"])
def daily_totals(owner_id: str, service: InventoryService = Depends(get_inventory_service)) -> dict:
    with service.session(owner_id) as session:
        totals = session.totals()
        data = {
            "business_date": session.business_date.isoformat(),
            "state_code": session.jurisdiction.value,
            "total_tickets_sold": totals.total_tickets_sold,
            "total_amount_sold": _money(totals.total_amount_sold),
            "active_boxes": totals.active_boxes,
            "configured_boxes": len(session.configured_boxes()),
        }
    return {"data": data, "meta": _meta()}


@app.post(OWNER_PREFIX + "/day:archive", tags=["Business Day"])
def archive_day(owner_id: str, service: InventoryService = Depends(get_inventory_service)) -> dict:
    report = service.archive_day(owner_id)
    return {
        "data": {
            "business_date": report.business_date.isoformat(),
            "archived": report.summary is not None,
            "message": report.message,
            "summary": _summary_data(report.summary) if report.summary else None,
            "archived_at": _now().isoformat(),
        },
        "meta": _meta(),
    }


@app.post(OWNER_PREFIX + "/day:reset", tags=["Business Day"])
def reset_day(owner_id: str, service: InventoryService = Depends(get_inventory_service)) -> dict:
    closed_date = service.reset_without_saving(owner_id)
    return {
        "data": {"business_date": closed_date.isoformat(), "archived": False, "message": "Counters reset"},
        "meta": _meta(),
    }


class BoxSaleCorrection(BaseModel):
    box_number: int
    tickets_sold: int = Field(ge=0)
    last_scanned_ticket_number: Optional[int] = Field(default=None, ge=0)


class SummaryCorrection(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {"box_sales": [{"box_number": 1, "tickets_sold": 12, "last_scanned_ticket_number": 47}]}
        }
    }
    box_sales: list[BoxSaleCorrection]


@app.get(OWNER_PREFIX + "/summaries", tags=["Summaries"])
def list_summaries(
    owner_id: str,
    start: Optional[date] = Query(default=None),
    end: Optional[date] = Query(default=None),
    day_of_week: Optional[str] = Query(default=None),
    service: InventoryService = Depends(get_inventory_service),
) -> dict:
    if start is not None and end is not None and start > end:
        raise HTTPException(status_code=400, detail="start must not be after end")
    records = service.list_summaries(owner_id, start=start, end=end, day_of_week=day_of_week)
    return {"data": [_summary_data(record, include_boxes=False) for record in records], "meta": _meta()}


@app.get(OWNER_PREFIX + "/summaries/{summary_date}", tags=["Summaries"])
def get_summary(
    owner_id: str,
    summary_date: date,
    service: InventoryService = Depends(get_inventory_service),
) -> dict:
    return {"data": _summary_data(service.get_summary(owner_id, summary_date)), "meta": _meta()}


@app.patch(OWNER_PREFIX + "/summaries/{summary_date}", tags=["Summaries"])
def correct_summary(
    owner_id: str,
    summary_date: date,
    payload: SummaryCorrection,
    service: InventoryService = Depends(get_inventory_service),
) -> dict:
    edits = [
        BoxSaleEdit(
            box_number=item.box_number,
            tickets_sold=item.tickets_sold,
            last_scanned_ticket_number=item.last_scanned_ticket_number,
            update_last_scanned="last_scanned_ticket_number" in item.model_fields_set,
        )
        for item in payload.box_sales
    ]
    record = service.correct_summary(owner_id, summary_date, edits)
    return {"data": _summary_data(record), "meta": _meta()}
