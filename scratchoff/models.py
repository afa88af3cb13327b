from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from scratchoff.db import Base

ID_TYPE = BigInteger().with_variant(Integer, "sqlite")
MONEY = Numeric(12, 2)


class UserSettings(Base):
    __tablename__ = "user_settings"
    __table_args__ = (
        CheckConstraint("ticket_order IN ('descending', 'ascending')", name="ticket_order"),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    state_code: Mapped[str] = mapped_column(Text, nullable=False, default="MD")
    ticket_order: Mapped[str] = mapped_column(Text, nullable=False, default="descending")
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)


class BoxConfiguration(Base):
    __tablename__ = "box_configurations"
    __table_args__ = (
        Index("ix_box_configurations_unique", "user_id", "state_code", "box_number", unique=True),
        CheckConstraint("box_number > 0", name="box_number_positive"),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    state_code: Mapped[str] = mapped_column(Text, nullable=False)
    box_number: Mapped[int] = mapped_column(Integer, nullable=False)
    ticket_price: Mapped[Numeric] = mapped_column(MONEY, nullable=False, default=0)
    total_tickets_per_book: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    starting_ticket_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_scanned_ticket_number: Mapped[int | None] = mapped_column(Integer)
    is_configured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    game_number: Mapped[str | None] = mapped_column(Text)
    book_number: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)


class GameRegistryEntry(Base):
    __tablename__ = "game_registry"
    __table_args__ = (
        Index("ix_game_registry_unique", "user_id", "state_code", "game_number", unique=True),
        CheckConstraint("ticket_price > 0", name="game_price_positive"),
        CheckConstraint("total_tickets_per_book > 0", name="game_tickets_positive"),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    state_code: Mapped[str] = mapped_column(Text, nullable=False)
    game_number: Mapped[str] = mapped_column(Text, nullable=False)
    ticket_price: Mapped[Numeric] = mapped_column(MONEY, nullable=False)
    total_tickets_per_book: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)


class DailyScanningState(Base):
    __tablename__ = "daily_scanning_state"
    __table_args__ = (
        Index(
            "ix_daily_scanning_state_unique",
            "user_id",
            "state_code",
            "business_date",
            "box_number",
            unique=True,
        ),
        CheckConstraint("tickets_sold >= 0", name="scanning_tickets_non_negative"),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    state_code: Mapped[str] = mapped_column(Text, nullable=False)
    business_date: Mapped[Date] = mapped_column(Date, nullable=False)
    box_number: Mapped[int] = mapped_column(Integer, nullable=False)
    tickets_sold: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_amount_sold: Mapped[Numeric] = mapped_column(MONEY, nullable=False, default=0)
    updated_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)


class DailySummary(Base):
    __tablename__ = "daily_summaries"
    __table_args__ = (
        Index("ix_daily_summaries_unique", "user_id", "state_code", "summary_date", unique=True),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    state_code: Mapped[str] = mapped_column(Text, nullable=False)
    summary_date: Mapped[Date] = mapped_column(Date, nullable=False)
    day_of_week: Mapped[str] = mapped_column(Text, nullable=False)
    total_tickets_sold: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_amount_sold: Mapped[Numeric] = mapped_column(MONEY, nullable=False, default=0)
    active_boxes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)


class DailyBoxSale(Base):
    __tablename__ = "daily_box_sales"
    __table_args__ = (
        Index("ix_daily_box_sales_unique", "summary_id", "box_number", unique=True),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    summary_id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        ForeignKey("daily_summaries.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    state_code: Mapped[str] = mapped_column(Text, nullable=False)
    box_number: Mapped[int] = mapped_column(Integer, nullable=False)
    ticket_price: Mapped[Numeric] = mapped_column(MONEY, nullable=False)
    last_scanned_ticket_number: Mapped[int | None] = mapped_column(Integer)
    tickets_sold: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_amount_sold: Mapped[Numeric] = mapped_column(MONEY, nullable=False, default=0)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)
