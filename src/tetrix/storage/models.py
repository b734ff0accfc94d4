import datetime as dt
from typing import List, Optional
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import (
    String, Integer, Boolean, Text, JSON, Date, DateTime, Float, ForeignKey,
    Index, func
)
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP

class Base(DeclarativeBase):
    pass

# Helper to support both Postgres JSONB and generic JSON (for SQLite tests)
JSON_TYPE = JSON().with_variant(JSONB, 'postgresql')
TIMESTAMP_TYPE = DateTime(timezone=True).with_variant(TIMESTAMP(timezone=True), 'postgresql')

# --- Translators ---

class TranslatorModel(Base):
    __tablename__ = "translators"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    daily_capacity: Mapped[float] = mapped_column(Float, nullable=False, server_default='7')
    schedule: Mapped[str] = mapped_column(String, nullable=False, server_default='9h-17h')
    divisions: Mapped[List[str]] = mapped_column(JSON_TYPE, default=list)
    language_pairs: Mapped[List[str]] = mapped_column(JSON_TYPE, default=list)
    domains: Mapped[List[str]] = mapped_column(JSON_TYPE, default=list)
    active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    seeking_work: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[dt.datetime] = mapped_column(TIMESTAMP_TYPE, server_default=func.now())
    updated_at: Mapped[dt.datetime] = mapped_column(TIMESTAMP_TYPE, server_default=func.now(), onupdate=func.now())

# --- Tasks ---

class TaskModel(Base):
    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    project_number: Mapped[str] = mapped_column(String, server_default='')
    translator_id: Mapped[str] = mapped_column(ForeignKey("translators.id"), nullable=False, index=True)
    total_hours: Mapped[float] = mapped_column(Float, nullable=False)
    due_at: Mapped[dt.datetime] = mapped_column(DateTime, nullable=False, index=True)
    priority: Mapped[str] = mapped_column(String, server_default='REGULAR')
    mode: Mapped[str] = mapped_column(String, server_default='JUST_IN_TIME')
    window_start: Mapped[Optional[dt.date]] = mapped_column(Date)
    window_end: Mapped[Optional[dt.date]] = mapped_column(Date)
    language_pair: Mapped[Optional[str]] = mapped_column(String)
    client: Mapped[Optional[str]] = mapped_column(String)
    domain: Mapped[Optional[str]] = mapped_column(String)
    morning_delivery: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[dt.datetime] = mapped_column(TIMESTAMP_TYPE, server_default=func.now())
    updated_at: Mapped[dt.datetime] = mapped_column(TIMESTAMP_TYPE, server_default=func.now(), onupdate=func.now())
    version: Mapped[int] = mapped_column(Integer, default=1)

    # Relationships
    translator: Mapped["TranslatorModel"] = relationship()

# --- Ledger rows ---

class AllocationModel(Base):
    __tablename__ = "allocations"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    translator_id: Mapped[str] = mapped_column(ForeignKey("translators.id"), nullable=False)
    task_id: Mapped[Optional[str]] = mapped_column(ForeignKey("tasks.id", ondelete="CASCADE"), index=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    hours: Mapped[float] = mapped_column(Float, nullable=False)
    entry_type: Mapped[str] = mapped_column(String, server_default='TASK')
    start_hour: Mapped[Optional[float]] = mapped_column(Float)
    end_hour: Mapped[Optional[float]] = mapped_column(Float)
    reason: Mapped[Optional[str]] = mapped_column(Text)
    forced: Mapped[bool] = mapped_column(Boolean, default=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(TIMESTAMP_TYPE, server_default=func.now())

    __table_args__ = (
        Index('ix_allocations_translator_date', 'translator_id', 'date'),
    )
