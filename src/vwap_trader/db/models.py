"""SQLAlchemy ORM models for tables owned by the trading loop."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class CycleRecordORM(Base):
    __tablename__ = "cycle_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    cycle_number: Mapped[int] = mapped_column(Integer, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    payload: Mapped[dict] = mapped_column(JSONB, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    __table_args__ = (
        Index("idx_cycle_records_recorded_at", recorded_at.desc()),
        Index("idx_cycle_records_cycle", "cycle_number"),
    )
