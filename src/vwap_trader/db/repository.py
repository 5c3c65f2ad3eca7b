"""CycleRecordRepository: the RecordStore protocol over PostgreSQL JSONB."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vwap_trader.db.models import CycleRecordORM
from vwap_trader.models.record import CycleRecord

logger = structlog.get_logger()


def _orm_to_cycle_record(orm: CycleRecordORM) -> CycleRecord:
    return CycleRecord.model_validate(orm.payload)


class CycleRecordRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def append(self, record: CycleRecord) -> None:
        async with self.session_factory() as session:
            orm = CycleRecordORM(
                cycle_number=record.cycle_number,
                recorded_at=record.timestamp,
                success=record.success,
                payload=record.model_dump(mode="json"),
            )
            session.add(orm)
            await session.commit()
            logger.info("cycle_record_saved", cycle=record.cycle_number, success=record.success)

    async def get_latest(self, n: int) -> list[CycleRecord]:
        """The `n` most recent records, oldest first."""
        if n <= 0:
            return []
        async with self.session_factory() as session:
            stmt = (
                select(CycleRecordORM)
                .order_by(CycleRecordORM.recorded_at.desc(), CycleRecordORM.id.desc())
                .limit(n)
            )
            result = await session.execute(stmt)
            rows = list(result.scalars().all())
        rows.reverse()
        return [_orm_to_cycle_record(r) for r in rows]

    async def get_by_date(self, day: date) -> list[CycleRecord]:
        start = datetime.combine(day, time.min, tzinfo=timezone.utc)
        async with self.session_factory() as session:
            stmt = (
                select(CycleRecordORM)
                .where(CycleRecordORM.recorded_at >= start)
                .where(CycleRecordORM.recorded_at < start + timedelta(days=1))
                .order_by(CycleRecordORM.recorded_at.asc(), CycleRecordORM.id.asc())
            )
            result = await session.execute(stmt)
            return [_orm_to_cycle_record(r) for r in result.scalars().all()]

    async def get_all(self) -> list[CycleRecord]:
        async with self.session_factory() as session:
            stmt = select(CycleRecordORM).order_by(CycleRecordORM.recorded_at.asc(), CycleRecordORM.id.asc())
            result = await session.execute(stmt)
            return [_orm_to_cycle_record(r) for r in result.scalars().all()]

    async def clean_older_than(self, days: int) -> int:
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        async with self.session_factory() as session:
            result = await session.execute(delete(CycleRecordORM).where(CycleRecordORM.recorded_at < cutoff))
            await session.commit()
            removed = result.rowcount or 0
            if removed:
                logger.info("cycle_records_cleaned", removed=removed, days=days)
            return removed
