"""Append-only CycleRecord storage: protocol + one-JSON-file-per-record store."""

from __future__ import annotations

import asyncio
import os
import tempfile
import time
from datetime import date
from pathlib import Path
from typing import Protocol

import structlog
from pydantic import ValidationError

from vwap_trader.models.record import CycleRecord

logger = structlog.get_logger()

FILE_PREFIX = "decision_"
TEMP_PREFIX = ".tmp_"


class RecordStore(Protocol):
    async def append(self, record: CycleRecord) -> None: ...

    async def get_latest(self, n: int) -> list[CycleRecord]:
        """The `n` most recently written records, oldest first."""
        ...

    async def get_by_date(self, day: date) -> list[CycleRecord]: ...

    async def get_all(self) -> list[CycleRecord]:
        """Every stored record, oldest first."""
        ...

    async def clean_older_than(self, days: int) -> int:
        """Delete records older than `days`. Returns the number removed."""
        ...


def record_filename(record: CycleRecord) -> str:
    stamp = record.timestamp.strftime("%Y%m%d_%H%M%S")
    return f"{FILE_PREFIX}{stamp}_cycle{record.cycle_number:06d}.json"


class JsonFileRecordStore:
    """One pretty-printed JSON file per record.

    File names sort chronologically, so ordering comes from the name. Each
    write goes to a temp file that is renamed into place, so readers never
    see a half-written record. Files that fail to decode are skipped.
    """

    def __init__(self, log_dir: str | Path) -> None:
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

    async def append(self, record: CycleRecord) -> None:
        path = self.log_dir / record_filename(record)
        await asyncio.to_thread(self._write_atomic, path, record.model_dump_json(indent=2))
        logger.info("cycle_record_saved", file=path.name, cycle=record.cycle_number, success=record.success)

    async def get_latest(self, n: int) -> list[CycleRecord]:
        if n <= 0:
            return []
        paths = await asyncio.to_thread(self._sorted_paths, f"{FILE_PREFIX}*.json")
        return await asyncio.to_thread(self._load_all, paths[-n:])

    async def get_by_date(self, day: date) -> list[CycleRecord]:
        paths = await asyncio.to_thread(self._sorted_paths, f"{FILE_PREFIX}{day:%Y%m%d}_*.json")
        return await asyncio.to_thread(self._load_all, paths)

    async def get_all(self) -> list[CycleRecord]:
        paths = await asyncio.to_thread(self._sorted_paths, f"{FILE_PREFIX}*.json")
        return await asyncio.to_thread(self._load_all, paths)

    async def clean_older_than(self, days: int) -> int:
        removed = await asyncio.to_thread(self._remove_older_than, time.time() - days * 86400)
        if removed:
            logger.info("cycle_records_cleaned", removed=removed, days=days)
        return removed

    def _sorted_paths(self, pattern: str) -> list[Path]:
        return sorted(p for p in self.log_dir.glob(pattern) if p.is_file())

    def _load_all(self, paths: list[Path]) -> list[CycleRecord]:
        records = []
        for path in paths:
            try:
                records.append(CycleRecord.model_validate_json(path.read_bytes()))
            except (OSError, ValidationError) as e:
                logger.warning("cycle_record_unreadable", file=path.name, error=str(e))
        return records

    def _write_atomic(self, path: Path, content: str) -> None:
        fd, tmp = tempfile.mkstemp(dir=self.log_dir, prefix=TEMP_PREFIX, suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp, path)
        except BaseException:
            os.unlink(tmp)
            raise

    def _remove_older_than(self, cutoff: float) -> int:
        """Returns the number of records removed. Temp files left by a crashed
        write are swept on the same cutoff but not counted."""
        removed = 0
        for pattern in (f"{FILE_PREFIX}*.json", f"{TEMP_PREFIX}*.json"):
            for path in self.log_dir.glob(pattern):
                try:
                    if path.stat().st_mtime >= cutoff:
                        continue
                    path.unlink()
                except FileNotFoundError:
                    # Removed by another process between glob and unlink
                    continue
                if pattern.startswith(FILE_PREFIX):
                    removed += 1
                else:
                    logger.info("stale_temp_file_removed", file=path.name)
        return removed
