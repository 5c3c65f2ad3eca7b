"""Entry point: wire the collaborators and run the trading loop."""

from __future__ import annotations

import asyncio
import signal
import sys

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from vwap_trader.config import Settings
from vwap_trader.db.engine import create_db_engine, create_session_factory
from vwap_trader.db.repository import CycleRecordRepository
from vwap_trader.decision_engine import DecisionEngine
from vwap_trader.market_feed import RedisMarketFeed
from vwap_trader.model_client import ModelClient
from vwap_trader.performance import PerformanceAnalyzer
from vwap_trader.record_store import JsonFileRecordStore, RecordStore
from vwap_trader.redis_client import RedisClient
from vwap_trader.retention_scheduler import RecordRetentionScheduler
from vwap_trader.trading_loop import TradingLoop

logger = structlog.get_logger()


def create_record_store(settings: Settings) -> tuple[RecordStore, AsyncEngine | None]:
    """File store by default; RECORD_STORE=database selects PostgreSQL."""
    if settings.RECORD_STORE == "database":
        engine = create_db_engine(settings)
        return CycleRecordRepository(create_session_factory(engine)), engine
    if settings.RECORD_STORE != "file":
        raise ValueError(f"Unknown RECORD_STORE: {settings.RECORD_STORE!r} (expected 'file' or 'database')")
    return JsonFileRecordStore(settings.DECISION_LOG_DIR), None


async def main() -> None:
    settings = Settings()

    redis = RedisClient(
        redis_url=settings.REDIS_URL,
        socket_timeout=30.0,
        socket_connect_timeout=10.0,
        retry_on_timeout=True,
    )
    await redis.connect()

    store, db_engine = create_record_store(settings)
    feed = RedisMarketFeed(redis)
    engine = DecisionEngine(
        settings,
        feed=feed,
        primary=ModelClient.primary(settings),
        secondary=ModelClient.secondary(settings),
    )
    loop_runner = TradingLoop(
        settings,
        redis=redis,
        feed=feed,
        engine=engine,
        store=store,
        analyzer=PerformanceAnalyzer(store, settings),
    )
    retention = RecordRetentionScheduler(store, settings.RECORD_RETENTION_DAYS)
    retention.start()

    loop = asyncio.get_running_loop()

    def _signal_handler() -> None:
        logger.info("shutdown_signal_received")
        loop_runner.running = False

    if sys.platform != "win32":
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, _signal_handler)
    else:
        signal.signal(signal.SIGINT, lambda *_: _signal_handler())

    try:
        await loop_runner.start()
    except asyncio.CancelledError:
        pass
    finally:
        await loop_runner.stop()
        await retention.stop()
        await redis.disconnect()
        if db_engine is not None:
            await db_engine.dispose()
        logger.info("shutdown_complete")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
