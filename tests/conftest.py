"""Shared fixtures."""

from __future__ import annotations

import pytest

from factories import executed, make_record
from vwap_trader.config import Settings
from vwap_trader.models.record import MarketDataSnapshot


@pytest.fixture
def settings():
    return Settings(
        ANTHROPIC_API_KEY="test-key",
        MODEL_RETRY_BACKOFF_SECONDS=0,
        DECISION_CYCLE_SECONDS=1,
        FILL_WAIT_SECONDS=0,
        FILL_POLL_INTERVAL_SECONDS=0,
    )


@pytest.fixture
def scenario_records():
    """BTC long opened and closed at 61000, then ETH short stopped out at 3050."""
    return [
        make_record(
            1,
            executed=[executed("open_long", "BTCUSDT", 60100, 0.0166, 10, minutes=3)],
            decisions=[{"symbol": "BTCUSDT", "action": "open_long", "stop_loss": 59500, "take_profit": 63000}],
            market_data={"BTCUSDT": MarketDataSnapshot(current_price=60100, current_vwap=59900, current_rsi7=55)},
        ),
        make_record(
            2,
            executed=[executed("close_long", "BTCUSDT", 61000, 0.0166, 10, minutes=33)],
            decisions=[{"symbol": "BTCUSDT", "action": "close_long"}],
            equity=10014.94,
        ),
        make_record(
            3,
            executed=[executed("open_short", "ETHUSDT", 3020, 0.165, 20, minutes=63)],
            decisions=[{"symbol": "ETHUSDT", "action": "open_short", "stop_loss": 3050, "take_profit": 2900}],
            equity=10014.94,
            market_data={"ETHUSDT": MarketDataSnapshot(current_price=3020, current_vwap=3000, current_rsi7=45)},
        ),
        make_record(
            4,
            executed=[executed("close_short", "ETHUSDT", 3050, 0.165, 20, minutes=93)],
            decisions=[{"symbol": "ETHUSDT", "action": "close_short"}],
            equity=10009.99,
        ),
    ]
