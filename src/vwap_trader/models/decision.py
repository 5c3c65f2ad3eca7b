"""TradeAction, FullDecision and the TradingContext handed to the models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from vwap_trader.models.market import MarketData, OITopData
from vwap_trader.models.performance import PerformanceAnalysis

OPEN_ACTIONS = ("open_long", "open_short")
CLOSE_ACTIONS = ("close_long", "close_short")
VALID_ACTIONS = {*OPEN_ACTIONS, *CLOSE_ACTIONS, "hold", "wait"}


class TradeAction(BaseModel):
    symbol: str = ""
    action: str  # open_long, open_short, close_long, close_short, hold, wait
    leverage: int = 0
    position_size_usd: float = 0.0
    stop_loss: float = 0.0
    take_profit: float = 0.0
    confidence: int = 0
    risk_usd: float = 0.0
    reasoning: str = ""

    @property
    def is_open(self) -> bool:
        return self.action in OPEN_ACTIONS

    @property
    def is_close(self) -> bool:
        return self.action in CLOSE_ACTIONS


class FullDecision(BaseModel):
    user_prompt: str = ""
    cot_trace: str = ""
    decisions: list[TradeAction] = []
    validation_trace: list[str] = []
    timestamp: datetime | None = None


class PositionInfo(BaseModel):
    symbol: str
    side: str  # long, short
    entry_price: float = 0.0
    mark_price: float = 0.0
    quantity: float = 0.0
    leverage: int = 1
    unrealized_pnl: float = 0.0
    unrealized_pnl_pct: float = 0.0
    liquidation_price: float = 0.0
    margin_used: float = 0.0
    update_time: int = 0  # epoch ms


class AccountInfo(BaseModel):
    total_equity: float = 0.0
    available_balance: float = 0.0
    total_pnl: float = 0.0
    total_pnl_pct: float = 0.0
    margin_used: float = 0.0
    margin_used_pct: float = 0.0
    position_count: int = 0


class CandidateCoin(BaseModel):
    symbol: str
    sources: list[str] = []  # ai500 and/or oi_top


class TradingContext(BaseModel):
    current_time: str = ""
    runtime_minutes: int = 0
    call_count: int = 0
    account: AccountInfo = AccountInfo()
    positions: list[PositionInfo] = []
    candidate_coins: list[CandidateCoin] = []
    market_data: dict[str, MarketData] = {}
    oi_top: dict[str, OITopData] = {}
    performance: PerformanceAnalysis | None = None
    trading_insights: str = ""
