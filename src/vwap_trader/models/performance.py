"""TradeOutcome, SymbolPerformance, PerformanceAnalysis Pydantic models."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class TradeOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str
    side: str  # long, short
    quantity: float
    leverage: int
    open_price: float
    close_price: float
    position_value: float
    margin_used: float
    pnl: float
    pnl_pct: float  # relative to margin
    duration_seconds: int
    open_time: datetime
    close_time: datetime
    close_reason: str  # TP, SL, Strategy
    entry_vwap: float = 0.0
    entry_rsi: float = 0.0
    entry_macd: float = 0.0


class SymbolPerformance(BaseModel):
    symbol: str
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    total_pnl: float = 0.0
    avg_pnl: float = 0.0


class PerformanceAnalysis(BaseModel):
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    profit_factor: float = 0.0
    sharpe_ratio: float = 0.0
    recent_trades: list[TradeOutcome] = []
    symbol_stats: dict[str, SymbolPerformance] = {}
    best_symbol: str = ""
    worst_symbol: str = ""


class CycleStatistics(BaseModel):
    total_cycles: int = 0
    successful_cycles: int = 0
    failed_cycles: int = 0
    total_open_positions: int = 0
    total_close_positions: int = 0
