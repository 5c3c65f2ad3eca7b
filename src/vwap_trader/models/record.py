"""CycleRecord and its snapshot models — one persisted unit per trading cycle."""

from datetime import datetime

from pydantic import BaseModel


class MarketDataSnapshot(BaseModel):
    current_price: float = 0.0
    current_vwap: float = 0.0
    current_rsi7: float = 0.0
    current_macd: float = 0.0


class AccountSnapshot(BaseModel):
    total_equity: float = 0.0
    available_balance: float = 0.0
    total_pnl_pct: float = 0.0
    margin_used_pct: float = 0.0
    position_count: int = 0


class PositionSnapshot(BaseModel):
    symbol: str
    side: str
    quantity: float = 0.0
    entry_price: float = 0.0
    mark_price: float = 0.0
    unrealized_pnl: float = 0.0
    leverage: int = 1
    liquidation_price: float = 0.0


class ExecutedAction(BaseModel):
    action: str  # open_long, open_short, close_long, close_short
    symbol: str
    quantity: float = 0.0
    leverage: int = 0
    price: float = 0.0
    order_id: str = ""
    timestamp: datetime
    success: bool = False
    error: str = ""


class CycleRecord(BaseModel):
    timestamp: datetime
    cycle_number: int
    input_prompt: str = ""
    cot_trace: str = ""
    validation_trace: list[str] = []
    decision_json: str = ""
    account_state: AccountSnapshot = AccountSnapshot()
    positions: list[PositionSnapshot] = []
    candidate_coins: list[str] = []
    decisions: list[ExecutedAction] = []
    execution_log: list[str] = []
    success: bool = True
    error_message: str = ""
    market_data: dict[str, MarketDataSnapshot] = {}
