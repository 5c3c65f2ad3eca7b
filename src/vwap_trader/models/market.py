"""MarketData, OpenInterest, OITopData — per-symbol market context."""

from pydantic import BaseModel


class OpenInterest(BaseModel):
    latest: float = 0.0
    average: float = 0.0


class MarketData(BaseModel):
    symbol: str
    current_price: float
    current_vwap: float = 0.0
    current_rsi7: float = 0.0
    current_macd: float = 0.0
    price_change_1h: float = 0.0
    price_change_4h: float = 0.0
    funding_rate: float = 0.0
    open_interest: OpenInterest | None = None

    def open_interest_value_usd(self) -> float | None:
        """Open interest notional (contracts x price), None when unknown."""
        if self.open_interest is None or self.current_price <= 0:
            return None
        return self.open_interest.latest * self.current_price


class OITopData(BaseModel):
    symbol: str
    rank: int = 0
    oi_delta_percent: float = 0.0
    oi_delta_value: float = 0.0
    price_delta_percent: float = 0.0
    net_long: float = 0.0
    net_short: float = 0.0
