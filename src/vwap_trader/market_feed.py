"""Market/account collaborator: latest snapshots published by the data service."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

import structlog
from pydantic import ValidationError

from vwap_trader.errors import MarketDataFetchError
from vwap_trader.models.decision import AccountInfo, CandidateCoin, PositionInfo
from vwap_trader.models.market import MarketData, OITopData

if TYPE_CHECKING:
    from vwap_trader.redis_client import RedisClient

logger = structlog.get_logger()

MARKET_DATA_STREAM = "market:data:{symbol}"
OI_TOP_STREAM = "market:oi_top"
CANDIDATES_STREAM = "market:candidates"
ACCOUNT_STREAM = "trade:account"
POSITIONS_STREAM = "trade:positions"


class MarketFeed(Protocol):
    async def get_market_data(self, symbol: str) -> MarketData: ...

    async def get_oi_top(self) -> list[OITopData]: ...

    async def get_account(self) -> AccountInfo: ...

    async def get_positions(self) -> list[PositionInfo]: ...

    async def get_candidates(self) -> list[CandidateCoin]: ...


class RedisMarketFeed:
    def __init__(self, redis: RedisClient) -> None:
        self.redis = redis

    async def get_market_data(self, symbol: str) -> MarketData:
        """Raises MarketDataFetchError when the symbol has no usable snapshot."""
        try:
            msg = await self.redis.read_latest(MARKET_DATA_STREAM.format(symbol=symbol))
        except Exception as e:
            raise MarketDataFetchError(symbol, str(e)) from e
        if msg is None or not msg.payload:
            raise MarketDataFetchError(symbol, "no snapshot published")

        try:
            return MarketData.model_validate({"symbol": symbol, **msg.payload})
        except ValidationError as e:
            raise MarketDataFetchError(symbol, f"malformed snapshot: {e.error_count()} errors") from e

    async def get_oi_top(self) -> list[OITopData]:
        msg = await self.redis.read_latest(OI_TOP_STREAM)
        if msg is None:
            return []
        return [OITopData.model_validate(p) for p in msg.payload.get("positions", [])]

    async def get_account(self) -> AccountInfo:
        msg = await self.redis.read_latest(ACCOUNT_STREAM)
        if msg is None or not msg.payload:
            logger.warning("account_snapshot_missing")
            return AccountInfo()
        return AccountInfo.model_validate(msg.payload)

    async def get_positions(self) -> list[PositionInfo]:
        msg = await self.redis.read_latest(POSITIONS_STREAM)
        if msg is None:
            return []
        return [PositionInfo.model_validate(p) for p in msg.payload.get("positions", [])]

    async def get_candidates(self) -> list[CandidateCoin]:
        msg = await self.redis.read_latest(CANDIDATES_STREAM)
        if msg is None:
            return []
        return [CandidateCoin.model_validate(c) for c in msg.payload.get("coins", [])]
