"""Redis Stream message schemas shared with the market/execution services."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, Field


class StreamMessage(BaseModel):
    """Base message for all Redis Stream communications."""

    msg_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    source: str = ""
    type: str = ""
    payload: dict = {}
    metadata: dict = {}

    def to_redis(self) -> dict[str, str]:
        """Serialize to flat dict for XADD."""
        return {"data": self.model_dump_json()}

    @classmethod
    def from_redis(cls, data: dict[bytes | str, bytes | str]) -> StreamMessage:
        """Deserialize from Redis XREVRANGE result."""
        raw = data.get(b"data") or data.get("data")
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return cls.model_validate_json(raw)


class TradeOrderMessage(StreamMessage):
    """Published by the trading loop to trade:orders."""

    source: str = "vwap_trader"
    type: str = "trade_order"


class DecisionMessage(StreamMessage):
    """Published by the trading loop to ai:decisions."""

    source: str = "vwap_trader"
    type: str = "full_decision"


class SystemAlertMessage(StreamMessage):
    """Published to system:alerts by any component."""

    source: str = "vwap_trader"
    type: str = "system_alert"
