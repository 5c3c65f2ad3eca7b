"""Replay CycleRecords into matched open/close TradeOutcomes."""

from __future__ import annotations

import json
from collections.abc import Iterable
from datetime import datetime

import structlog
from pydantic import BaseModel

from vwap_trader.models.performance import TradeOutcome
from vwap_trader.models.record import CycleRecord, MarketDataSnapshot

logger = structlog.get_logger()

# Tolerance band for classifying a close as a TP/SL hit
CLOSE_REASON_TOLERANCE = 0.001


def side_from_action(action: str) -> str:
    if action in ("open_long", "close_long"):
        return "long"
    if action in ("open_short", "close_short"):
        return "short"
    return ""


def action_kind(action: str) -> str:
    if action in ("open_long", "open_short"):
        return "open"
    if action in ("close_long", "close_short"):
        return "close"
    return ""


class _OpenPosition(BaseModel):
    open_time: datetime
    open_price: float
    quantity: float
    leverage: int
    side: str
    stop_loss: float = 0.0
    take_profit: float = 0.0
    entry: MarketDataSnapshot = MarketDataSnapshot()


def intended_exits(decision_json: str) -> dict[tuple[str, str], tuple[float, float]]:
    """(symbol, side) -> (stop_loss, take_profit) from the raw decision JSON.

    Undecodable or non-list JSON yields an empty mapping.
    """
    if not decision_json:
        return {}
    try:
        raw = json.loads(decision_json)
    except json.JSONDecodeError:
        logger.debug("decision_json_unreadable", chars=len(decision_json))
        return {}
    if not isinstance(raw, list):
        return {}

    exits = {}
    for item in raw:
        if not isinstance(item, dict):
            continue
        side = side_from_action(str(item.get("action", "")))
        try:
            sl = float(item.get("stop_loss") or 0.0)
            tp = float(item.get("take_profit") or 0.0)
        except (TypeError, ValueError):
            sl, tp = 0.0, 0.0
        exits[(str(item.get("symbol", "")), side)] = (sl, tp)
    return exits


def classify_close(side: str, close_price: float, stop_loss: float, take_profit: float) -> str:
    """TP, SL or Strategy. TP wins when both bands match."""
    if side == "long":
        if take_profit > 0 and close_price >= take_profit * (1 - CLOSE_REASON_TOLERANCE):
            return "TP"
        if stop_loss > 0 and close_price <= stop_loss * (1 + CLOSE_REASON_TOLERANCE):
            return "SL"
    elif side == "short":
        if take_profit > 0 and close_price <= take_profit * (1 + CLOSE_REASON_TOLERANCE):
            return "TP"
        if stop_loss > 0 and close_price >= stop_loss * (1 - CLOSE_REASON_TOLERANCE):
            return "SL"
    return "Strategy"


def _close_trade(symbol: str, pos: _OpenPosition, close_price: float, close_time: datetime) -> TradeOutcome:
    if pos.side == "long":
        pnl = pos.quantity * (close_price - pos.open_price)
    else:
        pnl = pos.quantity * (pos.open_price - close_price)

    position_value = pos.quantity * pos.open_price
    margin_used = position_value / pos.leverage if pos.leverage > 0 else 0.0
    pnl_pct = pnl / margin_used * 100 if margin_used > 0 else 0.0

    return TradeOutcome(
        symbol=symbol,
        side=pos.side,
        quantity=pos.quantity,
        leverage=pos.leverage,
        open_price=pos.open_price,
        close_price=close_price,
        position_value=position_value,
        margin_used=margin_used,
        pnl=pnl,
        pnl_pct=pnl_pct,
        duration_seconds=round((close_time - pos.open_time).total_seconds()),
        open_time=pos.open_time,
        close_time=close_time,
        close_reason=classify_close(pos.side, close_price, pos.stop_loss, pos.take_profit),
        entry_vwap=pos.entry.current_vwap,
        entry_rsi=pos.entry.current_rsi7,
        entry_macd=pos.entry.current_macd,
    )


def replay_trades(records: Iterable[CycleRecord]) -> list[TradeOutcome]:
    """Matched trades in chronological order.

    Records must be oldest first. Each call owns its own open-position map.
    At most one position per symbol is tracked; a second open replaces the
    first. Closes with no tracked position, or on the other side, are
    ignored. Opens still unmatched at the end are dropped.
    """
    open_positions: dict[str, _OpenPosition] = {}
    trades: list[TradeOutcome] = []

    for record in records:
        exits = intended_exits(record.decision_json)

        for executed in record.decisions:
            if not executed.success:
                continue
            side = side_from_action(executed.action)
            if not side:
                continue
            symbol = executed.symbol

            if action_kind(executed.action) == "open":
                if symbol in open_positions:
                    logger.debug("open_position_replaced", symbol=symbol, cycle=record.cycle_number)
                sl, tp = exits.get((symbol, side), (0.0, 0.0))
                open_positions[symbol] = _OpenPosition(
                    open_time=executed.timestamp,
                    open_price=executed.price,
                    quantity=executed.quantity,
                    leverage=executed.leverage,
                    side=side,
                    stop_loss=sl,
                    take_profit=tp,
                    entry=record.market_data.get(symbol, MarketDataSnapshot()),
                )
                continue

            pos = open_positions.get(symbol)
            if pos is None or pos.side != side:
                continue
            trades.append(_close_trade(symbol, pos, executed.price, executed.timestamp))
            del open_positions[symbol]

    return trades


def latest_trades(trades: list[TradeOutcome], lookback: int) -> list[TradeOutcome]:
    """Newest `lookback` of `trades` (oldest first), newest first."""
    return list(reversed(trades))[: max(0, lookback)]


def reconstruct_trades(records: Iterable[CycleRecord], lookback: int) -> list[TradeOutcome]:
    """Most recent `lookback` matched trades, newest first."""
    return latest_trades(replay_trades(records), lookback)
