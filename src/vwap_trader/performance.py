"""Performance feedback: trade statistics, Sharpe-style score and insights."""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import TYPE_CHECKING

import structlog

from vwap_trader.models.performance import (
    CycleStatistics,
    PerformanceAnalysis,
    SymbolPerformance,
    TradeOutcome,
)
from vwap_trader.trade_ledger import latest_trades, replay_trades

if TYPE_CHECKING:
    from vwap_trader.config import Settings
    from vwap_trader.models.record import CycleRecord
    from vwap_trader.record_store import RecordStore

logger = structlog.get_logger()

# Reported instead of an unbounded ratio
PROFIT_FACTOR_CAP = 999.0
SHARPE_CAP = 999.0

NO_HISTORY_INSIGHT = "Not enough closed trades yet for a review."
NO_PATTERN_INSIGHT = "Recent trades show no clear pattern to learn from. Keep observing."
INSIGHT_HEADER = "\n# Trade review and lessons"


def _symbol_stats(trades: Sequence[TradeOutcome]) -> dict[str, SymbolPerformance]:
    stats: dict[str, SymbolPerformance] = {}
    for trade in trades:
        s = stats.setdefault(trade.symbol, SymbolPerformance(symbol=trade.symbol))
        s.total_trades += 1
        s.total_pnl += trade.pnl
        if trade.pnl > 0:
            s.winning_trades += 1
        elif trade.pnl < 0:
            s.losing_trades += 1

    for s in stats.values():
        s.win_rate = s.winning_trades / s.total_trades * 100
        s.avg_pnl = s.total_pnl / s.total_trades
    return stats


def calculate_sharpe_ratio(records: Sequence[CycleRecord]) -> float:
    """Mean / population std of period-over-period equity returns.

    Only positive equity samples count. Not annualized.
    """
    equities = [r.account_state.total_equity for r in records if r.account_state.total_equity > 0]
    if len(equities) < 2:
        return 0.0

    returns = [(cur - prev) / prev for prev, cur in zip(equities, equities[1:])]
    mean = sum(returns) / len(returns)
    std = math.sqrt(sum((r - mean) ** 2 for r in returns) / len(returns))

    if std == 0:
        if mean > 0:
            return SHARPE_CAP
        if mean < 0:
            return -SHARPE_CAP
        return 0.0
    return mean / std


def analyze_performance(records: Sequence[CycleRecord], lookback: int) -> PerformanceAnalysis:
    """Aggregate every trade matched in `records` (oldest first).

    recent_trades holds only the newest `lookback` trades, newest first.
    """
    trades = replay_trades(records)
    analysis = PerformanceAnalysis(total_trades=len(trades))
    if not records:
        return analysis

    wins = [t.pnl for t in trades if t.pnl > 0]
    losses = [t.pnl for t in trades if t.pnl < 0]
    analysis.winning_trades = len(wins)
    analysis.losing_trades = len(losses)

    if trades:
        analysis.win_rate = len(wins) / len(trades) * 100
        analysis.avg_win = sum(wins) / len(wins) if wins else 0.0
        analysis.avg_loss = sum(losses) / len(losses) if losses else 0.0
        if losses:
            analysis.profit_factor = sum(wins) / abs(sum(losses))
        elif wins:
            analysis.profit_factor = PROFIT_FACTOR_CAP

    analysis.symbol_stats = _symbol_stats(trades)
    if analysis.symbol_stats:
        # max/min keep the first symbol seen on ties
        analysis.best_symbol = max(analysis.symbol_stats.values(), key=lambda s: s.total_pnl).symbol
        analysis.worst_symbol = min(analysis.symbol_stats.values(), key=lambda s: s.total_pnl).symbol

    analysis.recent_trades = latest_trades(trades, lookback)
    analysis.sharpe_ratio = calculate_sharpe_ratio(records)
    return analysis


def _review_trade(trade: TradeOutcome) -> list[str]:
    tag = f"[{trade.symbol} {trade.side}]"
    notes = []

    if trade.pnl < 0:
        if trade.close_reason == "SL":
            notes.append(f"Losing trade {tag}: closed at the stop loss. Re-check the entry point and stop placement.")

        if trade.side == "long" and trade.entry_rsi > 70:
            notes.append(
                f"Losing trade {tag}: opened long with RSI at {trade.entry_rsi:.0f}, likely overbought. "
                "Lesson: do not open longs with RSI > 70."
            )
        elif trade.side == "short" and trade.entry_rsi < 30:
            notes.append(
                f"Losing trade {tag}: opened short with RSI at {trade.entry_rsi:.0f}, likely oversold. "
                "Lesson: do not open shorts with RSI < 30."
            )

        if trade.side == "long" and trade.open_price < trade.entry_vwap:
            notes.append(
                f"Losing trade {tag}: opened long below VWAP, against the trend. "
                "Lesson: only go long while price is above VWAP."
            )
        elif trade.side == "short" and trade.open_price > trade.entry_vwap:
            notes.append(
                f"Losing trade {tag}: opened short above VWAP, against the trend. "
                "Lesson: only go short while price is below VWAP."
            )

    elif trade.pnl > 0:
        if trade.side == "long" and trade.open_price > trade.entry_vwap:
            notes.append(f"Winning trade {tag}: long opened above VWAP, a clean trend-following entry. Keep doing this.")
        elif trade.side == "short" and trade.open_price < trade.entry_vwap:
            notes.append(f"Winning trade {tag}: short opened below VWAP, a clean trend-following entry. Keep doing this.")

    return notes


def generate_trading_insights(analysis: PerformanceAnalysis | None, sample_size: int = 5) -> str:
    """Review narrative over the newest `sample_size` trades, fed into the next prompt."""
    if analysis is None or not analysis.recent_trades:
        return NO_HISTORY_INSIGHT

    insights = []
    for trade in analysis.recent_trades[:sample_size]:
        insights.extend(_review_trade(trade))

    if not insights:
        return NO_PATTERN_INSIGHT
    return INSIGHT_HEADER + "\n" + "\n".join(insights)


def summarize_cycles(records: Sequence[CycleRecord]) -> CycleStatistics:
    stats = CycleStatistics(total_cycles=len(records))
    for record in records:
        if record.success:
            stats.successful_cycles += 1
        else:
            stats.failed_cycles += 1
        for executed in record.decisions:
            if not executed.success:
                continue
            if executed.action in ("open_long", "open_short"):
                stats.total_open_positions += 1
            elif executed.action in ("close_long", "close_short"):
                stats.total_close_positions += 1
    return stats


class PerformanceAnalyzer:
    """Reads the record window from a store and runs the analysis."""

    def __init__(self, store: RecordStore, settings: Settings) -> None:
        self.store = store
        self.settings = settings

    async def analyze(self, lookback: int | None = None) -> PerformanceAnalysis:
        lookback = lookback if lookback is not None else self.settings.PERFORMANCE_LOOKBACK_TRADES
        # Wider window so closes inside the lookback still find their opens
        records = await self.store.get_latest(lookback * self.settings.PERFORMANCE_WINDOW_FACTOR)
        analysis = analyze_performance(records, lookback)
        cycles = summarize_cycles(records)
        logger.info(
            "performance_analyzed",
            records=len(records),
            failed_cycles=cycles.failed_cycles,
            opens=cycles.total_open_positions,
            closes=cycles.total_close_positions,
            trades=analysis.total_trades,
            win_rate=round(analysis.win_rate, 2),
            sharpe=round(analysis.sharpe_ratio, 4),
        )
        return analysis

    def insights(self, analysis: PerformanceAnalysis | None) -> str:
        return generate_trading_insights(analysis, self.settings.INSIGHT_SAMPLE_SIZE)
