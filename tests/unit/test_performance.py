"""Unit tests for performance — aggregation, Sharpe-style score and insights."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from factories import executed, make_record
from vwap_trader.models.performance import PerformanceAnalysis, TradeOutcome
from vwap_trader.performance import (
    INSIGHT_HEADER,
    NO_HISTORY_INSIGHT,
    NO_PATTERN_INSIGHT,
    PROFIT_FACTOR_CAP,
    SHARPE_CAP,
    PerformanceAnalyzer,
    analyze_performance,
    calculate_sharpe_ratio,
    generate_trading_insights,
    summarize_cycles,
)


def _round_trip(cycle: int, symbol: str, side: str, open_price: float, close_price: float):
    """Two records: open at `cycle`, close at `cycle + 1`."""
    return [
        make_record(cycle, executed=[executed(f"open_{side}", symbol, open_price, 1, 5, minutes=3 * cycle)]),
        make_record(cycle + 1, executed=[executed(f"close_{side}", symbol, close_price, 1, 5, minutes=3 * cycle + 3)]),
    ]


def _trade(**overrides) -> TradeOutcome:
    fields = {
        "symbol": "BTCUSDT",
        "side": "long",
        "quantity": 1.0,
        "leverage": 5,
        "open_price": 100.0,
        "close_price": 110.0,
        "position_value": 100.0,
        "margin_used": 20.0,
        "pnl": 10.0,
        "pnl_pct": 50.0,
        "duration_seconds": 600,
        "open_time": "2026-10-01T12:00:00Z",
        "close_time": "2026-10-01T12:10:00Z",
        "close_reason": "Strategy",
        "entry_vwap": 100.0,
        "entry_rsi": 50.0,
    }
    fields.update(overrides)
    return TradeOutcome(**fields)


# ---------------------------------------------------------------------------
# analyze_performance()
# ---------------------------------------------------------------------------


class TestAnalyzePerformance:
    def test_one_win_one_loss(self, scenario_records):
        analysis = analyze_performance(scenario_records, lookback=20)

        assert analysis.total_trades == 2
        assert analysis.winning_trades == 1
        assert analysis.losing_trades == 1
        assert analysis.win_rate == pytest.approx(50.0)
        assert analysis.avg_win == pytest.approx(14.94)
        assert analysis.avg_loss == pytest.approx(-4.95)
        assert analysis.profit_factor == pytest.approx(14.94 / 4.95)
        assert [t.symbol for t in analysis.recent_trades] == ["ETHUSDT", "BTCUSDT"]

    def test_symbol_stats_and_extremes(self, scenario_records):
        analysis = analyze_performance(scenario_records, lookback=20)

        assert analysis.symbol_stats["BTCUSDT"].win_rate == 100.0
        assert analysis.symbol_stats["ETHUSDT"].losing_trades == 1
        assert analysis.best_symbol == "BTCUSDT"
        assert analysis.worst_symbol == "ETHUSDT"

    def test_recent_trades_truncated(self, scenario_records):
        analysis = analyze_performance(scenario_records, lookback=1)
        assert analysis.total_trades == 2
        assert [t.symbol for t in analysis.recent_trades] == ["ETHUSDT"]

    def test_no_records(self):
        analysis = analyze_performance([], lookback=20)
        assert analysis == PerformanceAnalysis()

    def test_records_without_trades(self):
        analysis = analyze_performance([make_record(1), make_record(2)], lookback=20)
        assert analysis.total_trades == 0
        assert analysis.win_rate == 0.0
        assert analysis.profit_factor == 0.0

    def test_only_wins_caps_profit_factor(self):
        analysis = analyze_performance(_round_trip(1, "BTCUSDT", "long", 100, 110), lookback=20)
        assert analysis.profit_factor == PROFIT_FACTOR_CAP
        assert analysis.avg_loss == 0.0

    def test_only_losses_profit_factor_zero(self):
        analysis = analyze_performance(_round_trip(1, "BTCUSDT", "long", 110, 100), lookback=20)
        assert analysis.profit_factor == 0.0
        assert analysis.avg_win == 0.0

    def test_breakeven_counts_as_neither(self):
        analysis = analyze_performance(_round_trip(1, "BTCUSDT", "long", 100, 100), lookback=20)
        assert analysis.total_trades == 1
        assert analysis.winning_trades == 0
        assert analysis.losing_trades == 0
        assert analysis.win_rate == 0.0

    def test_best_symbol_tie_keeps_first_seen(self):
        records = _round_trip(1, "BTCUSDT", "long", 100, 110) + _round_trip(3, "SOLUSDT", "long", 100, 110)
        analysis = analyze_performance(records, lookback=20)
        assert analysis.best_symbol == "BTCUSDT"
        assert analysis.worst_symbol == "BTCUSDT"


# ---------------------------------------------------------------------------
# calculate_sharpe_ratio()
# ---------------------------------------------------------------------------


class TestSharpeRatio:
    def test_single_equity_is_zero(self):
        assert calculate_sharpe_ratio([make_record(1)]) == 0.0

    def test_non_positive_equity_excluded(self):
        records = [make_record(1, equity=0.0), make_record(2, equity=10000.0)]
        assert calculate_sharpe_ratio(records) == 0.0

    def test_flat_equity_is_zero(self):
        assert calculate_sharpe_ratio([make_record(i) for i in range(3)]) == 0.0

    def test_steady_growth_saturates(self):
        records = [make_record(1, equity=100.0), make_record(2, equity=110.0), make_record(3, equity=121.0)]
        assert calculate_sharpe_ratio(records) == SHARPE_CAP

    def test_steady_decline_saturates_negative(self):
        records = [make_record(1, equity=100.0), make_record(2, equity=90.0), make_record(3, equity=81.0)]
        assert calculate_sharpe_ratio(records) == -SHARPE_CAP

    def test_mean_over_population_std(self):
        # returns: +10%, -10%  -> mean 0
        records = [make_record(1, equity=100.0), make_record(2, equity=110.0), make_record(3, equity=99.0)]
        assert calculate_sharpe_ratio(records) == pytest.approx(0.0)

    def test_scenario_sign(self, scenario_records):
        # +0.1494%, 0, -0.0494%: positive mean
        assert 0 < calculate_sharpe_ratio(scenario_records) < SHARPE_CAP


# ---------------------------------------------------------------------------
# generate_trading_insights()
# ---------------------------------------------------------------------------


class TestTradingInsights:
    def test_no_analysis(self):
        assert generate_trading_insights(None) == NO_HISTORY_INSIGHT
        assert generate_trading_insights(PerformanceAnalysis()) == NO_HISTORY_INSIGHT

    def test_scenario_review(self, scenario_records):
        text = generate_trading_insights(analyze_performance(scenario_records, lookback=20))

        assert text.startswith(INSIGHT_HEADER)
        lines = text.strip().splitlines()[1:]
        # ETH is newest, so its notes come first
        assert lines[0].startswith("Losing trade [ETHUSDT short]: closed at the stop loss")
        assert "opened short above VWAP" in lines[1]
        assert lines[2].startswith("Winning trade [BTCUSDT long]")
        assert len(lines) == 3

    def test_overbought_long_flagged(self):
        trade = _trade(pnl=-5.0, entry_rsi=75.0, entry_vwap=90.0)
        text = generate_trading_insights(PerformanceAnalysis(recent_trades=[trade]))
        assert "RSI at 75" in text
        assert "RSI > 70" in text

    def test_oversold_short_flagged(self):
        trade = _trade(side="short", pnl=-5.0, entry_rsi=25.0, entry_vwap=110.0)
        text = generate_trading_insights(PerformanceAnalysis(recent_trades=[trade]))
        assert "RSI < 30" in text

    def test_no_pattern(self):
        """A winning long below VWAP matches no rule."""
        trade = _trade(entry_vwap=105.0)
        assert generate_trading_insights(PerformanceAnalysis(recent_trades=[trade])) == NO_PATTERN_INSIGHT

    def test_sample_size_limits_reviewed_trades(self):
        old_loser = _trade(symbol="ETHUSDT", pnl=-5.0, close_reason="SL", entry_vwap=90.0)
        plain = _trade(entry_vwap=105.0)
        analysis = PerformanceAnalysis(recent_trades=[plain, old_loser])
        assert generate_trading_insights(analysis, sample_size=1) == NO_PATTERN_INSIGHT
        assert "ETHUSDT" in generate_trading_insights(analysis, sample_size=2)


# ---------------------------------------------------------------------------
# summarize_cycles()
# ---------------------------------------------------------------------------


class TestSummarizeCycles:
    def test_counts(self, scenario_records):
        scenario_records.append(make_record(5, success=False))
        scenario_records.append(
            make_record(6, executed=[executed("open_long", "SOLUSDT", 200, 1, 3, minutes=18, success=False)])
        )
        stats = summarize_cycles(scenario_records)

        assert stats.total_cycles == 6
        assert stats.successful_cycles == 5
        assert stats.failed_cycles == 1
        assert stats.total_open_positions == 2
        assert stats.total_close_positions == 2


# ---------------------------------------------------------------------------
# PerformanceAnalyzer
# ---------------------------------------------------------------------------


class TestPerformanceAnalyzer:
    async def test_reads_widened_window(self, settings, scenario_records):
        store = AsyncMock()
        store.get_latest = AsyncMock(return_value=scenario_records)
        analyzer = PerformanceAnalyzer(store, settings)

        analysis = await analyzer.analyze()

        store.get_latest.assert_awaited_once_with(
            settings.PERFORMANCE_LOOKBACK_TRADES * settings.PERFORMANCE_WINDOW_FACTOR
        )
        assert analysis.total_trades == 2

    async def test_explicit_lookback(self, settings, scenario_records):
        store = AsyncMock()
        store.get_latest = AsyncMock(return_value=scenario_records)
        analysis = await PerformanceAnalyzer(store, settings).analyze(lookback=1)

        store.get_latest.assert_awaited_once_with(5)
        assert len(analysis.recent_trades) == 1

    async def test_summarizes_cycles_in_window(self, settings, scenario_records):
        store = AsyncMock()
        store.get_latest = AsyncMock(return_value=scenario_records)
        with patch("vwap_trader.performance.summarize_cycles", wraps=summarize_cycles) as summarize:
            await PerformanceAnalyzer(store, settings).analyze()
        summarize.assert_called_once_with(scenario_records)

    def test_insights_use_sample_size(self, settings):
        analyzer = PerformanceAnalyzer(AsyncMock(), settings)
        assert analyzer.insights(None) == NO_HISTORY_INSIGHT
