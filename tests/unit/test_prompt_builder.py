"""Unit tests for PromptBuilder — limits rendering and context sections."""

from __future__ import annotations

import time

import pytest

from vwap_trader.decision_validator import RiskLimits
from vwap_trader.models.decision import (
    AccountInfo,
    CandidateCoin,
    PositionInfo,
    TradeAction,
    TradingContext,
)
from vwap_trader.models.market import MarketData, OITopData, OpenInterest
from vwap_trader.models.performance import PerformanceAnalysis
from vwap_trader.prompt_builder import PromptBuilder, format_market_data


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def builder():
    return PromptBuilder()


@pytest.fixture
def btc():
    return MarketData(
        symbol="BTCUSDT",
        current_price=68100.0,
        current_vwap=67900.0,
        current_rsi7=58.2,
        current_macd=12.5,
        price_change_1h=0.4,
        price_change_4h=-1.2,
        open_interest=OpenInterest(latest=90000, average=88000),
    )


@pytest.fixture
def sol():
    return MarketData(symbol="SOLUSDT", current_price=200.0, current_vwap=202.0, current_rsi7=41.0)


@pytest.fixture
def context(btc, sol):
    return TradingContext(
        current_time="2026-10-18 12:00:00",
        runtime_minutes=42,
        call_count=7,
        account=AccountInfo(total_equity=1000.0, available_balance=800.0, position_count=1),
        positions=[
            PositionInfo(
                symbol="BTCUSDT",
                side="long",
                entry_price=67000.0,
                mark_price=68100.0,
                leverage=10,
                update_time=int(time.time() * 1000) - 90 * 60_000,
            )
        ],
        candidate_coins=[
            CandidateCoin(symbol="SOLUSDT", sources=["ai500", "oi_top"]),
            CandidateCoin(symbol="DOGEUSDT", sources=["ai500"]),
        ],
        market_data={"BTCUSDT": btc, "SOLUSDT": sol},
        oi_top={"SOLUSDT": OITopData(symbol="SOLUSDT", rank=3, oi_delta_percent=7.5)},
    )


# ---------------------------------------------------------------------------
# format_market_data()
# ---------------------------------------------------------------------------


class TestFormatMarketData:
    def test_core_indicators(self, sol):
        text = format_market_data(sol)
        assert "price=200.0000" in text
        assert "vwap=202.0000" in text
        assert "rsi7=41.00" in text
        assert "open interest" not in text

    def test_open_interest_value(self, btc):
        text = format_market_data(btc)
        assert "value=6129.00M USD" in text


# ---------------------------------------------------------------------------
# build_system_prompt()
# ---------------------------------------------------------------------------


class TestBuildSystemPrompt:
    def test_renders_limits(self, builder):
        limits = RiskLimits(major_max_leverage=15, altcoin_max_leverage=4, min_risk_reward=3.0)
        prompt = builder.build_system_prompt(1000.0, limits)
        assert "altcoins at most 4x" in prompt
        assert "BTCUSDT/ETHUSDT at most 15x" in prompt
        assert "at least 3:1" in prompt

    def test_size_bands_scale_with_equity(self, builder):
        prompt = builder.build_system_prompt(2000.0, RiskLimits())
        assert "altcoins 1600-3000 USD" in prompt
        assert "BTCUSDT/ETHUSDT 10000-20000 USD" in prompt

    def test_output_format_example(self, builder):
        prompt = builder.build_system_prompt(1000.0, RiskLimits())
        assert "<output_format>" in prompt
        assert '"action": "open_long"' in prompt


# ---------------------------------------------------------------------------
# build_user_prompt()
# ---------------------------------------------------------------------------


class TestBuildUserPrompt:
    def test_header_and_account(self, builder, context):
        prompt = builder.build_user_prompt(context)
        assert "Cycle: #7" in prompt
        assert "Runtime: 42m" in prompt
        assert "equity 1000.00" in prompt
        assert "(80.0%)" in prompt

    def test_btc_overview(self, builder, context):
        assert "BTC: 68100.00" in builder.build_user_prompt(context)

    def test_position_with_holding_duration(self, builder, context):
        prompt = builder.build_user_prompt(context)
        assert "1. BTCUSDT LONG" in prompt
        assert "held 1h30m" in prompt

    def test_no_positions(self, builder, context):
        context.positions = []
        assert "No open positions" in builder.build_user_prompt(context)

    def test_candidates_without_data_are_skipped(self, builder, context):
        prompt = builder.build_user_prompt(context)
        assert "1. SOLUSDT (AI500 + OI top) [OI rank 3, OI +7.50%]" in prompt
        assert "DOGEUSDT" not in prompt

    def test_performance_and_insights(self, builder, context):
        context.performance = PerformanceAnalysis(sharpe_ratio=0.75)
        context.trading_insights = "# Trade review and lessons\nKeep it up."
        prompt = builder.build_user_prompt(context)
        assert "Sharpe ratio: 0.75" in prompt
        assert "Keep it up." in prompt

    def test_zero_equity_does_not_divide(self, builder, context):
        context.account = AccountInfo()
        assert "(0.0%)" in builder.build_user_prompt(context)


# ---------------------------------------------------------------------------
# build_validation_prompt()
# ---------------------------------------------------------------------------


class TestBuildValidationPrompt:
    def test_contains_action_and_tokens(self, builder, context):
        action = TradeAction(symbol="SOLUSDT", action="open_short", reasoning="Below VWAP")
        prompt = builder.build_validation_prompt(context, action, "APPROVE", "REJECT")
        assert "Symbol: SOLUSDT" in prompt
        assert "Action: open_short" in prompt
        assert "Reasoning: Below VWAP" in prompt
        assert "'APPROVE' or 'REJECT'" in prompt
        assert "price=200.0000" in prompt

    def test_missing_market_data(self, builder, context):
        action = TradeAction(symbol="XRPUSDT", action="open_long")
        prompt = builder.build_validation_prompt(context, action, "APPROVE", "REJECT")
        assert "No market data for this symbol." in prompt
