"""Build prompts for the primary decision model and the secondary validator."""

from __future__ import annotations

import json
import time

import structlog

from vwap_trader.decision_validator import RiskLimits
from vwap_trader.models.decision import TradeAction, TradingContext
from vwap_trader.models.market import MarketData

logger = structlog.get_logger()

_OUTPUT_EXAMPLE = [
    {
        "symbol": "BTCUSDT",
        "action": "open_long",
        "leverage": 10,
        "position_size_usd": 5000,
        "stop_loss": 68000,
        "take_profit": 72000,
        "confidence": 80,
        "risk_usd": 200,
        "reasoning": "Price crossed above VWAP, RSI < 70, MACD rising: long conditions met.",
    }
]

_SIGNAL_RULES = (
    "- Long signal: price > VWAP, RSI < 70, MACD > 0.",
    "- Short signal: price < VWAP, RSI > 30, MACD < 0.",
)


def format_market_data(data: MarketData) -> str:
    """One symbol's snapshot as compact prompt text."""
    lines = [
        f"price={data.current_price:.4f} vwap={data.current_vwap:.4f} "
        f"rsi7={data.current_rsi7:.2f} macd={data.current_macd:.4f}",
        f"change 1h={data.price_change_1h:+.2f}% 4h={data.price_change_4h:+.2f}% "
        f"funding={data.funding_rate:.6f}",
    ]
    if data.open_interest is not None:
        value = data.open_interest_value_usd() or 0.0
        lines.append(
            f"open interest latest={data.open_interest.latest:.0f} avg={data.open_interest.average:.0f} "
            f"value={value / 1_000_000:.2f}M USD"
        )
    return "\n".join(lines) + "\n"


def _holding_duration(update_time_ms: int, now_ms: int) -> str:
    if update_time_ms <= 0:
        return ""
    minutes = max(0, now_ms - update_time_ms) // 60_000
    if minutes < 60:
        return f" | held {minutes}m"
    return f" | held {minutes // 60}h{minutes % 60}m"


class PromptBuilder:
    def build_system_prompt(self, equity: float, limits: RiskLimits) -> str:
        """Fixed strategy rules. Risk bounds are rendered from `limits`."""
        parts = []

        parts.append("You are a professional crypto futures trading AI running an intraday VWAP strategy.")
        parts.append("Follow the VWAP rules strictly and use RSI and MACD as confirmation.")
        parts.append("")

        # --- Strategy ---
        parts.append("<strategy>")
        parts.append("Long:")
        parts.append("  1. Primary condition: current_price > current_vwap (intraday strength).")
        parts.append("  2. Entry timing: price crossing up through VWAP, or a pullback to VWAP that holds.")
        parts.append("  3. Confirmation: RSI < 70 (no chasing overbought), MACD > 0 or rising.")
        parts.append("  4. Only call it high confidence (>= 75) when every condition holds.")
        parts.append("Short:")
        parts.append("  1. Primary condition: current_price < current_vwap (intraday weakness).")
        parts.append("  2. Entry timing: price crossing down through VWAP, or a bounce into VWAP that fails.")
        parts.append("  3. Confirmation: RSI > 30 (no selling into oversold), MACD < 0 or falling.")
        parts.append("  4. Only call it high confidence (>= 75) when every condition holds.")
        parts.append("Hold / close:")
        parts.append("  - Hold a long while price > VWAP; hold a short while price < VWAP.")
        parts.append("  - Close when price crosses VWAP against the position.")
        parts.append("</strategy>")

        # --- Risk Constraints ---
        majors = "/".join(limits.major_symbols)
        parts.append("<risk_constraints>")
        parts.append(f"1. Reward:risk must be at least {limits.min_risk_reward:g}:1.")
        parts.append("2. Stop loss: below VWAP for longs, above VWAP for shorts.")
        parts.append(f"3. Hold at most {limits.max_positions} symbols at once.")
        parts.append(
            f"4. Position size: altcoins {equity * limits.altcoin_min_size_multiplier:.0f}-"
            f"{equity * limits.altcoin_size_multiplier:.0f} USD, {majors} "
            f"{equity * limits.major_min_size_multiplier:.0f}-{equity * limits.major_size_multiplier:.0f} USD."
        )
        parts.append(
            f"5. Leverage: altcoins at most {limits.altcoin_max_leverage}x, "
            f"{majors} at most {limits.major_max_leverage}x."
        )
        parts.append("</risk_constraints>")

        # --- Self Review ---
        parts.append("<self_review>")
        parts.append("Each request ends with a review of recent trades and lessons learned.")
        parts.append("Apply every lesson in this decision and state in your reasoning how it changed the decision.")
        parts.append("</self_review>")

        # --- Process ---
        parts.append("<process>")
        parts.append("1. Review open positions: hold or close each one under the VWAP rules.")
        parts.append("2. Scan the candidate coins for long or short signals.")
        parts.append("3. With no opportunity, answer wait. Otherwise give open_long/open_short with every parameter.")
        parts.append("</process>")

        # --- Output Format ---
        parts.append("<output_format>")
        parts.append("Write your reasoning first, then a single JSON array of decisions:")
        parts.append(json.dumps(_OUTPUT_EXAMPLE, indent=2))
        parts.append("</output_format>")

        return "\n".join(parts)

    def build_user_prompt(self, context: TradingContext) -> str:
        """Dynamic cycle state: account, positions, candidates, performance review."""
        parts = []
        account = context.account

        parts.append(
            f"Time: {context.current_time} | Cycle: #{context.call_count} | Runtime: {context.runtime_minutes}m"
        )
        parts.append("")

        btc = context.market_data.get("BTCUSDT")
        if btc is not None:
            parts.append(
                f"BTC: {btc.current_price:.2f} (1h: {btc.price_change_1h:+.2f}%, 4h: {btc.price_change_4h:+.2f}%) "
                f"| VWAP: {btc.current_vwap:.2f} | MACD: {btc.current_macd:.4f} | RSI: {btc.current_rsi7:.2f}"
            )
            parts.append("")

        available_pct = account.available_balance / account.total_equity * 100 if account.total_equity > 0 else 0.0
        parts.append(
            f"Account: equity {account.total_equity:.2f} | available {account.available_balance:.2f} "
            f"({available_pct:.1f}%) | PnL {account.total_pnl_pct:+.2f}% | margin {account.margin_used_pct:.1f}% "
            f"| positions {account.position_count}"
        )
        parts.append("")

        # --- Positions ---
        parts.append("<current_positions>")
        if context.positions:
            now_ms = int(time.time() * 1000)
            for i, pos in enumerate(context.positions, start=1):
                parts.append(
                    f"{i}. {pos.symbol} {pos.side.upper()} | entry {pos.entry_price:.4f} mark {pos.mark_price:.4f} "
                    f"| PnL {pos.unrealized_pnl_pct:+.2f}% | {pos.leverage}x | margin {pos.margin_used:.0f} "
                    f"| liq {pos.liquidation_price:.4f}{_holding_duration(pos.update_time, now_ms)}"
                )
                data = context.market_data.get(pos.symbol)
                if data is not None:
                    parts.append(format_market_data(data))
        else:
            parts.append("  No open positions")
        parts.append("</current_positions>")

        # --- Candidates ---
        parts.append(f"<candidate_coins count=\"{len(context.market_data)}\">")
        shown = 0
        for coin in context.candidate_coins:
            data = context.market_data.get(coin.symbol)
            if data is None:
                continue
            shown += 1
            tag = ""
            if len(coin.sources) > 1:
                tag = " (AI500 + OI top)"
            elif coin.sources == ["oi_top"]:
                tag = " (OI top growth)"
            oi = context.oi_top.get(coin.symbol)
            if oi is not None:
                tag += f" [OI rank {oi.rank}, OI {oi.oi_delta_percent:+.2f}%]"
            parts.append(f"{shown}. {coin.symbol}{tag}")
            parts.append(format_market_data(data))
        parts.append("</candidate_coins>")

        if context.performance is not None:
            parts.append(f"Sharpe ratio: {context.performance.sharpe_ratio:.2f}")

        if context.trading_insights:
            parts.append(context.trading_insights)

        parts.append("---")
        parts.append("Analyse and output your decision (reasoning + JSON).")

        prompt = "\n".join(parts)
        logger.debug("user_prompt_built", chars=len(prompt), candidates=shown)
        return prompt

    def build_validation_prompt(
        self,
        context: TradingContext,
        action: TradeAction,
        affirmative: str,
        negative: str,
    ) -> str:
        """Yes/no check of one proposed open against the VWAP rules."""
        parts = []
        answer = f"Answer only '{affirmative}' or '{negative}'."

        parts.append(
            "You are a strict trading-strategy reviewer. Judge whether the decision below "
            f"follows the VWAP strategy given the market data. {answer}"
        )
        parts.append("")
        parts.append("<vwap_rules>")
        parts.extend(_SIGNAL_RULES)
        parts.append("</vwap_rules>")

        parts.append("<decision>")
        parts.append(f"Symbol: {action.symbol}")
        parts.append(f"Action: {action.action}")
        parts.append(f"Reasoning: {action.reasoning}")
        parts.append("</decision>")

        parts.append("<market_data>")
        data = context.market_data.get(action.symbol)
        if data is not None:
            parts.append(format_market_data(data))
        else:
            parts.append("No market data for this symbol.")
        parts.append("</market_data>")

        parts.append(f"Does this decision follow the VWAP rules? {answer}")
        return "\n".join(parts)
