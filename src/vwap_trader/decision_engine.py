"""Primary decision + secondary cross-validation for one trading cycle."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog

from vwap_trader.decision_validator import DecisionValidator, RiskLimits, normalize_actions
from vwap_trader.errors import (
    DecisionValidationError,
    MarketDataFetchError,
    ModelCallError,
    ResponseParseError,
    TradingDecisionError,
)
from vwap_trader.models.decision import FullDecision, PositionInfo, TradeAction, TradingContext
from vwap_trader.prompt_builder import PromptBuilder
from vwap_trader.response_parser import extract_actions, extract_reasoning_trace

if TYPE_CHECKING:
    from vwap_trader.config import Settings
    from vwap_trader.market_feed import MarketFeed
    from vwap_trader.model_client import DecisionModel
    from vwap_trader.models.market import MarketData

logger = structlog.get_logger()

CONFIRMED_SUFFIX = " (confirmed by secondary model)"


def parse_full_decision(
    text: str,
    positions: list[PositionInfo],
    equity: float,
    validator: DecisionValidator,
    reference_prices: dict[str, float] | None = None,
) -> FullDecision:
    """Reasoning trace + normalized, validated actions from one model reply.

    Errors carry the partial FullDecision so the trace survives the failure.
    """
    decision = FullDecision(cot_trace=extract_reasoning_trace(text))

    try:
        actions = extract_actions(text)
    except ResponseParseError as e:
        e.decision = decision
        raise

    normalize_actions(actions, positions)
    decision.decisions = actions

    try:
        validator.validate(actions, equity, reference_prices)
    except DecisionValidationError as e:
        e.decision = decision
        raise
    return decision


class DecisionEngine:
    def __init__(
        self,
        settings: Settings,
        feed: MarketFeed,
        primary: DecisionModel,
        secondary: DecisionModel,
        prompt_builder: PromptBuilder | None = None,
        limits: RiskLimits | None = None,
    ) -> None:
        self.settings = settings
        self.feed = feed
        self.primary = primary
        self.secondary = secondary
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.limits = limits or RiskLimits.from_settings(settings)
        self.validator = DecisionValidator(self.limits)

    async def get_full_decision(self, context: TradingContext) -> FullDecision:
        """Run market fetch, primary decision and secondary confirmation.

        Raises a TradingDecisionError subclass whose `decision` holds the user
        prompt and whatever reasoning was recovered.
        """
        await self.fetch_market_data(context)

        equity = context.account.total_equity
        system_prompt = self.prompt_builder.build_system_prompt(equity, self.limits)
        user_prompt = self.prompt_builder.build_user_prompt(context)

        try:
            response = await self.primary.propose(system_prompt, user_prompt)
        except ModelCallError as e:
            e.decision = FullDecision(user_prompt=user_prompt)
            raise

        reference_prices = {s: d.current_price for s, d in context.market_data.items()}
        try:
            decision = parse_full_decision(response, context.positions, equity, self.validator, reference_prices)
        except TradingDecisionError as e:
            if e.decision is not None:
                e.decision.user_prompt = user_prompt
            logger.warning("primary_decision_rejected", error=str(e), trace_chars=len(e.reasoning_trace))
            raise
        decision.user_prompt = user_prompt

        proposed = len(decision.decisions)
        decision.decisions, decision.validation_trace = await self.cross_validate(context, decision.decisions)
        decision.timestamp = datetime.now(timezone.utc)
        logger.info(
            "full_decision_ready",
            proposed=proposed,
            accepted=len(decision.decisions),
        )
        return decision

    async def cross_validate(
        self,
        context: TradingContext,
        actions: list[TradeAction],
    ) -> tuple[list[TradeAction], list[str]]:
        """Confirm each open action with the secondary model, one at a time, in order."""
        kept: list[TradeAction] = []
        trace: list[str] = []
        affirmative = self.settings.VALIDATION_AFFIRMATIVE_TOKEN
        negative = self.settings.VALIDATION_NEGATIVE_TOKEN

        for action in actions:
            if not action.is_open:
                kept.append(action)
                continue

            prompt = self.prompt_builder.build_validation_prompt(context, action, affirmative, negative)
            try:
                reply = await self.secondary.propose("", prompt)
            except ModelCallError as e:
                line = f"- {action.symbol} {action.action}: rejected (secondary model error: {e})"
                trace.append(line)
                logger.warning("secondary_validation_error", symbol=action.symbol, action=action.action, error=str(e))
                continue

            verdict = reply.strip()[:80]
            if self._is_affirmative(reply):
                action.reasoning += CONFIRMED_SUFFIX
                kept.append(action)
                trace.append(f"- {action.symbol} {action.action}: accepted ({verdict})")
                logger.info("secondary_validation", symbol=action.symbol, action=action.action, verdict="accepted")
            else:
                trace.append(f"- {action.symbol} {action.action}: rejected ({verdict}). reasoning: {action.reasoning}")
                logger.info("secondary_validation", symbol=action.symbol, action=action.action, verdict="rejected")

        return kept, trace

    def _is_affirmative(self, reply: str) -> bool:
        text = reply.upper()
        if self.settings.VALIDATION_NEGATIVE_TOKEN.upper() in text:
            return False
        return self.settings.VALIDATION_AFFIRMATIVE_TOKEN.upper() in text

    async def fetch_market_data(self, context: TradingContext) -> None:
        """Fill context.market_data and context.oi_top.

        Positions are always fetched; candidates are capped by MAX_CANDIDATES.
        A symbol whose fetch fails is skipped. Illiquid candidates (open
        interest value below MIN_OPEN_INTEREST_USD) are dropped, but symbols
        with an open position are kept so they can still be closed.
        """
        position_symbols = {p.symbol for p in context.positions}
        candidates = context.candidate_coins
        if self.settings.MAX_CANDIDATES > 0:
            candidates = candidates[: self.settings.MAX_CANDIDATES]
        symbols = list(dict.fromkeys([p.symbol for p in context.positions] + [c.symbol for c in candidates]))

        results = await asyncio.gather(*(self._fetch_one(s) for s in symbols))

        market_data: dict[str, MarketData] = {}
        for symbol, data in zip(symbols, results):
            if data is None:
                continue
            if symbol not in position_symbols and not self._is_liquid(data):
                continue
            market_data[symbol] = data
        context.market_data = market_data

        try:
            context.oi_top = {oi.symbol: oi for oi in await self.feed.get_oi_top()}
        except Exception as e:
            logger.warning("oi_top_unavailable", error=str(e))
            context.oi_top = {}

        logger.info("market_data_fetched", requested=len(symbols), usable=len(market_data))

    async def _fetch_one(self, symbol: str) -> MarketData | None:
        try:
            return await self.feed.get_market_data(symbol)
        except MarketDataFetchError as e:
            logger.warning("market_data_skipped", symbol=symbol, reason=e.reason)
            return None

    def _is_liquid(self, data: MarketData) -> bool:
        value = data.open_interest_value_usd()
        if value is None:
            return True
        if value < self.settings.MIN_OPEN_INTEREST_USD:
            logger.info(
                "illiquid_symbol_skipped",
                symbol=data.symbol,
                oi_value_musd=round(value / 1_000_000, 2),
                floor_musd=self.settings.MIN_OPEN_INTEREST_USD / 1_000_000,
            )
            return False
        return True
