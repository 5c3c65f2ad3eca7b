"""Error kinds raised by the decision pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from vwap_trader.models.decision import FullDecision


class MarketDataFetchError(Exception):
    """Market data for one symbol could not be fetched. Non-fatal for a cycle."""

    def __init__(self, symbol: str, reason: str) -> None:
        super().__init__(f"market data unavailable for {symbol}: {reason}")
        self.symbol = symbol
        self.reason = reason


class TradingDecisionError(Exception):
    """Cycle-level failure. Carries whatever decision was recovered so far."""

    def __init__(self, message: str, decision: FullDecision | None = None) -> None:
        super().__init__(message)
        self.decision = decision

    @property
    def reasoning_trace(self) -> str:
        if self.decision is None:
            return ""
        return self.decision.cot_trace


class ModelCallError(TradingDecisionError):
    """A model call failed (timeout, transport or API error, empty reply)."""


class ResponseParseError(TradingDecisionError):
    """The model reply held no parseable JSON array of actions."""

    def __init__(
        self,
        message: str,
        fragment: str = "",
        cause: Exception | None = None,
        decision: FullDecision | None = None,
    ) -> None:
        super().__init__(message, decision=decision)
        self.fragment = fragment
        self.cause = cause


class DecisionValidationError(TradingDecisionError):
    """The first invalid action of a batch, by zero-based position."""

    def __init__(
        self,
        index: int,
        action: str,
        reason: str,
        decision: FullDecision | None = None,
    ) -> None:
        super().__init__(f"action #{index + 1} ({action}) failed validation: {reason}", decision=decision)
        self.index = index
        self.action = action
        self.reason = reason
