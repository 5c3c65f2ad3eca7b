"""Normalization + hard validation of model-proposed trade actions."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel

from vwap_trader.errors import DecisionValidationError
from vwap_trader.models.decision import VALID_ACTIONS, PositionInfo, TradeAction

if TYPE_CHECKING:
    from vwap_trader.config import Settings

logger = structlog.get_logger()

UNRESOLVED_CLOSE = "unresolved_close"


class RiskLimits(BaseModel):
    major_symbols: list[str] = ["BTCUSDT", "ETHUSDT"]
    major_max_leverage: int = 20
    altcoin_max_leverage: int = 5
    major_size_multiplier: float = 10.0
    altcoin_size_multiplier: float = 1.5
    major_min_size_multiplier: float = 5.0
    altcoin_min_size_multiplier: float = 0.8
    min_risk_reward: float = 3.0
    max_positions: int = 3
    assumed_entry_offset: float = 0.2
    size_tolerance: float = 0.01

    @classmethod
    def from_settings(cls, settings: Settings) -> RiskLimits:
        return cls(
            major_symbols=list(settings.MAJOR_SYMBOLS),
            major_max_leverage=settings.MAJOR_MAX_LEVERAGE,
            altcoin_max_leverage=settings.ALTCOIN_MAX_LEVERAGE,
            major_size_multiplier=settings.MAJOR_SIZE_MULTIPLIER,
            altcoin_size_multiplier=settings.ALTCOIN_SIZE_MULTIPLIER,
            major_min_size_multiplier=settings.MAJOR_MIN_SIZE_MULTIPLIER,
            altcoin_min_size_multiplier=settings.ALTCOIN_MIN_SIZE_MULTIPLIER,
            min_risk_reward=settings.MIN_RISK_REWARD_RATIO,
            max_positions=settings.MAX_OPEN_POSITIONS,
            assumed_entry_offset=settings.ASSUMED_ENTRY_OFFSET,
            size_tolerance=settings.POSITION_SIZE_TOLERANCE,
        )

    def is_major(self, symbol: str) -> bool:
        return symbol in self.major_symbols

    def max_leverage(self, symbol: str) -> int:
        return self.major_max_leverage if self.is_major(symbol) else self.altcoin_max_leverage

    def max_position_value(self, symbol: str, equity: float) -> float:
        multiplier = self.major_size_multiplier if self.is_major(symbol) else self.altcoin_size_multiplier
        return equity * multiplier


class ValidationCheck(BaseModel):
    passed: bool
    rule: str
    reason: str


def normalize_actions(actions: list[TradeAction], positions: list[PositionInfo]) -> None:
    """Rewrite loose action names in place.

    hold_long/hold_short become hold. A bare close resolves to close_<side>
    of the open position on that symbol, or to UNRESOLVED_CLOSE when there is
    none, so validation rejects it instead of it being dropped.
    """
    position_sides = {p.symbol: p.side for p in positions}

    for action in actions:
        if action.action in ("hold_long", "hold_short"):
            action.action = "hold"

        if action.action == "close":
            side = position_sides.get(action.symbol)
            if side in ("long", "short"):
                action.action = f"close_{side}"
            else:
                logger.warning("close_without_position", symbol=action.symbol)
                action.action = UNRESOLVED_CLOSE


def assumed_entry_price(action: TradeAction, offset: float) -> float:
    """Entry placed `offset` of the stop-to-target distance away from the stop."""
    if action.action == "open_long":
        return action.stop_loss + (action.take_profit - action.stop_loss) * offset
    return action.stop_loss - (action.stop_loss - action.take_profit) * offset


class DecisionValidator:
    """
    Fail-fast checks for open actions, in order:
    | Rule           | Constraint                                          |
    |----------------|-----------------------------------------------------|
    | action         | one of the six recognized actions                   |
    | leverage       | 1 <= leverage <= ceiling for the instrument class   |
    | position_size  | > 0                                                 |
    | position_limit | <= equity x class multiplier (+ tolerance band)     |
    | sl_tp_present  | stop loss and take profit both > 0                  |
    | sl_tp_order    | long: SL < TP, short: SL > TP                       |
    | rr_ratio       | reward:risk from live or assumed entry >= minimum   |
    Close, hold and wait only go through the action check.

    With a live quote the entry is the quote itself, which is stricter than
    the offset rule: SL 68000 / TP 72000 passes at the assumed entry (4:1)
    but fails with BTC at 69500 (2500 / 1500 = 1.67). Without a quote the
    offset rule always gives (1 - offset) / offset.
    """

    def __init__(self, limits: RiskLimits) -> None:
        self.limits = limits

    def validate(
        self,
        actions: list[TradeAction],
        equity: float,
        reference_prices: dict[str, float] | None = None,
    ) -> list[TradeAction]:
        """Validate every action. Raises DecisionValidationError on the first failure.

        reference_prices maps symbol -> live quote; when a quote is known it is
        used as the entry for the R:R check instead of the assumed entry.
        """
        prices = reference_prices or {}
        for index, action in enumerate(actions):
            check = self.check(action, equity, prices.get(action.symbol))
            if not check.passed:
                logger.warning(
                    "decision_validation_failed",
                    index=index,
                    symbol=action.symbol,
                    action=action.action,
                    rule=check.rule,
                )
                raise DecisionValidationError(index, action.action, check.reason)
        return actions

    def check(
        self,
        action: TradeAction,
        equity: float,
        reference_price: float | None = None,
    ) -> ValidationCheck:
        """Return the first failed check for one action, or a passing check."""
        check = self._check_action(action)
        if not check.passed or not action.is_open:
            return check

        for rule in (
            self._check_leverage,
            self._check_position_size,
            self._check_position_limit,
            self._check_sl_tp_present,
            self._check_sl_tp_order,
        ):
            check = rule(action, equity)
            if not check.passed:
                return check
        return self._check_rr_ratio(action, reference_price)

    def _check_action(self, action: TradeAction) -> ValidationCheck:
        if action.action not in VALID_ACTIONS:
            return ValidationCheck(passed=False, rule="action", reason=f"Invalid action '{action.action}'")
        return ValidationCheck(passed=True, rule="action", reason="OK")

    def _check_leverage(self, action: TradeAction, equity: float) -> ValidationCheck:
        ceiling = self.limits.max_leverage(action.symbol)
        if action.leverage <= 0 or action.leverage > ceiling:
            return ValidationCheck(
                passed=False,
                rule="leverage",
                reason=f"Leverage for {action.symbol} must be within 1-{ceiling}x, got {action.leverage}",
            )
        return ValidationCheck(passed=True, rule="leverage", reason="OK")

    def _check_position_size(self, action: TradeAction, equity: float) -> ValidationCheck:
        if action.position_size_usd <= 0:
            return ValidationCheck(
                passed=False,
                rule="position_size",
                reason=f"Position size must be > 0, got {action.position_size_usd:.2f}",
            )
        return ValidationCheck(passed=True, rule="position_size", reason="OK")

    def _check_position_limit(self, action: TradeAction, equity: float) -> ValidationCheck:
        max_value = self.limits.max_position_value(action.symbol, equity)
        tolerance = max_value * self.limits.size_tolerance
        if action.position_size_usd > max_value + tolerance:
            return ValidationCheck(
                passed=False,
                rule="position_limit",
                reason=f"Position value for {action.symbol} exceeds {max_value:.0f} USD, got {action.position_size_usd:.0f}",
            )
        return ValidationCheck(passed=True, rule="position_limit", reason="OK")

    def _check_sl_tp_present(self, action: TradeAction, equity: float) -> ValidationCheck:
        if action.stop_loss <= 0 or action.take_profit <= 0:
            return ValidationCheck(
                passed=False,
                rule="sl_tp_present",
                reason="Stop loss and take profit must both be > 0",
            )
        return ValidationCheck(passed=True, rule="sl_tp_present", reason="OK")

    def _check_sl_tp_order(self, action: TradeAction, equity: float) -> ValidationCheck:
        if action.action == "open_long" and action.stop_loss >= action.take_profit:
            return ValidationCheck(
                passed=False,
                rule="sl_tp_order",
                reason=f"Long stop loss ({action.stop_loss}) must be below take profit ({action.take_profit})",
            )
        if action.action == "open_short" and action.stop_loss <= action.take_profit:
            return ValidationCheck(
                passed=False,
                rule="sl_tp_order",
                reason=f"Short stop loss ({action.stop_loss}) must be above take profit ({action.take_profit})",
            )
        return ValidationCheck(passed=True, rule="sl_tp_order", reason="OK")

    def _check_rr_ratio(self, action: TradeAction, reference_price: float | None) -> ValidationCheck:
        if reference_price and reference_price > 0:
            entry = reference_price
        else:
            entry = assumed_entry_price(action, self.limits.assumed_entry_offset)
        if action.action == "open_long":
            risk_pct = (entry - action.stop_loss) / entry * 100
            reward_pct = (action.take_profit - entry) / entry * 100
        else:
            risk_pct = (action.stop_loss - entry) / entry * 100
            reward_pct = (entry - action.take_profit) / entry * 100

        rr = reward_pct / risk_pct if risk_pct > 0 else 0.0
        if rr < self.limits.min_risk_reward:
            return ValidationCheck(
                passed=False,
                rule="rr_ratio",
                reason=(
                    f"R:R {rr:.2f} < min {self.limits.min_risk_reward} "
                    f"[risk {risk_pct:.2f}% reward {reward_pct:.2f}%] "
                    f"[SL {action.stop_loss} TP {action.take_profit}]"
                ),
            )
        return ValidationCheck(passed=True, rule="rr_ratio", reason=f"R:R {rr:.2f}")
