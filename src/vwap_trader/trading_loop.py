"""Trading loop state machine: collect -> decide -> execute -> journal."""

from __future__ import annotations

import asyncio
import enum
import json
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog

from vwap_trader.errors import TradingDecisionError
from vwap_trader.models.decision import FullDecision, TradeAction, TradingContext
from vwap_trader.models.messages import DecisionMessage, StreamMessage, SystemAlertMessage, TradeOrderMessage
from vwap_trader.models.record import (
    AccountSnapshot,
    CycleRecord,
    ExecutedAction,
    MarketDataSnapshot,
    PositionSnapshot,
)

if TYPE_CHECKING:
    from vwap_trader.config import Settings
    from vwap_trader.decision_engine import DecisionEngine
    from vwap_trader.market_feed import MarketFeed
    from vwap_trader.models.decision import AccountInfo, PositionInfo
    from vwap_trader.models.performance import PerformanceAnalysis
    from vwap_trader.performance import PerformanceAnalyzer
    from vwap_trader.record_store import RecordStore
    from vwap_trader.redis_client import RedisClient

logger = structlog.get_logger()

ORDERS_STREAM = "trade:orders"
FILLS_STREAM = "trade:fills"
DECISIONS_STREAM = "ai:decisions"
ALERTS_STREAM = "system:alerts"


class LoopState(enum.Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    ANALYZING = "analyzing"
    EXECUTING = "executing"
    JOURNALING = "journaling"


def _account_snapshot(account: AccountInfo) -> AccountSnapshot:
    return AccountSnapshot(
        total_equity=account.total_equity,
        available_balance=account.available_balance,
        total_pnl_pct=account.total_pnl_pct,
        margin_used_pct=account.margin_used_pct,
        position_count=account.position_count,
    )


def _position_snapshot(pos: PositionInfo) -> PositionSnapshot:
    return PositionSnapshot(
        symbol=pos.symbol,
        side=pos.side,
        quantity=pos.quantity,
        entry_price=pos.entry_price,
        mark_price=pos.mark_price,
        unrealized_pnl=pos.unrealized_pnl,
        leverage=pos.leverage,
        liquidation_price=pos.liquidation_price,
    )


def _execution_order(actions: list[TradeAction]) -> list[TradeAction]:
    """Executable actions, closes before opens so margin is freed first."""
    closes = [a for a in actions if a.is_close]
    opens = [a for a in actions if a.is_open]
    return closes + opens


class TradingLoop:
    def __init__(
        self,
        settings: Settings,
        redis: RedisClient,
        feed: MarketFeed,
        engine: DecisionEngine,
        store: RecordStore,
        analyzer: PerformanceAnalyzer,
    ) -> None:
        self.settings = settings
        self.redis = redis
        self.feed = feed
        self.engine = engine
        self.store = store
        self.analyzer = analyzer
        self.state = LoopState.IDLE
        self.running = False
        self.cycle_number = 0
        self.started_at = time.monotonic()

    def _set_state(self, new_state: LoopState) -> None:
        old = self.state
        self.state = new_state
        logger.info("state_transition", old=old.value, new=new_state.value)

    async def start(self) -> None:
        self.running = True
        self.started_at = time.monotonic()
        logger.info("trading_loop_started", cycle_seconds=self.settings.DECISION_CYCLE_SECONDS)
        await self.main_loop()

    async def stop(self) -> None:
        self.running = False
        logger.info("trading_loop_stopped", cycles=self.cycle_number)

    async def main_loop(self) -> None:
        while self.running:
            try:
                await self.run_cycle()
            except Exception:
                logger.exception("cycle_error", cycle=self.cycle_number)
                self._set_state(LoopState.IDLE)
            if self.running:
                await asyncio.sleep(self.settings.DECISION_CYCLE_SECONDS)

    async def run_cycle(self) -> CycleRecord:
        """Run one full cycle and journal it. Decision failures are journaled, not raised."""
        self.cycle_number += 1
        now = datetime.now(timezone.utc)
        record = CycleRecord(timestamp=now, cycle_number=self.cycle_number)

        # --- 1. COLLECTING ---
        self._set_state(LoopState.COLLECTING)
        account, positions, candidates = await asyncio.gather(
            self.feed.get_account(),
            self.feed.get_positions(),
            self.feed.get_candidates(),
        )
        record.account_state = _account_snapshot(account)
        record.positions = [_position_snapshot(p) for p in positions]
        record.candidate_coins = [c.symbol for c in candidates]

        analysis = await self._analyze_performance()
        context = TradingContext(
            current_time=now.strftime("%Y-%m-%d %H:%M:%S"),
            runtime_minutes=int((time.monotonic() - self.started_at) // 60),
            call_count=self.cycle_number,
            account=account,
            positions=positions,
            candidate_coins=candidates,
            performance=analysis,
            trading_insights=self.analyzer.insights(analysis),
        )

        # --- 2. ANALYZING ---
        self._set_state(LoopState.ANALYZING)
        try:
            decision = await self.engine.get_full_decision(context)
        except TradingDecisionError as e:
            self._fill_decision(record, e.decision or FullDecision(), context)
            record.success = False
            record.error_message = str(e)
            logger.warning(
                "decision_failed",
                cycle=self.cycle_number,
                error=str(e),
                trace_chars=len(e.reasoning_trace),
            )
            await self.redis.publish(
                ALERTS_STREAM,
                SystemAlertMessage(payload={"reason": str(e), "severity": "WARNING", "cycle": self.cycle_number}),
            )
            await self._journal(record)
            return record

        self._fill_decision(record, decision, context)
        await self.redis.publish(DECISIONS_STREAM, DecisionMessage(payload=decision.model_dump(mode="json")))

        # --- 3. EXECUTING ---
        orders = _execution_order(decision.decisions)
        if orders:
            self._set_state(LoopState.EXECUTING)
            sent = []
            for action in orders:
                order_id = await self._send_order(action)
                sent.append((action, order_id))
                record.execution_log.append(f"sent {action.action} {action.symbol} ({order_id})")
            record.decisions = await self._collect_fills(sent)
            for executed in record.decisions:
                status = "ok" if executed.success else f"failed: {executed.error}"
                record.execution_log.append(f"{executed.action} {executed.symbol}: {status}")

        # --- 4. JOURNALING ---
        await self._journal(record)
        return record

    def _fill_decision(self, record: CycleRecord, decision: FullDecision, context: TradingContext) -> None:
        record.input_prompt = decision.user_prompt
        record.cot_trace = decision.cot_trace
        record.validation_trace = list(decision.validation_trace)
        record.decision_json = json.dumps([a.model_dump() for a in decision.decisions], indent=2)
        record.market_data = {
            symbol: MarketDataSnapshot(
                current_price=data.current_price,
                current_vwap=data.current_vwap,
                current_rsi7=data.current_rsi7,
                current_macd=data.current_macd,
            )
            for symbol, data in context.market_data.items()
        }

    async def _analyze_performance(self) -> PerformanceAnalysis | None:
        """Performance feedback is optional context; a failure here never blocks a cycle."""
        try:
            return await self.analyzer.analyze()
        except Exception:
            logger.exception("performance_analysis_error", cycle=self.cycle_number)
            return None

    async def _send_order(self, action: TradeAction) -> str:
        """Publish one order. Returns its message id, which the fill echoes as client_order_id."""
        order = TradeOrderMessage(
            payload={
                "cycle_number": self.cycle_number,
                "symbol": action.symbol,
                "action": action.action,
                "leverage": action.leverage,
                "position_size_usd": action.position_size_usd,
                "stop_loss": action.stop_loss,
                "take_profit": action.take_profit,
                "confidence": action.confidence,
                "reasoning": action.reasoning,
            },
        )
        order.payload["client_order_id"] = order.msg_id
        await self.redis.publish(ORDERS_STREAM, order)
        logger.info(
            "order_sent",
            cycle=self.cycle_number,
            symbol=action.symbol,
            action=action.action,
            client_order_id=order.msg_id,
        )
        return order.msg_id

    async def _collect_fills(self, sent: list[tuple[TradeAction, str]]) -> list[ExecutedAction]:
        """Wait up to FILL_WAIT_SECONDS for the fills of `sent` orders on trade:fills.

        Fills are matched on client_order_id only. Cycle numbers restart with
        the process while the stream persists, so they cannot identify a fill.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.FILL_WAIT_SECONDS
        wanted = {order_id for _action, order_id in sent}
        fills: dict[str, StreamMessage] = {}

        while True:
            for msg in await self.redis.read_recent(FILLS_STREAM, self.settings.FILL_READ_COUNT):
                order_id = msg.payload.get("client_order_id")
                if order_id in wanted:
                    fills.setdefault(order_id, msg)
            if len(fills) >= len(wanted) or loop.time() >= deadline:
                break
            await asyncio.sleep(self.settings.FILL_POLL_INTERVAL_SECONDS)

        executed = []
        for action, order_id in sent:
            msg = fills.get(order_id)
            if msg is None:
                logger.warning(
                    "fill_missing",
                    cycle=self.cycle_number,
                    symbol=action.symbol,
                    action=action.action,
                    client_order_id=order_id,
                )
                executed.append(
                    ExecutedAction(
                        action=action.action,
                        symbol=action.symbol,
                        leverage=action.leverage,
                        timestamp=datetime.now(timezone.utc),
                        success=False,
                        error="no fill received",
                    )
                )
                continue
            p = msg.payload
            executed.append(
                ExecutedAction(
                    action=action.action,
                    symbol=action.symbol,
                    quantity=p.get("quantity", 0.0),
                    leverage=p.get("leverage", action.leverage),
                    price=p.get("price", 0.0),
                    order_id=str(p.get("order_id", "")),
                    timestamp=msg.timestamp,
                    success=bool(p.get("success", False)),
                    error=p.get("error", ""),
                )
            )
        return executed

    async def _journal(self, record: CycleRecord) -> None:
        self._set_state(LoopState.JOURNALING)
        await self.store.append(record)
        self._set_state(LoopState.IDLE)
