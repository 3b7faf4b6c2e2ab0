"""Trading engine: runs pluggable evaluators against a live market under shared risk limits."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from types import ModuleType

from pydantic import ValidationError

from launch_agent.config.schema import TradingConfig
from launch_agent.execution.executor import ActionExecutor
from launch_agent.execution.ports import ChainSender
from launch_agent.ingest.market_observer import MarketObserver
from launch_agent.models.common import USDC_BASE, USDC_DECIMALS, format_amount
from launch_agent.models.events import EventKind, append_event
from launch_agent.models.risk import BlockReason
from launch_agent.models.trading import (
    InFlightTrade,
    MeanReversionParams,
    RiskLimits,
    ScheduledBuyParams,
    Signal,
    StrategyParams,
    TimeSlicedParams,
    Trade,
    TradeSide,
    TradingStatus,
    TradingStrategy,
)
from launch_agent.models.units import from_base_units, to_base_units
from launch_agent.pipeline.tick_loop import TickLoop
from launch_agent.reporting.notifier import Notifier, NullNotifier
from launch_agent.risk.checks.max_drawdown import drawdown_percent
from launch_agent.risk.engine import RiskEngine
from launch_agent.signal.indicators import MarketIndicators
from launch_agent.storage.snapshot_store import SnapshotStore
from launch_agent.trading.evaluators import mean_reversion, scheduled_buy, time_sliced

logger = logging.getLogger(__name__)

SECTION = "Trading Strategies"

MEAN_REVERSION_STOP_LOSS = 25.0


def evaluator_for(params: StrategyParams) -> ModuleType:
    match params:
        case ScheduledBuyParams():
            return scheduled_buy
        case TimeSlicedParams():
            return time_sliced
        case MeanReversionParams():
            return mean_reversion
    raise TypeError(f"No evaluator for {type(params).__name__}")


@dataclass
class LiquidationReport:
    cancelled: int = 0
    sold: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class TradingEngine:
    def __init__(
        self,
        config: TradingConfig,
        observer: MarketObserver,
        chain: ChainSender,
        executor: ActionExecutor,
        store: SnapshotStore,
        notifier: Notifier | None = None,
        risk: RiskEngine | None = None,
        usdc: str = USDC_BASE,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.observer = observer
        self.chain = chain
        self.executor = executor
        self.store = store
        self.notifier = notifier or NullNotifier()
        self.risk = risk or RiskEngine()
        self.usdc = usdc
        self.clock = clock
        self.strategies: dict[str, TradingStrategy] = {}
        self._next_num = 1
        self._tracked: set[str] = set()
        self._loops: dict[str, TickLoop] = {}
        self._started = False
        store.register(SECTION, self.collect)

    # --- lifecycle ---

    def start(self) -> None:
        self._started = True
        for sid, strategy in self.strategies.items():
            if strategy.is_active:
                self._arm(sid)

    async def stop(self) -> None:
        for loop in self._loops.values():
            loop.stop()
        for loop in list(self._loops.values()):
            await loop.join()
        self._loops.clear()
        self._started = False

    def _arm(self, sid: str) -> None:
        strategy = self.strategies[sid]
        if sid not in self._tracked:
            self.observer.start_tracking(strategy.token_address, strategy.token_decimals)
            self._tracked.add(sid)
        if not self._started:
            return
        loop = self._loops.get(sid)
        if loop is not None and loop.running:
            return
        loop = TickLoop(
            f"trading:{sid}",
            lambda: self.tick(sid),
            self.config.poll_interval_seconds,
            on_error=lambda e: self._crashed(sid, e),
        )
        self._loops[sid] = loop
        loop.start()

    def _release(self, sid: str) -> None:
        loop = self._loops.pop(sid, None)
        if loop is not None:
            loop.stop()
        if sid in self._tracked:
            self._tracked.discard(sid)
            strategy = self.strategies.get(sid)
            if strategy is not None:
                self.observer.stop_tracking(strategy.token_address)

    # --- creation ---

    def next_id(self) -> str:
        sid = f"{self._next_num:03d}"
        self._next_num += 1
        return sid

    def create(
        self,
        token_address: str,
        params: StrategyParams,
        token_symbol: str = "",
        token_decimals: int = 18,
        label: str | None = None,
        risk_limits: RiskLimits | None = None,
    ) -> TradingStrategy:
        if label is not None and self.find_by_label(label) is not None:
            raise ValueError(f"A trading strategy labelled {label!r} already exists")
        if risk_limits is None:
            risk_limits = self.config.default_risk_limits.model_copy()
            if isinstance(params, MeanReversionParams):
                risk_limits.stop_loss_percent = MEAN_REVERSION_STOP_LOSS
        strategy = TradingStrategy(
            id=self.next_id(),
            label=label,
            token_address=token_address,
            token_symbol=token_symbol,
            token_decimals=token_decimals,
            risk_limits=risk_limits,
            params=params,
        )
        self.strategies[strategy.id] = strategy
        self._log(strategy, f"{strategy.kind} started: {describe_params(params)}")
        self.store.mark_dirty()
        self._arm(strategy.id)
        return strategy

    def start_scheduled_buy(
        self,
        token_address: str,
        amount_per_buy: float,
        interval_seconds: float,
        total_budget: float = 0.0,
        **kwargs,
    ) -> TradingStrategy:
        params = ScheduledBuyParams(
            amount_per_buy=amount_per_buy,
            interval_seconds=interval_seconds,
            total_budget=total_budget,
        )
        return self.create(token_address, params, **kwargs)

    def start_time_sliced(
        self,
        token_address: str,
        total_amount: float,
        duration_seconds: float,
        slices: int,
        **kwargs,
    ) -> TradingStrategy:
        params = TimeSlicedParams(
            total_amount=total_amount,
            duration_seconds=duration_seconds,
            slices=slices,
            start_time=self.clock(),
        )
        return self.create(token_address, params, **kwargs)

    def start_mean_reversion(
        self,
        token_address: str,
        amount_per_trade: float,
        ema_period_minutes: float,
        buy_threshold_pct: float,
        sell_threshold_pct: float,
        cooldown_seconds: float = 300.0,
        **kwargs,
    ) -> TradingStrategy:
        params = MeanReversionParams(
            amount_per_trade=amount_per_trade,
            ema_period_minutes=ema_period_minutes,
            buy_threshold_pct=buy_threshold_pct,
            sell_threshold_pct=sell_threshold_pct,
            cooldown_seconds=cooldown_seconds,
        )
        return self.create(token_address, params, **kwargs)

    # --- queries and commands ---

    def get(self, sid: str) -> TradingStrategy | None:
        return self.strategies.get(sid)

    def find_by_label(self, label: str) -> TradingStrategy | None:
        for strategy in self.strategies.values():
            if strategy.label == label:
                return strategy
        return None

    def list_strategies(self) -> list[TradingStrategy]:
        return list(self.strategies.values())

    def pause(self, sid: str) -> bool:
        strategy = self.strategies.get(sid)
        if strategy is None or strategy.status != TradingStatus.RUNNING:
            return False
        strategy.status = TradingStatus.PAUSED
        self._log(strategy, "Strategy paused")
        self.store.mark_dirty()
        return True

    def resume(self, sid: str) -> bool:
        strategy = self.strategies.get(sid)
        if strategy is None or strategy.status != TradingStatus.PAUSED:
            return False
        strategy.status = TradingStatus.RUNNING
        self._log(strategy, "Strategy resumed")
        self.store.mark_dirty()
        return True

    def cancel(self, sid: str) -> bool:
        strategy = self.strategies.get(sid)
        if strategy is None or not strategy.is_active:
            return False
        strategy.status = TradingStatus.DONE
        self._log(strategy, "Strategy cancelled")
        self._release(sid)
        self.store.mark_dirty()
        return True

    def remove(self, sid: str) -> bool:
        """Delete a finished strategy. Live strategies must be cancelled first."""
        strategy = self.strategies.get(sid)
        if strategy is None or strategy.is_active:
            return False
        self._release(sid)
        del self.strategies[sid]
        self.store.mark_dirty()
        return True

    async def sell_position(self, sid: str, pct: float) -> str:
        """Manually sell ``pct`` percent of a strategy's holdings. Raises ValueError."""
        strategy = self.strategies.get(sid)
        if strategy is None:
            raise ValueError(f"Strategy {sid} not found")
        if strategy.position.token_balance <= 0:
            raise ValueError("No position to sell")
        if pct <= 0 or pct > 100:
            raise ValueError("Percentage must be in (0, 100]")
        amount = strategy.position.token_balance * (pct / 100)
        price = self.observer.latest(strategy.token_address) or strategy.position.avg_entry_price
        reason = "manual sell (all)" if pct == 100 else f"manual sell ({pct:g}%)"
        usdc = await self._sell(strategy, amount, price, reason)
        if usdc is None:
            raise ValueError(f"Sell failed for strategy {sid}")
        if pct == 100 and strategy.is_active:
            strategy.status = TradingStatus.DONE
            self._log(strategy, "Strategy stopped after full sell")
            self._release(sid)
        self.store.mark_dirty()
        return f"{format_amount(amount)} {strategy.token_symbol} ({pct:g}%) for ${usdc:.2f}"

    async def liquidate_all(self) -> LiquidationReport:
        """Cancel every live strategy and sell all holdings, one swap per token."""
        report = LiquidationReport()
        for sid, strategy in self.strategies.items():
            if strategy.is_active:
                strategy.status = TradingStatus.DONE
                self._log(strategy, "Strategy cancelled (liquidate all)")
                self._release(sid)
                report.cancelled += 1
        if not await self.store.flush():
            logger.error("Could not persist cancellations, liquidation aborted")
            report.errors.append("could not persist state, nothing sold")
            return report

        holdings: dict[str, list[TradingStrategy]] = {}
        for strategy in self.strategies.values():
            if strategy.position.token_balance > 0:
                holdings.setdefault(strategy.token_address.lower(), []).append(strategy)

        for token, holders in holdings.items():
            symbol = holders[0].token_symbol or token[:10]
            decimals = holders[0].token_decimals
            total = sum(s.position.token_balance for s in holders)
            amount_in = to_base_units(total, decimals)
            result = await self.executor.swap(token, self.usdc, amount_in)
            if not result.confirmed:
                report.errors.append(f"{symbol}: {result.error_message}")
                continue
            usdc = from_base_units(result.amount_out, USDC_DECIMALS)
            price = usdc / total
            for strategy in holders:
                share = strategy.position.token_balance / total
                self._record_sell(
                    strategy,
                    strategy.position.token_balance,
                    usdc * share,
                    result.tx_hash,
                    result.gas_cost_eth * share,
                    "liquidate all",
                )
            report.sold.append(f"{format_amount(total)} {symbol} -> ${usdc:.2f}")
            self.notifier.post(f"*Liquidated* {format_amount(total)} {symbol} -> ${usdc:.2f} USDC @ ${price:.6f}")
        self.store.mark_dirty()
        return report

    # --- persistence ---

    def collect(self) -> list[dict]:
        return [s.model_dump(mode="json") for s in self.strategies.values()]

    def restore(self, data: list[dict]) -> int:
        restored = 0
        for item in data or []:
            try:
                strategy = TradingStrategy.model_validate(item)
            except ValidationError as e:
                logger.error("Skipping unreadable trading strategy: %s", e)
                continue
            self.strategies[strategy.id] = strategy
            restored += 1
            if strategy.id.isdigit():
                self._next_num = max(self._next_num, int(strategy.id) + 1)
            if strategy.is_active:
                self._log(strategy, f"Restored {strategy.kind} strategy ({strategy.status})")
                self._arm(strategy.id)
        return restored

    # --- tick ---

    async def tick(self, sid: str) -> bool:
        strategy = self.strategies.get(sid)
        if strategy is None or not strategy.is_active:
            self._release(sid)
            return False

        if strategy.in_flight is not None:
            self._reconcile(strategy)
        if strategy.status == TradingStatus.PAUSED:
            return True

        price = self.observer.latest(strategy.token_address)
        if price is None:
            return True
        now = self.clock()
        strategy.price_history = self.observer.history(strategy.token_address)[-self.config.max_history_points :]
        self._refresh_pnl(strategy, price)

        evaluator = evaluator_for(strategy.params)
        if evaluator.is_complete(strategy.params):
            self._complete(strategy)
            return False

        verdict = self.risk.evaluate(strategy.position, price, strategy.risk_limits)
        if stop := verdict.blocked_by(BlockReason.STOP_LOSS):
            self._log(strategy, f"STOP-LOSS triggered: {stop.detail}", EventKind.TRADE)
            usdc = await self._sell(strategy, strategy.position.token_balance, price, "stop-loss")
            if usdc is not None and strategy.is_active:
                strategy.status = TradingStatus.DONE
                self._log(strategy, "Strategy stopped by stop-loss")
                self._release(sid)
            self.store.mark_dirty()
            return strategy.is_active
        if dd := verdict.blocked_by(BlockReason.MAX_DRAWDOWN):
            strategy.status = TradingStatus.PAUSED
            self._log(strategy, f"MAX DRAWDOWN hit: {dd.detail}", EventKind.TRADE)
            self.notifier.post(f"*Paused* trading {strategy.id} ({strategy.token_symbol}): {dd.detail}")
            self.store.mark_dirty()
            return True

        indicators = MarketIndicators(price=price, history=strategy.price_history, now=now)
        signal = evaluator.evaluate(strategy, indicators)
        if signal is None:
            self.store.mark_dirty()
            return True
        buy_allowed = verdict.blocked_by(BlockReason.MAX_POSITION) is None
        await self._act(strategy, signal, price, evaluator.apply_fill(strategy.params, now), buy_allowed)
        if evaluator.is_complete(strategy.params):
            self._complete(strategy)
        self.store.mark_dirty()
        return strategy.is_active

    async def _act(
        self,
        strategy: TradingStrategy,
        signal: Signal,
        price: float,
        params_after: StrategyParams,
        buy_allowed: bool,
    ) -> None:
        amount = min(signal.amount_usdc, self.config.max_single_trade_usdc)
        if signal.side == TradeSide.BUY:
            if not buy_allowed:
                logger.debug("[trading:%s] buy skipped, position at max", strategy.id)
                return
            await self._buy(strategy, amount, params_after)
            return
        tokens = min(amount / price, strategy.position.token_balance)
        if tokens > 0:
            await self._sell(strategy, tokens, price, "signal", params_after)

    def _complete(self, strategy: TradingStrategy) -> None:
        strategy.status = TradingStatus.DONE
        self._log(strategy, f"{strategy.kind} complete")
        self._release(strategy.id)
        self.store.mark_dirty()

    # --- trade execution ---

    async def _mark_in_flight(
        self, strategy: TradingStrategy, side: TradeSide, amount_usdc: float, params_after: StrategyParams | None
    ) -> bool:
        strategy.in_flight = InFlightTrade(
            side=side,
            amount_usdc=amount_usdc,
            started_at=self.clock(),
            params_after=params_after if params_after is not None else strategy.params,
        )
        if await self.store.flush():
            return True
        strategy.in_flight = None
        self._log(strategy, "Could not persist trade marker, skipping this tick", EventKind.ERROR)
        return False

    async def _buy(self, strategy: TradingStrategy, amount_usdc: float, params_after: StrategyParams) -> bool:
        available = from_base_units(await self.chain.token_balance(self.usdc, self.chain.address), USDC_DECIMALS)
        if available < amount_usdc:
            self._log(
                strategy,
                f"Insufficient USDC: need ${amount_usdc:.2f}, have ${available:.2f}",
                EventKind.ERROR,
            )
            return False
        if not await self._mark_in_flight(strategy, TradeSide.BUY, amount_usdc, params_after):
            return False
        self._log(strategy, f"BUY ${amount_usdc:.2f} USDC -> {strategy.token_symbol}", EventKind.TRADE)
        result = await self.executor.swap(self.usdc, strategy.token_address, to_base_units(amount_usdc, USDC_DECIMALS))
        strategy.in_flight = None
        if not result.confirmed:
            self._log(strategy, f"BUY FAILED: {result.error_message}", EventKind.ERROR)
            return False

        received = from_base_units(result.amount_out, strategy.token_decimals)
        if received <= 0:
            self._log(strategy, "BUY returned no tokens", EventKind.ERROR)
            return False
        effective = amount_usdc / received
        pos = strategy.position
        new_balance = pos.token_balance + received
        pos.avg_entry_price = (pos.avg_entry_price * pos.token_balance + effective * received) / new_balance
        pos.token_balance = new_balance
        pos.total_invested += amount_usdc
        strategy.total_gas_cost_eth += result.gas_cost_eth
        strategy.trades.append(
            Trade(
                timestamp=self.clock(),
                side=TradeSide.BUY,
                amount_usdc=amount_usdc,
                amount_token=received,
                price=effective,
                tx_hash=result.tx_hash,
                gas_cost_eth=result.gas_cost_eth,
            )
        )
        strategy.params = params_after
        self._refresh_pnl(strategy, effective)
        self._log(
            strategy,
            f"BUY OK: {format_amount(received)} {strategy.token_symbol} @ ${effective:.6f} [{result.tx_hash[:10]}]",
            EventKind.TRADE,
        )
        self.notifier.post(
            f"*{strategy.kind} BUY* ${amount_usdc:.2f} -> {format_amount(received)} {strategy.token_symbol}"
            f" @ ${effective:.6f}\nPosition: {format_amount(pos.token_balance)} | avg ${pos.avg_entry_price:.6f}"
        )
        return True

    async def _sell(
        self,
        strategy: TradingStrategy,
        tokens: float,
        price: float,
        reason: str,
        params_after: StrategyParams | None = None,
    ) -> float | None:
        """Sell ``tokens``; returns USDC received, or None if nothing was sold."""
        tokens = min(tokens, strategy.position.token_balance)
        amount_in = to_base_units(tokens, strategy.token_decimals)
        if amount_in <= 0:
            return None
        if not await self._mark_in_flight(strategy, TradeSide.SELL, tokens * price, params_after):
            return None
        self._log(strategy, f"SELL {format_amount(tokens)} {strategy.token_symbol} ({reason})", EventKind.TRADE)
        result = await self.executor.swap(strategy.token_address, self.usdc, amount_in)
        strategy.in_flight = None
        if not result.confirmed:
            self._log(strategy, f"SELL FAILED: {result.error_message}", EventKind.ERROR)
            return None
        usdc = from_base_units(result.amount_out, USDC_DECIMALS)
        self._record_sell(strategy, tokens, usdc, result.tx_hash, result.gas_cost_eth, reason)
        if params_after is not None:
            strategy.params = params_after
        self._refresh_pnl(strategy, price)
        return usdc

    def _record_sell(
        self,
        strategy: TradingStrategy,
        tokens: float,
        usdc: float,
        tx_hash: str,
        gas_cost_eth: float,
        reason: str,
    ) -> None:
        pos = strategy.position
        pos.token_balance = max(0.0, pos.token_balance - tokens)
        pos.total_realized += usdc
        strategy.pnl.realized += usdc - tokens * pos.avg_entry_price
        strategy.total_gas_cost_eth += gas_cost_eth
        effective = usdc / tokens if tokens > 0 else 0.0
        strategy.trades.append(
            Trade(
                timestamp=self.clock(),
                side=TradeSide.SELL,
                amount_usdc=usdc,
                amount_token=tokens,
                price=effective,
                tx_hash=tx_hash,
                gas_cost_eth=gas_cost_eth,
                reason=reason,
            )
        )
        self._log(
            strategy,
            f"SELL OK: {format_amount(tokens)} {strategy.token_symbol} -> ${usdc:.2f} @ ${effective:.6f} ({reason})",
            EventKind.TRADE,
        )
        self.notifier.post(
            f"*{strategy.kind} SELL* {format_amount(tokens)} {strategy.token_symbol} -> ${usdc:.2f} ({reason})"
        )

    def _reconcile(self, strategy: TradingStrategy) -> None:
        """A trade was in flight at shutdown: assume it may have executed, never replay it."""
        marker = strategy.in_flight
        assert marker is not None
        strategy.params = marker.params_after
        strategy.in_flight = None
        self._log(
            strategy,
            f"Interrupted {marker.side} of ${marker.amount_usdc:.2f} may have executed; "
            "position may be stale, check the wallet",
            EventKind.ERROR,
        )
        self.store.mark_dirty()

    # --- helpers ---

    def _refresh_pnl(self, strategy: TradingStrategy, price: float) -> None:
        pos = strategy.position
        strategy.pnl.unrealized = pos.token_balance * (price - pos.avg_entry_price)

    def _crashed(self, sid: str, error: BaseException) -> None:
        strategy = self.strategies.get(sid)
        if strategy is None or not strategy.is_active:
            return
        strategy.status = TradingStatus.FAILED
        self._log(strategy, f"Strategy failed: {error}", EventKind.ERROR)
        self._release(sid)
        self.store.mark_dirty()

    def _log(self, strategy: TradingStrategy, message: str, kind: EventKind = EventKind.INFO) -> None:
        append_event(strategy.log, message, kind, self.config.log_limit, logger, f"trading:{strategy.id}")


def describe_params(params: StrategyParams) -> str:
    match params:
        case ScheduledBuyParams():
            budget = f" | budget ${params.total_budget:g}" if params.total_budget else " | no budget limit"
            return f"${params.amount_per_buy:g} every {params.interval_seconds / 60:g}m{budget}"
        case TimeSlicedParams():
            return (
                f"${params.total_amount:g} over {params.duration_seconds / 3600:g}h in {params.slices} slices"
                f" (${params.slice_size:.2f} each)"
            )
        case MeanReversionParams():
            return (
                f"${params.amount_per_trade:g}/trade, {params.ema_period_minutes:g}min EMA, "
                f"buy at -{params.buy_threshold_pct:g}%, sell at +{params.sell_threshold_pct:g}%"
            )
    return ""


def drawdown_of(strategy: TradingStrategy, price: float) -> float:
    pos = strategy.position
    return drawdown_percent(pos.total_invested, pos.total_realized, pos.value(price))
