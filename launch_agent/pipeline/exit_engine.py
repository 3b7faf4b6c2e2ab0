"""Exit strategy engine: tranche- and stop-loss-driven liquidation of a graduated position."""

import logging
import time
from collections.abc import Callable
from decimal import Decimal

from pydantic import ValidationError

from launch_agent.config.defaults import resolve_tranches
from launch_agent.config.schema import ExitConfig
from launch_agent.errors import ProviderError
from launch_agent.execution.executor import ActionExecutor
from launch_agent.execution.ports import ChainSender, SwapProvider
from launch_agent.models.common import USDC_BASE, USDC_DECIMALS, format_amount, short_address
from launch_agent.models.events import EventKind, append_event
from launch_agent.models.execution import SwapResult
from launch_agent.models.exit import ExitStatus, ExitStrategy, InFlightSell, TrancheStatus
from launch_agent.models.units import format_base_units, from_base_units
from launch_agent.pipeline.tick_loop import TickLoop
from launch_agent.reporting.notifier import Notifier, NullNotifier
from launch_agent.signal.valuation import token_valuation
from launch_agent.storage.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)

SECTION = "Exit Strategies"


def tranche_amount(balance: int, pct: float) -> int:
    """``pct`` percent of a base-unit balance, rounded down, without float loss."""
    return int(Decimal(balance) * Decimal(str(pct)) / Decimal(100))


class ExitEngine:
    def __init__(
        self,
        config: ExitConfig,
        chain: ChainSender,
        swaps: SwapProvider,
        executor: ActionExecutor,
        store: SnapshotStore,
        notifier: Notifier | None = None,
        usdc: str = USDC_BASE,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.chain = chain
        self.swaps = swaps
        self.executor = executor
        self.store = store
        self.notifier = notifier or NullNotifier()
        self.usdc = usdc
        self.clock = clock
        self.strategies: dict[str, ExitStrategy] = {}
        self._loops: dict[str, TickLoop] = {}
        self._started = False
        store.register(SECTION, self.collect)

    def start(self) -> None:
        self._started = True
        for key, strategy in self.strategies.items():
            if strategy.is_active:
                self._arm(key)

    async def stop(self) -> None:
        for loop in self._loops.values():
            loop.stop()
        for loop in list(self._loops.values()):
            await loop.join()
        self._loops.clear()
        self._started = False

    def _arm(self, key: str) -> None:
        if not self._started:
            return
        loop = self._loops.get(key)
        if loop is not None and loop.running:
            return
        loop = TickLoop(
            f"exit:{key[:10]}",
            lambda: self.tick(key),
            self.config.poll_interval_seconds,
            on_error=lambda e: self._crashed(key, e),
        )
        self._loops[key] = loop
        loop.start()

    def start_strategy(
        self,
        auction_address: str,
        token_address: str,
        total_supply: int,
        entry_valuation: float,
        balance: int,
        profile_or_custom: str | None = None,
        stop_loss_multiple: float | None = None,
        token_decimals: int = 18,
        token_symbol: str = "",
    ) -> ExitStrategy:
        """Start liquidating ``balance``. Raises ValueError on bad input or a duplicate."""
        key = auction_address.lower()
        existing = self.strategies.get(key)
        if existing is not None and existing.is_active:
            raise ValueError(f"An exit strategy is already running for {auction_address}")
        if entry_valuation <= 0:
            raise ValueError("entry_valuation must be positive")
        if balance <= 0:
            raise ValueError("No token balance to exit")
        if stop_loss_multiple is not None and stop_loss_multiple <= 0:
            raise ValueError("stop_loss_multiple must be positive")
        name, tranches = resolve_tranches(profile_or_custom or self.config.default_profile)

        strategy = ExitStrategy(
            auction_address=auction_address,
            token_address=token_address,
            token_symbol=token_symbol,
            token_decimals=token_decimals,
            total_supply=total_supply,
            entry_valuation=entry_valuation,
            initial_balance=balance,
            current_balance=balance,
            profile_name=name,
            tranches=tranches,
            stop_loss_multiple=stop_loss_multiple,
        )
        self.strategies[key] = strategy
        desc = ", ".join(t.label for t in tranches)
        self._log(strategy, f"Exit strategy started: {name} [{desc}]")
        self._log(
            strategy,
            f"Entry valuation: ${format_amount(entry_valuation)} | Balance: "
            f"{format_base_units(balance, token_decimals)} tokens",
        )
        self.store.mark_dirty()
        self._arm(key)
        return strategy

    def get(self, auction_address: str) -> ExitStrategy | None:
        return self.strategies.get(auction_address.lower())

    def list_strategies(self) -> list[ExitStrategy]:
        return list(self.strategies.values())

    def cancel(self, auction_address: str) -> bool:
        key = auction_address.lower()
        strategy = self.strategies.get(key)
        if strategy is None or not strategy.is_active:
            return False
        strategy.status = ExitStatus.CANCELLED
        self._log(strategy, "Exit strategy cancelled")
        loop = self._loops.get(key)
        if loop is not None:
            loop.stop()
        self.store.mark_dirty()
        return True

    def collect(self) -> list[dict]:
        return [s.model_dump(mode="json") for s in self.strategies.values()]

    def restore(self, data: list[dict]) -> int:
        restored = 0
        for item in data or []:
            try:
                strategy = ExitStrategy.model_validate(item)
            except ValidationError as e:
                logger.error("Skipping unreadable exit strategy: %s", e)
                continue
            key = strategy.auction_address.lower()
            self.strategies[key] = strategy
            restored += 1
            if strategy.is_active:
                self._log(strategy, "Restored, resuming price checks")
                self._arm(key)
        return restored

    async def tick(self, auction_address: str) -> bool:
        key = auction_address.lower()
        strategy = self.strategies.get(key)
        if strategy is None or not strategy.is_active:
            return False
        try:
            await self._step(strategy)
        except ProviderError as e:
            self._log(strategy, f"Poll error: {e}", EventKind.ERROR)
        self.store.mark_dirty()
        return strategy.is_active

    async def _step(self, strategy: ExitStrategy) -> None:
        if strategy.in_flight is not None:
            await self._reconcile(strategy)
            if not strategy.is_active:
                return

        price = await self.swaps.price(strategy.token_address, strategy.token_decimals)
        strategy.current_valuation = token_valuation(price, strategy.total_supply, strategy.token_decimals)
        strategy.current_multiple = strategy.current_valuation / strategy.entry_valuation
        strategy.current_balance = await self.chain.token_balance(
            strategy.token_address, self.chain.address
        )

        if strategy.stop_loss_multiple is not None and strategy.current_multiple < strategy.stop_loss_multiple:
            await self._stop_loss(strategy)
            return

        for index, tranche in enumerate(strategy.tranches):
            if not strategy.is_active:
                break  # cancelled while a sell was in flight
            if tranche.status != TrancheStatus.PENDING:
                continue
            if strategy.current_multiple < tranche.target_multiple:
                continue
            balance = strategy.current_balance
            if balance == 0:
                tranche.status = TrancheStatus.SKIPPED
                self._log(strategy, f"Tranche {tranche.label} skipped, no balance")
                continue
            amount = tranche_amount(balance, tranche.pct_to_sell)
            if amount == 0:
                tranche.status = TrancheStatus.SKIPPED
                self._log(strategy, f"Tranche {tranche.label} skipped, amount too small")
                continue

            self._log(
                strategy,
                f"Tranche {tranche.label} triggered at {strategy.current_multiple:.1f}x, selling "
                f"{format_base_units(amount, strategy.token_decimals)} tokens",
                EventKind.SELL,
            )
            result = await self._sell(strategy, amount, index)
            if result is None or not result.confirmed:
                if result is not None:
                    self._log(strategy, f"Tranche {tranche.label} sell failed: {result.error_message}", EventKind.ERROR)
                break  # later tranches wait so declared order holds

            usdc = from_base_units(result.amount_out, USDC_DECIMALS)
            tranche.status = TrancheStatus.EXECUTED
            tranche.executed_at = self.clock()
            tranche.tx_hash = result.tx_hash
            tranche.amount_sold = amount
            tranche.usdc_received = usdc
            strategy.total_usdc_realized += usdc
            strategy.current_balance = await self.chain.token_balance(
                strategy.token_address, self.chain.address
            )
            self._log(
                strategy,
                f"Sold {format_base_units(amount, strategy.token_decimals)} tokens for ${usdc:.2f} USDC",
                EventKind.SELL,
            )
            self.notifier.post(
                f"*Exit tranche sold* {strategy.token_symbol or short_address(strategy.token_address)}\n"
                f"{tranche.label} at {strategy.current_multiple:.1f}x for ${usdc:.2f}"
            )

        if not strategy.pending_tranches and strategy.is_active:
            strategy.status = ExitStatus.DONE
            self._log(
                strategy,
                f"All tranches complete. Total realized: ${strategy.total_usdc_realized:.2f} USDC",
            )

    async def _stop_loss(self, strategy: ExitStrategy) -> None:
        balance = strategy.current_balance
        self._log(
            strategy,
            f"Stop-loss hit at {strategy.current_multiple:.2f}x (limit {strategy.stop_loss_multiple:g}x)",
            EventKind.SELL,
        )
        usdc = 0.0
        if balance > 0:
            result = await self._sell(strategy, balance, None)
            if result is None or not result.confirmed:
                if result is not None:
                    self._log(strategy, f"Stop-loss sell failed: {result.error_message}", EventKind.ERROR)
                return
            usdc = from_base_units(result.amount_out, USDC_DECIMALS)
            strategy.total_usdc_realized += usdc
            strategy.current_balance = 0
        self._finish_stopped(strategy)
        self.notifier.post(
            f"*Stop-loss* {strategy.token_symbol or short_address(strategy.token_address)} "
            f"sold at {strategy.current_multiple:.2f}x for ${usdc:.2f}"
        )

    def _finish_stopped(self, strategy: ExitStrategy) -> None:
        for tranche in strategy.pending_tranches:
            tranche.status = TrancheStatus.SKIPPED
        if strategy.is_active:
            strategy.status = ExitStatus.STOPPED
        self._log(strategy, f"Stopped. Total realized: ${strategy.total_usdc_realized:.2f} USDC")

    async def _sell(self, strategy: ExitStrategy, amount: int, tranche_index: int | None) -> SwapResult | None:
        """Sell with an in-flight marker flushed first. None means nothing was sent."""
        strategy.in_flight = InFlightSell(
            tranche_index=tranche_index,
            amount=amount,
            balance_before=strategy.current_balance,
            started_at=self.clock(),
        )
        if not await self.store.flush():
            strategy.in_flight = None
            self._log(strategy, "Could not persist sell marker, skipping this tick", EventKind.ERROR)
            return None
        result = await self.executor.swap(strategy.token_address, self.usdc, amount)
        strategy.in_flight = None
        return result

    async def _reconcile(self, strategy: ExitStrategy) -> None:
        """Settle a sell interrupted by a restart using the on-chain balance."""
        marker = strategy.in_flight
        assert marker is not None
        balance = await self.chain.token_balance(strategy.token_address, self.chain.address)
        strategy.in_flight = None
        strategy.current_balance = balance
        if marker.balance_before - balance < marker.amount:
            self._log(strategy, "Interrupted sell did not land, will re-evaluate")
            return
        if marker.tranche_index is None:
            self._log(strategy, "Interrupted stop-loss sell landed (proceeds unknown)", EventKind.SELL)
            self._finish_stopped(strategy)
            return
        tranche = strategy.tranches[marker.tranche_index]
        tranche.status = TrancheStatus.EXECUTED
        tranche.executed_at = self.clock()
        tranche.amount_sold = marker.amount
        tranche.usdc_received = 0.0
        self._log(strategy, f"Interrupted tranche {tranche.label} sell landed (proceeds unknown)", EventKind.SELL)

    def _crashed(self, key: str, error: BaseException) -> None:
        strategy = self.strategies.get(key)
        if strategy is None or not strategy.is_active:
            return
        strategy.status = ExitStatus.FAILED
        self._log(strategy, f"Exit strategy failed: {error}", EventKind.ERROR)
        self.store.mark_dirty()

    def _log(self, strategy: ExitStrategy, message: str, kind: EventKind = EventKind.INFO) -> None:
        append_event(
            strategy.log,
            message,
            kind,
            self.config.log_limit,
            logger,
            f"exit:{short_address(strategy.auction_address)}",
        )
