"""Agent daemon: wires collaborators, restores state, runs every engine until signalled.

Usage:
    launch-agent run --config ops/configs/agent.yaml
    launch-agent run --live        # real transactions through execution.live_backend
    launch-agent stop
"""

import asyncio
import importlib
import json
import logging
import os
import signal
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from launch_agent.config.defaults import parse_duration
from launch_agent.config.loader import config_hash
from launch_agent.config.schema import AgentConfig, ExecutionMode, TradeDeclaration
from launch_agent.errors import ConfigError, ProviderError
from launch_agent.execution.bid_submitter import BidSubmitter
from launch_agent.execution.dry_run import DryRunChain, DryRunSwapProvider
from launch_agent.execution.executor import ActionExecutor
from launch_agent.execution.ports import ChainSender, SwapProvider
from launch_agent.ingest.auction_client import AuctionClient
from launch_agent.ingest.market_observer import MarketObserver
from launch_agent.ingest.price_client import PriceClient
from launch_agent.models.common import USDC_DECIMALS
from launch_agent.models.trading import MeanReversionParams, ScheduledBuyParams, StrategyParams, TimeSlicedParams
from launch_agent.models.units import to_base_units
from launch_agent.pipeline import readiness
from launch_agent.pipeline.bid_engine import SECTION as BID_SECTION
from launch_agent.pipeline.bid_engine import BidEngine
from launch_agent.pipeline.exit_engine import SECTION as EXIT_SECTION
from launch_agent.pipeline.exit_engine import ExitEngine
from launch_agent.pipeline.graduation import GraduationMonitor
from launch_agent.pipeline.readiness import ReadinessMonitor
from launch_agent.pipeline.tick_loop import TickLoop
from launch_agent.reporting.notifier import Notifier, build_notifier
from launch_agent.signal.valuation import implied_valuation
from launch_agent.storage.snapshot_store import SnapshotStore
from launch_agent.trading.engine import SECTION as TRADING_SECTION
from launch_agent.trading.engine import TradingEngine

logger = logging.getLogger(__name__)

PID_DIR = Path("data")
PID_FILE = PID_DIR / "agent.pid"
STATE_FILE = PID_DIR / "agent_daemon.json"
LOG_DIR = Path("logs")
MAX_LOG_FILES = 50
HEARTBEAT_SECONDS = 60.0
DRY_RUN_WALLET = "0x00000000000000000000000000000000000d1e7a"


def build_backends(config: AgentConfig, prices: PriceClient) -> tuple[ChainSender, SwapProvider]:
    """Dry-run stand-ins, or the live pair from ``execution.live_backend``."""
    if config.execution.mode == ExecutionMode.DRY_RUN:
        chain = DryRunChain(
            config.wallet.address or DRY_RUN_WALLET,
            usdc=to_base_units(config.execution.dry_run_usdc, USDC_DECIMALS),
            native=to_base_units(config.execution.dry_run_eth, 18),
        )
        return chain, DryRunSwapProvider(prices, chain)

    target = config.execution.live_backend
    if ":" not in target:
        raise ConfigError("live mode needs execution.live_backend = 'module:function'")
    module_name, func_name = target.split(":", 1)
    try:
        factory = getattr(importlib.import_module(module_name), func_name)
    except (ImportError, AttributeError) as e:
        raise ConfigError(f"cannot load live backend {target}: {e}") from e
    chain, swaps = factory(config)
    return chain, swaps


def trade_params(decl: TradeDeclaration, now: float) -> StrategyParams:
    match decl.kind:
        case "scheduled-buy":
            return ScheduledBuyParams(
                amount_per_buy=decl.amount,
                interval_seconds=parse_duration(decl.interval),
                total_budget=decl.total_budget,
            )
        case "time-sliced":
            return TimeSlicedParams(
                total_amount=decl.amount,
                duration_seconds=parse_duration(decl.duration),
                slices=decl.slices,
                start_time=now,
            )
        case "mean-reversion":
            return MeanReversionParams(
                amount_per_trade=decl.amount,
                ema_period_minutes=decl.ema_period_minutes,
                buy_threshold_pct=decl.buy_threshold_pct,
                sell_threshold_pct=decl.sell_threshold_pct,
                cooldown_seconds=parse_duration(decl.cooldown),
            )
    raise ConfigError(f"unknown trading strategy kind: {decl.kind}")


class AgentDaemon:
    """Owns every engine and monitor for one process lifetime."""

    def __init__(self, config: AgentConfig, live: bool = False):
        if live:
            config = config.model_copy(
                update={"execution": config.execution.model_copy(update={"mode": ExecutionMode.LIVE})}
            )
        self.config = config
        self._stop_event: asyncio.Event | None = None
        self._started_at: str | None = None
        self._heartbeat: TickLoop | None = None

    def build(
        self,
        chain: ChainSender | None = None,
        swaps: SwapProvider | None = None,
        auctions: AuctionClient | None = None,
        prices: PriceClient | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        """Construct collaborators; any of them can be supplied instead."""
        cfg = self.config
        self.auctions = auctions or AuctionClient(cfg.api.base_url, cfg.api.timeout_seconds)
        self.prices = prices or PriceClient(cfg.prices.base_url, cfg.prices.chain_id, cfg.prices.timeout_seconds)
        if chain is None or swaps is None:
            chain, swaps = build_backends(cfg, self.prices)
        self.chain = chain
        self.swaps = swaps
        self.notifier = notifier or build_notifier(cfg.alerts.enabled, cfg.alerts.bot_token, cfg.alerts.chat_id)
        self.store = SnapshotStore(cfg.persistence.path, cfg.persistence.debounce_seconds)
        submitter = BidSubmitter(
            self.auctions, chain, cfg.bid.alignment_bump, cfg.bid.max_alignment_retries
        )
        self.executor = ActionExecutor(submitter, swaps)
        self.observer = MarketObserver(swaps, cfg.market.poll_interval_seconds, cfg.market.max_history_points)
        self.bids = BidEngine(cfg.bid, self.auctions, self.executor, self.store, self.notifier)
        self.exits = ExitEngine(cfg.exit, chain, swaps, self.executor, self.store, self.notifier)
        self.trading = TradingEngine(cfg.trading, self.observer, chain, self.executor, self.store, self.notifier)
        self.graduation = GraduationMonitor(cfg.graduation, self.auctions, chain, self.bids, self.exits, self.notifier)
        self.readiness = ReadinessMonitor(cfg.readiness, self.auctions, chain, self.bids, self.store, self.notifier)

    def restore(self) -> dict[str, int]:
        sections = self.store.load()
        counts = {
            BID_SECTION: self.bids.restore(sections.get(BID_SECTION, [])),
            EXIT_SECTION: self.exits.restore(sections.get(EXIT_SECTION, [])),
            TRADING_SECTION: self.trading.restore(sections.get(TRADING_SECTION, [])),
        }
        self.readiness.restore(sections.get(readiness.SECTION, []))
        logger.info("Restored %s", ", ".join(f"{n}: {c}" for n, c in counts.items()))
        return counts

    async def declare(self) -> int:
        """Create configured strategies whose identity was not restored."""
        decls = self.config.strategies
        created = 0
        for b in decls.bids:
            if self.bids.get(b.auction_address) is not None:
                continue
            try:
                self.bids.start_strategy(
                    b.auction_address,
                    self.chain.address,
                    b.amount,
                    b.max_valuation,
                    b.min_valuation,
                    exit_profile=b.exit_profile,
                    stop_loss=b.stop_loss,
                )
                created += 1
            except ValueError as e:
                logger.error("Bid declaration for %s rejected: %s", b.auction_address, e)

        for x in decls.exits:
            if self.exits.get(x.auction_address) is not None:
                continue
            try:
                auction = await self.auctions.get_auction(x.auction_address)
                balance = await self.chain.token_balance(auction.token_address, self.chain.address)
                entry = implied_valuation(auction) or 0.0
                self.exits.start_strategy(
                    x.auction_address,
                    auction.token_address,
                    auction.total_supply,
                    entry,
                    balance,
                    x.profile,
                    stop_loss_multiple=x.stop_loss,
                    token_decimals=auction.token_decimals,
                    token_symbol=auction.token_symbol,
                )
                created += 1
            except (ProviderError, ValueError) as e:
                logger.error("Exit declaration for %s not started: %s", x.auction_address, e)

        now = time.time()
        for t in decls.trades:
            if self.trading.find_by_label(t.label) is not None:
                continue
            try:
                self.trading.create(
                    t.token_address,
                    trade_params(t, now),
                    token_symbol=t.token_symbol,
                    token_decimals=t.token_decimals,
                    label=t.label,
                    risk_limits=t.risk_limits,
                )
                created += 1
            except (ConfigError, ValueError) as e:
                logger.error("Trading declaration %s rejected: %s", t.label, e)
        return created

    def start_engines(self) -> None:
        self.observer.start()
        self.bids.start()
        self.exits.start()
        self.trading.start()
        self.graduation.start()
        if self.config.readiness.enabled:
            self.readiness.start()

    async def shutdown(self) -> None:
        logger.info("Shutting down engines")
        if self._heartbeat is not None:
            self._heartbeat.stop()
        await self.graduation.stop()
        await self.readiness.stop()
        await self.bids.stop()
        await self.exits.stop()
        await self.trading.stop()
        await self.observer.close()
        await self.store.close()
        await self.notifier.close()
        await self.auctions.close()
        await self.prices.close()

    # --- process ---

    def run(self) -> int:
        """Run in the foreground until SIGINT/SIGTERM."""
        if not self._check_not_already_running():
            return 1
        self._write_pid()
        handler = self._attach_log_file()
        self._started_at = datetime.now(UTC).isoformat()
        mode_label = "LIVE" if self.config.execution.mode == ExecutionMode.LIVE else "DRY-RUN"
        logger.info("Agent starting, mode=%s pid=%d", mode_label, os.getpid())
        if self.config.execution.mode == ExecutionMode.LIVE:
            logger.warning("LIVE MODE: real transactions will be sent")
        print(f"Launch agent started (pid {os.getpid()}, {mode_label})")
        print("   Stop: launch-agent stop")
        try:
            asyncio.run(self._main())
        except ConfigError as e:
            logger.error("Configuration error: %s", e)
            print(f"Error: {e}")
            return 1
        finally:
            PID_FILE.unlink(missing_ok=True)
            self._save_state(running=False)
            logging.getLogger().removeHandler(handler)
            handler.close()
            _rotate_logs()
        print("Agent stopped")
        return 0

    async def _main(self) -> None:
        self._stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._request_stop, sig)

        self.build()
        self.restore()
        await self.declare()
        self.start_engines()
        self._heartbeat = TickLoop("heartbeat", self._beat, HEARTBEAT_SECONDS, keep_alive=True)
        self._heartbeat.start()
        await self._stop_event.wait()
        await self.shutdown()

    async def _beat(self) -> None:
        self._save_state(running=True)

    def _request_stop(self, sig: signal.Signals) -> None:
        logger.info("Received %s, shutting down gracefully...", sig.name)
        if self._stop_event is not None:
            self._stop_event.set()

    def _attach_log_file(self) -> logging.Handler:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%SZ")
        handler = logging.FileHandler(LOG_DIR / f"agent_{timestamp}.log")
        handler.setLevel(logging.INFO)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        logging.getLogger().addHandler(handler)
        return handler

    def _check_not_already_running(self) -> bool:
        pid = _read_pid()
        if pid is None:
            return True
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            PID_FILE.unlink(missing_ok=True)
            return True
        except PermissionError:
            print(f"Agent may be running (pid {pid}), can't verify.")
            return False
        print(f"Agent already running (pid {pid}). Stop it first: launch-agent stop")
        return False

    def _write_pid(self) -> None:
        PID_DIR.mkdir(parents=True, exist_ok=True)
        PID_FILE.write_text(str(os.getpid()))

    def _save_state(self, running: bool) -> None:
        state = {
            "pid": os.getpid(),
            "running": running,
            "started_at": self._started_at,
            "mode": self.config.execution.mode.value,
            "config_hash": config_hash(self.config),
            "state_document": self.config.persistence.path,
            "last_update": datetime.now(UTC).isoformat(),
        }
        PID_DIR.mkdir(parents=True, exist_ok=True)
        STATE_FILE.write_text(json.dumps(state, indent=2))


def _rotate_logs() -> None:
    if not LOG_DIR.exists():
        return
    logs = sorted(LOG_DIR.glob("agent_*.log"))
    if len(logs) > MAX_LOG_FILES:
        for old in logs[: len(logs) - MAX_LOG_FILES]:
            old.unlink(missing_ok=True)


def _read_pid() -> int | None:
    if not PID_FILE.exists():
        return None
    try:
        return int(PID_FILE.read_text().strip())
    except ValueError:
        PID_FILE.unlink(missing_ok=True)
        return None


def stop_daemon(wait_seconds: int = 60) -> int:
    """Stop a running agent by sending SIGTERM."""
    pid = _read_pid()
    if pid is None:
        print("No agent running (no PID file found)")
        return 1
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        print(f"Agent not running (stale pid {pid}), cleaning up")
        PID_FILE.unlink(missing_ok=True)
        return 0

    print(f"Stopping agent (pid {pid})...")
    os.kill(pid, signal.SIGTERM)
    for _ in range(wait_seconds):
        time.sleep(1)
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            print("Agent stopped")
            PID_FILE.unlink(missing_ok=True)
            return 0

    print(f"Agent didn't stop in {wait_seconds}s, sending SIGKILL")
    os.kill(pid, signal.SIGKILL)
    PID_FILE.unlink(missing_ok=True)
    return 0


def daemon_status() -> dict[str, Any]:
    """Process-level status: pid, liveness and the last heartbeat."""
    state: dict[str, Any] = {}
    if STATE_FILE.exists():
        try:
            state = json.loads(STATE_FILE.read_text())
        except json.JSONDecodeError:
            logger.warning("Corrupt daemon state file %s", STATE_FILE)
    pid = _read_pid()
    alive = False
    if pid is not None:
        try:
            os.kill(pid, 0)
            alive = True
        except ProcessLookupError:
            alive = False
        except PermissionError:
            alive = True
    state["pid"] = pid if pid is not None else state.get("pid")
    state["alive"] = alive
    return state
