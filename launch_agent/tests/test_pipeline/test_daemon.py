"""Tests for the agent daemon: wiring, boot-time declarations, PID and log housekeeping."""

import asyncio
import json
import os

import pytest

from conftest import AUCTION, Q96, TOKEN, WALLET, FakeAuctions, FakePrices, make_auction
from launch_agent.config.loader import load_config
from launch_agent.config.schema import AgentConfig, ExecutionMode, TradeDeclaration
from launch_agent.daemon import (
    DRY_RUN_WALLET,
    AgentDaemon,
    _rotate_logs,
    build_backends,
    daemon_status,
    stop_daemon,
    trade_params,
)
from launch_agent.errors import ConfigError
from launch_agent.execution.dry_run import DryRunChain, DryRunSwapProvider
from launch_agent.models.trading import MeanReversionParams, ScheduledBuyParams, TimeSlicedParams
from launch_agent.pipeline.bid_engine import SECTION as BID_SECTION
from launch_agent.reporting.notifier import NullNotifier
from launch_agent.trading.engine import SECTION as TRADING_SECTION

DEAD_PID = 999_999_999


@pytest.fixture
def tmp_data(tmp_path, monkeypatch):
    """Redirect PID/state/log files to a temp directory."""
    pid_file = tmp_path / "agent.pid"
    state_file = tmp_path / "agent_daemon.json"
    monkeypatch.setattr("launch_agent.daemon.PID_FILE", pid_file)
    monkeypatch.setattr("launch_agent.daemon.PID_DIR", tmp_path)
    monkeypatch.setattr("launch_agent.daemon.STATE_FILE", state_file)
    monkeypatch.setattr("launch_agent.daemon.LOG_DIR", tmp_path / "logs")
    return {"pid": pid_file, "state": state_file, "logs": tmp_path / "logs"}


def built(config: AgentConfig, auctions: FakeAuctions | None = None, **backends) -> AgentDaemon:
    daemon = AgentDaemon(config)
    daemon.build(auctions=auctions or FakeAuctions(), prices=FakePrices({TOKEN: 1.0}), notifier=NullNotifier(), **backends)
    return daemon


def decl(**overrides) -> TradeDeclaration:
    data = {"label": "t", "kind": "scheduled-buy", "token_address": TOKEN, "amount": 100, "interval": "4h"}
    data.update(overrides)
    return TradeDeclaration(**data)


class TestDeclarations:
    def test_declares_configured_strategies(self, config_yaml_path):
        daemon = built(load_config(config_yaml_path))
        assert daemon.restore() == {BID_SECTION: 0, "Exit Strategies": 0, TRADING_SECTION: 0}
        assert asyncio.run(daemon.declare()) == 2

        bid = daemon.bids.get(AUCTION)
        assert bid.bidder == DRY_RUN_WALLET
        assert bid.max_valuation == 50_000
        trade = daemon.trading.find_by_label("dca")
        assert isinstance(trade.params, ScheduledBuyParams)
        assert trade.params.interval_seconds == 3600
        assert daemon.bids.config.max_attempts == 3

    def test_restart_does_not_duplicate(self, config_yaml_path):
        config = load_config(config_yaml_path)
        first = built(config)
        asyncio.run(first.declare())
        assert asyncio.run(first.store.flush())

        second = built(config)
        assert second.restore() == {BID_SECTION: 1, "Exit Strategies": 0, TRADING_SECTION: 1}
        assert asyncio.run(second.declare()) == 0
        assert len(second.trading.list_strategies()) == 1

    def test_exit_declaration_uses_clearing_valuation(self, tmp_path):
        config = AgentConfig(
            persistence={"path": str(tmp_path / "state.md")},
            strategies={"exits": [{"auction_address": AUCTION, "profile": "conservative"}]},
        )
        auctions = FakeAuctions()
        auctions.add(make_auction(clearing_price=2 * Q96, graduated=True))
        prices = FakePrices({TOKEN: 1.0})
        chain = DryRunChain(WALLET)
        chain.credit(TOKEN, 10 * 10**18)
        daemon = built(config, auctions, chain=chain, swaps=DryRunSwapProvider(prices, chain))

        assert asyncio.run(daemon.declare()) == 1
        exit_strategy = daemon.exits.get(AUCTION)
        assert exit_strategy.entry_valuation == pytest.approx(20_000)
        assert exit_strategy.initial_balance == 10 * 10**18

    def test_unknown_auction_is_logged_not_fatal(self, tmp_path, caplog):
        config = AgentConfig(
            persistence={"path": str(tmp_path / "state.md")},
            strategies={"exits": [{"auction_address": AUCTION}]},
        )
        assert asyncio.run(built(config).declare()) == 0
        assert "not started" in caplog.text

    def test_bad_trade_kind_rejected(self, tmp_path, caplog):
        config = AgentConfig(
            persistence={"path": str(tmp_path / "state.md")},
            strategies={"trades": [decl(kind="grid").model_dump()]},
        )
        assert asyncio.run(built(config).declare()) == 0
        assert "rejected" in caplog.text


class TestTradeParams:
    def test_scheduled_buy(self):
        params = trade_params(decl(total_budget=500), 0)
        assert params == ScheduledBuyParams(amount_per_buy=100, interval_seconds=14_400, total_budget=500)

    def test_time_sliced(self):
        params = trade_params(decl(kind="time-sliced", duration="1d", slices=4), 123.0)
        assert isinstance(params, TimeSlicedParams)
        assert params.duration_seconds == 86_400
        assert params.start_time == 123.0
        assert params.slice_size == 25

    def test_mean_reversion(self):
        params = trade_params(decl(kind="mean-reversion", cooldown="10m", ema_period_minutes=30), 0)
        assert isinstance(params, MeanReversionParams)
        assert params.cooldown_seconds == 600
        assert params.ema_period_minutes == 30

    def test_unknown_kind(self):
        with pytest.raises(ConfigError):
            trade_params(decl(kind="grid"), 0)

    def test_missing_interval(self):
        with pytest.raises(ValueError, match="Invalid duration"):
            trade_params(decl(interval=""), 0)


class TestBackends:
    def test_dry_run_defaults(self):
        chain, swaps = build_backends(AgentConfig(), FakePrices())
        assert isinstance(chain, DryRunChain)
        assert isinstance(swaps, DryRunSwapProvider)
        assert chain.address == DRY_RUN_WALLET
        assert asyncio.run(chain.native_balance(DRY_RUN_WALLET)) == 5 * 10**16

    def test_dry_run_uses_configured_wallet(self):
        chain, _ = build_backends(AgentConfig(wallet={"address": WALLET}), FakePrices())
        assert chain.address == WALLET

    def test_live_needs_backend(self):
        with pytest.raises(ConfigError, match="live_backend"):
            build_backends(AgentConfig(execution={"mode": "live"}), FakePrices())

    def test_live_backend_import_failure(self):
        config = AgentConfig(execution={"mode": "live", "live_backend": "no_such_module_xyz:make"})
        with pytest.raises(ConfigError, match="cannot load"):
            build_backends(config, FakePrices())

    def test_live_flag_overrides_mode(self):
        config = AgentConfig()
        daemon = AgentDaemon(config, live=True)
        assert daemon.config.execution.mode == ExecutionMode.LIVE
        assert config.execution.mode == ExecutionMode.DRY_RUN


class TestLifecycle:
    def test_engines_start_and_shut_down(self, tmp_path):
        config = AgentConfig(persistence={"path": str(tmp_path / "state.md"), "debounce_seconds": 0})
        daemon = built(config)

        async def scenario():
            daemon.start_engines()
            await asyncio.sleep(0)
            await daemon.shutdown()

        asyncio.run(scenario())
        assert (tmp_path / "state.md").exists()

    def test_run_writes_and_cleans_up(self, tmp_data, monkeypatch, capsys):
        daemon = AgentDaemon(AgentConfig())

        async def quick_main():
            assert tmp_data["pid"].read_text() == str(os.getpid())

        monkeypatch.setattr(daemon, "_main", quick_main)
        assert daemon.run() == 0
        assert not tmp_data["pid"].exists()
        state = json.loads(tmp_data["state"].read_text())
        assert state["running"] is False
        assert state["mode"] == "dry-run"
        assert len(list(tmp_data["logs"].glob("agent_*.log"))) == 1
        assert "DRY-RUN" in capsys.readouterr().out

    def test_run_config_error(self, tmp_data, monkeypatch):
        daemon = AgentDaemon(AgentConfig())

        async def broken_main():
            raise ConfigError("live mode needs execution.live_backend")

        monkeypatch.setattr(daemon, "_main", broken_main)
        assert daemon.run() == 1
        assert not tmp_data["pid"].exists()

    def test_refuses_second_instance(self, tmp_data, capsys):
        tmp_data["pid"].write_text(str(os.getpid()))
        assert AgentDaemon(AgentConfig()).run() == 1
        assert "already running" in capsys.readouterr().out

    def test_stale_pid_cleared(self, tmp_data, monkeypatch):
        tmp_data["pid"].write_text(str(DEAD_PID))
        daemon = AgentDaemon(AgentConfig())

        async def quick_main():
            return None

        monkeypatch.setattr(daemon, "_main", quick_main)
        assert daemon.run() == 0

    def test_log_rotation(self, tmp_data):
        tmp_data["logs"].mkdir()
        for i in range(55):
            (tmp_data["logs"] / f"agent_{i:04d}.log").write_text("")
        _rotate_logs()
        remaining = sorted(p.name for p in tmp_data["logs"].glob("agent_*.log"))
        assert len(remaining) == 50
        assert remaining[0] == "agent_0005.log"


class TestStopAndStatus:
    def test_stop_without_pid(self, tmp_data, capsys):
        assert stop_daemon() == 1
        assert "No agent running" in capsys.readouterr().out

    def test_stop_stale_pid(self, tmp_data):
        tmp_data["pid"].write_text(str(DEAD_PID))
        assert stop_daemon() == 0
        assert not tmp_data["pid"].exists()

    def test_corrupt_pid_file(self, tmp_data):
        tmp_data["pid"].write_text("not-a-pid")
        assert daemon_status()["pid"] is None
        assert not tmp_data["pid"].exists()

    def test_status_reads_heartbeat(self, tmp_data):
        daemon = AgentDaemon(AgentConfig())
        daemon._save_state(running=True)
        tmp_data["pid"].write_text(str(os.getpid()))
        status = daemon_status()
        assert status["alive"] is True
        assert status["running"] is True
        assert status["config_hash"]

    def test_status_not_running(self, tmp_data):
        status = daemon_status()
        assert status == {"pid": None, "alive": False}


class CountingSwaps(DryRunSwapProvider):
    def __init__(self, prices, chain):
        super().__init__(prices, chain)
        self.count = 0

    async def swap(self, token_in, token_out, amount_in):
        self.count += 1
        return await super().swap(token_in, token_out, amount_in)


class TestRestoreRoundTrip:
    SECOND = "0xaaaa000000000000000000000000000000000003"

    def snapshot(self, daemon: AgentDaemon) -> dict:
        return {
            "bids": {s.auction_address: s.status for s in daemon.bids.list_strategies()},
            "exits": {s.auction_address: s.status for s in daemon.exits.list_strategies()},
            "trades": {s.id: s.status for s in daemon.trading.list_strategies()},
        }

    def test_identities_and_statuses_survive_without_repeating_actions(self, tmp_path):
        config = AgentConfig(persistence={"path": str(tmp_path / "state.md"), "debounce_seconds": 0})
        auctions = FakeAuctions()
        auctions.add(make_auction())
        auctions.add(make_auction(self.SECOND))
        prices = FakePrices({TOKEN: 1.0})
        chain = DryRunChain(WALLET, usdc=10_000 * 10**6)
        chain.credit(TOKEN, 1_000 * 10**18)
        swaps = CountingSwaps(prices, chain)

        first = built(config, auctions, chain=chain, swaps=swaps)
        first.bids.start_strategy(AUCTION, WALLET, 100, 50_000)
        first.bids.start_strategy(self.SECOND, WALLET, 100, 50_000)
        first.bids.cancel(self.SECOND)
        supply = 1_000_000 * 10**18
        first.exits.start_strategy(AUCTION, TOKEN, supply, 1_000_000, 500 * 10**18, "50@3x,50@5x")
        first.exits.start_strategy(self.SECOND, TOKEN, supply, 1_000_000, 500 * 10**18)
        first.exits.cancel(self.SECOND)
        running = first.trading.start_scheduled_buy(TOKEN, 100.0, 3600.0)
        paused = first.trading.start_scheduled_buy(TOKEN, 100.0, 3600.0)
        finished = first.trading.start_scheduled_buy(TOKEN, 100.0, 3600.0)
        first.trading.pause(paused.id)
        first.trading.cancel(finished.id)

        async def trade_once():
            first.observer.record(TOKEN, 1.0)
            await first.trading.tick(running.id)
            return await first.store.flush()

        assert asyncio.run(trade_once())
        assert len(running.trades) == 1
        before = self.snapshot(first)
        sent, swapped = len(chain.sent), swaps.count

        second = built(config, auctions, chain=chain, swaps=swaps)
        assert second.restore() == {BID_SECTION: 2, "Exit Strategies": 2, TRADING_SECTION: 3}
        assert self.snapshot(second) == before
        assert second.trading.get(running.id).position.token_balance == pytest.approx(100)

        async def run_briefly():
            second.start_engines()
            await asyncio.sleep(0.05)
            armed = (set(second.bids._loops), set(second.exits._loops), set(second.trading._loops))
            await second.shutdown()
            return armed

        bid_loops, exit_loops, trade_loops = asyncio.run(run_briefly())
        assert bid_loops == {AUCTION.lower()}
        assert exit_loops == {AUCTION.lower()}
        assert trade_loops == {running.id, paused.id}
        assert self.snapshot(second) == before
        assert len(chain.sent) == sent
        assert swaps.count == swapped
