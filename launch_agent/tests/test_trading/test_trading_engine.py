"""Tests for the trading engine: evaluator scheduling, risk actions, manual commands."""

import asyncio

import pytest

from conftest import TOKEN, WALLET, Clock, FakeAuctions, FakePrices
from launch_agent.config.schema import TradingConfig
from launch_agent.execution.bid_submitter import BidSubmitter
from launch_agent.execution.dry_run import DryRunChain, DryRunSwapProvider
from launch_agent.execution.executor import ActionExecutor
from launch_agent.ingest.market_observer import MarketObserver
from launch_agent.models.common import USDC_BASE
from launch_agent.models.trading import (
    InFlightTrade,
    MeanReversionParams,
    RiskLimits,
    ScheduledBuyParams,
    TradeSide,
    TradingStatus,
)
from launch_agent.storage.snapshot_store import SnapshotStore
from launch_agent.trading.engine import TradingEngine
from launch_agent.trading.evaluators import scheduled_buy

HOUR = 3600.0
NO_STOP = RiskLimits(stop_loss_percent=100.0)


class Rig:
    """An engine wired to a dry-run wallet, a scripted price feed and a manual clock."""

    def __init__(self, store: SnapshotStore, usdc: float = 10_000.0, prices: FakePrices | None = None):
        self.clock = Clock()
        self.prices = prices or FakePrices({TOKEN: 1.0})
        self.chain = DryRunChain(WALLET, usdc=int(usdc * 10**6))
        self.swaps = DryRunSwapProvider(self.prices, self.chain)
        self.observer = MarketObserver(self.prices, clock=self.clock)
        executor = ActionExecutor(BidSubmitter(FakeAuctions(), self.chain), self.swaps)
        self.engine = TradingEngine(
            TradingConfig(), self.observer, self.chain, executor, store, clock=self.clock
        )

    def quote(self, price: float) -> None:
        self.prices.set(TOKEN, price)
        self.observer.record(TOKEN, price)

    def usdc(self) -> float:
        return asyncio.run(self.chain.token_balance(USDC_BASE, WALLET)) / 10**6

    def tokens(self) -> float:
        return asyncio.run(self.chain.token_balance(TOKEN, WALLET)) / 10**18


@pytest.fixture
def rig(store: SnapshotStore) -> Rig:
    return Rig(store)


def dca(rig: Rig, budget: float = 1_000.0, **kwargs):
    return rig.engine.start_scheduled_buy(TOKEN, 100.0, HOUR, budget, token_symbol="LAUNCH", **kwargs)


class TestScheduledBuy:
    def test_budget_caps_buys(self, rig: Rig):
        s = dca(rig)

        async def twelve_hours():
            results = []
            for _ in range(12):
                rig.quote(1.0)
                results.append(await rig.engine.tick(s.id))
                rig.clock.advance(HOUR)
            return results

        assert all(asyncio.run(twelve_hours()))
        assert len(s.trades) == 10
        assert s.position.total_invested == pytest.approx(1_000)
        assert s.params.buys_executed == 10
        assert s.status == TradingStatus.RUNNING
        assert rig.usdc() == pytest.approx(9_000)

    def test_waits_for_interval(self, rig: Rig):
        s = dca(rig)

        async def scenario():
            rig.quote(1.0)
            await rig.engine.tick(s.id)
            rig.clock.advance(HOUR - 1)
            rig.quote(1.0)
            await rig.engine.tick(s.id)

        asyncio.run(scenario())
        assert len(s.trades) == 1

    def test_no_price_yet(self, rig: Rig):
        s = dca(rig)
        assert asyncio.run(rig.engine.tick(s.id)) is True
        assert s.trades == []

    def test_max_position_blocks_buys(self, rig: Rig):
        s = dca(rig, risk_limits=RiskLimits(max_position_usdc=150.0, stop_loss_percent=100.0))

        async def three_hours():
            for _ in range(3):
                rig.quote(1.0)
                await rig.engine.tick(s.id)
                rig.clock.advance(HOUR)

        asyncio.run(three_hours())
        assert len(s.trades) == 2
        assert s.status == TradingStatus.RUNNING


class TestTimeSliced:
    def test_slices_on_schedule(self, rig: Rig):
        s = rig.engine.start_time_sliced(TOKEN, 300.0, 3 * HOUR, 3)

        async def scenario():
            rig.quote(1.0)
            results = [await rig.engine.tick(s.id)]
            for _ in range(3):
                rig.clock.advance(HOUR)
                rig.quote(1.0)
                results.append(await rig.engine.tick(s.id))
            return results

        assert asyncio.run(scenario()) == [True, True, True, False]
        assert [t.amount_usdc for t in s.trades] == [pytest.approx(100)] * 3
        assert s.status == TradingStatus.DONE
        assert not rig.observer.is_tracking(TOKEN)

    def test_insufficient_usdc_never_overdraws(self, store: SnapshotStore):
        rig = Rig(store, usdc=500.0)
        s = rig.engine.start_time_sliced(TOKEN, 1_000.0, 3 * HOUR, 3)

        async def scenario():
            for _ in range(3):
                rig.clock.advance(HOUR)
                rig.quote(1.0)
                await rig.engine.tick(s.id)

        asyncio.run(scenario())
        assert len(s.trades) == 1
        assert s.params.slices_executed == 1
        assert rig.usdc() == pytest.approx(500 - 1_000 / 3, rel=1e-6)
        assert rig.usdc() >= 0
        assert "Insufficient USDC" in s.log[-1].message


class TestMeanReversion:
    def test_buys_dip_then_sells_spike(self, rig: Rig):
        s = rig.engine.start_mean_reversion(TOKEN, 100.0, 10, 5, 5, cooldown_seconds=0)
        assert s.risk_limits.stop_loss_percent == 25.0

        async def scenario():
            for _ in range(6):
                rig.quote(1.0)
                await rig.engine.tick(s.id)
                rig.clock.advance(60)
            rig.quote(0.9)
            await rig.engine.tick(s.id)
            rig.clock.advance(60)
            rig.quote(1.2)
            await rig.engine.tick(s.id)

        asyncio.run(scenario())
        assert [t.side for t in s.trades] == [TradeSide.BUY, TradeSide.SELL]
        bought = s.trades[0].amount_token
        assert bought == pytest.approx(100 / 0.9)
        assert s.trades[1].amount_token == pytest.approx(100 / 1.2)
        assert s.position.token_balance == pytest.approx(bought - 100 / 1.2)
        assert s.pnl.realized > 0

    def test_warming_up(self, rig: Rig):
        s = rig.engine.start_mean_reversion(TOKEN, 100.0, 10, 5, 5)
        rig.quote(0.5)
        asyncio.run(rig.engine.tick(s.id))
        assert s.trades == []


class TestRisk:
    def test_stop_loss_sells_and_ends(self, rig: Rig):
        s = dca(rig)

        async def scenario():
            rig.quote(1.0)
            await rig.engine.tick(s.id)
            rig.clock.advance(60)
            rig.quote(0.7)
            return await rig.engine.tick(s.id)

        assert asyncio.run(scenario()) is False
        assert s.status == TradingStatus.DONE
        assert s.trades[-1].reason == "stop-loss"
        assert s.position.token_balance == 0
        assert rig.tokens() == 0
        assert rig.usdc() == pytest.approx(9_970)

    def test_drawdown_pauses(self, rig: Rig):
        s = dca(rig, risk_limits=NO_STOP)

        async def scenario():
            rig.quote(1.0)
            await rig.engine.tick(s.id)
            rig.clock.advance(HOUR)
            rig.quote(0.6)
            first = await rig.engine.tick(s.id)
            rig.clock.advance(HOUR)
            rig.quote(0.6)
            second = await rig.engine.tick(s.id)
            return first, second

        assert asyncio.run(scenario()) == (True, True)
        assert s.status == TradingStatus.PAUSED
        assert len(s.trades) == 1
        assert s.position.token_balance == pytest.approx(100)


    def test_zero_limits_are_disabled(self, rig: Rig):
        s = dca(rig, risk_limits=RiskLimits(max_position_usdc=0, stop_loss_percent=0, max_drawdown_percent=0))

        async def scenario():
            rig.quote(1.0)
            await rig.engine.tick(s.id)
            rig.clock.advance(60)
            rig.quote(0.5)
            return await rig.engine.tick(s.id)

        assert asyncio.run(scenario()) is True
        assert s.status == TradingStatus.RUNNING
        assert len(s.trades) == 1
        assert rig.tokens() == pytest.approx(100)


class TestRecovery:
    def test_interrupted_trade_not_replayed(self, rig: Rig, store: SnapshotStore):
        s = dca(rig)
        now = rig.clock()
        s.in_flight = InFlightTrade(
            side=TradeSide.BUY,
            amount_usdc=100.0,
            started_at=now,
            params_after=scheduled_buy.apply_fill(s.params, now),
        )
        snapshot = rig.engine.collect()

        second = Rig(SnapshotStore(store.path, 0.0))
        assert second.engine.restore(snapshot) == 1
        restored = second.engine.get(s.id)
        assert second.observer.is_tracking(TOKEN)

        second.quote(1.0)
        assert asyncio.run(second.engine.tick(s.id)) is True
        assert restored.in_flight is None
        assert restored.params.buys_executed == 1
        assert restored.trades == []
        assert second.usdc() == pytest.approx(10_000)
        assert any("may have executed" in e.message for e in restored.log)

    def test_ids_continue_after_restore(self, rig: Rig, store: SnapshotStore):
        dca(rig)
        dca(rig)
        second = Rig(SnapshotStore(store.path, 0.0))
        second.engine.restore(rig.engine.collect())
        assert dca(second).id == "003"

    def test_unreadable_entry_skipped(self, rig: Rig):
        assert rig.engine.restore([{"id": "001", "params": {"kind": "nope"}}]) == 0


class TestCommands:
    def test_pause_resume_cancel(self, rig: Rig):
        s = dca(rig)
        assert rig.engine.pause(s.id)
        assert not rig.engine.pause(s.id)
        rig.quote(1.0)
        assert asyncio.run(rig.engine.tick(s.id)) is True
        assert s.trades == []

        assert rig.engine.resume(s.id)
        assert rig.engine.cancel(s.id)
        assert s.status == TradingStatus.DONE
        assert not rig.observer.is_tracking(TOKEN)
        assert asyncio.run(rig.engine.tick(s.id)) is False

    def test_duplicate_label(self, rig: Rig):
        dca(rig, label="dca")
        with pytest.raises(ValueError, match="already exists"):
            dca(rig, label="dca")

    def test_remove_only_finished(self, rig: Rig):
        s = dca(rig)
        assert not rig.engine.remove(s.id)
        rig.engine.cancel(s.id)
        assert rig.engine.remove(s.id)
        assert rig.engine.get(s.id) is None

    def test_shared_token_tracked_once(self, rig: Rig):
        first = dca(rig)
        dca(rig)
        assert rig.observer.ref_count(TOKEN) == 2
        rig.engine.cancel(first.id)
        assert rig.observer.ref_count(TOKEN) == 1

    def test_sell_position(self, rig: Rig):
        s = dca(rig, risk_limits=NO_STOP)

        async def scenario():
            rig.quote(1.0)
            await rig.engine.tick(s.id)
            rig.quote(2.0)
            return await rig.engine.sell_position(s.id, 50)

        summary = asyncio.run(scenario())
        assert "$100.00" in summary
        assert s.position.token_balance == pytest.approx(50)
        assert s.status == TradingStatus.RUNNING
        assert s.trades[-1].reason == "manual sell (50%)"

    def test_sell_position_rejects_bad_input(self, rig: Rig):
        s = dca(rig)
        with pytest.raises(ValueError, match="No position"):
            asyncio.run(rig.engine.sell_position(s.id, 50))
        with pytest.raises(ValueError, match="not found"):
            asyncio.run(rig.engine.sell_position("999", 50))

    def test_liquidate_all_one_swap_per_token(self, rig: Rig):
        a = dca(rig, risk_limits=NO_STOP)
        b = dca(rig, risk_limits=NO_STOP)

        async def scenario():
            rig.quote(1.0)
            await rig.engine.tick(a.id)
            await rig.engine.tick(b.id)
            return await rig.engine.liquidate_all()

        report = asyncio.run(scenario())
        assert report.cancelled == 2
        assert len(report.sold) == 1
        assert report.errors == []
        assert a.position.token_balance == 0 and b.position.token_balance == 0
        assert a.position.total_realized == pytest.approx(100)
        assert rig.tokens() == 0
        assert rig.usdc() == pytest.approx(10_000)

    def test_liquidate_all_aborts_when_state_cannot_be_saved(self, rig: Rig, store: SnapshotStore, tmp_path):
        s = dca(rig, risk_limits=NO_STOP)
        rig.quote(1.0)
        asyncio.run(rig.engine.tick(s.id))
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")
        store.path = blocker / "state.md"

        report = asyncio.run(rig.engine.liquidate_all())
        assert report.cancelled == 1
        assert report.sold == []
        assert report.errors
        assert s.status == TradingStatus.DONE
        assert rig.tokens() == pytest.approx(100)

    def test_crash_after_cancel_keeps_status(self, rig: Rig):
        s = dca(rig)
        rig.engine.cancel(s.id)
        rig.engine._crashed(s.id, RuntimeError("boom"))
        assert s.status == TradingStatus.DONE

    def test_describe_params_in_log(self, rig: Rig):
        s = dca(rig)
        assert "$100 every 60m | budget $1000" in s.log[0].message


def test_params_round_trip_through_snapshot(rig: Rig):
    s = rig.engine.start_mean_reversion(TOKEN, 50.0, 30, 3, 4)
    dumped = rig.engine.collect()[0]
    assert dumped["params"]["kind"] == "mean-reversion"
    second = Rig(rig.engine.store)
    second.engine.restore([dumped])
    assert isinstance(second.engine.get(s.id).params, MeanReversionParams)


def test_scheduled_params_defaults():
    params = ScheduledBuyParams(amount_per_buy=10, interval_seconds=60)
    assert params.total_budget == 0
    assert scheduled_buy.is_complete(params) is False
