"""
Tests for resolution and redemption.

Tests cover:
- Winning and losing positions redeemed at $1 / $0
- Unresolved markets and markets without a published winner
- Lookup failures counted and retried later
- Redemption audit records
- End date backfill and stale price refresh
- Overlapping runs
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.api.clob import ResolutionLookupError, ResolutionStatus
from src.api.gamma import MarketInfo
from src.copytrade.ledger import REAL
from src.copytrade.notifier import REDEMPTION
from src.copytrade.reconciler import REDEEM_SIDE, Reconciler


@pytest.fixture
def resolver():
    mock = MagicMock()
    mock.get_resolution.return_value = ResolutionStatus(resolved=True, winning_outcome="Yes")
    return mock


@pytest.fixture
def notifier():
    mock = MagicMock()
    mock.notify = AsyncMock()
    return mock


@pytest.fixture
def reconciler(ledger, store, resolver, notifier, clock):
    return Reconciler(ledger, store, resolver=resolver, notifier=notifier, clock=clock)


def hold(ledger, clock, owner="alice", outcome="Yes", asset_id="token-yes", condition_id="cond-1",
         shares=100, price="0.4", ended=True, kind="paper"):
    """Open an account if needed and buy a position in a market."""
    if ledger.get_account(owner, kind) is None:
        if kind == REAL:
            ledger.sync_cash(owner, 1000, REAL)
        else:
            ledger.open_account(owner, 1000)
    end_date = clock.now - 60 if ended else clock.now + 86400
    ledger.apply_buy(
        owner, asset_id, shares, price,
        kind=kind, condition_id=condition_id, title="Will it rain tomorrow?", outcome=outcome, end_date=end_date,
    )


class TestRedemption:
    """Tests for settling resolved markets."""

    @pytest.mark.asyncio
    async def test_winning_position(self, reconciler, ledger, clock, notifier):
        hold(ledger, clock)
        assert ledger.get_account("alice").cash == Decimal("960")

        summary = await reconciler.run_once()

        assert summary["redeemed"] == 1
        assert ledger.get_account("alice").cash == Decimal("1060")
        assert ledger.get_position("alice", "token-yes") is None
        assert notifier.notify.call_args.args[1] == REDEMPTION
        assert notifier.notify.call_args.args[2]["won"] is True

    @pytest.mark.asyncio
    async def test_losing_position(self, reconciler, ledger, clock, resolver):
        hold(ledger, clock)
        resolver.get_resolution.return_value = ResolutionStatus(resolved=True, winning_outcome="No")

        summary = await reconciler.run_once()

        assert summary["redeemed"] == 1
        assert ledger.get_account("alice").cash == Decimal("960")
        assert ledger.get_position("alice", "token-yes") is None

    @pytest.mark.asyncio
    async def test_outcome_match_ignores_case(self, reconciler, ledger, clock, resolver):
        hold(ledger, clock)
        resolver.get_resolution.return_value = ResolutionStatus(resolved=True, winning_outcome="YES")

        await reconciler.run_once()

        assert ledger.get_account("alice").cash == Decimal("1060")

    @pytest.mark.asyncio
    async def test_both_sides_one_lookup(self, reconciler, ledger, clock, resolver):
        hold(ledger, clock, outcome="Yes", asset_id="token-yes")
        hold(ledger, clock, outcome="No", asset_id="token-no")

        summary = await reconciler.run_once()

        assert summary["checked"] == 1
        assert summary["redeemed"] == 2
        resolver.get_resolution.assert_called_once_with("cond-1")
        # 1000 - 40 - 40 + 100
        assert ledger.get_account("alice").cash == Decimal("1020")

    @pytest.mark.asyncio
    async def test_real_shadow_position(self, reconciler, ledger, clock):
        hold(ledger, clock, kind=REAL)

        await reconciler.run_once()

        assert ledger.get_account("alice", REAL).cash == Decimal("1060")
        assert ledger.get_position("alice", "token-yes", REAL) is None

    @pytest.mark.asyncio
    async def test_redemption_recorded(self, reconciler, ledger, store, clock):
        hold(ledger, clock)

        await reconciler.run_once()

        history = store.history("alice")
        assert len(history) == 1
        assert history[0].side == REDEEM_SIDE
        assert history[0].shares == Decimal("100")
        assert history[0].price == Decimal("1")

    @pytest.mark.asyncio
    async def test_status_counts_redemptions(self, reconciler, ledger, clock):
        hold(ledger, clock)

        await reconciler.run_once()

        status = reconciler.get_status()
        assert status["total_redeemed"] == 1
        assert status["last_run"] == clock.now
        assert status["running"] is False


class TestNotRedeemed:
    """Tests for positions that must be left alone."""

    @pytest.mark.asyncio
    async def test_market_not_ended(self, reconciler, ledger, clock, resolver):
        hold(ledger, clock, ended=False)

        summary = await reconciler.run_once()

        assert summary["checked"] == 0
        resolver.get_resolution.assert_not_called()

    @pytest.mark.asyncio
    async def test_unresolved(self, reconciler, ledger, clock, resolver):
        hold(ledger, clock)
        resolver.get_resolution.return_value = ResolutionStatus(resolved=False)

        summary = await reconciler.run_once()

        assert summary["pending"] == 1
        assert ledger.held_shares("alice", "token-yes") == Decimal("100")

    @pytest.mark.asyncio
    async def test_resolved_without_winner(self, reconciler, ledger, clock, resolver):
        hold(ledger, clock)
        resolver.get_resolution.return_value = ResolutionStatus(resolved=True, winning_outcome=None)

        summary = await reconciler.run_once()

        assert summary["pending"] == 1
        assert summary["redeemed"] == 0
        assert ledger.held_shares("alice", "token-yes") == Decimal("100")

    @pytest.mark.asyncio
    async def test_lookup_failure_retried_next_run(self, reconciler, ledger, clock, resolver):
        hold(ledger, clock)
        resolver.get_resolution.side_effect = ResolutionLookupError("down")

        summary = await reconciler.run_once()

        assert summary["errors"] == 1
        assert ledger.held_shares("alice", "token-yes") == Decimal("100")

        resolver.get_resolution.side_effect = None
        summary = await reconciler.run_once()

        assert summary["redeemed"] == 1

    @pytest.mark.asyncio
    async def test_inactive_account_skipped(self, reconciler, ledger, clock, resolver):
        hold(ledger, clock)
        ledger.close_account("alice")

        summary = await reconciler.run_once()

        assert summary["checked"] == 0
        resolver.get_resolution.assert_not_called()

    @pytest.mark.asyncio
    async def test_overlapping_run_skipped(self, reconciler, ledger, clock, resolver):
        hold(ledger, clock)
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_backfill():
            started.set()
            await release.wait()
            return 0

        reconciler.backfill_end_dates = slow_backfill

        first = asyncio.create_task(reconciler.run_once())
        await started.wait()

        assert reconciler.get_status()["running"] is True
        assert await reconciler.run_once() == {"skipped": True}

        release.set()
        summary = await first
        assert summary["redeemed"] == 1


class TestMaintenance:
    """Tests for end date backfill and price refresh."""

    @pytest.mark.asyncio
    async def test_backfill_end_dates(self, ledger, store, resolver, clock):
        ledger.open_account("alice", 1000)
        ledger.apply_buy("alice", "token-yes", 10, "0.5", condition_id="cond-1", outcome="Yes")
        lookup = MagicMock()
        lookup.get_market.return_value = MarketInfo("cond-1", end_date=clock.now - 60)
        reconciler = Reconciler(ledger, store, resolver=resolver, market_lookup=lookup, clock=clock)

        summary = await reconciler.run_once()

        assert summary["backfilled"] == 1
        assert summary["redeemed"] == 1
        lookup.get_market.assert_called_once_with("cond-1")

    @pytest.mark.asyncio
    async def test_backfill_lookup_failure(self, ledger, store, resolver, clock):
        ledger.open_account("alice", 1000)
        ledger.apply_buy("alice", "token-yes", 10, "0.5", condition_id="cond-1")
        lookup = MagicMock()
        lookup.get_market.side_effect = RuntimeError("down")
        reconciler = Reconciler(ledger, store, resolver=resolver, market_lookup=lookup, clock=clock)

        assert await reconciler.backfill_end_dates() == 0
        assert ledger.get_position("alice", "token-yes").end_date is None

    @pytest.mark.asyncio
    async def test_refresh_stale_prices(self, ledger, store, resolver, prices, clock):
        hold(ledger, clock, ended=False)
        source = MagicMock()
        source.get_midpoint.return_value = Decimal("0.7")
        reconciler = Reconciler(ledger, store, resolver=resolver, price_source=source, clock=clock)

        refreshed = await reconciler.refresh_stale_prices()

        assert refreshed == 1
        assert prices.get("token-yes") == Decimal("0.7")

    @pytest.mark.asyncio
    async def test_fresh_prices_not_refetched(self, ledger, store, resolver, prices, clock):
        hold(ledger, clock, ended=False)
        prices.update("token-yes", "0.6")
        source = MagicMock()
        reconciler = Reconciler(ledger, store, resolver=resolver, price_source=source, clock=clock)

        assert await reconciler.refresh_stale_prices() == 0
        source.get_midpoint.assert_not_called()
