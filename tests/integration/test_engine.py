"""
Integration tests for salesdoctor/engine.py

Runs the analytics engine over a fake gateway serving the shared fixtures.
"""
import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from salesdoctor.cache import SnapshotCache
from salesdoctor.cost_prices import resolve_cost_prices
from salesdoctor.currency import ExchangeRate
from salesdoctor.debt import AgentDebt
from salesdoctor.engine import COST_PRICES, DASHBOARD_KEYS, ORDERS, AnalyticsEngine
from salesdoctor.exceptions import AuthExpiredError, ConfigValidationError, TransportError
from salesdoctor.models import Agent, Client, PriceType, Product, WarehouseStock, parse_many
from salesdoctor.schemas import CacheStatusResponse, PeriodStats

RATE = 12200.0


@pytest.fixture
def gateway(orders, purchases, balances, payments, sample_stock):
    """Gateway double answering with canonical fixture records."""
    gateway = MagicMock()
    gateway.orders = AsyncMock(return_value=orders)
    gateway.purchases = AsyncMock(return_value=purchases)
    gateway.balances = AsyncMock(return_value=balances)
    gateway.payments = AsyncMock(return_value=payments)
    gateway.clients = AsyncMock(return_value=[Client("c_1", "Client One"), Client("c_2"), Client("c_3"), Client("c_4")])
    gateway.products = AsyncMock(return_value=[Product("p_1", "Product A"), Product("p_2", "Product B")])
    gateway.agents = AsyncMock(return_value=[Agent("d0_7", "Agent Seven"), Agent("d0_9", "Agent Nine")])
    gateway.price_types = AsyncMock(return_value=[PriceType("d0_1", "Retail")])
    gateway.stock = AsyncMock(return_value=parse_many(WarehouseStock, sample_stock))
    gateway.cost_prices = AsyncMock(side_effect=lambda rate: resolve_cost_prices(purchases, rate))
    # No caching service behind this gateway
    gateway.service_status = AsyncMock(return_value=None)
    gateway.period_stats = AsyncMock(return_value=None)
    gateway.agent_debts = AsyncMock(return_value=None)
    gateway.sources = {}
    gateway.close = AsyncMock()
    return gateway


@pytest.fixture
def engine(gateway):
    return AnalyticsEngine(
        gateway,
        cache=SnapshotCache(ttl_seconds=300),
        rate=ExchangeRate(RATE),
        cohort_agent_ids=["d0_7"],
    )


class TestDashboard:
    """Tests for AnalyticsEngine.dashboard."""

    @pytest.mark.asyncio
    async def test_full_dashboard(self, engine, january, today):
        snapshot = await engine.dashboard(january, today=today)

        assert not snapshot.is_partial
        assert snapshot.sales.order_count == 2
        assert snapshot.sales.sales_local_equivalent == 250000 + 40 * RATE
        assert snapshot.cohort.order_count == 2
        assert snapshot.debt.debtor_count == 2
        assert snapshot.payments.total_local == 100000.0
        assert snapshot.total_clients == 4

    @pytest.mark.asyncio
    async def test_to_dict(self, engine, january, today):
        data = (await engine.dashboard(january, today=today)).to_dict()

        assert data["okb"] == 4
        assert data["akb"] == 2
        assert data["period"] == {"name": "month", "startDate": "2026-01-01", "endDate": "2026-01-15"}
        assert data["errors"] == {}

    @pytest.mark.asyncio
    async def test_fetches_each_key_once(self, engine, gateway, january, today):
        """Second render within the TTL is served from cache."""
        await engine.dashboard(january, today=today)
        await engine.dashboard(january, today=today)

        gateway.orders.assert_awaited_once()
        gateway.balances.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_upstream_failure_isolated(self, engine, gateway, january, today):
        """A failing source with nothing cached leaves the other sections intact."""
        gateway.balances.side_effect = TransportError("Sales Doctor unreachable")

        snapshot = await engine.dashboard(january, today=today)

        assert snapshot.is_partial
        assert "balances" in snapshot.errors
        assert snapshot.debt.debtor_count == 0
        assert snapshot.sales.order_count == 2

    @pytest.mark.asyncio
    async def test_section_failure_isolated(self, engine, january, today):
        with patch("salesdoctor.engine.aggregate_debt", side_effect=ValueError("boom")):
            snapshot = await engine.dashboard(january, today=today)

        assert snapshot.errors == {"debt": "boom"}
        assert snapshot.debt.debtor_count == 0
        assert snapshot.sales.order_count == 2
        assert snapshot.payments.payment_count == 2

    @pytest.mark.asyncio
    async def test_auth_failure_propagates(self, engine, gateway, january, today):
        gateway.orders.side_effect = AuthExpiredError("Authorization failed after re-login")

        with pytest.raises(AuthExpiredError):
            await engine.dashboard(january, today=today)


class TestRefresh:
    """Tests for refresh_all and snapshot fallback."""

    @pytest.mark.asyncio
    async def test_refresh_all_status(self, engine):
        status = await engine.refresh_all()
        assert set(status["entries"]) == set(DASHBOARD_KEYS)

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_snapshot(self, engine, gateway, orders):
        await engine.refresh_all([ORDERS])
        gateway.orders.side_effect = TransportError("Request timeout after 5.0s")

        await engine.refresh_all([ORDERS])

        assert engine.cache.get(ORDERS) == orders
        assert gateway.orders.await_count == 2

    @pytest.mark.asyncio
    async def test_refresh_all_auth_failure(self, engine, gateway):
        gateway.balances.side_effect = AuthExpiredError("Token expired")

        with pytest.raises(AuthExpiredError):
            await engine.refresh_all()


class TestExchangeRate:
    """Tests for set_exchange_rate."""

    @pytest.mark.asyncio
    async def test_rate_change_drops_cost_prices(self, engine, gateway):
        await engine.snapshot(COST_PRICES)

        engine.set_exchange_rate(13000)
        prices = await engine.snapshot(COST_PRICES)

        gateway.cost_prices.assert_awaited_with(13000.0)
        assert prices["p_2"].price_local == 65000.0

    @pytest.mark.asyncio
    async def test_rate_change_during_cost_refresh(self, engine, gateway, purchases):
        """A cost map built at the old rate is discarded and rebuilt."""
        release = asyncio.Event()

        async def gated_cost_prices(rate):
            await release.wait()
            return resolve_cost_prices(purchases, rate)

        gateway.cost_prices = AsyncMock(side_effect=gated_cost_prices)
        task = asyncio.create_task(engine.snapshot(COST_PRICES))
        await asyncio.sleep(0)
        engine.set_exchange_rate(13000)
        release.set()

        prices = await task

        assert prices["p_2"].price_local == 5 * 13000
        assert engine.cache.get(COST_PRICES)["p_2"].price_local == 5 * 13000
        assert engine.cache.is_fresh(COST_PRICES)
        assert [c.args for c in gateway.cost_prices.await_args_list] == [(RATE,), (13000.0,)]

    @pytest.mark.asyncio
    async def test_invalid_rate_keeps_state(self, engine):
        await engine.snapshot(COST_PRICES)

        with pytest.raises(ConfigValidationError):
            engine.set_exchange_rate(70000)

        assert engine.rate.value == RATE
        assert COST_PRICES in engine.cache.keys()

    @pytest.mark.asyncio
    async def test_usd_sales_follow_rate(self, engine, january):
        before = await engine.sales(january)
        engine.set_exchange_rate(10000)
        after = await engine.sales(january)

        assert before.sales_local_equivalent == 250000 + 40 * RATE
        assert after.sales_local_equivalent == 250000 + 40 * 10000


class TestReports:
    """Tests for the individual report methods."""

    @pytest.mark.asyncio
    async def test_agent_debts(self, engine, gateway, today):
        agents = await engine.agent_debts("dollar", today=today)
        assert [a.id for a in agents] == ["d0_7"]
        assert agents[0].usd_debt == 50.0
        # An explicit day is always computed locally
        gateway.agent_debts.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_agent_debts_prefers_service(self, engine, gateway):
        gateway.agent_debts = AsyncMock(return_value=[AgentDebt("d0_7", "Agent Seven", local_debt=1.0)])

        agents = await engine.agent_debts("som")

        assert [a.local_debt for a in agents] == [1.0]
        gateway.agent_debts.assert_awaited_once_with("som")
        gateway.balances.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_agent_debts_service_miss_builds_locally(self, engine, gateway):
        agents = await engine.agent_debts("dollar")

        gateway.agent_debts.assert_awaited_once_with("dollar")
        assert [a.id for a in agents] == ["d0_7"]

    @pytest.mark.asyncio
    async def test_period_stats_local(self, engine, january):
        stats = await engine.period_stats(january)

        assert stats.totalSalesUZS == 250000.0
        assert stats.totalSalesUSD == 40.0
        assert stats.totalOrders == 2
        assert stats.totalClientsOKB == 4
        assert stats.totalClientsAKB == 2
        assert stats.totalProducts == 2
        assert stats.stockValueUSD == round(2500 + 60 * 60000 / RATE)
        assert stats.totalProfitUZS == pytest.approx(142200.0)
        assert stats.irodaOrders == 2

    @pytest.mark.asyncio
    async def test_period_stats_from_service_at_default_rate(self, engine, gateway, january):
        gateway.period_stats = AsyncMock(return_value=PeriodStats(totalOrders=99))

        with patch("salesdoctor.engine.config") as cfg:
            cfg.currency.default_rate = RATE
            stats = await engine.period_stats(january)

        assert stats.totalOrders == 99
        gateway.orders.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_period_stats_ignore_service_at_other_rate(self, engine, gateway, january):
        gateway.period_stats = AsyncMock(return_value=PeriodStats(totalOrders=99))
        engine.set_exchange_rate(13000)

        with patch("salesdoctor.engine.config") as cfg:
            cfg.currency.default_rate = RATE
            stats = await engine.period_stats(january)

        assert stats.totalOrders == 2
        gateway.period_stats.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_status(self, engine, gateway):
        gateway.service_status = AsyncMock(return_value=CacheStatusResponse(status=True, hasData=True))
        gateway.sources = {"orders": "rpc"}
        await engine.snapshot(ORDERS)

        status = await engine.status()

        assert status["rate"] == RATE
        assert status["service"]["hasData"] is True
        assert status["sources"] == {"orders": "rpc"}
        assert "orders" in status["cache"]["entries"]

    @pytest.mark.asyncio
    async def test_overdue(self, engine, today):
        overdue = await engine.overdue(today=today)
        assert overdue["c_3"].is_overdue

    @pytest.mark.asyncio
    async def test_kassa(self, engine, january):
        summary = await engine.kassa(january)
        assert summary.total_usd == 20.0
        assert summary.agents[0].name == "Agent Seven"

    @pytest.mark.asyncio
    async def test_inventory(self, engine):
        report = await engine.inventory()
        assert report.stock_value_usd == round(2500 + 60 * 60000 / RATE, 2)
        assert report.total_quantity == 560.0
        assert [r.product_id for r in report.low_stock] == ["p_3", "p_1"]

    @pytest.mark.asyncio
    async def test_inventory_total_from_stock_value(self, engine):
        with patch("salesdoctor.engine.stock_value_usd", return_value=123.45) as total:
            report = await engine.inventory()

        total.assert_called_once()
        assert report.stock_value_usd == 123.45

    @pytest.mark.asyncio
    async def test_total_clients(self, engine):
        assert await engine.total_clients() == 4

    @pytest.mark.asyncio
    async def test_close(self, engine, gateway):
        await engine.close()
        gateway.close.assert_awaited_once()
