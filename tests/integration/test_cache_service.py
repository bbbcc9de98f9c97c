"""
Integration tests for salesdoctor/cache_service.py and salesdoctor/gateway.py

Tests the caching-service client (every failure reads as a miss) and the
gateway's service-first, RPC-fallback loading.
"""
import pytest
from datetime import date
from unittest.mock import AsyncMock, MagicMock

import httpx

from salesdoctor.cache_service import CacheServiceClient
from salesdoctor.config import config
from salesdoctor.gateway import SOURCE_RPC, SOURCE_SERVICE, DataGateway
from salesdoctor.models import Currency, Order
from salesdoctor.periods import Period

BASE_URL = "https://cache.example.com"


def make_response(payload, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    return response


def make_service(*responses):
    service = CacheServiceClient(BASE_URL, timeout=1.0)
    service._client = MagicMock()
    service._client.get = AsyncMock(side_effect=[
        r if isinstance(r, Exception) else make_response(r) for r in responses
    ])
    return service


class TestCacheServiceClient:
    """Tests for CacheServiceClient class."""

    def test_disabled_without_url(self):
        assert not CacheServiceClient("").enabled
        assert CacheServiceClient(BASE_URL + "/").base_url == BASE_URL

    @pytest.mark.asyncio
    async def test_disabled_returns_none(self):
        assert await CacheServiceClient("").get_balances() is None

    @pytest.mark.asyncio
    async def test_context_manager(self):
        service = CacheServiceClient(BASE_URL)
        async with service:
            assert service._client is not None
        assert service._client is None

    @pytest.mark.asyncio
    async def test_records(self):
        service = make_service({"status": True, "result": {"balance": [{"SD_id": "c_1"}]}, "total": 1})

        assert await service.get_balances() == [{"SD_id": "c_1"}]
        url = service._client.get.await_args.args[0]
        assert url == f"{BASE_URL}/api/cache/balances"

    @pytest.mark.asyncio
    async def test_named_period_orders(self):
        service = make_service({"status": True, "result": {"order": []}})
        period = Period("month", date(2026, 1, 1), date(2026, 1, 15))

        assert await service.get_orders(period) == []
        assert service._client.get.await_args.args[0].endswith("/api/cache/orders/month")

    @pytest.mark.asyncio
    async def test_status_false_is_miss(self):
        service = make_service({"status": False, "error": "Cache not ready"})
        assert await service.get_payments() is None

    @pytest.mark.asyncio
    async def test_http_error_is_miss(self):
        service = make_service(make_response({}, status_code=503))
        assert await service.get_payments() is None

    @pytest.mark.asyncio
    async def test_unreachable_is_miss(self):
        service = make_service(httpx.ConnectError("refused"))
        assert await service.get_clients() is None

    @pytest.mark.asyncio
    async def test_malformed_body_is_miss(self):
        service = make_service({"result": []})  # no status
        assert await service.get_products() is None

    @pytest.mark.asyncio
    async def test_missing_key_is_miss(self):
        service = make_service({"status": True, "result": {"other": []}})
        assert await service.get_agents() is None

    @pytest.mark.asyncio
    async def test_cost_prices(self):
        service = make_service({"status": True, "result": {
            "p_1": {"name": "Product A", "costPrice": 5, "costPriceUZS": 61000, "currency": "USD", "date": "2026-01-02"},
        }})

        prices = await service.get_cost_prices()

        assert prices["p_1"].currency is Currency.USD
        assert prices["p_1"].price_local == 61000.0

    @pytest.mark.asyncio
    async def test_custom_stats_pass_dates(self):
        service = make_service({"status": True, "result": {"totalSalesUZS": 1000, "totalOrders": 2}, "serverRate": 12200})
        period = Period("custom", date(2025, 12, 1), date(2025, 12, 31))

        stats = await service.get_stats(period)

        assert stats.totalOrders == 2
        kwargs = service._client.get.await_args.kwargs
        assert kwargs["params"] == {"startDate": "2025-12-01", "endDate": "2025-12-31"}

    @pytest.mark.asyncio
    async def test_status_endpoint(self):
        service = make_service({"status": True, "hasData": True, "counts": {"orders": 10}})
        status = await service.get_status()
        assert status.hasData
        assert status.counts == {"orders": 10}

    @pytest.mark.asyncio
    async def test_agent_debts(self):
        service = make_service({"status": True, "result": {"agents": [
            {"id": "d0_7", "name": "Agent Seven", "totalSom": -300000, "clients": [{"clientId": "c_1", "somDebt": -300000}]},
        ]}, "totalSom": -300000})

        rows = await service.get_agent_debts("som")

        assert rows[0].id == "d0_7"
        assert rows[0].clients[0].somDebt == -300000
        assert service._client.get.await_args.kwargs["params"] == {"currency": "som"}


class TestDataGateway:
    """Tests for DataGateway fallback and normalization."""

    @pytest.fixture
    def rpc(self, sample_orders, sample_purchases):
        client = MagicMock()
        client.get_orders = AsyncMock(return_value=sample_orders)
        client.get_purchases = AsyncMock(return_value=sample_purchases)
        client.get_price_types = AsyncMock(return_value=[{"SD_id": "d0_6", "name": "Optom $"}])
        client.close = AsyncMock()
        return client

    @pytest.mark.asyncio
    async def test_rpc_only(self, rpc):
        gateway = DataGateway(rpc)

        orders = await gateway.orders()

        assert all(isinstance(o, Order) for o in orders)
        assert len(orders) == 4
        assert gateway.sources["orders"] == SOURCE_RPC

    @pytest.mark.asyncio
    async def test_service_first(self, rpc, sample_order):
        service = make_service({"status": True, "result": {"order": [sample_order]}})
        gateway = DataGateway(rpc, service)

        orders = await gateway.orders()

        assert [o.id for o in orders] == ["o_1001"]
        assert gateway.sources["orders"] == SOURCE_SERVICE
        rpc.get_orders.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_service_miss_falls_back(self, rpc):
        service = make_service({"status": False})
        gateway = DataGateway(rpc, service)

        orders = await gateway.orders()

        assert len(orders) == 4
        assert gateway.sources["orders"] == SOURCE_RPC

    @pytest.mark.asyncio
    async def test_price_types_rpc_only(self, rpc):
        service = make_service()
        gateway = DataGateway(rpc, service)

        price_types = await gateway.price_types()

        assert price_types[0].name == "Optom $"
        service._client.get.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cost_prices_from_service_at_default_rate(self, rpc):
        service = make_service({"status": True, "result": {"p_1": {"costPriceUZS": 50000}}})
        gateway = DataGateway(rpc, service)

        prices = await gateway.cost_prices(config.currency.default_rate)

        assert prices["p_1"].price_local == 50000.0
        assert gateway.sources["cost_prices"] == SOURCE_SERVICE
        rpc.get_purchases.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cost_prices_resolved_locally_at_other_rate(self, rpc):
        service = make_service({"status": False})
        gateway = DataGateway(rpc, service)

        prices = await gateway.cost_prices(config.currency.default_rate + 1000)

        # Only the purchases lookup reached the service
        assert service._client.get.await_count == 1
        assert prices["p_1"].raw_price == 60000.0
        assert gateway.sources["cost_prices"] == SOURCE_RPC

    @pytest.mark.asyncio
    async def test_service_views_need_service(self, rpc, january):
        gateway = DataGateway(rpc)

        assert await gateway.service_status() is None
        assert await gateway.period_stats(january) is None
        assert await gateway.agent_debts("all") is None

    @pytest.mark.asyncio
    async def test_period_stats_from_service(self, rpc, january):
        service = make_service({"status": True, "result": {"totalSalesUZS": 250000, "irodaOrders": 2}})
        gateway = DataGateway(rpc, service)

        stats = await gateway.period_stats(january)

        assert stats.totalSalesUZS == 250000
        assert stats.irodaOrders == 2
        assert gateway.sources["stats"] == SOURCE_SERVICE

    @pytest.mark.asyncio
    async def test_agent_debts_from_service(self, rpc):
        """Signed service debts become positive and are re-ranked by exposure."""
        service = make_service({"status": True, "result": {"agents": [
            {"id": "d0_9", "name": "Agent Nine", "clients": [
                {"clientId": "c_3", "somDebt": -100000, "srokDate": "2026-01-05", "overdueDays": 10, "isOverdue": True},
            ]},
            {"id": "d0_7", "name": "Agent Seven", "clients": [
                {"clientId": "c_1", "somDebt": -300000},
                {"clientId": "c_2", "dollarDebt": -50},
            ]},
        ]}})
        gateway = DataGateway(rpc, service)

        agents = await gateway.agent_debts("all")

        assert [a.id for a in agents] == ["d0_7", "d0_9"]
        seven = agents[0]
        assert seven.local_debt == 300000.0
        assert seven.usd_debt == 50.0
        assert seven.balance_total == 300050.0
        assert seven.client_count == 2
        assert agents[1].overdue_client_count == 1
        assert agents[1].clients[0].overdue.srok_date == "2026-01-05"
        assert gateway.sources["agent_debts"] == SOURCE_SERVICE

    @pytest.mark.asyncio
    async def test_agent_debts_service_miss(self, rpc):
        service = make_service({"status": False})
        gateway = DataGateway(rpc, service)

        assert await gateway.agent_debts("som") is None
        assert "agent_debts" not in gateway.sources

    @pytest.mark.asyncio
    async def test_close(self, rpc):
        service = CacheServiceClient(BASE_URL)
        await service.connect()
        gateway = DataGateway(rpc, service)

        await gateway.close()

        rpc.close.assert_awaited_once()
        assert service._client is None
