"""
Data gateway: canonical entities from the caching service or the RPC API.

For every entity the caching service is asked first (when configured);
when it has nothing usable the gateway falls back to the RPC client. Raw
records are normalized into canonical models here, so nothing above this
layer sees upstream field names.
"""
from typing import Any, Awaitable, Callable, Dict, List, Optional

from salesdoctor.cache_service import CacheServiceClient
from salesdoctor.client import SalesDoctorClient
from salesdoctor.config import config
from salesdoctor.cost_prices import resolve_cost_prices
from salesdoctor.debt import AgentDebt, DebtorClient, OverdueInfo, rank_agent_debts
from salesdoctor.models import (
    Agent,
    BalanceRecord,
    Client,
    CostPriceRecord,
    Order,
    PaymentRecord,
    PriceType,
    Product,
    PurchaseRecord,
    WarehouseStock,
    parse_many,
)
from salesdoctor.observability import get_logger
from salesdoctor.periods import Period
from salesdoctor.schemas import AgentDebtRow, CacheStatusResponse, PeriodStats

logger = get_logger(__name__)

SOURCE_SERVICE = "cache_service"
SOURCE_RPC = "rpc"


def agent_debt_from_row(row: AgentDebtRow) -> AgentDebt:
    """Service agentDebts row -> AgentDebt (signed service debts become positive)."""
    agent = AgentDebt(id=row.id, name=row.name)
    for client in row.clients:
        balance = client.somDebt + client.dollarDebt
        debtor = DebtorClient(
            client_id=client.clientId,
            name=client.name,
            balance=balance,
            local_debt=max(0.0, -client.somDebt),
            usd_debt=max(0.0, -client.dollarDebt),
            overdue=OverdueInfo(
                client_id=client.clientId,
                srok_date=client.srokDate,
                overdue_days=client.overdueDays,
                days_left=client.daysLeft,
                is_overdue=client.isOverdue,
            ),
        )
        agent.clients.append(debtor)
        agent.balance_total += abs(balance)
        agent.local_debt += debtor.local_debt
        agent.usd_debt += debtor.usd_debt
    return agent


class DataGateway:
    """
    Cache-service-first, RPC-fallback entity fetching.

    Usage:
        gateway = DataGateway(SalesDoctorClient(), CacheServiceClient())
        orders = await gateway.orders(period)
    """

    def __init__(self, client: SalesDoctorClient, service: Optional[CacheServiceClient] = None):
        self.client = client
        self.service = service
        self.sources: Dict[str, str] = {}

    async def close(self) -> None:
        await self.client.close()
        if self.service is not None:
            await self.service.close()

    async def _fetch(
        self,
        name: str,
        model: Any,
        rpc_call: Callable[[], Awaitable[List[Dict[str, Any]]]],
        service_call: Optional[Callable[[], Awaitable[Optional[List[Dict[str, Any]]]]]] = None,
    ) -> List[Any]:
        raw = None
        if service_call is not None and self.service_enabled:
            raw = await service_call()
            if raw is None:
                logger.info(f"Cache service miss for {name}, falling back to RPC", extra={"entity": name})

        if raw is None:
            raw = await rpc_call()
            self.sources[name] = SOURCE_RPC
        else:
            self.sources[name] = SOURCE_SERVICE

        records = parse_many(model, raw)
        logger.debug(
            f"Loaded {len(records)} {name}",
            extra={"entity": name, "count": len(records), "source": self.sources[name]}
        )
        return records

    def _service(self, method: str, *args) -> Optional[Callable]:
        if self.service is None:
            return None
        return lambda: getattr(self.service, method)(*args)

    @property
    def service_enabled(self) -> bool:
        return self.service is not None and self.service.enabled

    # ═══════════════════════════════════════════════════════════════════════════
    # ENTITIES
    # ═══════════════════════════════════════════════════════════════════════════

    async def orders(self, period: Optional[Period] = None) -> List[Order]:
        """Orders, upstream-filtered by period when one is given."""
        return await self._fetch(
            "orders", Order,
            lambda: self.client.get_orders(period),
            self._service("get_orders", period),
        )

    async def purchases(self) -> List[PurchaseRecord]:
        return await self._fetch(
            "purchases", PurchaseRecord,
            self.client.get_purchases,
            self._service("get_purchases"),
        )

    async def balances(self) -> List[BalanceRecord]:
        return await self._fetch(
            "balances", BalanceRecord,
            self.client.get_balances,
            self._service("get_balances"),
        )

    async def payments(self) -> List[PaymentRecord]:
        return await self._fetch(
            "payments", PaymentRecord,
            self.client.get_payments,
            self._service("get_payments"),
        )

    async def clients(self) -> List[Client]:
        return await self._fetch(
            "clients", Client,
            self.client.get_clients,
            self._service("get_clients"),
        )

    async def products(self) -> List[Product]:
        return await self._fetch(
            "products", Product,
            self.client.get_products,
            self._service("get_products"),
        )

    async def agents(self) -> List[Agent]:
        return await self._fetch(
            "agents", Agent,
            self.client.get_agents,
            self._service("get_agents"),
        )

    async def price_types(self) -> List[PriceType]:
        # The caching service does not carry price types
        return await self._fetch("price_types", PriceType, self.client.get_price_types)

    async def stock(self) -> List[WarehouseStock]:
        return await self._fetch(
            "stock", WarehouseStock,
            self.client.get_stock,
            self._service("get_stock"),
        )

    async def cost_prices(self, rate: float) -> Dict[str, CostPriceRecord]:
        """
        Latest cost per product.

        The service's precomputed map is only valid for the default rate;
        for any other rate the map is resolved locally from purchases.
        """
        rate = float(rate)
        if self.service_enabled and rate == config.currency.default_rate:
            service_map = await self.service.get_cost_prices()
            if service_map is not None:
                self.sources["cost_prices"] = SOURCE_SERVICE
                return service_map

        purchases = await self.purchases()
        self.sources["cost_prices"] = self.sources["purchases"]
        return resolve_cost_prices(purchases, rate)

    # ═══════════════════════════════════════════════════════════════════════════
    # SERVICE-SIDE VIEWS (no RPC equivalent; None when unavailable)
    # ═══════════════════════════════════════════════════════════════════════════

    async def service_status(self) -> Optional[CacheStatusResponse]:
        if not self.service_enabled:
            return None
        return await self.service.get_status()

    async def period_stats(self, period: Period) -> Optional[PeriodStats]:
        """Precomputed stats from the caching service (built at its own rate)."""
        if not self.service_enabled:
            return None
        stats = await self.service.get_stats(period)
        if stats is not None:
            self.sources["stats"] = SOURCE_SERVICE
        return stats

    async def agent_debts(self, currency: str = "all") -> Optional[List[AgentDebt]]:
        """Per-agent debt from the caching service, ranked like the local rollup."""
        if not self.service_enabled:
            return None
        rows = await self.service.get_agent_debts(currency)
        if rows is None:
            return None
        self.sources["agent_debts"] = SOURCE_SERVICE
        return rank_agent_debts([agent_debt_from_row(row) for row in rows], currency)
