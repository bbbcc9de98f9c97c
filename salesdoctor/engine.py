"""
Analytics engine: cache + gateway + aggregators.

The engine owns one SnapshotCache and one ExchangeRate; nothing else is
shared. Upstream fetches go through the cache, so a failing upstream
degrades to the previous snapshot (or an empty one) instead of raising.
Only authentication failures reach the caller.

Usage:
    engine = AnalyticsEngine(DataGateway(SalesDoctorClient(), CacheServiceClient()))
    snapshot = await engine.dashboard(get_date_range("month"))
    print(snapshot.sales.local_sales, snapshot.errors)
"""
import asyncio
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from salesdoctor.aggregation import Aggregate, aggregate, aggregate_cohort
from salesdoctor.cache import SnapshotCache
from salesdoctor.config import config
from salesdoctor.currency import ExchangeRate, build_usd_price_types
from salesdoctor.debt import (
    AgentDebt,
    DebtSummary,
    OverdueInfo,
    PaymentSummary,
    aggregate_debt,
    compute_overdue,
    per_agent_debt,
    summarize_payments,
)
from salesdoctor.exceptions import AuthenticationError
from salesdoctor.gateway import DataGateway
from salesdoctor.inventory import (
    build_stock_map,
    latest_purchase_prices,
    low_stock,
    stock_valuation,
    stock_value_usd,
)
from salesdoctor.observability import correlation_context, get_logger, Timer
from salesdoctor.periods import Period, business_today
from salesdoctor.schemas import PeriodStats

logger = get_logger(__name__)

# Cache keys
ORDERS = "orders"
COST_PRICES = "cost_prices"
BALANCES = "balances"
PAYMENTS = "payments"
CLIENTS = "clients"
PRODUCTS = "products"
AGENTS = "agents"
PRICE_TYPES = "price_types"
PURCHASES = "purchases"
STOCK = "stock"

DASHBOARD_KEYS = (ORDERS, COST_PRICES, BALANCES, PAYMENTS, CLIENTS, PRICE_TYPES, AGENTS)


@dataclass
class DashboardSnapshot:
    """Everything one dashboard render needs; failed sections keep their empty default."""
    period: Period
    rate: float
    sales: Aggregate
    cohort: Aggregate
    debt: DebtSummary = field(default_factory=DebtSummary)
    payments: PaymentSummary = field(default_factory=PaymentSummary)
    total_clients: int = 0
    errors: Dict[str, str] = field(default_factory=dict)
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_partial(self) -> bool:
        return bool(self.errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": {"name": self.period.name, "startDate": self.period.start_str, "endDate": self.period.end_str},
            "rate": self.rate,
            "sales": self.sales.to_dict(),
            "cohort": self.cohort.to_dict(),
            "debt": self.debt.to_dict(),
            "kassa": self.payments.to_dict(),
            "okb": self.total_clients,
            "akb": self.sales.active_client_count,
            "errors": dict(self.errors),
            "generatedAt": self.generated_at.isoformat(),
        }


@dataclass
class InventoryReport:
    stock_value_usd: float
    total_quantity: float
    products: list
    low_stock: list

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stockValueUSD": self.stock_value_usd,
            "totalQuantity": self.total_quantity,
            "products": [p.to_dict() for p in self.products],
            "lowStock": [p.to_dict() for p in self.low_stock],
        }


class AnalyticsEngine:
    """Composes cached upstream snapshots into sales, debt and inventory stats."""

    def __init__(
        self,
        gateway: DataGateway,
        cache: Optional[SnapshotCache] = None,
        rate: Optional[ExchangeRate] = None,
        cohort_agent_ids: Optional[Iterable[str]] = None,
    ):
        self.gateway = gateway
        self.cache = cache or SnapshotCache(ttl_seconds=config.cache.ttl_seconds)
        self.rate = rate or ExchangeRate()
        self.cohort_agent_ids = tuple(
            config.cohorts.iroda_agent_ids if cohort_agent_ids is None else cohort_agent_ids
        )
        self._fetchers: Dict[str, Callable[[], Awaitable[Any]]] = {
            ORDERS: self.gateway.orders,
            COST_PRICES: lambda: self.gateway.cost_prices(self.rate.value),
            BALANCES: self.gateway.balances,
            PAYMENTS: self.gateway.payments,
            CLIENTS: self.gateway.clients,
            PRODUCTS: self.gateway.products,
            AGENTS: self.gateway.agents,
            PRICE_TYPES: self.gateway.price_types,
            PURCHASES: self.gateway.purchases,
            STOCK: self.gateway.stock,
        }
        self._defaults: Dict[str, Callable[[], Any]] = {COST_PRICES: dict}

    async def close(self) -> None:
        await self.cache.wait_background()
        await self.gateway.close()

    # ═══════════════════════════════════════════════════════════════════════════
    # CONFIGURATION
    # ═══════════════════════════════════════════════════════════════════════════

    def set_exchange_rate(self, value) -> float:
        """
        Change the USD rate and drop the cost price map built with the old one.

        Raises:
            ConfigValidationError: Rate rejected; rate and cache stay as they were
        """
        old_rate = self.rate.value
        new_rate = self.rate.set(value)
        if new_rate != old_rate:
            self.cache.invalidate([COST_PRICES])
        return new_rate

    def invalidate(self, keys: Optional[Iterable[str]] = None) -> int:
        """Explicit cache clear."""
        return self.cache.invalidate(keys)

    # ═══════════════════════════════════════════════════════════════════════════
    # SNAPSHOTS
    # ═══════════════════════════════════════════════════════════════════════════

    def _default(self, key: str) -> Any:
        return self._defaults.get(key, list)()

    async def snapshot(self, key: str) -> Any:
        """Cached entity list (or cost map), refreshed per the cache policy."""
        return await self.cache.get_or_refresh(key, self._fetchers[key], self._default(key))

    async def refresh_all(self, keys: Iterable[str] = DASHBOARD_KEYS) -> Dict[str, Any]:
        """Refresh the given keys concurrently; returns the cache status afterwards."""
        keys = list(keys)
        with correlation_context(), Timer("refresh_all", logger, warn_threshold_ms=10000):
            results = await asyncio.gather(
                *(self.cache.refresh(key, self._fetchers[key], self._default(key)) for key in keys),
                return_exceptions=True,
            )
            for key, result in zip(keys, results):
                if isinstance(result, AuthenticationError):
                    raise result
                if isinstance(result, Exception):
                    logger.error(f"Refresh of {key} failed: {result}", extra={"key": key})
            logger.info(f"Refreshed {len(keys)} cache keys", extra={"keys": keys})
        return self.cache.status()

    async def usd_price_types(self) -> frozenset:
        return build_usd_price_types(await self.snapshot(PRICE_TYPES))

    # ═══════════════════════════════════════════════════════════════════════════
    # REPORTS
    # ═══════════════════════════════════════════════════════════════════════════

    async def sales(self, period: Optional[Period]) -> Aggregate:
        orders, cost_prices, usd_price_types = await asyncio.gather(
            self.snapshot(ORDERS), self.snapshot(COST_PRICES), self.usd_price_types()
        )
        return aggregate(orders, period, cost_prices, self.rate.value, usd_price_types)

    async def cohort_sales(self, period: Optional[Period]) -> Aggregate:
        orders, cost_prices, usd_price_types = await asyncio.gather(
            self.snapshot(ORDERS), self.snapshot(COST_PRICES), self.usd_price_types()
        )
        return aggregate_cohort(
            orders, period, cost_prices, self.rate.value,
            agent_ids=self.cohort_agent_ids, usd_price_types=usd_price_types,
        )

    async def debt(
        self,
        period: Optional[Period] = None,
        currency: str = "all",
        today: Optional[date] = None,
    ) -> DebtSummary:
        balances, payments, orders, agents = await asyncio.gather(
            self.snapshot(BALANCES), self.snapshot(PAYMENTS),
            self.snapshot(ORDERS), self.snapshot(AGENTS),
        )
        return aggregate_debt(
            balances, payments, period, orders, agents,
            today=today or business_today(), currency=currency,
        )

    async def overdue(self, today: Optional[date] = None) -> Dict[str, OverdueInfo]:
        orders, payments = await asyncio.gather(self.snapshot(ORDERS), self.snapshot(PAYMENTS))
        return compute_overdue(orders, payments, today or business_today())

    async def agent_debts(self, currency: str = "all", today: Optional[date] = None) -> List[AgentDebt]:
        """
        Per-agent debt exposure.

        Without an explicit `today` the caching service's agentDebts view is
        used when available; otherwise it is built from cached snapshots.
        """
        if today is None:
            service_rows = await self.gateway.agent_debts(currency)
            if service_rows is not None:
                return service_rows

        balances, orders, payments, agents = await asyncio.gather(
            self.snapshot(BALANCES), self.snapshot(ORDERS),
            self.snapshot(PAYMENTS), self.snapshot(AGENTS),
        )
        overdue = compute_overdue(orders, payments, today or business_today())
        return per_agent_debt(balances, orders, overdue, agents, currency)

    async def kassa(self, period: Optional[Period]) -> PaymentSummary:
        payments, agents, clients = await asyncio.gather(
            self.snapshot(PAYMENTS), self.snapshot(AGENTS), self.snapshot(CLIENTS)
        )
        return summarize_payments(payments, period, agents, clients, self.rate.value)

    async def period_stats(self, period: Period) -> PeriodStats:
        """
        Headline numbers for one period.

        The caching service's precomputed stats are used only at the default
        rate, which is the rate the service computes them with.
        """
        if self.rate.value == config.currency.default_rate:
            stats = await self.gateway.period_stats(period)
            if stats is not None:
                return stats

        sales, cohort, okb, products, inventory = await asyncio.gather(
            self.sales(period), self.cohort_sales(period), self.total_clients(),
            self.snapshot(PRODUCTS), self.inventory(),
        )
        return PeriodStats(
            totalSalesUZS=sales.local_sales,
            totalSalesUSD=sales.usd_sales,
            totalOrders=sales.order_count,
            totalClientsOKB=okb,
            totalClientsAKB=sales.active_client_count,
            totalProducts=len(products),
            stockValueUSD=round(inventory.stock_value_usd),
            totalProfitUZS=sales.profit_total,
            totalProfitUSD=round(sales.profit_total_usd),
            irodaSalesUZS=cohort.local_sales,
            irodaSalesUSD=cohort.usd_sales,
            irodaOrders=cohort.order_count,
        )

    async def status(self) -> Dict[str, Any]:
        """Local cache status, caching service health and where each entity came from."""
        service = await self.gateway.service_status()
        return {
            "rate": self.rate.value,
            "cache": self.cache.status(),
            "service": service.model_dump() if service is not None else None,
            "sources": dict(self.gateway.sources),
        }

    async def total_clients(self) -> int:
        """OKB: every registered client."""
        return len(await self.snapshot(CLIENTS))

    async def inventory(self, threshold: Optional[float] = None) -> InventoryReport:
        products, stock, purchases = await asyncio.gather(
            self.snapshot(PRODUCTS), self.snapshot(STOCK), self.snapshot(PURCHASES)
        )
        stock_map = build_stock_map(stock)
        price_map = latest_purchase_prices(purchases)
        rows = stock_valuation(products, stock_map, price_map, self.rate.value)
        return InventoryReport(
            stock_value_usd=stock_value_usd(products, stock_map, price_map, self.rate.value),
            total_quantity=sum(r.quantity for r in rows),
            products=rows,
            low_stock=low_stock(purchases, stock_map, products, threshold),
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # DASHBOARD
    # ═══════════════════════════════════════════════════════════════════════════

    async def dashboard(self, period: Period, today: Optional[date] = None) -> DashboardSnapshot:
        """
        Build every dashboard section for a period.

        Independent snapshots are fetched concurrently, then each section is
        computed on its own: a failing section keeps its empty default and
        is listed in `errors` without blanking the others.
        """
        today = today or business_today()
        rate = self.rate.value

        with correlation_context(), Timer("dashboard", logger, warn_threshold_ms=5000):
            results = await asyncio.gather(
                *(self.snapshot(key) for key in DASHBOARD_KEYS),
                return_exceptions=True,
            )

            data: Dict[str, Any] = {}
            errors: Dict[str, str] = {}
            for key, result in zip(DASHBOARD_KEYS, results):
                if isinstance(result, AuthenticationError):
                    raise result
                if isinstance(result, Exception):
                    errors[key] = str(result)
                    data[key] = self._default(key)
                else:
                    data[key] = result
                    if key not in self.cache.keys():
                        errors[key] = "upstream unavailable, no cached data"

            snapshot = DashboardSnapshot(
                period=period,
                rate=rate,
                sales=Aggregate(rate=rate),
                cohort=Aggregate(rate=rate),
                errors=errors,
            )
            usd_price_types = build_usd_price_types(data[PRICE_TYPES])

            sections = {
                "sales": lambda: aggregate(
                    data[ORDERS], period, data[COST_PRICES], rate, usd_price_types
                ),
                "cohort": lambda: aggregate_cohort(
                    data[ORDERS], period, data[COST_PRICES], rate,
                    agent_ids=self.cohort_agent_ids, usd_price_types=usd_price_types,
                ),
                "debt": lambda: aggregate_debt(
                    data[BALANCES], data[PAYMENTS], period, data[ORDERS], data[AGENTS], today=today
                ),
                "payments": lambda: summarize_payments(
                    data[PAYMENTS], period, data[AGENTS], data[CLIENTS], rate
                ),
                "total_clients": lambda: len(data[CLIENTS]),
            }
            for name, build in sections.items():
                try:
                    setattr(snapshot, name, build())
                except Exception as e:
                    logger.exception(f"Dashboard section {name} failed", extra={"section": name})
                    snapshot.errors[name] = str(e)

            if snapshot.errors:
                logger.warning(
                    f"Dashboard built with {len(snapshot.errors)} degraded sections",
                    extra={"sections": sorted(snapshot.errors)}
                )
        return snapshot
