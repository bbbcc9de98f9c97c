"""
Order aggregation: period and return filtering, currency-bucketed sales,
profit and per-product / per-agent / per-client rollups.

Every aggregation pass is a pure fold over canonical orders in fetch order.
Inputs are never mutated; rollup lists are sorted with stable sorts so ties
keep encounter order.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from salesdoctor.config import config
from salesdoctor.currency import classify_order_currency
from salesdoctor.models import CostPriceRecord, Currency, Order
from salesdoctor.observability import get_logger, Timer
from salesdoctor.periods import Period
from salesdoctor.profit import line_profit_record

logger = get_logger(__name__)

SORT_KEYS = ("sales", "profit", "quantity", "order_count")


# ═══════════════════════════════════════════════════════════════════════════════
# RESULT TYPES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class Rollup:
    """
    Accumulated figures for one product, agent or client.

    For products `sales` is the sum of normalized line amounts. For agents
    and clients it is the sum of normalized order totals; profit always
    comes from the lines.
    """
    id: str
    name: str = ""
    sales: float = 0.0
    profit: float = 0.0
    quantity: float = 0.0
    order_count: int = 0
    client_ids: set = field(default_factory=set)

    @property
    def client_count(self) -> int:
        return len(self.client_ids)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "sales": round(self.sales, 2),
            "profit": round(self.profit, 2),
            "quantity": self.quantity,
            "orders": self.order_count,
            "clients": self.client_count,
        }


def rank(rollups: Iterable[Rollup], by: str = "sales", limit: Optional[int] = None) -> List[Rollup]:
    """Stable descending sort by a rollup metric."""
    if by not in SORT_KEYS:
        raise ValueError(f"Unknown sort key: {by}. Must be one of {SORT_KEYS}")
    ranked = sorted(rollups, key=lambda r: getattr(r, by), reverse=True)
    return ranked[:limit] if limit is not None else ranked


@dataclass
class Aggregate:
    """Result of one order aggregation pass."""
    rate: float
    sales_by_currency: Dict[str, float] = field(
        default_factory=lambda: {c.value: 0.0 for c in Currency}
    )
    sales_local_equivalent: float = 0.0
    order_count: int = 0
    per_product: List[Rollup] = field(default_factory=list)
    per_agent: List[Rollup] = field(default_factory=list)
    per_client: List[Rollup] = field(default_factory=list)
    profit_total: float = 0.0
    active_client_ids: set = field(default_factory=set)
    sales_by_day: Dict[str, float] = field(default_factory=dict)
    bonus_line_count: int = 0

    @property
    def local_sales(self) -> float:
        """Sum of every som bucket (cash, noncash, click)."""
        return sum(
            amount for currency_id, amount in self.sales_by_currency.items()
            if currency_id != Currency.USD.value
        )

    @property
    def usd_sales(self) -> float:
        """Raw USD order totals."""
        return self.sales_by_currency.get(Currency.USD.value, 0.0)

    @property
    def active_client_count(self) -> int:
        """AKB: distinct clients with an in-period order."""
        return len(self.active_client_ids)

    @property
    def profit_total_usd(self) -> float:
        return self.profit_total / self.rate if self.rate else 0.0

    def top_products(self, by: str = "sales", limit: Optional[int] = None) -> List[Rollup]:
        return rank(self.per_product, by, limit)

    def top_agents(self, by: str = "sales", limit: Optional[int] = None) -> List[Rollup]:
        return rank(self.per_agent, by, limit)

    def top_clients(self, by: str = "sales", limit: Optional[int] = None) -> List[Rollup]:
        return rank(self.per_client, by, limit)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "salesByCurrency": dict(self.sales_by_currency),
            "localSales": round(self.local_sales, 2),
            "usdSales": round(self.usd_sales, 2),
            "salesLocalEquivalent": round(self.sales_local_equivalent, 2),
            "orderCount": self.order_count,
            "activeClients": self.active_client_count,
            "profitTotal": round(self.profit_total, 2),
            "profitTotalUsd": round(self.profit_total_usd, 2),
            "topProducts": [r.to_dict() for r in self.top_products(limit=10)],
            "topAgents": [r.to_dict() for r in self.top_agents(limit=10)],
            "topClients": [r.to_dict() for r in self.top_clients(limit=10)],
        }


# ═══════════════════════════════════════════════════════════════════════════════
# FILTERS
# ═══════════════════════════════════════════════════════════════════════════════

def is_full_return(order: Order) -> bool:
    """Status 4/5, or returned amount equal to a positive total."""
    return order.is_full_return


def filter_orders_by_period(orders: Iterable[Order], period: Optional[Period]) -> List[Order]:
    """Keep orders dated inside the period; with no period keep everything."""
    if period is None:
        return list(orders)
    return [order for order in orders if period.contains(order.date)]


# ═══════════════════════════════════════════════════════════════════════════════
# AGGREGATION
# ═══════════════════════════════════════════════════════════════════════════════

def _rollup(index: Dict[str, Rollup], key: str, name: str) -> Rollup:
    rollup = index.get(key)
    if rollup is None:
        rollup = index[key] = Rollup(id=key, name=name)
    elif name and not rollup.name:
        rollup.name = name
    return rollup


def aggregate(
    orders: Iterable[Order],
    period: Optional[Period],
    cost_prices: Dict[str, CostPriceRecord],
    rate: float,
    usd_price_types: Optional[Iterable[str]] = None,
    agent_ids: Optional[Iterable[str]] = None,
) -> Aggregate:
    """
    Fold orders into an Aggregate.

    Pipeline per order:
        1. skip full returns
        2. skip orders outside the period (undated orders too, when a period is set)
        3. skip orders of agents outside `agent_ids`, when given
        4. bucket the raw total by currency and add its local equivalent
        5. profit every line and roll it up per product, agent and client

    Args:
        orders: Canonical orders in fetch order
        period: Inclusive date window, or None for all dates
        cost_prices: product_id -> latest cost
        rate: USD -> local exchange rate
        usd_price_types: USD price-type ids (default: static config set)
        agent_ids: Optional agent allow-list (cohort filter)

    Returns:
        Aggregate with rollups sorted descending by sales
    """
    rate = float(rate)
    usd_price_types = frozenset(usd_price_types) if usd_price_types is not None else None
    allowed_agents = set(agent_ids) if agent_ids is not None else None

    result = Aggregate(rate=rate)
    products: Dict[str, Rollup] = {}
    agents: Dict[str, Rollup] = {}
    clients: Dict[str, Rollup] = {}
    returns_skipped = 0

    with Timer("aggregate_orders", logger):
        for order in orders:
            if order.is_full_return:
                returns_skipped += 1
                continue

            if period is not None and not period.contains(order.date):
                continue

            if allowed_agents is not None and order.agent.id not in allowed_agents:
                continue

            currency = classify_order_currency(order, usd_price_types)
            order_local = order.total_summa * rate if currency is Currency.USD else order.total_summa

            result.sales_by_currency[currency.value] += order.total_summa
            result.sales_local_equivalent += order_local
            result.order_count += 1
            if order.date:
                result.sales_by_day[order.date] = result.sales_by_day.get(order.date, 0.0) + order_local

            if order.client.id:
                result.active_client_ids.add(order.client.id)

            agent = _rollup(agents, order.agent.id, order.agent.name) if order.agent.id else None
            client = _rollup(clients, order.client.id, order.client.name) if order.client.id else None

            order_profit = 0.0
            order_quantity = 0.0
            for item in order.line_items:
                record = line_profit_record(item, cost_prices, rate)
                if record.is_bonus:
                    result.bonus_line_count += 1

                product_key = item.product_id or item.product_name or "unknown"
                product = _rollup(products, product_key, item.product_name)
                product.sales += record.sale_local
                product.profit += record.profit
                product.quantity += item.quantity
                product.order_count += 1
                if order.client.id:
                    product.client_ids.add(order.client.id)

                order_profit += record.profit
                order_quantity += item.quantity

            result.profit_total += order_profit

            for rollup in (agent, client):
                if rollup is None:
                    continue
                rollup.sales += order_local
                rollup.profit += order_profit
                rollup.quantity += order_quantity
                rollup.order_count += 1
                if order.client.id:
                    rollup.client_ids.add(order.client.id)

    result.per_product = rank(products.values())
    result.per_agent = rank(agents.values())
    result.per_client = rank(clients.values())

    logger.debug(
        f"Aggregated {result.order_count} orders",
        extra={
            "orders": result.order_count,
            "returns_skipped": returns_skipped,
            "active_clients": result.active_client_count,
        }
    )
    return result


def aggregate_cohort(
    orders: Iterable[Order],
    period: Optional[Period],
    cost_prices: Dict[str, CostPriceRecord],
    rate: float,
    agent_ids: Optional[Iterable[str]] = None,
    usd_price_types: Optional[Iterable[str]] = None,
) -> Aggregate:
    """
    Aggregate a named agent cohort.

    Zero-total orders are dropped first; the allow-list defaults to the
    configured Iroda cohort.
    """
    cohort = config.cohorts.iroda_agent_ids if agent_ids is None else agent_ids
    non_empty = [order for order in orders if order.total_summa != 0]
    return aggregate(
        non_empty,
        period,
        cost_prices,
        rate,
        usd_price_types=usd_price_types,
        agent_ids=cohort,
    )
