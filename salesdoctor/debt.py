"""
Debt, balance and payment aggregation.

- currency-bucketed balance and payment totals with a debtor count
- overdue anchors (earliest unpaid due date per client)
- per-agent debt exposure, filterable by som / dollar
- cash-desk ("kassa") payment summary per agent and client
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

from salesdoctor.config import config
from salesdoctor.models import (
    Agent,
    BalanceRecord,
    Client,
    Currency,
    Order,
    PaymentRecord,
    date_part,
)
from salesdoctor.observability import get_logger
from salesdoctor.periods import Period
from salesdoctor.validators import validate_currency_filter

logger = get_logger(__name__)

LOCAL_DEBT_CURRENCIES = (Currency.LOCAL_CASH, Currency.LOCAL_NONCASH)


# ═══════════════════════════════════════════════════════════════════════════════
# RESULT TYPES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class OverdueInfo:
    """Due-date status of one client's unpaid orders."""
    client_id: str
    srok_date: str = ""
    overdue_days: int = 0
    days_left: int = 0
    is_overdue: bool = False
    unpaid_orders: int = 0
    total_unpaid_debt: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "srokDate": self.srok_date,
            "overdueDays": self.overdue_days,
            "daysLeft": self.days_left,
            "isOverdue": self.is_overdue,
            "unpaidOrders": self.unpaid_orders,
            "totalUnpaidDebt": round(self.total_unpaid_debt, 2),
        }


@dataclass
class DebtorClient:
    """One debtor row inside an agent's debt rollup."""
    client_id: str
    name: str
    balance: float
    local_debt: float
    usd_debt: float
    overdue: OverdueInfo

    def to_dict(self) -> Dict[str, Any]:
        row = {
            "clientId": self.client_id,
            "name": self.name,
            "balance": self.balance,
            "somDebt": self.local_debt,
            "dollarDebt": self.usd_debt,
        }
        row.update(self.overdue.to_dict())
        return row


@dataclass
class AgentDebt:
    """Debt exposure of all debtor clients served by one agent."""
    id: str
    name: str = ""
    balance_total: float = 0.0
    local_debt: float = 0.0
    usd_debt: float = 0.0
    clients: List[DebtorClient] = field(default_factory=list)

    @property
    def client_count(self) -> int:
        return len(self.clients)

    @property
    def overdue_client_count(self) -> int:
        return sum(1 for c in self.clients if c.overdue.is_overdue)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "balanceTotal": round(self.balance_total, 2),
            "totalSom": round(self.local_debt, 2),
            "totalDollar": round(self.usd_debt, 2),
            "clientCount": self.client_count,
            "overdueClients": self.overdue_client_count,
            "clients": [c.to_dict() for c in self.clients],
        }


@dataclass
class DebtSummary:
    """Result of one debt aggregation pass."""
    balance_by_currency: Dict[str, float] = field(
        default_factory=lambda: {c.value: 0.0 for c in Currency}
    )
    debt_by_currency: Dict[str, float] = field(
        default_factory=lambda: {c.value: 0.0 for c in Currency}
    )
    debtor_count: int = 0
    total_balance: float = 0.0
    payments_by_currency: Dict[str, float] = field(
        default_factory=lambda: {c.value: 0.0 for c in Currency}
    )
    payment_count: int = 0
    per_agent_debt: List[AgentDebt] = field(default_factory=list)

    @property
    def local_debt(self) -> float:
        return sum(
            amount for currency_id, amount in self.debt_by_currency.items()
            if currency_id != Currency.USD.value
        )

    @property
    def usd_debt(self) -> float:
        return self.debt_by_currency.get(Currency.USD.value, 0.0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "balanceByCurrency": dict(self.balance_by_currency),
            "debtByCurrency": dict(self.debt_by_currency),
            "debtorCount": self.debtor_count,
            "totalBalance": round(self.total_balance, 2),
            "paymentsByCurrency": dict(self.payments_by_currency),
            "paymentCount": self.payment_count,
            "agents": [a.to_dict() for a in self.per_agent_debt],
        }


@dataclass
class PaymentRollup:
    """Cash-desk totals for one agent or one client."""
    id: str
    name: str = ""
    total_local: float = 0.0
    total_usd: float = 0.0
    count: int = 0
    clients: List["PaymentRollup"] = field(default_factory=list)

    def weight(self, rate: float) -> float:
        return self.total_local + self.total_usd * rate

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "totalUZS": self.total_local,
            "totalUSD": self.total_usd,
            "count": self.count,
        }
        if self.clients:
            data["clients"] = [c.to_dict() for c in self.clients]
        return data


@dataclass
class PaymentSummary:
    """Cash-desk view of a period's incoming payments."""
    total_local: float = 0.0
    total_usd: float = 0.0
    payment_count: int = 0
    agents: List[PaymentRollup] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalUZS": self.total_local,
            "totalUSD": self.total_usd,
            "totalPayments": self.payment_count,
            "agents": [a.to_dict() for a in self.agents],
        }


# ═══════════════════════════════════════════════════════════════════════════════
# OVERDUE
# ═══════════════════════════════════════════════════════════════════════════════

def _parse_due_date(value: str) -> Optional[date]:
    """Real due date or None for empty, epoch placeholder and unparseable values."""
    day = date_part(value)
    if not day or day.startswith(config.debt.sentinel_date_prefixes):
        return None
    try:
        return datetime.strptime(day, "%Y-%m-%d").date()
    except ValueError:
        return None


def paid_by_order(payments: Iterable[PaymentRecord]) -> Dict[str, float]:
    """Sum of payment allocations per order id."""
    paid: Dict[str, float] = {}
    for payment in payments:
        for allocation in payment.allocations:
            if allocation.order_id:
                paid[allocation.order_id] = paid.get(allocation.order_id, 0.0) + allocation.amount
    return paid


def compute_overdue(
    orders: Iterable[Order],
    payments: Iterable[PaymentRecord],
    today: date,
) -> Dict[str, OverdueInfo]:
    """
    Overdue anchor per client.

    An order is unpaid when its total minus allocated payments is still
    positive. Among a client's unpaid orders with a real due date, the
    earliest due date becomes the anchor:

        overdue_days = max(0, today - anchor)
        days_left    = max(0, anchor - today)
        is_overdue   = anchor < today

    Returns:
        client_id -> OverdueInfo, only for clients with a dated unpaid order
    """
    paid = paid_by_order(payments)
    anchors: Dict[str, date] = {}
    unpaid_counts: Dict[str, int] = {}
    unpaid_totals: Dict[str, float] = {}

    for order in orders:
        if not order.client.id or order.is_full_return:
            continue

        remaining = order.total_summa - paid.get(order.id, 0.0)
        if remaining <= 0:
            continue

        due = _parse_due_date(order.due_date)
        if due is None:
            continue

        client_id = order.client.id
        unpaid_counts[client_id] = unpaid_counts.get(client_id, 0) + 1
        unpaid_totals[client_id] = unpaid_totals.get(client_id, 0.0) + remaining
        if client_id not in anchors or due < anchors[client_id]:
            anchors[client_id] = due

    result = {}
    for client_id, anchor in anchors.items():
        delta = (today - anchor).days
        result[client_id] = OverdueInfo(
            client_id=client_id,
            srok_date=anchor.isoformat(),
            overdue_days=max(0, delta),
            days_left=max(0, -delta),
            is_overdue=anchor < today,
            unpaid_orders=unpaid_counts[client_id],
            total_unpaid_debt=unpaid_totals[client_id],
        )
    return result


# ═══════════════════════════════════════════════════════════════════════════════
# PER-AGENT DEBT
# ═══════════════════════════════════════════════════════════════════════════════

def client_agent_map(orders: Iterable[Order]) -> Dict[str, str]:
    """
    client_id -> agent_id of the client's most recent order.

    Orders compare by date; on equal dates the later-encountered order wins.
    """
    mapping: Dict[str, str] = {}
    latest: Dict[str, str] = {}
    for order in orders:
        client_id, agent_id = order.client.id, order.agent.id
        if not client_id or not agent_id:
            continue
        if client_id not in latest or order.date >= latest[client_id]:
            latest[client_id] = order.date
            mapping[client_id] = agent_id
    return mapping


def _agent_names(agents: Optional[Iterable[Agent]], orders: Iterable[Order]) -> Dict[str, str]:
    names = {}
    for order in orders:
        if order.agent.id and order.agent.name:
            names[order.agent.id] = order.agent.name
    for agent in agents or ():
        if agent.name:
            names[agent.id] = agent.name
    return names


def per_agent_debt(
    balances: Iterable[BalanceRecord],
    orders: Iterable[Order],
    overdue: Dict[str, OverdueInfo],
    agents: Optional[Iterable[Agent]] = None,
    currency: str = "all",
) -> List[AgentDebt]:
    """
    Group debtor clients by their agent.

    Local debt is cash + noncash som, USD debt is the d0_4 entry. The
    currency filter keeps clients in debt in that currency ("som",
    "dollar") or in any ("all", which also keeps negative overall balances).
    Agents are ranked by exposure in the filtered currency; "all" ranks by
    the sum of absolute balances. Clients with no known agent are grouped
    under the "unknown" agent.
    """
    currency = validate_currency_filter(currency)
    orders = list(orders)
    mapping = client_agent_map(orders)
    names = _agent_names(agents, orders)
    unknown = config.debt.unknown_agent_id

    rollups: Dict[str, AgentDebt] = {}
    for balance in balances:
        som = balance.amount_for(*LOCAL_DEBT_CURRENCIES)
        dollar = balance.amount_for(Currency.USD)

        if currency == "som":
            include = som < 0
        elif currency == "dollar":
            include = dollar < 0
        else:
            include = balance.is_debtor or som < 0 or dollar < 0
        if not include:
            continue

        agent_id = mapping.get(balance.client_id, unknown)
        rollup = rollups.get(agent_id)
        if rollup is None:
            rollup = rollups[agent_id] = AgentDebt(id=agent_id, name=names.get(agent_id, ""))

        row = DebtorClient(
            client_id=balance.client_id,
            name=balance.name,
            balance=balance.balance,
            local_debt=max(0.0, -som),
            usd_debt=max(0.0, -dollar),
            overdue=overdue.get(balance.client_id) or OverdueInfo(client_id=balance.client_id),
        )
        rollup.clients.append(row)
        rollup.balance_total += abs(balance.balance)
        rollup.local_debt += row.local_debt
        rollup.usd_debt += row.usd_debt

    return rank_agent_debts(rollups.values(), currency)


def rank_agent_debts(agents: Iterable[AgentDebt], currency: str = "all") -> List[AgentDebt]:
    """Descending by exposure in the filtered currency; "all" uses balance_total."""
    if currency == "som":
        key = lambda a: a.local_debt
    elif currency == "dollar":
        key = lambda a: a.usd_debt
    else:
        key = lambda a: a.balance_total
    return sorted(agents, key=key, reverse=True)


# ═══════════════════════════════════════════════════════════════════════════════
# DEBT SUMMARY
# ═══════════════════════════════════════════════════════════════════════════════

def filter_payments_by_period(
    payments: Iterable[PaymentRecord],
    period: Optional[Period],
) -> List[PaymentRecord]:
    if period is None:
        return list(payments)
    return [p for p in payments if period.contains(p.date)]


def aggregate_debt(
    balances: Iterable[BalanceRecord],
    payments: Iterable[PaymentRecord],
    period: Optional[Period] = None,
    orders: Iterable[Order] = (),
    agents: Optional[Iterable[Agent]] = None,
    today: Optional[date] = None,
    currency: str = "all",
) -> DebtSummary:
    """
    Fold balances and payments into a DebtSummary.

    Balance entries are bucketed by currency id (unknown ids -> local cash).
    A negative entry adds its absolute value to the debt bucket. Payments are
    bucketed by payment type, filtered to `period` when given. With orders
    supplied, the per-agent rollup with overdue info is filled in too.
    """
    balances = list(balances)
    payments = list(payments)
    summary = DebtSummary()

    for balance in balances:
        summary.total_balance += balance.balance
        if balance.is_debtor:
            summary.debtor_count += 1
        for entry in balance.by_currency:
            bucket = entry.currency.value
            summary.balance_by_currency[bucket] += entry.amount
            if entry.amount < 0:
                summary.debt_by_currency[bucket] += -entry.amount

    for payment in filter_payments_by_period(payments, period):
        bucket = Currency.from_id(payment.payment_type_id).value
        summary.payments_by_currency[bucket] += payment.amount
        summary.payment_count += 1

    orders = list(orders)
    if orders:
        overdue = compute_overdue(orders, payments, today or date.today())
        summary.per_agent_debt = per_agent_debt(balances, orders, overdue, agents, currency)

    logger.debug(
        f"Aggregated debt for {len(balances)} balances",
        extra={"debtors": summary.debtor_count, "payments": summary.payment_count}
    )
    return summary


# ═══════════════════════════════════════════════════════════════════════════════
# CASH DESK
# ═══════════════════════════════════════════════════════════════════════════════

def summarize_payments(
    payments: Iterable[PaymentRecord],
    period: Optional[Period],
    agents: Optional[Iterable[Agent]] = None,
    clients: Optional[Iterable[Client]] = None,
    rate: float = config.currency.default_rate,
) -> PaymentSummary:
    """
    Cash-desk summary of incoming payments.

    Only positive payments count toward totals; the payment count covers
    every payment in the period. Agents and their clients are ranked by
    local + usd * rate.
    """
    rate = float(rate)
    agent_names = {a.id: a.name for a in agents or ()}
    client_names = {c.id: c.name for c in clients or ()}
    unknown = config.debt.unknown_agent_id
    usd_types = config.currency.usd_payment_types

    in_period = filter_payments_by_period(payments, period)
    summary = PaymentSummary(payment_count=len(in_period))
    by_agent: Dict[str, PaymentRollup] = {}
    by_client: Dict[str, Dict[str, PaymentRollup]] = {}

    for payment in in_period:
        if payment.amount <= 0:
            continue

        is_usd = payment.payment_type_id in usd_types
        agent_id = payment.agent.id or unknown
        client_id = payment.client.id or unknown

        agent = by_agent.get(agent_id)
        if agent is None:
            agent = by_agent[agent_id] = PaymentRollup(
                id=agent_id,
                name=agent_names.get(agent_id) or payment.agent.name,
            )
            by_client[agent_id] = {}

        client = by_client[agent_id].get(client_id)
        if client is None:
            client = by_client[agent_id][client_id] = PaymentRollup(
                id=client_id,
                name=client_names.get(client_id) or payment.client.name or client_id,
            )

        for rollup in (summary, agent, client):
            if is_usd:
                rollup.total_usd += payment.amount
            else:
                rollup.total_local += payment.amount
        agent.count += 1
        client.count += 1

    for agent_id, agent in by_agent.items():
        agent.clients = sorted(by_client[agent_id].values(), key=lambda r: r.weight(rate), reverse=True)
    summary.agents = sorted(by_agent.values(), key=lambda r: r.weight(rate), reverse=True)
    return summary
