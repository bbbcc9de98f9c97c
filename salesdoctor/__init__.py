"""
Sales Doctor analytics engine.

Turns Sales Doctor ERP data (orders, purchases, balances, payments) into
currency-normalized sales, profit, debt and inventory statistics:
- models: canonical records built from raw upstream payloads
- currency / cost_prices / profit: normalization and profit policy
- aggregation / debt / inventory: pure report folds
- cache / client / cache_service / gateway: data access
- engine: composes the above into dashboard snapshots
"""

# Import in dependency order
from salesdoctor.exceptions import (
    SalesDoctorError,
    TransportError,
    UpstreamAPIError,
    AuthenticationError,
    AuthExpiredError,
    DataShapeError,
    ValidationError,
    ConfigValidationError,
)

from salesdoctor.config import config

from salesdoctor.models import Currency, Order, LineItem, PurchaseRecord, BalanceRecord, PaymentRecord

from salesdoctor.periods import Period, get_date_range

from salesdoctor.currency import ExchangeRate, classify_order_currency, classify_line_amount

from salesdoctor.cost_prices import resolve_cost_prices

from salesdoctor.profit import compute_line_profit

from salesdoctor.aggregation import Aggregate, aggregate, aggregate_cohort

from salesdoctor.debt import DebtSummary, aggregate_debt, compute_overdue, per_agent_debt

from salesdoctor.cache import SnapshotCache

from salesdoctor.engine import AnalyticsEngine, DashboardSnapshot

__all__ = [
    # Exceptions
    "SalesDoctorError",
    "TransportError",
    "UpstreamAPIError",
    "AuthenticationError",
    "AuthExpiredError",
    "DataShapeError",
    "ValidationError",
    "ConfigValidationError",
    # Config
    "config",
    # Models
    "Currency",
    "Order",
    "LineItem",
    "PurchaseRecord",
    "BalanceRecord",
    "PaymentRecord",
    # Periods
    "Period",
    "get_date_range",
    # Core policy
    "ExchangeRate",
    "classify_order_currency",
    "classify_line_amount",
    "resolve_cost_prices",
    "compute_line_profit",
    # Aggregation
    "Aggregate",
    "aggregate",
    "aggregate_cohort",
    "DebtSummary",
    "aggregate_debt",
    "compute_overdue",
    "per_agent_debt",
    # Engine
    "SnapshotCache",
    "AnalyticsEngine",
    "DashboardSnapshot",
]
