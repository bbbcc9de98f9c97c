"""
Per-line profit with sanity bounds against noisy cost data.
"""
from typing import Dict

from salesdoctor.cost_prices import cost_price_for
from salesdoctor.currency import classify_line_amount
from salesdoctor.models import CostPriceRecord, LineItem, ProfitRecord

# A margin above this share of the sale means the resolved cost is wrong
MAX_MARGIN_RATIO = 0.5
# Assumed margin used in that case
FALLBACK_MARGIN_RATIO = 0.15


def compute_line_profit(sale_local: float, cost_local: float, quantity: float) -> float:
    """
    Profit of one sold line, in local currency.

    Rules in order:
        sale <= 0              -> 0
        cost <= 0 (bonus item) -> whole sale
        raw = sale - cost * qty
        raw < 0                -> 0
        raw > 50% of sale      -> 15% of sale
        otherwise              -> raw
    """
    if sale_local <= 0:
        return 0.0

    if cost_local <= 0:
        return sale_local

    raw_profit = sale_local - cost_local * quantity

    if raw_profit < 0:
        return 0.0

    if raw_profit > MAX_MARGIN_RATIO * sale_local:
        return FALLBACK_MARGIN_RATIO * sale_local

    return raw_profit


def line_profit_record(
    item: LineItem,
    cost_prices: Dict[str, CostPriceRecord],
    rate: float,
) -> ProfitRecord:
    """Classify, cost and profit one line item."""
    _, sale_local = classify_line_amount(item.summa, rate)
    cost_local = cost_price_for(cost_prices, item.product_id)

    return ProfitRecord(
        product_id=item.product_id,
        sale_local=sale_local,
        profit=compute_line_profit(sale_local, cost_local, item.quantity),
        is_bonus=sale_local > 0 and cost_local <= 0,
    )
