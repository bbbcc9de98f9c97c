"""
Latest-cost-wins price index built from purchase history.
"""
from typing import Dict, Iterable

from salesdoctor.config import config
from salesdoctor.models import CostPriceRecord, Currency, PurchaseRecord
from salesdoctor.observability import get_logger

logger = get_logger(__name__)


def classify_purchase_price(raw_price: float, rate: float) -> tuple:
    """Purchase prices below 100 are USD; returns (currency, local price)."""
    if raw_price < config.currency.purchase_usd_threshold:
        return Currency.USD, raw_price * float(rate)
    return Currency.LOCAL_CASH, raw_price


def resolve_cost_prices(
    purchases: Iterable[PurchaseRecord],
    rate: float,
) -> Dict[str, CostPriceRecord]:
    """
    Build product_id -> CostPriceRecord from purchase records.

    For every purchase line with a positive price, the record from the most
    recent purchase date is kept. Dates compare as ISO strings with a strict
    `>`, so on an exact date tie the first line seen stays.

    Args:
        purchases: Canonical purchase records, any order
        rate: USD -> local rate used to normalize USD prices

    Returns:
        Mapping of product id to its latest cost price
    """
    cost_prices: Dict[str, CostPriceRecord] = {}
    skipped = 0

    for purchase in purchases:
        for line in purchase.lines:
            if not line.product_id or line.price <= 0:
                skipped += 1
                continue

            existing = cost_prices.get(line.product_id)
            if existing is not None and not purchase.date > existing.source_date:
                continue

            currency, price_local = classify_purchase_price(line.price, rate)
            cost_prices[line.product_id] = CostPriceRecord(
                product_id=line.product_id,
                name=line.name,
                raw_price=line.price,
                currency=currency,
                price_local=price_local,
                source_date=purchase.date,
            )

    logger.debug(
        f"Resolved {len(cost_prices)} cost prices",
        extra={"products": len(cost_prices), "skipped_lines": skipped}
    )
    return cost_prices


def cost_price_for(cost_prices: Dict[str, CostPriceRecord], product_id: str) -> float:
    """Local cost of a product, 0 when unknown (treated as a bonus item)."""
    record = cost_prices.get(product_id)
    return record.price_local if record else 0.0
