"""
Inventory statistics: stock valuation and low-stock listing.
"""
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from salesdoctor.config import config
from salesdoctor.models import Product, PurchaseRecord, WarehouseStock
from salesdoctor.validators import validate_threshold


@dataclass(frozen=True)
class StockValueRow:
    product_id: str
    name: str
    quantity: float
    cost_usd: float

    @property
    def value_usd(self) -> float:
        return self.cost_usd * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.product_id,
            "name": self.name,
            "ostatka": self.quantity,
            "costPriceUSD": round(self.cost_usd, 4),
            "stockValueUSD": round(self.value_usd, 2),
        }


@dataclass(frozen=True)
class LowStockRow:
    product_id: str
    name: str
    stock: float

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.product_id, "name": self.name, "stock": self.stock}


def build_stock_map(warehouses: Iterable[WarehouseStock]) -> Dict[str, float]:
    """product_id -> quantity summed across warehouses."""
    stock: Dict[str, float] = {}
    for warehouse in warehouses:
        for item in warehouse.items:
            if item.product_id:
                stock[item.product_id] = stock.get(item.product_id, 0.0) + item.quantity
    return stock


def latest_purchase_prices(purchases: Iterable[PurchaseRecord]) -> Dict[str, float]:
    """product_id -> raw price of the last positive occurrence, in fetch order."""
    prices: Dict[str, float] = {}
    for purchase in purchases:
        for line in purchase.lines:
            if line.product_id and line.price > 0:
                prices[line.product_id] = line.price
    return prices


def unit_cost_usd(raw_price: float, rate: float) -> float:
    """Raw prices below 100 are already USD; larger ones are som."""
    if raw_price <= 0:
        return 0.0
    if raw_price < config.currency.purchase_usd_threshold:
        return raw_price
    return raw_price / float(rate)


def stock_valuation(
    products: Iterable[Product],
    stock_map: Dict[str, float],
    price_map: Dict[str, float],
    rate: float,
) -> List[StockValueRow]:
    """Rows for products in stock, most valuable first."""
    rows = []
    for product in products:
        quantity = stock_map.get(product.id, 0.0)
        if quantity <= 0:
            continue
        rows.append(StockValueRow(
            product_id=product.id,
            name=product.name,
            quantity=quantity,
            cost_usd=unit_cost_usd(price_map.get(product.id, 0.0), rate),
        ))
    return sorted(rows, key=lambda r: r.value_usd, reverse=True)


def stock_value_usd(
    products: Iterable[Product],
    stock_map: Dict[str, float],
    price_map: Dict[str, float],
    rate: float,
) -> float:
    """Total stock value in USD, rounded to cents."""
    rows = stock_valuation(products, stock_map, price_map, rate)
    return round(sum(r.value_usd for r in rows), 2)


def low_stock(
    purchases: Iterable[PurchaseRecord],
    stock_map: Dict[str, float],
    products: Iterable[Product] = (),
    threshold: Optional[float] = None,
) -> List[LowStockRow]:
    """
    Purchased products whose stock fell below `threshold` (default 100).

    Names come from the product catalog, then from the purchase lines.
    Sorted ascending by stock; ties keep purchase order.
    """
    threshold = validate_threshold(
        config.inventory.low_stock_threshold if threshold is None else threshold,
        "low_stock_threshold",
    )

    names: Dict[str, str] = {}
    purchased: List[str] = []
    for purchase in purchases:
        for line in purchase.lines:
            if not line.product_id:
                continue
            if line.product_id not in names:
                purchased.append(line.product_id)
                names[line.product_id] = line.name
            elif line.name and not names[line.product_id]:
                names[line.product_id] = line.name

    for product in products:
        if product.id in names and product.name:
            names[product.id] = product.name

    rows = [
        LowStockRow(product_id=pid, name=names[pid] or pid, stock=stock_map.get(pid, 0.0))
        for pid in purchased
    ]
    return sorted((r for r in rows if r.stock < threshold), key=lambda r: r.stock)
