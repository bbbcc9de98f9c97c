"""
Domain models for Sales Doctor data.

Canonical dataclasses for orders, purchases, balances, payments and the
reference entities around them. Every `from_api` classmethod is part of the
ingestion adapter: it maps the known raw field-name variants (`SD_id`/`id`,
`dateCreate`/`dateDocument`/`orderCreated`, `orderProducts`/`products`, ...)
into one schema. Aggregation code only ever sees these types.

Malformed single fields never raise here; they are coerced to 0 / "".
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


# ═══════════════════════════════════════════════════════════════════════════════
# COERCION HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

def to_float(value: Any, default: float = 0.0) -> float:
    """Parse a loosely-typed number ("1,250.5", " 300 ", None) into a float."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        result = float(value)
    else:
        text = str(value).replace(",", "").replace(" ", "").replace(" ", "")
        try:
            result = float(text)
        except ValueError:
            return default
    # NaN
    if result != result:
        return default
    return result


def to_int(value: Any, default: int = 0) -> int:
    """Parse an integer status/id-like value."""
    if isinstance(value, dict):
        value = value.get("id", value.get("SD_id"))
    try:
        return int(to_float(value, default))
    except (OverflowError, ValueError):
        return default


def ref_id(data: Any) -> str:
    """Extract an upstream id from a nested reference ({"SD_id": ...} or {"id": ...})."""
    if not isinstance(data, dict):
        return ""
    value = data.get("SD_id", data.get("id"))
    return "" if value is None else str(value)


def date_part(value: Any) -> str:
    """Reduce '2026-01-10T14:30:00' / '2026-01-10 14:30:00' to '2026-01-10'."""
    if not value:
        return ""
    return str(value).split("T")[0].split(" ")[0]


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class Currency(str, Enum):
    """Upstream currency / payment-type identifiers."""
    LOCAL_CASH = "d0_2"     # Cash som
    LOCAL_NONCASH = "d0_3"  # Bank transfer som
    USD = "d0_4"            # US dollar
    CLICK = "d0_5"          # Click / other local

    @classmethod
    def from_id(cls, currency_id: Optional[str]) -> "Currency":
        """Map an upstream id to a currency; unknown ids fall back to local cash."""
        if isinstance(currency_id, str) and currency_id.upper() == "USD":
            return cls.USD
        try:
            return cls(currency_id)
        except ValueError:
            return cls.LOCAL_CASH

    @property
    def is_local(self) -> bool:
        """True for every som-denominated bucket."""
        return self is not Currency.USD

    @property
    def code(self) -> str:
        """ISO-style currency code."""
        return "USD" if self is Currency.USD else "UZS"


class OrderStatus:
    """Order status ids that mark a full return."""
    RETURN = 4
    RETURN_OTHER = 5

    @classmethod
    def return_statuses(cls) -> set:
        return {cls.RETURN, cls.RETURN_OTHER}


# ═══════════════════════════════════════════════════════════════════════════════
# REFERENCE ENTITIES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class EntityRef:
    """Nested {SD_id, name} reference to a client, agent or product."""
    id: str = ""
    name: str = ""

    @classmethod
    def from_api(cls, data: Optional[Dict[str, Any]]) -> "EntityRef":
        if not isinstance(data, dict):
            return cls()
        return cls(id=ref_id(data), name=str(data.get("name") or ""))


@dataclass(frozen=True)
class Client:
    """Registered client (counts toward OKB)."""
    id: str
    name: str = ""
    active: bool = True

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Client":
        return cls(
            id=ref_id(data),
            name=str(data.get("name") or ""),
            active=data.get("active", "Y") == "Y",
        )


@dataclass(frozen=True)
class Product:
    """Catalog product."""
    id: str
    name: str = ""
    active: bool = True

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Product":
        return cls(
            id=ref_id(data),
            name=str(data.get("name") or ""),
            active=data.get("active", "Y") == "Y",
        )


@dataclass(frozen=True)
class Agent:
    """Sales agent."""
    id: str
    name: str = ""
    active: bool = True

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Agent":
        return cls(
            id=ref_id(data),
            name=str(data.get("name") or ""),
            active=data.get("active", "Y") == "Y",
        )


@dataclass(frozen=True)
class PriceType:
    """Price list; its name may reveal a dollar price list."""
    id: str
    name: str = ""
    payment_type_id: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "PriceType":
        return cls(
            id=ref_id(data),
            name=str(data.get("name") or ""),
            payment_type_id=ref_id(data.get("paymentType")),
        )


# ═══════════════════════════════════════════════════════════════════════════════
# ORDERS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class LineItem:
    """Product line within an order."""
    product_id: str
    product_name: str
    quantity: float
    summa: float

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "LineItem":
        product = data.get("product") if isinstance(data.get("product"), dict) else {}
        product_id = ref_id(product) or ref_id(data)
        name = product.get("name") or data.get("name") or ""
        summa = data.get("summa")
        if summa is None:
            summa = data.get("totalSumma")
        return cls(
            product_id=product_id,
            product_name=str(name),
            quantity=to_float(data.get("quantity")),
            summa=to_float(summa),
        )


@dataclass(frozen=True)
class Order:
    """Sales order (or return) from getOrder."""
    id: str
    date: str
    status: int
    total_summa: float
    total_returns_summa: float = 0.0
    client: EntityRef = field(default_factory=EntityRef)
    agent: EntityRef = field(default_factory=EntityRef)
    payment_type_id: str = ""
    price_type_id: str = ""
    due_date: str = ""
    line_items: tuple = ()

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Order":
        raw_date = (
            data.get("dateCreate")
            or data.get("dateDocument")
            or data.get("orderCreated")
            or data.get("date")
        )

        total = to_float(data.get("totalSumma"))
        if not total:
            total = to_float(data.get("totalSummaAfterDiscount"))

        items = data.get("orderProducts")
        if items is None:
            items = data.get("products") or data.get("items") or []

        return cls(
            id=ref_id(data) or str(data.get("_id") or ""),
            date=date_part(raw_date),
            status=to_int(data.get("status")),
            total_summa=total,
            total_returns_summa=to_float(data.get("totalReturnsSumma")),
            client=EntityRef.from_api(data.get("client")),
            agent=EntityRef.from_api(data.get("agent")),
            payment_type_id=ref_id(data.get("paymentType")),
            price_type_id=ref_id(data.get("priceType")),
            due_date=str(data.get("debtDateExp") or ""),
            line_items=tuple(LineItem.from_api(i) for i in items if isinstance(i, dict)),
        )

    @property
    def is_full_return(self) -> bool:
        """Status 4/5, or the returned amount equals a positive total."""
        if self.status in OrderStatus.return_statuses():
            return True
        return self.total_returns_summa > 0 and self.total_returns_summa == self.total_summa


# ═══════════════════════════════════════════════════════════════════════════════
# PURCHASES AND COST PRICES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PurchaseLine:
    """One product row of a purchase (warehouse receipt) document."""
    product_id: str
    name: str
    quantity: float
    price: float

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "PurchaseLine":
        return cls(
            product_id=ref_id(data),
            name=str(data.get("name") or ""),
            quantity=to_float(data.get("quantity")),
            price=to_float(data.get("price")),
        )


@dataclass(frozen=True)
class PurchaseRecord:
    """Purchase document from getPurchase (result key 'warehouse')."""
    id: str
    date: str
    price_type_id: str = ""
    lines: tuple = ()

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "PurchaseRecord":
        return cls(
            id=str(data.get("purchase_id") or ref_id(data)),
            date=str(data.get("date") or ""),
            price_type_id=ref_id(data.get("priceType")),
            lines=tuple(
                PurchaseLine.from_api(line)
                for line in (data.get("detail") or [])
                if isinstance(line, dict)
            ),
        )


@dataclass(frozen=True)
class CostPriceRecord:
    """Latest known unit cost of a product, normalized to local currency."""
    product_id: str
    name: str
    raw_price: float
    currency: Currency
    price_local: float
    source_date: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the cache-service wire shape."""
        return {
            "name": self.name,
            "costPrice": self.raw_price,
            "costPriceUZS": self.price_local,
            "currency": self.currency.code,
            "date": self.source_date,
        }

    @classmethod
    def from_cache_api(cls, product_id: str, data: Dict[str, Any]) -> "CostPriceRecord":
        """Build from a /api/cache/costprices entry."""
        currency = Currency.USD if data.get("currency") == "USD" else Currency.LOCAL_CASH
        price_local = to_float(data.get("costPriceUZS"))
        return cls(
            product_id=str(product_id),
            name=str(data.get("name") or ""),
            raw_price=to_float(data.get("costPrice"), price_local),
            currency=currency,
            price_local=price_local,
            source_date=str(data.get("date") or ""),
        )


@dataclass(frozen=True)
class ProfitRecord:
    """Derived per-line profit."""
    product_id: str
    sale_local: float
    profit: float
    is_bonus: bool


# ═══════════════════════════════════════════════════════════════════════════════
# BALANCES AND PAYMENTS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class CurrencyAmount:
    currency_id: str
    amount: float

    @property
    def currency(self) -> Currency:
        return Currency.from_id(self.currency_id)


@dataclass(frozen=True)
class BalanceRecord:
    """Client balance from getBalance; negative means the client owes."""
    client_id: str
    name: str
    balance: float
    by_currency: tuple = ()

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "BalanceRecord":
        entries = data.get("by-currency")
        if entries is None:
            entries = data.get("byCurrency") or []
        return cls(
            client_id=ref_id(data),
            name=str(data.get("name") or ""),
            balance=to_float(data.get("balance")),
            by_currency=tuple(
                CurrencyAmount(
                    currency_id=str(e.get("currency_id") or e.get("currencyId") or ""),
                    amount=to_float(e.get("amount")),
                )
                for e in entries if isinstance(e, dict)
            ),
        )

    @property
    def is_debtor(self) -> bool:
        return self.balance < 0

    def amount_for(self, *currencies: Currency) -> float:
        """Signed sum of the by-currency entries that map to any of `currencies`."""
        wanted = set(currencies)
        return sum(e.amount for e in self.by_currency if e.currency in wanted)


@dataclass(frozen=True)
class PaymentAllocation:
    """Part of a payment applied to one order."""
    order_id: str
    amount: float


@dataclass(frozen=True)
class PaymentRecord:
    """Client payment from getPayment."""
    id: str
    date: str
    amount: float
    payment_type_id: str = ""
    client: EntityRef = field(default_factory=EntityRef)
    agent: EntityRef = field(default_factory=EntityRef)
    allocations: tuple = ()

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "PaymentRecord":
        allocations = data.get("orders")
        if not isinstance(allocations, list):
            allocations = []
        return cls(
            id=ref_id(data),
            date=date_part(data.get("paymentDate") or data.get("date")),
            amount=to_float(data.get("amount")),
            payment_type_id=ref_id(data.get("paymentType")),
            client=EntityRef.from_api(data.get("client")),
            agent=EntityRef.from_api(data.get("agent")),
            allocations=tuple(
                PaymentAllocation(order_id=ref_id(a), amount=to_float(a.get("amount")))
                for a in allocations if isinstance(a, dict)
            ),
        )


# ═══════════════════════════════════════════════════════════════════════════════
# STOCK
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class StockItem:
    product_id: str
    quantity: float


@dataclass(frozen=True)
class WarehouseStock:
    """Warehouse remainder from getStock."""
    id: str
    name: str
    items: tuple = ()

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "WarehouseStock":
        return cls(
            id=ref_id(data),
            name=str(data.get("name") or ""),
            items=tuple(
                StockItem(product_id=ref_id(p), quantity=to_float(p.get("quantity")))
                for p in (data.get("products") or []) if isinstance(p, dict)
            ),
        )


def parse_many(model: Any, records: Optional[List[Dict[str, Any]]]) -> List[Any]:
    """Run `model.from_api` over raw records, skipping non-dict junk."""
    return [model.from_api(r) for r in (records or []) if isinstance(r, dict)]
