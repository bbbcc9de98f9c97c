"""
Currency classification and the runtime exchange rate.

The upstream does not tag amounts with a trustworthy currency, so USD vs
local (som) is decided by payment type, price type and magnitude. The
thresholds are policy shared with historical reports and must not change:

- order totals below 10000 are USD
- line amounts at or below 100 are USD
"""
from typing import Iterable, Optional, Tuple

from salesdoctor.config import config
from salesdoctor.models import Currency, Order, PriceType
from salesdoctor.observability import get_logger
from salesdoctor.validators import validate_exchange_rate

logger = get_logger(__name__)

DOLLAR_NAME_MARKERS = ("$", "dollar")


class ExchangeRate:
    """
    Runtime-configurable USD -> local rate.

    Usage:
        rate = ExchangeRate()
        rate.set(12500)       # accepted
        rate.set(70000)       # raises ConfigValidationError, stays 12500
        local = 150 * rate.value
    """

    def __init__(
        self,
        value: Optional[float] = None,
        min_rate: float = config.currency.min_rate,
        max_rate: float = config.currency.max_rate,
    ):
        self.min_rate = min_rate
        self.max_rate = max_rate
        self._value = validate_exchange_rate(
            config.currency.default_rate if value is None else value,
            min_rate,
            max_rate,
        )

    @property
    def value(self) -> float:
        return self._value

    def set(self, value) -> float:
        """
        Replace the rate.

        Raises:
            ConfigValidationError: Non-numeric or out of range; previous value kept
        """
        new_value = validate_exchange_rate(value, self.min_rate, self.max_rate)
        if new_value != self._value:
            logger.info(
                f"Exchange rate changed {self._value:.0f} -> {new_value:.0f}",
                extra={"old_rate": self._value, "new_rate": new_value}
            )
        self._value = new_value
        return new_value

    def to_local(self, amount: float) -> float:
        return amount * self._value

    def to_usd(self, amount: float) -> float:
        return amount / self._value

    def __float__(self) -> float:
        return self._value

    def __repr__(self) -> str:
        return f"ExchangeRate({self._value:.0f})"


def build_usd_price_types(price_types: Iterable[PriceType] = ()) -> frozenset:
    """
    Static USD price-type ids plus any price type named like a dollar list.

    A name containing "$" or "dollar" (any case) marks the list as USD.
    """
    ids = set(config.currency.usd_price_types)
    for price_type in price_types:
        name = (price_type.name or "").lower()
        if any(marker in name for marker in DOLLAR_NAME_MARKERS):
            ids.add(price_type.id)
    return frozenset(ids)


def classify_order_currency(
    order: Order,
    usd_price_types: Optional[Iterable[str]] = None,
    usd_payment_types: Optional[Iterable[str]] = None,
) -> Currency:
    """
    Decide which currency bucket an order total belongs to.

    First match wins:
        1. payment type is a USD payment type
        2. price type is a USD price type
        3. total below the order threshold (10000)
        4. otherwise the order's local payment-type bucket
    """
    payment_types = config.currency.usd_payment_types if usd_payment_types is None else usd_payment_types
    price_types = config.currency.usd_price_types if usd_price_types is None else usd_price_types

    if order.payment_type_id and order.payment_type_id in payment_types:
        return Currency.USD

    if order.price_type_id and order.price_type_id in price_types:
        return Currency.USD

    if order.total_summa < config.currency.order_usd_threshold:
        return Currency.USD

    currency = Currency.from_id(order.payment_type_id)
    # Payment type said local; magnitude already ruled USD out
    return Currency.LOCAL_CASH if currency is Currency.USD else currency


def normalize_order_amount(
    order: Order,
    rate: float,
    usd_price_types: Optional[Iterable[str]] = None,
) -> float:
    """Order total in local currency."""
    currency = classify_order_currency(order, usd_price_types)
    if currency is Currency.USD:
        return order.total_summa * float(rate)
    return order.total_summa


def classify_line_amount(raw_amount: float, rate: float) -> Tuple[Currency, float]:
    """
    Classify a line-item amount and normalize it to local currency.

    Returns:
        (Currency.LOCAL_CASH, 0) for non-positive amounts,
        (Currency.USD, raw * rate) for amounts up to the line threshold (100),
        (Currency.LOCAL_CASH, raw) otherwise
    """
    if raw_amount <= 0:
        return Currency.LOCAL_CASH, 0.0
    if raw_amount <= config.currency.line_usd_threshold:
        return Currency.USD, raw_amount * float(rate)
    return Currency.LOCAL_CASH, raw_amount
