"""
Pytest configuration and shared fixtures.
"""
import pytest
from datetime import date
from typing import Any, Dict, List

from salesdoctor.models import (
    BalanceRecord,
    Order,
    PaymentRecord,
    PurchaseRecord,
    parse_many,
)
from salesdoctor.periods import Period


@pytest.fixture
def today() -> date:
    return date(2026, 1, 15)


@pytest.fixture
def january(today) -> Period:
    """Month-to-date period for the reference day."""
    return Period("month", date(2026, 1, 1), today)


@pytest.fixture
def sample_order() -> Dict[str, Any]:
    """Sample order data from the Sales Doctor API."""
    return {
        "SD_id": "o_1001",
        "dateCreate": "2026-01-10T14:30:00",
        "status": 1,
        "totalSumma": 250000,
        "totalReturnsSumma": 0,
        "client": {"SD_id": "c_1", "name": "Client One"},
        "agent": {"SD_id": "d0_7", "name": "Agent Seven"},
        "paymentType": {"SD_id": "d0_2"},
        "priceType": {"SD_id": "d0_1"},
        "debtDateExp": "2026-01-20",
        "orderProducts": [
            {
                "product": {"SD_id": "p_1", "name": "Product A"},
                "quantity": 2,
                "summa": 150000,
            },
            {
                "product": {"SD_id": "p_2", "name": "Product B"},
                "quantity": 1,
                "summa": 100000,
            },
        ],
    }


@pytest.fixture
def sample_orders(sample_order) -> List[Dict[str, Any]]:
    """Raw orders mixing currencies, a return and an out-of-period order."""
    return [
        sample_order,
        # USD by payment type
        {
            "SD_id": "o_1002",
            "dateDocument": "2026-01-11 09:00:00",
            "status": 1,
            "totalSumma": 40,
            "client": {"SD_id": "c_2", "name": "Client Two"},
            "agent": {"SD_id": "d0_7", "name": "Agent Seven"},
            "paymentType": {"SD_id": "d0_4"},
            "orderProducts": [
                {"product": {"SD_id": "p_1", "name": "Product A"}, "quantity": 4, "summa": 40},
            ],
        },
        # Full return by status
        {
            "SD_id": "o_1003",
            "dateCreate": "2026-01-12",
            "status": 4,
            "totalSumma": 900000,
            "client": {"SD_id": "c_3", "name": "Client Three"},
            "agent": {"SD_id": "d0_9", "name": "Agent Nine"},
            "paymentType": {"SD_id": "d0_2"},
            "orderProducts": [
                {"product": {"SD_id": "p_3", "name": "Product C"}, "quantity": 9, "summa": 900000},
            ],
        },
        # Previous year, outside January
        {
            "SD_id": "o_1004",
            "dateCreate": "2025-12-28",
            "status": 1,
            "totalSumma": 700000,
            "client": {"SD_id": "c_3", "name": "Client Three"},
            "agent": {"SD_id": "d0_9", "name": "Agent Nine"},
            "paymentType": {"SD_id": "d0_3"},
            "debtDateExp": "2026-01-05",
            "orderProducts": [],
        },
    ]


@pytest.fixture
def orders(sample_orders) -> List[Order]:
    return parse_many(Order, sample_orders)


@pytest.fixture
def sample_purchases() -> List[Dict[str, Any]]:
    """Raw getPurchase records (result key 'warehouse')."""
    return [
        {
            "purchase_id": "w_1",
            "date": "2026-01-02",
            "detail": [
                {"SD_id": "p_1", "name": "Product A", "price": 50000, "quantity": 100},
                {"SD_id": "p_2", "name": "Product B", "price": 5, "quantity": 10},
            ],
        },
        {
            "purchase_id": "w_2",
            "date": "2026-01-08",
            "detail": [
                {"SD_id": "p_1", "name": "Product A", "price": 60000, "quantity": 50},
                {"SD_id": "p_3", "name": "Product C", "price": 0, "quantity": 5},
            ],
        },
    ]


@pytest.fixture
def purchases(sample_purchases) -> List[PurchaseRecord]:
    return parse_many(PurchaseRecord, sample_purchases)


@pytest.fixture
def sample_balances() -> List[Dict[str, Any]]:
    """Raw getBalance records."""
    return [
        {
            "SD_id": "c_1",
            "name": "Client One",
            "balance": -300000,
            "by-currency": [
                {"currency_id": "d0_2", "amount": -200000},
                {"currency_id": "d0_3", "amount": -100000},
            ],
        },
        {
            "SD_id": "c_2",
            "name": "Client Two",
            "balance": -50,
            "by-currency": [{"currency_id": "d0_4", "amount": -50}],
        },
        {
            "SD_id": "c_4",
            "name": "Client Four",
            "balance": 1000,
            "by-currency": [{"currency_id": "d0_99", "amount": 1000}],
        },
    ]


@pytest.fixture
def balances(sample_balances) -> List[BalanceRecord]:
    return parse_many(BalanceRecord, sample_balances)


@pytest.fixture
def sample_payments() -> List[Dict[str, Any]]:
    """Raw getPayment records."""
    return [
        {
            "SD_id": "pay_1",
            "paymentDate": "2026-01-12 10:00:00",
            "amount": 100000,
            "paymentType": {"SD_id": "d0_2"},
            "client": {"SD_id": "c_1", "name": "Client One"},
            "agent": {"SD_id": "d0_7", "name": "Agent Seven"},
            "orders": [{"SD_id": "o_1001", "amount": 100000}],
        },
        {
            "SD_id": "pay_2",
            "paymentDate": "2026-01-13",
            "amount": 20,
            "paymentType": {"SD_id": "d0_4"},
            "client": {"SD_id": "c_2", "name": "Client Two"},
            "agent": {"SD_id": "d0_7", "name": "Agent Seven"},
            "orders": [{"SD_id": "o_1002", "amount": 20}],
        },
        {
            "SD_id": "pay_3",
            "paymentDate": "2025-12-30",
            "amount": 5000,
            "paymentType": {"SD_id": "d0_77"},
            "client": {"SD_id": "c_3"},
            "agent": {"SD_id": "d0_9"},
            "orders": [],
        },
    ]


@pytest.fixture
def payments(sample_payments) -> List[PaymentRecord]:
    return parse_many(PaymentRecord, sample_payments)


@pytest.fixture
def sample_stock() -> List[Dict[str, Any]]:
    """Raw getStock warehouses."""
    return [
        {"SD_id": "s_1", "name": "Main", "products": [
            {"SD_id": "p_1", "quantity": 40},
            {"SD_id": "p_2", "quantity": 500},
        ]},
        {"SD_id": "s_2", "name": "Shop", "products": [
            {"SD_id": "p_1", "quantity": 20},
        ]},
    ]
