"""Tests for entity models."""

from datetime import datetime, timezone

import pytest

from models import AuthKey, DebtRecord, Product, add_months


def test_debt_status_follows_payments():
    debt = DebtRecord(id="d1", customerName="Budi", amount=100000)
    assert debt.derive_status() == "unpaid"

    debt = debt.with_payment(40000)
    assert debt.status == "partial"
    assert debt.remaining == 60000

    debt = debt.with_payment(60000)
    assert debt.status == "paid"
    assert debt.remaining == 0


def test_overpayment_is_paid():
    debt = DebtRecord(id="d1", customerName="Budi", amount=100).with_payment(150)
    assert debt.status == "paid"
    assert debt.remaining == 0


def test_payment_must_be_positive():
    debt = DebtRecord(id="d1", customerName="Budi", amount=100)
    with pytest.raises(ValueError):
        debt.with_payment(-5)


def test_with_payment_leaves_original_untouched():
    debt = DebtRecord(id="d1", customerName="Budi", amount=100)
    debt.with_payment(10)
    assert debt.payments == []


def test_naive_instants_are_read_as_utc():
    key = AuthKey(id="k", key="KSR-X", valid_until="2030-01-01T00:00:00", duration="yearly", created_at="2029-01-01T00:00:00")
    assert key.valid_until.tzinfo is not None
    assert key.valid_until == datetime(2030, 1, 1, tzinfo=timezone.utc)


def test_unknown_document_fields_are_kept():
    product = Product.model_validate({"id": "1", "name": "Solar Tea", "price": 30000, "barcode": "899123"})
    assert product.model_dump()["barcode"] == "899123"


@pytest.mark.parametrize("start, months, expected", [
    (datetime(2025, 1, 31), 1, datetime(2025, 2, 28)),
    (datetime(2024, 1, 31), 1, datetime(2024, 2, 29)),
    (datetime(2025, 11, 15), 3, datetime(2026, 2, 15)),
    (datetime(2024, 2, 29), 12, datetime(2025, 2, 28)),
])
def test_add_months(start, months, expected):
    assert add_months(start, months) == expected
