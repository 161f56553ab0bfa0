"""Unit tests for student fee status derivation."""

from datetime import date
from decimal import Decimal
from types import SimpleNamespace

from app.core.enums import StudentFeeStatus
from app.core.fee_status import apply_status, derive_status


DUE = date(2025, 1, 1)


def test_unpaid_on_or_before_due_date_is_pending() -> None:
    assert derive_status(Decimal("200.00"), Decimal("0"), DUE, today=date(2024, 12, 1)) == StudentFeeStatus.PENDING
    # the due date itself is not late yet
    assert derive_status(Decimal("200.00"), Decimal("0"), DUE, today=DUE) == StudentFeeStatus.PENDING


def test_unpaid_after_due_date_is_overdue() -> None:
    """200.00 due 2025-01-01, nothing paid, evaluated on 2025-06-01."""
    assert derive_status(Decimal("200.00"), Decimal("0"), DUE, today=date(2025, 6, 1)) == StudentFeeStatus.OVERDUE


def test_partial_payment_is_partial_regardless_of_due_date() -> None:
    assert derive_status(Decimal("1000.00"), Decimal("400.00"), DUE, today=date(2024, 12, 1)) == StudentFeeStatus.PARTIAL
    assert derive_status(Decimal("1000.00"), Decimal("400.00"), DUE, today=date(2025, 6, 1)) == StudentFeeStatus.PARTIAL


def test_fully_paid_is_not_demoted_after_due_date() -> None:
    assert derive_status(Decimal("1000.00"), Decimal("1000.00"), DUE, today=date(2024, 12, 1)) == StudentFeeStatus.PAID
    assert derive_status(Decimal("1000.00"), Decimal("1000.00"), DUE, today=date(2030, 1, 1)) == StudentFeeStatus.PAID


def test_same_inputs_give_same_status() -> None:
    args = (Decimal("300.00"), Decimal("0"), DUE)
    first = derive_status(*args, today=date(2025, 3, 1))
    assert derive_status(*args, today=date(2025, 3, 1)) == first


def test_apply_status_rewrites_stale_status() -> None:
    sf = SimpleNamespace(
        amount_owed=Decimal("500.00"),
        paid_to_date=Decimal("500.00"),
        due_date=DUE,
        status=StudentFeeStatus.OVERDUE.value,
    )
    result = apply_status(sf, today=date(2025, 6, 1))
    assert result == StudentFeeStatus.PAID
    assert sf.status == "PAID"


def test_apply_status_accepts_floats_from_storage() -> None:
    sf = SimpleNamespace(amount_owed=1000.0, paid_to_date=0.1 + 0.2, due_date=DUE, status="PENDING")
    assert apply_status(sf, today=date(2024, 1, 1)) == StudentFeeStatus.PARTIAL
