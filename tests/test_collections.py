from datetime import date, datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
from typing import Dict

import pytest
from httpx import AsyncClient

from app.api.v1.collections.service import _shift_month, collection_rate


async def _create_fee(client: AsyncClient, headers: Dict[str, str], **overrides) -> dict:
    payload = {"name": "Tuition", "amount": 1000.00, "frequency": "YEARLY"}
    payload.update(overrides)
    response = await client.post("/api/v1/fees", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


async def _assign(client: AsyncClient, headers: Dict[str, str], student_id, fee_id, amount, due_date) -> str:
    response = await client.post(
        "/api/v1/student-fees",
        json={"student_id": str(student_id), "fee_id": str(fee_id), "amount": amount, "due_date": due_date},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()["id"]


async def _pay(client: AsyncClient, headers: Dict[str, str], student_id, amount, paid_at, allocations=()) -> None:
    response = await client.post(
        "/api/v1/payments",
        json={
            "student_id": str(student_id),
            "amount": amount,
            "payment_date": paid_at,
            "method": "CASH",
            "allocations": [{"student_fee_id": sf_id, "amount": a} for sf_id, a in allocations],
        },
        headers=headers,
    )
    assert response.status_code == 201, response.text


def test_collection_rate_edges() -> None:
    assert collection_rate(Decimal("0"), Decimal("0")) == 0.0
    assert collection_rate(Decimal("500.00"), Decimal("0")) == 100.0
    assert collection_rate(Decimal("0"), Decimal("250.00")) == 0.0
    assert collection_rate(Decimal("700.00"), Decimal("400.00")) == 63.64


@pytest.mark.asyncio
async def test_empty_school_summary(client: AsyncClient, school: SimpleNamespace, admin_headers) -> None:
    response = await client.get("/api/v1/collections/summary", headers=admin_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["total_paid"] == 0.0
    assert data["total_pending"] == 0.0
    assert data["pending_count"] == 0
    assert data["overdue_count"] == 0
    assert data["collection_rate"] == 0.0
    # default window: the last twelve calendar months
    assert len(data["monthly_collection"]) == 12
    today = datetime.now(timezone.utc).date()
    assert data["end_date"] == today.isoformat()
    assert data["monthly_collection"][-1]["month"] == today.strftime("%Y-%m")


@pytest.mark.asyncio
async def test_summary_over_explicit_window(client: AsyncClient, school: SimpleNamespace, admin_headers) -> None:
    tuition = await _create_fee(client, admin_headers)
    bus = await _create_fee(client, admin_headers, name="Bus", amount=300)
    asha, ravi = school.students["Asha Rao"], school.students["Ravi Kumar"]

    asha_tuition = await _assign(client, admin_headers, asha, tuition["id"], 1000, "2025-02-15")
    await _assign(client, admin_headers, asha, bus["id"], 300, "2025-02-15")
    # due outside the window, ignored for pending figures
    await _assign(client, admin_headers, ravi, tuition["id"], 1000, "2025-06-15")

    await _pay(client, admin_headers, asha, 600, "2025-01-10T09:00:00Z", [(asha_tuition, 600)])
    await _pay(client, admin_headers, asha, 100, "2025-03-05T09:00:00Z")
    # outside the window
    await _pay(client, admin_headers, ravi, 50, "2024-12-31T23:00:00Z")

    response = await client.get(
        "/api/v1/collections/summary",
        params={"start_date": "2025-01-01", "end_date": "2025-03-31"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["total_paid"] == 700.0
    # Asha's tuition is PARTIAL (400 left); the unpaid bus fee is OVERDUE and counted separately
    assert data["total_pending"] == 400.0
    assert data["pending_count"] == 1
    assert data["overdue_count"] == 1
    assert data["overdue_amount"] == 300.0
    assert data["collection_rate"] == 63.64
    assert data["monthly_collection"] == [
        {"month": "2025-01", "amount": 600.0},
        {"month": "2025-02", "amount": 0.0},
        {"month": "2025-03", "amount": 100.0},
    ]


@pytest.mark.asyncio
async def test_fully_collected_school_has_full_rate(
    client: AsyncClient, school: SimpleNamespace, admin_headers
) -> None:
    fee = await _create_fee(client, admin_headers, amount=200)
    asha = school.students["Asha Rao"]
    sf_id = await _assign(client, admin_headers, asha, fee["id"], 200, "2025-01-01")
    await _pay(client, admin_headers, asha, 200, "2025-05-20T12:00:00Z", [(sf_id, 200)])

    response = await client.get(
        "/api/v1/collections/summary",
        params={"start_date": "2025-01-01", "end_date": "2025-12-31"},
        headers=admin_headers,
    )
    data = response.json()
    assert data["total_paid"] == 200.0
    assert data["total_pending"] == 0.0
    assert data["overdue_count"] == 0
    assert data["collection_rate"] == 100.0


@pytest.mark.asyncio
async def test_default_window_counts_this_month_and_all_open_fees(
    client: AsyncClient, school: SimpleNamespace, admin_headers
) -> None:
    fee = await _create_fee(client, admin_headers)
    asha, ravi = school.students["Asha Rao"], school.students["Ravi Kumar"]
    await _assign(client, admin_headers, asha, fee["id"], 1000, "2099-01-01")
    await _assign(client, admin_headers, ravi, fee["id"], 1000, "2020-01-01")
    now = datetime.now(timezone.utc).replace(microsecond=0)
    await _pay(client, admin_headers, asha, 150, now.isoformat())

    data = (await client.get("/api/v1/collections/summary", headers=admin_headers)).json()
    assert data["payments_this_month"] == 150.0
    assert data["total_paid"] == 150.0
    assert data["monthly_collection"][-1] == {"month": now.strftime("%Y-%m"), "amount": 150.0}
    # without a window every open fee counts, whatever its due date
    assert data["pending_count"] == 1
    assert data["total_pending"] == 1000.0
    assert data["overdue_count"] == 1


@pytest.mark.asyncio
async def test_summary_rejects_inverted_window(client: AsyncClient, school: SimpleNamespace, admin_headers) -> None:
    response = await client.get(
        "/api/v1/collections/summary",
        params={"start_date": "2025-03-01", "end_date": "2025-01-01"},
        headers=admin_headers,
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_summary_is_scoped_to_school(
    client: AsyncClient, school: SimpleNamespace, other_school: SimpleNamespace, admin_headers, make_headers
) -> None:
    fee = await _create_fee(client, admin_headers)
    asha = school.students["Asha Rao"]
    await _assign(client, admin_headers, asha, fee["id"], 1000, "2025-02-01")
    await _pay(client, admin_headers, asha, 500, "2025-02-01T10:00:00Z")

    data = (
        await client.get(
            "/api/v1/collections/summary",
            params={"start_date": "2025-01-01", "end_date": "2025-12-31"},
            headers=make_headers(other_school.id),
        )
    ).json()
    assert data["total_paid"] == 0.0
    assert data["overdue_count"] == 0
    assert data["monthly_collection"][1] == {"month": "2025-02", "amount": 0.0}


def test_shift_month_crosses_year_boundaries() -> None:
    assert _shift_month(date(2025, 3, 31), -11) == date(2024, 4, 1)
    assert _shift_month(date(2025, 12, 5), 1) == date(2026, 1, 1)
