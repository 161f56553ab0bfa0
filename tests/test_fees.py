from types import SimpleNamespace
from typing import Dict

import pytest
from httpx import AsyncClient


async def _create_fee(client: AsyncClient, headers: Dict[str, str], **overrides) -> dict:
    payload = {"name": "Tuition", "amount": 1000.00, "frequency": "YEARLY"}
    payload.update(overrides)
    response = await client.post("/api/v1/fees", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_create_fee_for_grade(client: AsyncClient, school: SimpleNamespace, admin_headers) -> None:
    grade_id = str(school.grades["Grade 3"])
    data = await _create_fee(client, admin_headers, name="Bus", amount=300.5, frequency="MONTHLY", grade_id=grade_id)

    assert data["name"] == "Bus"
    assert data["amount"] == 300.5
    assert data["frequency"] == "MONTHLY"
    assert data["grade_id"] == grade_id
    assert data["grade_name"] == "Grade 3"
    assert data["is_active"] is True
    assert data["tenant_id"] == str(school.id)
    assert data["student_fee_count"] == 0


@pytest.mark.asyncio
async def test_create_fee_rejects_bad_input(client: AsyncClient, school: SimpleNamespace, admin_headers) -> None:
    response = await client.post(
        "/api/v1/fees",
        json={"name": "Tuition", "amount": 0, "frequency": "YEARLY"},
        headers=admin_headers,
    )
    assert response.status_code == 422

    response = await client.post(
        "/api/v1/fees",
        json={"name": "Tuition", "amount": 100, "frequency": "WEEKLY"},
        headers=admin_headers,
    )
    assert response.status_code == 422

    response = await client.post(
        "/api/v1/fees",
        json={"name": "   ", "amount": 100, "frequency": "YEARLY"},
        headers=admin_headers,
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_create_fee_with_foreign_grade_is_not_found(
    client: AsyncClient, school: SimpleNamespace, other_school: SimpleNamespace, admin_headers
) -> None:
    response = await client.post(
        "/api/v1/fees",
        json={"name": "Lab", "amount": 50, "frequency": "ONE_TIME", "grade_id": str(other_school.grades["Grade 3"])},
        headers=admin_headers,
    )
    assert response.status_code == 404
    assert response.json()["detail"] == "Grade not found"


@pytest.mark.asyncio
async def test_list_and_filter_fees(client: AsyncClient, school: SimpleNamespace, admin_headers) -> None:
    await _create_fee(client, admin_headers, name="Tuition")
    await _create_fee(client, admin_headers, name="Bus", amount=300, grade_id=str(school.grades["Grade 3"]))
    old = await _create_fee(client, admin_headers, name="Old Exam", amount=80)
    response = await client.put(f"/api/v1/fees/{old['id']}", json={"is_active": False}, headers=admin_headers)
    assert response.status_code == 200

    response = await client.get("/api/v1/fees", headers=admin_headers)
    assert response.status_code == 200
    assert {f["name"] for f in response.json()} == {"Tuition", "Bus", "Old Exam"}

    response = await client.get("/api/v1/fees", params={"active_only": True}, headers=admin_headers)
    assert {f["name"] for f in response.json()} == {"Tuition", "Bus"}

    response = await client.get(
        "/api/v1/fees", params={"grade_id": str(school.grades["Grade 3"])}, headers=admin_headers
    )
    assert [f["name"] for f in response.json()] == ["Bus"]


@pytest.mark.asyncio
async def test_fees_are_scoped_to_school(
    client: AsyncClient, school: SimpleNamespace, other_school: SimpleNamespace, admin_headers, make_headers
) -> None:
    fee = await _create_fee(client, admin_headers)
    other_headers = make_headers(other_school.id)

    response = await client.get("/api/v1/fees", headers=other_headers)
    assert response.status_code == 200
    assert response.json() == []

    response = await client.get(f"/api/v1/fees/{fee['id']}", headers=other_headers)
    assert response.status_code == 404

    response = await client.put(f"/api/v1/fees/{fee['id']}", json={"amount": 1}, headers=other_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_template_edit_does_not_touch_assigned_amounts(
    client: AsyncClient, school: SimpleNamespace, admin_headers
) -> None:
    fee = await _create_fee(client, admin_headers)
    response = await client.post(
        "/api/v1/student-fees",
        json={
            "student_id": str(school.students["Asha Rao"]),
            "fee_id": fee["id"],
            "amount": 1000,
            "due_date": "2099-06-30",
        },
        headers=admin_headers,
    )
    assert response.status_code == 201
    student_fee_id = response.json()["id"]

    response = await client.put(f"/api/v1/fees/{fee['id']}", json={"amount": 1200}, headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["amount"] == 1200.0
    assert response.json()["student_fee_count"] == 1

    response = await client.get(f"/api/v1/student-fees/{student_fee_id}", headers=admin_headers)
    assert response.json()["amount_owed"] == 1000.0


@pytest.mark.asyncio
async def test_fee_endpoints_require_permission(
    client: AsyncClient, school: SimpleNamespace, make_headers
) -> None:
    payload = {"name": "Tuition", "amount": 1000, "frequency": "YEARLY"}

    response = await client.post("/api/v1/fees", json=payload)
    assert response.status_code == 401

    staff = make_headers(school.id, role="TEACHER", permissions={"fees": {"read": True}})
    response = await client.post("/api/v1/fees", json=payload, headers=staff)
    assert response.status_code == 403
    response = await client.get("/api/v1/fees", headers=staff)
    assert response.status_code == 200

    accountant = make_headers(school.id, role="ACCOUNTANT", permissions={"fees": {"create": True}})
    response = await client.post("/api/v1/fees", json=payload, headers=accountant)
    assert response.status_code == 201

    response = await client.get("/api/v1/fees", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401
