from decimal import Decimal

import pytest


def test_upload_matches_payee_line(client, engine, seeded):
    resp = client.post(
        "/uploads/invoices",
        json={"email": "GRIP@crew.example", "amount": "1250.50", "project_code": "SPOT-24", "invoice_number": "A-1"},
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "WAITING_APPROVAL"
    assert body["budget_line_id"] == seeded["line"].id
    assert body["payee_name"] == "Sam Grip"
    assert body["project_name"] == "Spring Spot"
    assert body["invoice_number"] == "A-1"
    assert Decimal(body["amount"]) == Decimal("1250.50")

    stored = engine.store.get_invoice(body["id"])
    assert stored.project_id == seeded["project"].id
    assert engine.store.get_project(seeded["project"].id).total_spent == Decimal("0")


def test_upload_accepts_numeric_amount(client, seeded):
    resp = client.post(
        "/uploads/invoices", json={"email": "grip@crew.example", "amount": 300, "project_code": "SPOT-24"}
    )
    assert resp.status_code == 201
    assert Decimal(resp.json()["amount"]) == Decimal("300")


@pytest.mark.parametrize(
    "payload,message",
    [
        ({"email": "nope", "amount": "10", "project_code": "SPOT-24"}, "Invalid email address"),
        ({"email": "grip@crew.example", "amount": "0", "project_code": "SPOT-24"}, "Invalid amount"),
        ({"email": "grip@crew.example", "amount": "ten", "project_code": "SPOT-24"}, "Invalid amount"),
        ({"email": "grip@crew.example", "amount": "10", "project_code": ""}, "Project code is required"),
    ],
)
def test_upload_validation_failures(client, engine, seeded, payload, message):
    resp = client.post("/uploads/invoices", json=payload)
    assert resp.status_code == 400
    assert resp.json()["detail"] == {"code": "VALIDATION_FAILED", "message": message}
    assert engine.store.list_invoices() == []


def test_upload_unknown_email(client, engine, seeded):
    resp = client.post(
        "/uploads/invoices", json={"email": "ghost@crew.example", "amount": "10", "project_code": "SPOT-24"}
    )
    assert resp.status_code == 404
    detail = resp.json()["detail"]
    assert detail["code"] == "EMAIL_NOT_FOUND"
    assert detail["message"] == "Email not found in our system. Please contact the production team."
    assert engine.store.list_invoices() == []


def test_upload_other_owners_code_is_indistinguishable(client, engine, seeded):
    foreign = client.post(
        "/uploads/invoices", json={"email": "grip@crew.example", "amount": "10", "project_code": "OTHER-1"}
    )
    unknown = client.post(
        "/uploads/invoices", json={"email": "grip@crew.example", "amount": "10", "project_code": "MISSING"}
    )
    assert foreign.status_code == unknown.status_code == 404
    assert foreign.json() == unknown.json()
    assert foreign.json()["detail"]["code"] == "PROJECT_CODE_MISMATCH"
    assert engine.store.list_invoices() == []


def test_upload_missing_fields_is_rejected_by_schema(client):
    resp = client.post("/uploads/invoices", json={"email": "grip@crew.example"})
    assert resp.status_code == 422
