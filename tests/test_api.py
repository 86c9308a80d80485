"""HTTP-level tests for the lease and payment routes."""

import json

import pytest
from fastapi.testclient import TestClient

from auth import create_access_token
from conftest import signed, stk_callback
from database import get_session
from main import app
from models import LeaseStatus, PaymentStatus, UnitStatus
from routers.payments import get_gateway


def bearer(user):
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role.value)}"}


@pytest.fixture
def client(db_session, gateway):
    def override_session():
        yield db_session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


def lease_body(tenant, unit, **overrides):
    body = {
        "tenant_id": tenant.id,
        "unit_id": unit.id,
        "start_date": "2024-01-01",
        "end_date": "2024-12-31",
        "monthly_rent": "25000",
    }
    body.update(overrides)
    return body


class TestLeaseRoutes:

    def test_create_lease(self, client, db_session, landlord, tenant, unit):
        response = client.post("/api/leases", json=lease_body(tenant, unit), headers=bearer(landlord))

        assert response.status_code == 201
        assert response.json()["status"] == LeaseStatus.ACTIVE.value
        db_session.refresh(unit)
        assert unit.status == UnitStatus.OCCUPIED

    def test_conflict_is_409(self, client, landlord, tenant2, unit, active_lease):
        response = client.post("/api/leases", json=lease_body(tenant2, unit), headers=bearer(landlord))

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "conflict"

    def test_validation_error_is_422(self, client, landlord, tenant, unit):
        body = lease_body(tenant, unit, end_date="2023-12-31")
        response = client.post("/api/leases", json=body, headers=bearer(landlord))

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "validation_error"

    def test_tenant_cannot_create(self, client, tenant, unit):
        response = client.post("/api/leases", json=lease_body(tenant, unit), headers=bearer(tenant))
        assert response.status_code == 403

    def test_missing_token(self, client, tenant, unit):
        response = client.post("/api/leases", json=lease_body(tenant, unit))
        assert response.status_code == 401

    def test_terminate_then_terminate_again(self, client, landlord, active_lease):
        url = f"/api/leases/{active_lease.id}/terminate"

        first = client.put(url, json={"reason": "non-renewal"}, headers=bearer(landlord))
        second = client.put(url, json={"reason": "non-renewal"}, headers=bearer(landlord))

        assert first.status_code == 200
        assert first.json()["status"] == LeaseStatus.TERMINATED.value
        assert second.status_code == 409
        assert second.json()["error"]["code"] == "invalid_state"

    def test_terminate_other_landlords_lease_is_404(self, client, other_landlord, active_lease):
        response = client.put(f"/api/leases/{active_lease.id}/terminate", headers=bearer(other_landlord))

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"

    def test_list_and_history(self, client, landlord, unit, active_lease):
        listing = client.get("/api/leases", params={"status": "active"}, headers=bearer(landlord))
        history = client.get(f"/api/leases/unit/{unit.id}/history", headers=bearer(landlord))

        assert listing.status_code == 200
        assert listing.json()["total"] == 1
        assert history.status_code == 200
        assert history.json()["history"][0]["status"] == "active"

    def test_tenant_current_lease(self, client, tenant, tenant2, active_lease):
        assert client.get("/api/leases/tenant/current", headers=bearer(tenant)).json()["id"] == active_lease.id
        assert client.get("/api/leases/tenant/current", headers=bearer(tenant2)).status_code == 404

    def test_activate_pending_lease(self, client, landlord, tenant, unit):
        created = client.post(
            "/api/leases", json=lease_body(tenant, unit, activate=False), headers=bearer(landlord)
        ).json()

        response = client.put(f"/api/leases/{created['id']}/activate", headers=bearer(landlord))

        assert created["status"] == "pending"
        assert response.json()["status"] == "active"


class TestPaymentRoutes:

    def test_initiate_and_settle(self, client, db_session, tenant, unit, active_lease):
        body = {"tenant_id": tenant.id, "unit_id": unit.id, "amount": "25000", "phone_number": "254700000000"}

        created = client.post("/api/payments", json=body, headers=bearer(tenant))
        assert created.status_code == 201
        assert created.json()["status"] == PaymentStatus.PENDING.value
        assert created.json()["checkout_request_id"] == "ws_CO_1"

        headers, raw = signed(stk_callback("ws_CO_1", receipt="QWE123"))
        callback = client.post("/api/payments/mpesa/callback", content=raw, headers=headers)
        assert callback.status_code == 200
        assert callback.json() == {"ResultCode": 0, "ResultDesc": "Success"}

        fetched = client.get(f"/api/payments/{created.json()['id']}", headers=bearer(tenant))
        assert fetched.json()["status"] == PaymentStatus.SUCCESSFUL.value
        assert fetched.json()["mpesa_receipt_number"] == "QWE123"

    def test_initiate_without_lease_is_409(self, client, tenant, unit):
        body = {"tenant_id": tenant.id, "unit_id": unit.id, "amount": "25000", "phone_number": "254700000000"}

        response = client.post("/api/payments", json=body, headers=bearer(tenant))

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "invalid_state"

    def test_gateway_outage_is_503(self, client, gateway, tenant, unit, active_lease):
        from errors import UpstreamUnavailableError

        gateway.error = UpstreamUnavailableError("Failed to get M-Pesa access token")
        body = {"tenant_id": tenant.id, "unit_id": unit.id, "amount": "25000", "phone_number": "254700000000"}

        response = client.post("/api/payments", json=body, headers=bearer(tenant))

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "upstream_unavailable"
        listing = client.get("/api/payments", headers=bearer(tenant)).json()
        assert listing["payments"][0]["status"] == "failed"

    @pytest.mark.parametrize(
        "headers, raw",
        [
            ({"X-Safaricom-Signature": "bogus"}, json.dumps(stk_callback("ws_CO_1")).encode()),
            ({}, b"not json at all"),
            signed({"hello": "world"}),
        ],
    )
    def test_callback_always_acks(self, client, headers, raw):
        response = client.post("/api/payments/mpesa/callback", content=raw, headers=headers)

        assert response.status_code == 200
        assert response.json() == {"ResultCode": 0, "ResultDesc": "Success"}

    def test_cash_payment_settled_by_landlord(self, client, gateway, landlord, tenant, unit, active_lease):
        body = {"tenant_id": tenant.id, "unit_id": unit.id, "amount": "25000", "payment_method": "cash"}

        created = client.post("/api/payments", json=body, headers=bearer(tenant))
        assert created.status_code == 201
        assert created.json()["payment_method"] == "cash"
        assert gateway.calls == []

        url = f"/api/payments/{created.json()['id']}"
        settled = client.put(url, json={"status": "successful"}, headers=bearer(landlord))
        again = client.put(url, json={"status": "failed"}, headers=bearer(landlord))
        by_tenant = client.put(url, json={"status": "failed"}, headers=bearer(tenant))

        assert settled.status_code == 200
        assert settled.json()["status"] == "successful"
        assert again.status_code == 409
        assert again.json()["error"]["code"] == "invalid_state"
        assert by_tenant.status_code == 403

    def test_payment_visibility(self, client, tenant, tenant2, unit, active_lease):
        body = {"tenant_id": tenant.id, "unit_id": unit.id, "amount": "100", "phone_number": "254700000000"}
        payment_id = client.post("/api/payments", json=body, headers=bearer(tenant)).json()["id"]

        assert client.get(f"/api/payments/{payment_id}", headers=bearer(tenant2)).status_code == 404
        assert client.get("/api/payments", headers=bearer(tenant2)).json()["total"] == 0


def test_unknown_route(client):
    response = client.get("/api/nope")
    assert response.status_code == 404
    assert response.json() == {"error": "Route not found"}
