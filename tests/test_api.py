"""
Integration tests for the REST API endpoints.

Runs the real app factory against the per-test SQLite file and the
in-process change feed.  Identity is the ``X-User-Id`` header.
"""

from __future__ import annotations

import pytest
from httpx import AsyncClient
from sqlalchemy.exc import OperationalError

from lastmile.domain.enums import ApprovalStatus, UserRole
from lastmile.services.lifecycle import DeliveryController
from tests.conftest import as_user

BOOKING = {
    "pickup_address": "12 Unity Road, Lafia",
    "pickup_lat": 9.0820,
    "pickup_lng": 8.6753,
    "dropoff_address": "Central Business District, Abuja",
    "dropoff_lat": 9.0579,
    "dropoff_lng": 7.4951,
    "package_details": "Documents",
    "recipient_name": "Ada Recipient",
    "recipient_phone": "+2348011111111",
}


async def _book(client: AsyncClient, customer, **overrides) -> dict:
    resp = await client.post(
        "/api/v1/customer/deliveries",
        json={**BOOKING, **overrides},
        headers=as_user(customer),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


# ── Health & identity ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/api/v1/admin/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_missing_identity_is_401(client: AsyncClient):
    resp = await client.get("/api/v1/customer/deliveries")
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_unknown_identity_is_401(client: AsyncClient):
    resp = await client.get("/api/v1/customer/deliveries", headers={"X-User-Id": "999"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_wrong_role_is_403(client: AsyncClient, factory):
    rider = await factory.rider()
    resp = await client.post(
        "/api/v1/customer/deliveries", json=BOOKING, headers=as_user(rider)
    )
    assert resp.status_code == 403
    assert resp.json()["retryable"] is False


# ── Accounts ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_signup_and_duplicate(client: AsyncClient):
    body = {
        "email": "ada@example.com",
        "password": "password123",
        "full_name": "Ada Obi",
        "phone": "+2348000000001",
        "role": "customer",
    }
    resp = await client.post("/api/v1/auth/signup", json=body)
    assert resp.status_code == 201
    data = resp.json()
    assert data["success"] is True
    assert data["profile"]["role"] == "customer"
    assert data["profile"]["status"] == "active"

    resp = await client.post("/api/v1/auth/signup", json=body)
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_signup_rejects_admin_role(client: AsyncClient):
    resp = await client.post(
        "/api/v1/auth/signup",
        json={
            "email": "boss@example.com",
            "password": "password123",
            "full_name": "Boss",
            "phone": "+2348000000002",
            "role": "admin",
        },
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_promote_admin_requires_secret(client: AsyncClient, factory):
    await factory.customer()
    resp = await client.get(
        "/api/v1/auth/promote-admin",
        params={"email": "customer1@example.com", "secret": "wrong"},
    )
    assert resp.status_code == 403

    resp = await client.get("/api/v1/auth/promote-admin", params={"secret": "wrong"})
    assert resp.status_code == 400


# ── Booking flow ──────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_quote_has_no_side_effects(client: AsyncClient, factory):
    customer = await factory.customer()
    resp = await client.post(
        "/api/v1/customer/quote", json=BOOKING, headers=as_user(customer)
    )
    assert resp.status_code == 200
    assert resp.json() == {"fare_estimate": 13603}

    resp = await client.get("/api/v1/customer/deliveries", headers=as_user(customer))
    assert resp.json() == []


@pytest.mark.asyncio
async def test_delivery_types_lists_active_tiers(client: AsyncClient, factory):
    customer = await factory.customer()
    await factory.tier("Express", 1000)
    await factory.tier("Retired", 200, active=False)
    resp = await client.get("/api/v1/customer/delivery-types", headers=as_user(customer))
    assert [t["name"] for t in resp.json()] == ["Express"]


@pytest.mark.asyncio
async def test_invalid_booking_body_is_422(client: AsyncClient, factory):
    customer = await factory.customer()
    resp = await client.post(
        "/api/v1/customer/deliveries",
        json={**BOOKING, "pickup_lat": 123.0},
        headers=as_user(customer),
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_full_delivery_flow(client: AsyncClient, factory):
    customer = await factory.customer()
    rider = await factory.rider()

    delivery = await _book(client, customer)
    assert delivery["status"] == "pending"
    assert delivery["fare_estimate"] == 13603
    delivery_id = delivery["id"]

    resp = await client.get("/api/v1/rider/deliveries/available", headers=as_user(rider))
    assert [d["id"] for d in resp.json()] == [delivery_id]

    resp = await client.post(
        f"/api/v1/rider/deliveries/{delivery_id}/accept", headers=as_user(rider)
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "assigned"

    resp = await client.post(
        f"/api/v1/rider/deliveries/{delivery_id}/advance",
        json={"status": "picked_up"},
        headers=as_user(rider),
    )
    assert resp.json()["status"] == "picked_up"

    for expected in ("in_transit", "delivered"):
        resp = await client.post(
            f"/api/v1/rider/deliveries/{delivery_id}/advance",
            json={"status": expected},
            headers=as_user(rider),
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == expected

    data = resp.json()
    assert data["final_fare"] == 13603
    assert data["payment_status"] == "completed"

    resp = await client.get("/api/v1/rider/earnings", headers=as_user(rider))
    assert resp.json()["today"] == pytest.approx(10882.40)

    resp = await client.get(
        f"/api/v1/deliveries/{delivery_id}/tracking", headers=as_user(customer)
    )
    assert len(resp.json()) == 4

    resp = await client.get("/api/v1/notifications", headers=as_user(customer))
    titles = [n["title"] for n in resp.json()]
    assert titles[0] == "Delivery Update"
    assert titles[-1] == "Delivery Booked"


@pytest.mark.asyncio
async def test_second_accept_is_409(client: AsyncClient, factory):
    customer = await factory.customer()
    first = await factory.rider()
    second = await factory.rider()
    delivery = await _book(client, customer)

    url = f"/api/v1/rider/deliveries/{delivery['id']}/accept"
    assert (await client.post(url, headers=as_user(first))).status_code == 200
    resp = await client.post(url, headers=as_user(second))
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_skipping_a_step_is_409(client: AsyncClient, factory):
    customer = await factory.customer()
    rider = await factory.rider()
    delivery = await _book(client, customer)
    await client.post(
        f"/api/v1/rider/deliveries/{delivery['id']}/accept", headers=as_user(rider)
    )

    resp = await client.post(
        f"/api/v1/rider/deliveries/{delivery['id']}/advance",
        json={"status": "delivered"},
        headers=as_user(rider),
    )
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_repeated_advance_is_409_and_writes_nothing(client: AsyncClient, factory):
    customer = await factory.customer()
    rider = await factory.rider()
    delivery = await _book(client, customer)
    await client.post(
        f"/api/v1/rider/deliveries/{delivery['id']}/accept", headers=as_user(rider)
    )
    url = f"/api/v1/rider/deliveries/{delivery['id']}/advance"

    first = await client.post(url, json={"status": "picked_up"}, headers=as_user(rider))
    assert first.status_code == 200
    again = await client.post(url, json={"status": "picked_up"}, headers=as_user(rider))
    assert again.status_code == 409

    resp = await client.get(f"/api/v1/deliveries/{delivery['id']}", headers=as_user(rider))
    assert resp.json()["status"] == "picked_up"
    resp = await client.get(
        f"/api/v1/deliveries/{delivery['id']}/tracking", headers=as_user(customer)
    )
    assert len(resp.json()) == 2

    # No target, no step.
    resp = await client.post(url, headers=as_user(rider))
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_unapproved_rider_cannot_accept(client: AsyncClient, factory):
    customer = await factory.customer()
    rider = await factory.rider(approval=ApprovalStatus.PENDING)
    delivery = await _book(client, customer)
    resp = await client.post(
        f"/api/v1/rider/deliveries/{delivery['id']}/accept", headers=as_user(rider)
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_customers_only_see_their_own(client: AsyncClient, factory):
    alice = await factory.customer()
    bob = await factory.customer()
    delivery = await _book(client, alice)

    resp = await client.get(f"/api/v1/deliveries/{delivery['id']}", headers=as_user(bob))
    assert resp.status_code == 403
    resp = await client.get("/api/v1/deliveries/9999", headers=as_user(alice))
    assert resp.status_code == 404


# ── Admin ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_admin_assign_cancel_delete(client: AsyncClient, factory):
    admin = await factory.admin()
    customer = await factory.customer()
    rider = await factory.rider()
    delivery = await _book(client, customer)
    base = f"/api/v1/admin/deliveries/{delivery['id']}"

    resp = await client.post(
        f"{base}/assign", json={"rider_id": rider.rider_id}, headers=as_user(admin)
    )
    assert resp.json()["rider_id"] == rider.rider_id

    resp = await client.delete(base, headers=as_user(admin))
    assert resp.status_code == 409

    resp = await client.post(f"{base}/cancel", headers=as_user(admin))
    assert resp.json()["status"] == "cancelled"

    resp = await client.delete(base, headers=as_user(admin))
    assert resp.status_code == 200
    assert resp.json() == {"deleted": True, "tracking_events_removed": 2}

    resp = await client.get(base.replace("/admin", ""), headers=as_user(admin))
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_admin_endpoints_reject_customers(client: AsyncClient, factory):
    customer = await factory.customer()
    for path in ("/api/v1/admin/deliveries", "/api/v1/admin/riders", "/api/v1/admin/analytics"):
        resp = await client.get(path, headers=as_user(customer))
        assert resp.status_code == 403, path


@pytest.mark.asyncio
async def test_rider_application_review(client: AsyncClient, factory):
    admin = await factory.admin()
    applicant = await factory.profile(UserRole.RIDER)

    resp = await client.post(
        "/api/v1/rider/profile",
        json={"vehicle_type": "car", "vehicle_number": "ABJ-7", "driver_license": "DL-7"},
        headers=as_user(applicant),
    )
    assert resp.status_code == 201
    rider_id = resp.json()["id"]

    resp = await client.get(
        "/api/v1/admin/riders", params={"approval": "pending"}, headers=as_user(admin)
    )
    assert [r["id"] for r in resp.json()] == [rider_id]

    decision = f"/api/v1/admin/riders/{rider_id}/decision"
    resp = await client.post(
        decision, json={"approval_status": "approved"}, headers=as_user(admin)
    )
    assert resp.json()["approval_status"] == "approved"

    resp = await client.post(
        decision, json={"approval_status": "rejected"}, headers=as_user(admin)
    )
    assert resp.status_code == 409

    resp = await client.patch(
        "/api/v1/rider/availability", json={"is_available": True}, headers=as_user(applicant)
    )
    assert resp.json()["is_available"] is True


@pytest.mark.asyncio
async def test_analytics(client: AsyncClient, factory):
    admin = await factory.admin()
    customer = await factory.customer()
    await _book(client, customer)

    resp = await client.get("/api/v1/admin/analytics", headers=as_user(admin))
    data = resp.json()
    assert data["deliveries_today"] == 1
    assert data["revenue_today"] == 0
    assert len(data["recent_deliveries"]) == 1


# ── Public tracking ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_public_tracking(client: AsyncClient, factory):
    customer = await factory.customer()
    rider = await factory.rider()
    delivery = await _book(client, customer)
    await client.post(
        f"/api/v1/rider/deliveries/{delivery['id']}/accept", headers=as_user(rider)
    )

    resp = await client.get(f"/api/v1/track/{delivery['tracking_number'].lower()}")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "assigned"
    assert data["vehicle_type"] == "bike"
    assert len(data["events"]) == 1
    assert "customer_id" not in data


@pytest.mark.asyncio
async def test_public_tracking_not_found(client: AsyncClient):
    resp = await client.get("/api/v1/track/LMNOTHERE")
    assert resp.status_code == 404


# ── Error mapping ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_store_outage_is_503(client: AsyncClient, factory, monkeypatch):
    customer = await factory.customer()

    async def unavailable(self, session, status=None):
        raise OperationalError("SELECT", {}, Exception("connection refused"))

    monkeypatch.setattr(DeliveryController, "list_deliveries", unavailable)
    resp = await client.get("/api/v1/customer/deliveries", headers=as_user(customer))
    assert resp.status_code == 503
    assert resp.json()["retryable"] is True
