"""
Integration tests for the bookings API.

The app runs against the in-memory database with a fake payment gateway and
a recording email provider. Background notification passes run before
TestClient returns, so sent emails can be asserted directly.
"""
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from counselbook.api.app import app


WHEN = "2026-11-02T10:00:00Z"
LATER = "2026-11-03T15:30:00Z"


@pytest.fixture
def client(session_factory, gateway, email_provider, monkeypatch):
    """Test client for FastAPI app with external providers replaced."""
    monkeypatch.setattr("counselbook.services.booking_lifecycle.get_payment_gateway", lambda: gateway)
    monkeypatch.setattr("counselbook.jobs.notification_worker.get_email_provider", lambda: email_provider)
    with TestClient(app) as test_client:
        yield test_client


def _create(client, email="asha@example.com", when=WHEN, headers=None, **extra):
    body = {"name": "Asha", "email": email, "when": when, "reason": "Stress at work"}
    body.update(extra)
    return client.post("/bookings", json=body, headers=headers or {})


def _initiate(client, email="asha@example.com"):
    response = client.post("/bookings/initiate", json={"name": "Asha", "email": email, "when": WHEN})
    assert response.status_code == 201
    return response.json()


# ============================================================================
# POST /bookings
# ============================================================================


class TestCreateBooking:

    @pytest.mark.integration
    def test_create_booking(self, client):
        response = _create(client)

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "pending"
        assert data["email"] == "asha@example.com"
        assert data["reason"] == "Stress at work"
        assert data["meetingId"] is None
        assert data["userId"] is None
        assert data["when"].startswith("2026-11-02T10:00:00")

    @pytest.mark.integration
    def test_signed_in_caller_is_linked(self, client, auth_headers):
        response = _create(client, headers=auth_headers(user_id="user-9"))

        assert response.json()["userId"] == "user-9"

    @pytest.mark.integration
    def test_duplicate_returns_existing(self, client):
        first = _create(client).json()
        second = _create(client, when=LATER).json()

        assert second["id"] == first["id"]

    @pytest.mark.integration
    def test_missing_field_is_validation_error(self, client):
        response = client.post("/bookings", json={"name": "Asha", "when": WHEN})

        assert response.status_code == 422
        data = response.json()
        assert data["error"] == "Validation error"
        assert "correlation_id" in data

    @pytest.mark.integration
    def test_blank_name_is_validation_error(self, client):
        response = _create(client, name="   ")

        assert response.status_code == 422
        assert "name" in response.json()["details"]["errors"]

    @pytest.mark.integration
    def test_bad_timestamp_is_validation_error(self, client):
        response = _create(client, when="tomorrow-ish")

        assert response.status_code == 422
        assert "when" in response.json()["details"]["errors"]


# ============================================================================
# Paid flow
# ============================================================================


class TestPaidFlow:

    @pytest.mark.integration
    def test_initiate_returns_booking_and_order(self, client):
        data = _initiate(client)

        assert data["booking"]["status"] == "payment_pending"
        assert data["booking"]["orderId"] == data["order"]["id"]
        assert data["booking"]["amount"] == 50000
        assert data["order"]["receipt"] == data["booking"]["id"]
        assert data["keyId"] == "rzp_test_key"

    @pytest.mark.integration
    def test_initiate_gateway_down(self, client, gateway, gateway_unavailable):
        gateway.fail_with = gateway_unavailable

        response = client.post("/bookings/initiate", json={"name": "Asha", "email": "asha@example.com", "when": WHEN})

        assert response.status_code == 503
        assert response.json()["error"] == "Payment gateway timed out"

    @pytest.mark.integration
    def test_verify_confirms_and_emails(self, client, sign, email_provider):
        data = _initiate(client)
        order_id = data["order"]["id"]

        response = client.post("/bookings/verify", json={
            "bookingId": data["booking"]["id"],
            "paymentId": "pay_1",
            "orderId": order_id,
            "signature": sign(order_id, "pay_1"),
        })

        assert response.status_code == 200
        booking = response.json()
        assert booking["status"] == "confirmed"
        assert booking["paymentId"] == "pay_1"
        assert booking["meetingUrl"] == f"https://groom.test/connect/{booking['meetingId']}"

        assert len(email_provider.sent) == 1
        assert email_provider.sent[0]["template_name"] == "booking_confirmation"
        assert email_provider.sent[0]["template_data"]["meeting_id"] == booking["meetingId"]

    @pytest.mark.integration
    def test_verify_twice_sends_one_email(self, client, sign, email_provider):
        data = _initiate(client)
        order_id = data["order"]["id"]
        body = {
            "bookingId": data["booking"]["id"],
            "paymentId": "pay_1",
            "orderId": order_id,
            "signature": sign(order_id, "pay_1"),
        }

        first = client.post("/bookings/verify", json=body).json()
        second = client.post("/bookings/verify", json=body).json()

        assert second["meetingId"] == first["meetingId"]
        assert len(email_provider.sent) == 1

    @pytest.mark.integration
    def test_verify_bad_signature(self, client, admin_headers):
        data = _initiate(client)

        response = client.post("/bookings/verify", json={
            "bookingId": data["booking"]["id"],
            "paymentId": "pay_1",
            "orderId": data["order"]["id"],
            "signature": "0" * 64,
        })

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid payment signature"

        stored = client.get(f"/bookings/{data['booking']['id']}", headers=admin_headers).json()
        assert stored["status"] == "payment_pending"

    @pytest.mark.integration
    def test_initiate_with_active_booking_is_conflict(self, client, gateway):
        existing = _create(client).json()

        response = client.post("/bookings/initiate", json={"name": "Asha", "email": "asha@example.com", "when": LATER})

        assert response.status_code == 409
        assert response.json()["details"]["booking_id"] == existing["id"]
        assert gateway.orders == []

    @pytest.mark.integration
    def test_verify_while_direct_booking_is_active(self, client, sign, admin_headers, email_provider):
        data = _initiate(client)
        direct = _create(client, when=LATER).json()
        order_id = data["order"]["id"]

        response = client.post("/bookings/verify", json={
            "bookingId": data["booking"]["id"],
            "paymentId": "pay_1",
            "orderId": order_id,
            "signature": sign(order_id, "pay_1"),
        })

        assert response.status_code == 200
        assert response.json()["status"] == "confirmed"
        assert response.json()["paymentId"] == "pay_1"
        assert direct["id"] != data["booking"]["id"]
        stored = client.get(f"/bookings/{direct['id']}", headers=admin_headers).json()
        assert stored["status"] == "pending"
        assert [m["template_name"] for m in email_provider.sent] == ["booking_confirmation"]

    @pytest.mark.integration
    def test_two_paid_bookings_for_one_email_both_verify(self, client, sign):
        first = _initiate(client)
        second = _initiate(client)

        for data, payment_id in ((first, "pay_1"), (second, "pay_2")):
            order_id = data["order"]["id"]
            response = client.post("/bookings/verify", json={
                "bookingId": data["booking"]["id"],
                "paymentId": payment_id,
                "orderId": order_id,
                "signature": sign(order_id, payment_id),
            })

            assert response.status_code == 200
            assert response.json()["status"] == "confirmed"
            assert response.json()["paymentId"] == payment_id

    @pytest.mark.integration
    def test_verify_unknown_booking(self, client, sign):
        response = client.post("/bookings/verify", json={
            "bookingId": str(uuid4()),
            "paymentId": "pay_1",
            "orderId": "order_1",
            "signature": sign("order_1", "pay_1"),
        })

        assert response.status_code == 404


# ============================================================================
# GET /bookings
# ============================================================================


class TestListBookings:

    @pytest.mark.integration
    def test_requires_authentication(self, client):
        response = client.get("/bookings")

        assert response.status_code == 401
        assert response.json()["error"] == "Missing bearer token"

    @pytest.mark.integration
    def test_invalid_token_rejected(self, client):
        response = client.get("/bookings", headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == 401

    @pytest.mark.integration
    def test_regular_user_sees_only_own_bookings(self, client, auth_headers):
        mine = _create(client, headers=auth_headers(user_id="user-a")).json()
        _create(client, email="other@example.com", headers=auth_headers(user_id="user-b"))

        response = client.get("/bookings", params={"userId": "user-b"}, headers=auth_headers(user_id="user-a"))

        assert response.status_code == 200
        assert [b["id"] for b in response.json()] == [mine["id"]]

    @pytest.mark.integration
    def test_admin_filters(self, client, admin_headers):
        a = _create(client, email="a@example.com", when="2026-11-02T10:00:00Z").json()
        b = _create(client, email="b@example.com", when="2026-11-02T11:00:00Z").json()
        c = _create(client, email="c@example.com", when="2026-11-02T12:00:00Z").json()
        client.delete(f"/bookings/{a['id']}", headers=admin_headers)

        everything = client.get("/bookings", params={"sort": "desc"}, headers=admin_headers).json()
        pending = client.get("/bookings", params={"status": "pending"}, headers=admin_headers).json()
        several = client.get("/bookings", params={"status": "pending,cancelled"}, headers=admin_headers).json()
        window = client.get(
            "/bookings",
            params={"fromDate": "2026-11-02T11:00:00Z", "toDate": "2026-11-02T11:00:00Z"},
            headers=admin_headers,
        ).json()
        by_email = client.get("/bookings", params={"email": "c@example.com"}, headers=admin_headers).json()

        assert [x["id"] for x in everything] == [c["id"], b["id"], a["id"]]
        assert [x["id"] for x in pending] == [b["id"], c["id"]]
        assert len(several) == 3
        assert [x["id"] for x in window] == [b["id"]]
        assert [x["id"] for x in by_email] == [c["id"]]

    @pytest.mark.integration
    def test_invalid_status_filter(self, client, admin_headers):
        response = client.get("/bookings", params={"status": "pending,archived"}, headers=admin_headers)

        assert response.status_code == 422
        assert "status" in response.json()["details"]["errors"]

    @pytest.mark.integration
    def test_invalid_sort(self, client, admin_headers):
        response = client.get("/bookings", params={"sort": "random"}, headers=admin_headers)

        assert response.status_code == 422


# ============================================================================
# GET /bookings/{id}
# ============================================================================


class TestGetBooking:

    @pytest.mark.integration
    def test_owner_by_user_id(self, client, auth_headers):
        booking = _create(client, headers=auth_headers(user_id="user-a")).json()

        response = client.get(f"/bookings/{booking['id']}", headers=auth_headers(user_id="user-a"))

        assert response.status_code == 200
        assert response.json()["id"] == booking["id"]

    @pytest.mark.integration
    def test_owner_by_email(self, client, auth_headers):
        booking = _create(client).json()

        response = client.get(
            f"/bookings/{booking['id']}",
            headers=auth_headers(user_id="user-z", email="Asha@Example.com"),
        )

        assert response.status_code == 200

    @pytest.mark.integration
    def test_stranger_forbidden(self, client, auth_headers):
        booking = _create(client).json()

        response = client.get(f"/bookings/{booking['id']}", headers=auth_headers(user_id="user-x", email="x@example.com"))

        assert response.status_code == 403

    @pytest.mark.integration
    def test_admin_and_unknown(self, client, admin_headers):
        booking = _create(client).json()

        assert client.get(f"/bookings/{booking['id']}", headers=admin_headers).status_code == 200
        assert client.get(f"/bookings/{uuid4()}", headers=admin_headers).status_code == 404


# ============================================================================
# PUT / DELETE /bookings/{id}
# ============================================================================


class TestAdminMutations:

    @pytest.mark.integration
    def test_update_requires_admin(self, client, auth_headers):
        booking = _create(client).json()

        no_token = client.put(f"/bookings/{booking['id']}", json={"status": "confirmed"})
        regular = client.put(
            f"/bookings/{booking['id']}",
            json={"status": "confirmed"},
            headers=auth_headers(user_id="user-a"),
        )

        assert no_token.status_code == 401
        assert regular.status_code == 403

    @pytest.mark.integration
    def test_admin_confirm_mints_meeting_and_emails(self, client, admin_headers, email_provider):
        booking = _create(client).json()

        response = client.put(f"/bookings/{booking['id']}", json={"status": "confirmed"}, headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["status"] == "confirmed"
        assert len(response.json()["meetingId"]) == 12
        assert [m["template_name"] for m in email_provider.sent] == ["booking_confirmation"]

    @pytest.mark.integration
    def test_admin_reschedule_emails(self, client, admin_headers, email_provider):
        booking = _create(client).json()

        response = client.put(f"/bookings/{booking['id']}", json={"when": LATER}, headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["status"] == "pending"
        assert response.json()["when"].startswith("2026-11-03T15:30:00")
        assert [m["template_name"] for m in email_provider.sent] == ["booking_reschedule"]

    @pytest.mark.integration
    def test_update_with_same_time_sends_nothing(self, client, admin_headers, email_provider):
        booking = _create(client).json()

        response = client.put(f"/bookings/{booking['id']}", json={"when": WHEN}, headers=admin_headers)

        assert response.status_code == 200
        assert email_provider.sent == []

    @pytest.mark.integration
    def test_invalid_status_value(self, client, admin_headers):
        booking = _create(client).json()

        response = client.put(f"/bookings/{booking['id']}", json={"status": "archived"}, headers=admin_headers)

        assert response.status_code == 422

    @pytest.mark.integration
    def test_cancel_then_confirm_is_conflict(self, client, admin_headers, email_provider):
        booking = _create(client).json()

        cancel = client.delete(f"/bookings/{booking['id']}", headers=admin_headers)
        confirm = client.put(f"/bookings/{booking['id']}", json={"status": "confirmed"}, headers=admin_headers)

        assert cancel.status_code == 200
        assert cancel.json() == {"message": "Booking cancelled successfully"}
        assert confirm.status_code == 409
        assert [m["template_name"] for m in email_provider.sent] == ["booking_cancellation"]

        stored = client.get(f"/bookings/{booking['id']}", headers=admin_headers).json()
        assert stored["status"] == "cancelled"
        assert stored["meetingId"] is None

    @pytest.mark.integration
    def test_cancel_requires_admin(self, client, auth_headers):
        booking = _create(client).json()

        response = client.delete(f"/bookings/{booking['id']}", headers=auth_headers(user_id="user-a"))

        assert response.status_code == 403

    @pytest.mark.integration
    def test_cancel_completed_is_conflict(self, client, admin_headers):
        booking = _create(client).json()
        client.put(f"/bookings/{booking['id']}", json={"status": "completed"}, headers=admin_headers)

        response = client.delete(f"/bookings/{booking['id']}", headers=admin_headers)

        assert response.status_code == 409

    @pytest.mark.integration
    def test_cancel_unknown_booking(self, client, admin_headers):
        response = client.delete(f"/bookings/{uuid4()}", headers=admin_headers)

        assert response.status_code == 404
