"""
HTTP API tests.

Verifies:
- Actor headers are required and roles are enforced
- Customers only reach their own records
- Typed failures come back as {"error": {"kind", "message", "details"}}
- A quote can be driven to a paid order over the API
"""

import pytest

from conftest import CUSTOMER_ID, OTHER_CUSTOMER_ID, STAFF_ID, card_answers


def _customer(customer_id=CUSTOMER_ID):
    return {"X-Actor-Id": str(customer_id), "X-Actor-Role": "CUSTOMER"}


STAFF = {"X-Actor-Id": str(STAFF_ID), "X-Actor-Role": "STAFF"}
ADMIN = {"X-Actor-Id": "1", "X-Actor-Role": "ADMIN"}


def _submit(client, service, tier, headers=None):
    response = client.post(
        "/api/quotes/",
        json={"service_id": service.id, "tier_id": tier.id, "answers": card_answers()},
        headers=headers or _customer(),
    )
    assert response.status_code == 201, response.get_json()
    return response.get_json()["quote"]


class TestActorContext:

    def test_missing_headers(self, client, db_session):
        response = client.get("/api/orders/")
        assert response.status_code == 401
        assert response.get_json()["error"]["kind"] == "authentication_required"

    @pytest.mark.parametrize("headers", [
        {"X-Actor-Id": "abc", "X-Actor-Role": "CUSTOMER"},
        {"X-Actor-Id": "5", "X-Actor-Role": "ROOT"},
    ])
    def test_malformed_headers(self, client, db_session, headers):
        assert client.get("/api/orders/", headers=headers).status_code == 401

    def test_customer_cannot_finalize(self, client, db_session, service, tier):
        quote = _submit(client, service, tier)
        response = client.post(
            f"/api/quotes/{quote['id']}/finalize",
            json={"final_subtotal_cents": 12_000, "tax_rate_bps": 1000},
            headers=_customer(),
        )
        assert response.status_code == 403
        assert response.get_json()["error"]["kind"] == "forbidden"

    def test_admin_passes_staff_checks(self, client, db_session, service, tier):
        quote = _submit(client, service, tier)
        response = client.post(f"/api/quotes/{quote['id']}/review", json={}, headers=ADMIN)
        assert response.status_code == 200
        assert response.get_json()["quote"]["status"] == "UNDER_REVIEW"


class TestErrorEnvelope:

    def test_unknown_field(self, client, db_session, service):
        response = client.post(
            "/api/quotes/",
            json={"service_id": service.id, "colour": "red"},
            headers=_customer(),
        )
        assert response.status_code == 400
        error = response.get_json()["error"]
        assert error["kind"] == "validation_error"
        assert error["details"]["unknown"] == ["colour"]

    def test_not_found(self, client, db_session):
        response = client.get("/api/orders/424242", headers=STAFF)
        assert response.status_code == 404
        assert response.get_json()["error"]["kind"] == "not_found"

    def test_illegal_transition(self, client, db_session, make_order):
        order = make_order()
        response = client.post(f"/api/orders/{order.id}/status", json={"status": "SHIPPED"}, headers=STAFF)
        assert response.status_code == 409
        error = response.get_json()["error"]
        assert error["kind"] == "illegal_transition"
        assert error["details"] == {"current_status": "DEPOSIT_PAID", "target_status": "SHIPPED"}


class TestLifecycleOverHttp:

    def test_quote_to_paid_order(self, client, db_session, service, tier):
        quote = _submit(client, service, tier)
        assert quote["quote_number"] == "Q-000001"
        assert quote["estimate_min_cents"] == 2620

        assert client.post(f"/api/quotes/{quote['id']}/review", json={}, headers=STAFF).status_code == 200
        response = client.post(
            f"/api/quotes/{quote['id']}/finalize",
            json={"final_subtotal_cents": 12_000, "tax_rate_bps": 1000},
            headers=STAFF,
        )
        assert response.status_code == 201
        body = response.get_json()
        assert body["quote"]["status"] == "FINALIZED"
        order = body["order"]
        assert order["total_amount_cents"] == 13_200
        assert order["balance_due_cents"] == 6600

        # Someone else's order is off limits
        other = client.get(f"/api/orders/{order['id']}", headers=_customer(OTHER_CUSTOMER_ID))
        assert other.status_code == 403

        mine = client.get(f"/api/orders/{order['id']}", headers=_customer())
        assert mine.status_code == 200
        assert len(mine.get_json()["checklist"]) == 1

        response = client.post(f"/api/proofs/orders/{order['id']}", json={"file_ref": "v1.pdf"}, headers=STAFF)
        assert response.status_code == 201
        proof = response.get_json()["proof"]

        response = client.post(f"/api/proofs/{proof['id']}/respond", json={"decision": "APPROVE"}, headers=_customer())
        assert response.status_code == 200
        assert response.get_json()["order"]["status"] == "IN_PRODUCTION"

        # A customer cannot confirm their own payment
        response = client.post(
            f"/api/payments/orders/{order['id']}",
            json={"amount_cents": 6600, "method": "CREDIT_CARD", "confirm": True},
            headers=_customer(),
        )
        assert response.status_code == 201
        payment = response.get_json()["payment"]
        assert payment["status"] == "PENDING"

        response = client.post(f"/api/payments/{payment['id']}/confirm", json={}, headers=STAFF)
        assert response.status_code == 200

        summary = client.get(f"/api/payments/orders/{order['id']}", headers=_customer()).get_json()
        assert summary["payment_status"] == "PAID"
        assert summary["balance_due_cents"] == 0

    def test_customer_lists_only_own_orders(self, client, db_session, make_order):
        make_order()
        make_order(customer_id=OTHER_CUSTOMER_ID)

        mine = client.get("/api/orders/", headers=_customer()).get_json()
        assert mine["total"] == 1
        assert mine["orders"][0]["customer_id"] == CUSTOMER_ID

        everything = client.get("/api/orders/", headers=STAFF).get_json()
        assert everything["total"] == 2


class TestSystemAndBookings:

    def test_health(self, client, db_session, service, capacity):
        response = client.get("/api/system/health")
        assert response.status_code == 200
        body = response.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["configuration"]["details"]["capacity_days"] == 7

    def test_health_degraded_without_catalog(self, client, db_session):
        body = client.get("/api/system/health").get_json()
        assert body["status"] == "degraded"

    def test_availability(self, client, db_session, capacity, next_monday):
        response = client.get(f"/api/bookings/availability?date={next_monday.isoformat()}", headers=_customer())
        assert response.status_code == 200
        assert response.get_json()["standard_available"] == 2

    def test_availability_needs_date(self, client, db_session):
        response = client.get("/api/bookings/availability", headers=_customer())
        assert response.status_code == 400

    def test_booking_for_someone_elses_quote(self, client, db_session, service, tier, capacity, next_monday):
        quote = _submit(client, service, tier)
        response = client.post(
            "/api/bookings/",
            json={"quote_id": quote["id"], "booking_date": next_monday.isoformat()},
            headers=_customer(OTHER_CUSTOMER_ID),
        )
        assert response.status_code == 403

    def test_capacity_exceeded_status(self, client, db_session, make_quote, capacity, next_monday):
        for _ in range(2):
            response = client.post(
                "/api/bookings/",
                json={"quote_id": make_quote().id, "booking_date": next_monday.isoformat()},
                headers=_customer(),
            )
            assert response.status_code == 201

        response = client.post(
            "/api/bookings/",
            json={"quote_id": make_quote().id, "booking_date": next_monday.isoformat()},
            headers=_customer(),
        )
        assert response.status_code == 422
        assert response.get_json()["error"]["kind"] == "capacity_exceeded"
