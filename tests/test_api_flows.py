"""End-to-end flows through the HTTP API with a pinned clock."""
from decimal import Decimal

import pytest

from milkcart.services import auth_service
from tests.factories import PASSWORD, TOMORROW, auth_header, make_delivery_boy, make_product, make_user

API = "/api/v1"
VERIFICATION_CODE = "123456"

ADDRESS = {
    "name": "Asha Customer",
    "phone": "9876543210",
    "street": "12 MG Road",
    "city": "Pune",
    "state": "Maharashtra",
    "pincode": "411001",
}


def order_payload(product_id, quantity=2, shift="morning", delivery_date=TOMORROW):
    return {
        "items": [{"product_id": str(product_id), "quantity": quantity}],
        "shipping_address": ADDRESS,
        "delivery_date": delivery_date.isoformat(),
        "delivery_shift": shift,
    }


@pytest.fixture
def fixed_code(monkeypatch):
    monkeypatch.setattr(auth_service, "generate_verification_code", lambda: VERIFICATION_CODE)


async def admin_token(client) -> str:
    response = await client.post(
        f"{API}/auth/admin/login", json={"email": "admin@milkcart.in", "password": "AdminPass123"}
    )
    assert response.status_code == 200
    return response.json()["access_token"]


async def customer_token(client, db) -> str:
    await make_user(db)
    response = await client.post(
        f"{API}/auth/login", json={"email": "customer@example.com", "password": PASSWORD}
    )
    assert response.status_code == 200
    return response.json()["access_token"]


class TestAuthentication:
    async def test_register_verify_login(self, client, fixed_code):
        response = await client.post(
            f"{API}/auth/register",
            json={"name": "Meera", "email": "Meera@MilkCart.in", "password": "Secret123"},
        )
        assert response.status_code == 201
        assert response.json()["user"]["email"] == "meera@milkcart.in"
        assert response.json()["user"]["is_email_verified"] is False

        response = await client.post(
            f"{API}/auth/login", json={"email": "meera@milkcart.in", "password": "Secret123"}
        )
        assert response.status_code == 401
        assert response.json()["requires_verification"] is True

        response = await client.post(
            f"{API}/auth/verify-email", json={"email": "meera@milkcart.in", "code": VERIFICATION_CODE}
        )
        assert response.status_code == 200
        token = response.json()["access_token"]

        response = await client.get(f"{API}/auth/me", headers=auth_header(token))
        assert response.status_code == 200
        assert response.json()["is_email_verified"] is True

    async def test_duplicate_email(self, client, fixed_code):
        payload = {"name": "Meera", "email": "meera@milkcart.in", "password": "Secret123"}
        assert (await client.post(f"{API}/auth/register", json=payload)).status_code == 201

        response = await client.post(f"{API}/auth/register", json=payload)

        assert response.status_code == 409
        assert response.json()["detail"] == "Email already registered"

    async def test_weak_password(self, client):
        response = await client.post(
            f"{API}/auth/register",
            json={"name": "Meera", "email": "meera@milkcart.in", "password": "alllowercase"},
        )
        assert response.status_code == 400

    async def test_expired_verification_code(self, client, clock, fixed_code):
        await client.post(
            f"{API}/auth/register",
            json={"name": "Meera", "email": "meera@milkcart.in", "password": "Secret123"},
        )
        clock.advance(minutes=11)

        response = await client.post(
            f"{API}/auth/verify-email", json={"email": "meera@milkcart.in", "code": VERIFICATION_CODE}
        )

        assert response.status_code == 400
        assert "expired" in response.json()["detail"]

    async def test_wrong_admin_password(self, client):
        response = await client.post(
            f"{API}/auth/admin/login", json={"email": "admin@milkcart.in", "password": "nope"}
        )
        assert response.status_code == 401

    async def test_missing_token(self, client):
        assert (await client.get(f"{API}/orders")).status_code == 401

    async def test_customer_cannot_reach_admin_routes(self, client, db):
        token = await customer_token(client, db)

        response = await client.get(f"{API}/admin/orders", headers=auth_header(token))

        assert response.status_code == 403


class TestOrdering:
    async def test_checkout_and_confirmation(self, client, db):
        token = await customer_token(client, db)
        admin = await admin_token(client)

        response = await client.post(
            f"{API}/products",
            json={"name": "Toned Milk", "price": "60.00", "stock": 5},
            headers=auth_header(admin),
        )
        assert response.status_code == 201
        product_id = response.json()["id"]

        response = await client.get(f"{API}/orders/delivery-slots")
        assert response.status_code == 200
        slots = response.json()["slots"]
        assert len(slots) == 7
        assert slots[0]["date"] == TOMORROW.isoformat()
        assert slots[0]["morning_available"] is True
        response = await client.get(f"{API}/orders/delivery-slots", params={"days": 14})
        assert response.status_code == 422

        response = await client.post(f"{API}/orders", json=order_payload(product_id), headers=auth_header(token))
        assert response.status_code == 201
        order = response.json()
        assert order["status"] == "pending"
        assert Decimal(order["total_amount"]) == Decimal("170")

        response = await client.put(
            f"{API}/admin/orders/{order['id']}/status",
            json={"status": "confirmed"},
            headers=auth_header(admin),
        )
        assert response.status_code == 200
        assert response.json()["status"] == "confirmed"

        response = await client.get(f"{API}/products/{product_id}")
        assert response.json()["stock"] == 3

        response = await client.get(f"{API}/orders", headers=auth_header(token))
        assert response.json()["total"] == 1

    async def test_evening_slot_is_a_bad_request(self, client, db):
        token = await customer_token(client, db)
        product = await make_product(db)

        response = await client.post(
            f"{API}/orders", json=order_payload(product.id, shift="evening"), headers=auth_header(token)
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "Evening delivery is temporarily disabled"

    async def test_insufficient_stock_reports_availability(self, client, db):
        token = await customer_token(client, db)
        product = await make_product(db, stock=1)

        response = await client.post(f"{API}/orders", json=order_payload(product.id), headers=auth_header(token))

        assert response.status_code == 400
        body = response.json()
        assert body["available"] == 1
        assert body["required"] == 2

    async def test_invalid_transition_is_a_bad_request(self, client, db):
        token = await customer_token(client, db)
        admin = await admin_token(client)
        product = await make_product(db)
        order = (
            await client.post(f"{API}/orders", json=order_payload(product.id), headers=auth_header(token))
        ).json()

        response = await client.put(
            f"{API}/admin/orders/{order['id']}/status",
            json={"status": "delivered"},
            headers=auth_header(admin),
        )

        assert response.status_code == 400
        assert "Allowed transitions" in response.json()["detail"]

    async def test_unknown_order(self, client, db):
        token = await customer_token(client, db)

        response = await client.get(
            f"{API}/orders/00000000-0000-0000-0000-000000000000", headers=auth_header(token)
        )

        assert response.status_code == 404

    async def test_customer_cancellation_cutoff(self, client, clock, db):
        token = await customer_token(client, db)
        product = await make_product(db)
        order = (
            await client.post(f"{API}/orders", json=order_payload(product.id), headers=auth_header(token))
        ).json()
        clock.advance(hours=10, minutes=30)

        response = await client.post(f"{API}/orders/{order['id']}/cancel", headers=auth_header(token))

        assert response.status_code == 400
        assert "20:00" in response.json()["detail"]


class TestDeliveryApp:
    async def test_registration_needs_approval(self, client):
        admin = await admin_token(client)
        credentials = {"identifier": "9123456780", "password": "Secret123"}

        response = await client.post(
            f"{API}/delivery/register",
            json={
                "name": "Ravi",
                "email": "ravi@milkcart.in",
                "phone": "9123456780",
                "password": "Secret123",
                "shift": "morning",
            },
        )
        assert response.status_code == 201
        assert response.json()["status"] == "pending"
        delivery_boy_id = response.json()["id"]

        response = await client.post(f"{API}/delivery/login", json=credentials)
        assert response.status_code == 403
        assert "pending approval" in response.json()["detail"]

        response = await client.put(
            f"{API}/admin/delivery-boys/{delivery_boy_id}/approve", headers=auth_header(admin)
        )
        assert response.status_code == 200
        assert response.json()["status"] == "approved"

        response = await client.post(f"{API}/delivery/login", json=credentials)
        assert response.status_code == 200
        assert response.json()["delivery_boy"]["id"] == delivery_boy_id

    async def test_lockout_after_repeated_failures(self, client, clock, db):
        await make_delivery_boy(db)
        wrong = {"identifier": "ravi@example.com", "password": "WrongPass1"}

        for _ in range(5):
            assert (await client.post(f"{API}/delivery/login", json=wrong)).status_code == 401

        right = {"identifier": "ravi@example.com", "password": PASSWORD}
        response = await client.post(f"{API}/delivery/login", json=right)
        assert response.status_code == 403
        assert "locked_until" in response.json()

        clock.advance(hours=2, minutes=1)
        assert (await client.post(f"{API}/delivery/login", json=right)).status_code == 200

    async def test_route_and_proof_of_delivery(self, client, clock, db):
        token = await customer_token(client, db)
        admin = await admin_token(client)
        product = await make_product(db)
        delivery_boy = await make_delivery_boy(db)
        user_id = (await client.get(f"{API}/auth/me", headers=auth_header(token))).json()["id"]

        response = await client.post(
            f"{API}/admin/assignments",
            json={"user_id": user_id, "delivery_boy_id": str(delivery_boy.id)},
            headers=auth_header(admin),
        )
        assert response.status_code == 201

        order = (
            await client.post(f"{API}/orders", json=order_payload(product.id), headers=auth_header(token))
        ).json()
        assert order["delivery_boy_id"] == str(delivery_boy.id)
        await client.put(
            f"{API}/admin/orders/{order['id']}/status", json={"status": "confirmed"}, headers=auth_header(admin)
        )

        login = await client.post(
            f"{API}/delivery/login", json={"identifier": "ravi@example.com", "password": PASSWORD}
        )
        rider = login.json()["access_token"]

        queue = (await client.get(f"{API}/delivery/orders", headers=auth_header(rider))).json()
        assert queue["total_users"] == 1
        assert queue["groups"][0]["orders"][0]["id"] == order["id"]

        clock.advance(hours=2)
        response = await client.post(f"{API}/delivery/orders/{order['id']}/deliver", headers=auth_header(rider))
        assert response.status_code == 400
        assert "between 05:00 and 11:00" in response.json()["detail"]

        clock.advance(hours=19)
        response = await client.post(
            f"{API}/delivery/orders/{order['id']}/deliver",
            json={"notes": "Handed to security"},
            headers=auth_header(rider),
        )
        assert response.status_code == 200
        assert response.json()["status"] == "delivered"


class TestPayments:
    async def test_session_verification_cycle(self, client, clock, db):
        token = await customer_token(client, db)
        admin = await admin_token(client)
        product = await make_product(db, price="100.00", stock=10)
        order_ids = []
        for _ in range(2):
            order = (
                await client.post(f"{API}/orders", json=order_payload(product.id), headers=auth_header(token))
            ).json()
            await client.put(
                f"{API}/admin/orders/{order['id']}/status", json={"status": "confirmed"}, headers=auth_header(admin)
            )
            order_ids.append(order["id"])

        unpaid = (await client.get(f"{API}/payments/unpaid-orders", headers=auth_header(token))).json()
        assert unpaid["order_count"] == 2
        assert Decimal(unpaid["total_amount"]) == Decimal("500")

        response = await client.post(
            f"{API}/payments/sessions", json={"order_ids": order_ids}, headers=auth_header(token)
        )
        assert response.status_code == 201
        session = response.json()
        assert Decimal(session["amount"]) == Decimal("500")
        assert session["expires_in"] == 30 * 60
        assert session["qr_code"].startswith("data:image/png;base64,")

        response = await client.post(
            f"{API}/payments/sessions", json={"order_ids": order_ids}, headers=auth_header(token)
        )
        assert response.status_code == 409

        clock.advance(minutes=5)
        response = await client.post(
            f"{API}/payments/sessions/{session['payment_id']}/complete",
            json={"upi_transaction_id": "412345678901"},
            headers=auth_header(token),
        )
        assert response.status_code == 200
        assert response.json()["payment_status"] == "completed"

        response = await client.put(
            f"{API}/admin/payments/{session['payment_id']}/verify",
            json={"action": "verify"},
            headers=auth_header(admin),
        )
        assert response.status_code == 200
        assert response.json()["verification_status"] == "verified"

        history = (await client.get(f"{API}/orders", headers=auth_header(token))).json()
        assert {o["payment_status"] for o in history["items"]} == {"paid"}

    async def test_expired_session(self, client, clock, db):
        token = await customer_token(client, db)
        admin = await admin_token(client)
        product = await make_product(db)
        order = (
            await client.post(f"{API}/orders", json=order_payload(product.id), headers=auth_header(token))
        ).json()
        await client.put(
            f"{API}/admin/orders/{order['id']}/status", json={"status": "confirmed"}, headers=auth_header(admin)
        )
        session = (
            await client.post(
                f"{API}/payments/sessions", json={"order_ids": [order["id"]]}, headers=auth_header(token)
            )
        ).json()

        clock.advance(minutes=31)
        response = await client.post(
            f"{API}/payments/sessions/{session['payment_id']}/complete",
            json={"upi_transaction_id": "412345678901"},
            headers=auth_header(token),
        )

        assert response.status_code == 400
        assert response.json()["expired"] is True


class TestSubscriptions:
    async def test_subscribe_pay_and_cancel(self, client, clock, db):
        token = await customer_token(client, db)
        admin = await admin_token(client)

        response = await client.post(
            f"{API}/admin/subscriptions/plans",
            json={
                "name": "Cow Milk 1L Monthly",
                "milk_type": "cow",
                "volume": "1L",
                "duration_days": 30,
                "price": "1800.00",
            },
            headers=auth_header(admin),
        )
        assert response.status_code == 201
        plan = response.json()
        assert Decimal(plan["daily_price"]) == Decimal("60")

        plans = (await client.get(f"{API}/subscriptions/plans")).json()
        assert [p["id"] for p in plans] == [plan["id"]]

        response = await client.post(
            f"{API}/subscriptions",
            json={"plan_id": plan["id"], "shipping_address": ADDRESS},
            headers=auth_header(token),
        )
        assert response.status_code == 201
        subscription = response.json()
        assert subscription["status"] == "pending"
        assert subscription["start_date"] == TOMORROW.isoformat()

        response = await client.post(
            f"{API}/payments/subscription-sessions",
            json={"subscription_id": subscription["id"]},
            headers=auth_header(token),
        )
        assert response.status_code == 201
        session = response.json()
        assert Decimal(session["amount"]) == Decimal("1800")

        await client.post(
            f"{API}/payments/sessions/{session['payment_id']}/complete",
            json={"upi_transaction_id": "412345678901"},
            headers=auth_header(token),
        )
        waiting = (
            await client.get(f"{API}/admin/subscriptions/pending-approval", headers=auth_header(admin))
        ).json()
        assert [s["id"] for s in waiting] == [subscription["id"]]

        await client.put(
            f"{API}/admin/payments/{session['payment_id']}/verify",
            json={"action": "verify"},
            headers=auth_header(admin),
        )
        mine = (
            await client.get(f"{API}/subscriptions/my/{subscription['id']}", headers=auth_header(token))
        ).json()
        assert mine["status"] == "active"
        assert mine["payment_status"] == "paid"

        response = await client.post(
            f"{API}/subscriptions/my/{subscription['id']}/cancel",
            json={"reason": "Moving out", "mobile_number": "9876543210", "upi_id": "asha@okaxis"},
            headers=auth_header(token),
        )
        assert response.status_code == 200
        refund = response.json()["refund_request"]
        assert Decimal(refund["refund_amount"]) == Decimal("1800")
        assert response.json()["subscription"]["status"] == "cancellation_requested"

        response = await client.put(
            f"{API}/admin/subscriptions/refunds/{refund['id']}/status",
            json={"status": "approved"},
            headers=auth_header(admin),
        )
        assert response.status_code == 200
        assert response.json()["subscription_number"] == subscription["subscription_number"]

        admin_view = (
            await client.get(f"{API}/admin/subscriptions/{subscription['id']}", headers=auth_header(admin))
        ).json()
        assert admin_view["status"] == "cancelled"
        assert admin_view["user"]["email"] == "customer@example.com"

    async def test_cancel_requires_refund_account(self, client, db):
        token = await customer_token(client, db)

        response = await client.post(
            f"{API}/subscriptions/my/00000000-0000-0000-0000-000000000000/cancel",
            json={"reason": "Moving out", "mobile_number": "9876543210", "refund_method": "bank_transfer"},
            headers=auth_header(token),
        )

        assert response.status_code == 422

    async def test_unknown_plan_duration_is_unprocessable(self, client):
        admin = await admin_token(client)

        response = await client.post(
            f"{API}/admin/subscriptions/plans",
            json={"name": "Odd", "milk_type": "cow", "volume": "1L", "duration_days": 10, "price": "600.00"},
            headers=auth_header(admin),
        )

        assert response.status_code == 422


async def test_wishlist(client, db):
    token = await customer_token(client, db)
    product = await make_product(db)

    response = await client.post(f"{API}/wishlist/{product.id}", headers=auth_header(token))
    assert response.status_code == 201
    assert response.json()["total"] == 1
    assert response.json()["items"][0]["price_dropped"] is False

    response = await client.delete(f"{API}/wishlist/{product.id}", headers=auth_header(token))
    assert response.json()["total"] == 0

    response = await client.delete(f"{API}/wishlist/{product.id}", headers=auth_header(token))
    assert response.status_code == 404


class TestAdminReporting:
    async def test_metrics_and_summary(self, client, db):
        token = await customer_token(client, db)
        admin = await admin_token(client)
        product = await make_product(db)
        await client.post(f"{API}/orders", json=order_payload(product.id), headers=auth_header(token))

        response = await client.get(f"{API}/admin/dashboard/metrics", headers=auth_header(admin))
        assert response.status_code == 200

        response = await client.get(f"{API}/admin/dashboard/reports/summary", headers=auth_header(admin))
        assert response.status_code == 200

        response = await client.get(
            f"{API}/admin/dashboard/reports/summary",
            params={"start_date": "2026-03-10", "end_date": "2026-03-01"},
            headers=auth_header(admin),
        )
        assert response.status_code == 400


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["checks"]["database"] == "connected"
