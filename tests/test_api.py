"""
HTTP surface: status codes, error bodies, auth and idempotency.
"""
import json
from decimal import Decimal

import pytest

from tests.conftest import BIRYANI, DOSA, THALI, auth_header, cart, gateway_signature, stock_of

ADMIN = auth_header(sub="admin-1", is_admin=True)
STAFFLESS = auth_header(sub="user-42")


async def place_cash_order(client, *lines, **kwargs) -> dict:
    r = await client.post("/orders", json=cart(*lines, **kwargs))
    assert r.status_code == 201, r.text
    return r.json()


# ── Orders ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_root(client):
    r = await client.get("/")
    assert r.status_code == 200
    assert r.json()["service"] == "canteen-api"


@pytest.mark.asyncio
async def test_cash_order_created(client, gateway):
    body = await place_cash_order(client, (BIRYANI, 2), order_type="dine-in")

    assert body["status"] == "pending"
    assert body["payment_status"] == "pending"
    assert Decimal(body["subtotal"]) == Decimal("250")
    assert Decimal(body["tax"]) == Decimal("12.5")
    assert Decimal(body["total_amount"]) == Decimal("262.5")
    assert body["estimated_time"] == 25
    assert body["table_number"] == "1"
    assert body["customer"] == {"kind": "guest", "name": "Asha Rao", "phone": "9876543210", "email": "asha@example.com"}
    assert gateway.created == []


@pytest.mark.asyncio
async def test_upi_order_returns_gateway_handle(client):
    r = await client.post("/orders", json=cart((BIRYANI, 2), payment_method="upi"))

    assert r.status_code == 200
    body = r.json()
    assert body["amount"] == 26250
    assert body["currency"] == "INR"
    assert body["receipt"] == f"receipt_{body['order_number']}"


@pytest.mark.asyncio
async def test_insufficient_stock_body(client):
    r = await client.post("/orders", json=cart((THALI, 5)))

    assert r.status_code == 400
    body = r.json()
    assert body["detail"] == "Insufficient stock for some items"
    assert body["errors"][0]["requested"] == 5
    assert body["errors"][0]["available"] == 3


@pytest.mark.asyncio
async def test_empty_cart_is_400(client):
    r = await client.post("/orders", json=cart())
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_unknown_item_is_404(client):
    r = await client.post("/orders", json=cart(("ghost", 1)))
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_schema_violation_is_422(client):
    r = await client.post("/orders", json=cart((DOSA, 0)))
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_registered_order_needs_no_guest_details(client):
    r = await client.post("/orders", json=cart((DOSA, 1), guest=None), headers=STAFFLESS)
    assert r.status_code == 201
    assert r.json()["customer"] == {"kind": "registered", "user_id": "user-42"}


@pytest.mark.asyncio
async def test_invalid_token_is_401(client):
    r = await client.post("/orders", json=cart((DOSA, 1)), headers={"Authorization": "Bearer nope"})
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_verify_payment_flow(client, session_factory):
    handle = (await client.post("/orders", json=cart((BIRYANI, 2), payment_method="upi"))).json()
    payload = {
        "razorpay_order_id": handle["id"],
        "razorpay_payment_id": "pay_777",
        "razorpay_signature": gateway_signature(handle["id"], "pay_777"),
        "order_details": handle["order_details"],
    }

    r = await client.post("/orders/verify", json=payload)

    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["order"]["status"] == "confirmed"
    assert body["order"]["payment_status"] == "completed"
    assert body["order"]["order_number"] == handle["order_number"]
    assert (await stock_of(session_factory, BIRYANI)).current_stock == 8


@pytest.mark.asyncio
async def test_verify_payment_rejection_body(client):
    handle = (await client.post("/orders", json=cart((BIRYANI, 2), payment_method="upi"))).json()
    payload = {
        "gateway_order_id": handle["id"],
        "gateway_payment_id": "pay_778",
        "signature": "deadbeef",
        "order_details": handle["order_details"],
    }

    r = await client.post("/orders/verify", json=payload)

    assert r.status_code == 400
    body = r.json()
    assert body["success"] is False
    assert body["order_number"].startswith("CC-")


@pytest.mark.asyncio
async def test_get_and_track_order(client):
    created = await place_cash_order(client, (DOSA, 1))

    r = await client.get(f"/orders/{created['id']}")
    assert r.status_code == 200
    assert r.json()["order_number"] == created["order_number"]

    r = await client.get(f"/orders/track/{created['order_number']}")
    assert r.status_code == 200
    body = r.json()
    assert body["id"] == created["id"]
    assert 0 < body["time_remaining"] <= body["estimated_time"] == 20
    assert "estimated_completion" in body


@pytest.mark.asyncio
async def test_missing_order_is_404(client):
    assert (await client.get("/orders/nope")).status_code == 404
    assert (await client.get("/orders/track/CC-00000000-000000")).status_code == 404


# ── Admin orders ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_admin_routes_need_admin(client):
    created = await place_cash_order(client, (DOSA, 1))
    url = f"/admin/orders/{created['id']}/status"

    assert (await client.put(url, json={"status": "confirmed"})).status_code == 401
    assert (await client.put(url, json={"status": "confirmed"}, headers=STAFFLESS)).status_code == 403


@pytest.mark.asyncio
async def test_admin_status_update_and_invalid_transition(client, fake_redis):
    created = await place_cash_order(client, (DOSA, 1))
    url = f"/admin/orders/{created['id']}/status"

    r = await client.put(url, json={"status": "confirmed"}, headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["status"] == "confirmed"

    r = await client.put(url, json={"status": "completed"}, headers=ADMIN)
    assert r.status_code == 409

    update = json.loads(fake_redis.channel_messages(f"order:{created['id']}")[-1])
    assert update["data"]["status"] == "confirmed"


@pytest.mark.asyncio
async def test_admin_advance_through_to_completed(client):
    created = await place_cash_order(client, (DOSA, 1))
    url = f"/admin/orders/{created['id']}/advance"

    statuses = [(await client.post(url, headers=ADMIN)).json()["status"] for _ in range(4)]
    assert statuses == ["confirmed", "preparing", "ready", "completed"]

    final = (await client.get(f"/orders/{created['id']}")).json()
    assert final["payment_status"] == "completed"
    assert (await client.post(url, headers=ADMIN)).status_code == 409


@pytest.mark.asyncio
async def test_admin_automation_run(client):
    r = await client.post("/admin/orders/automation/run", headers=ADMIN)
    assert r.status_code == 200
    assert r.json() == {"advanced": []}


# ── Stock ─────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_stock_status(client):
    r = await client.get("/admin/stock/status", headers=ADMIN)
    assert r.status_code == 200
    body = r.json()
    assert body["summary"] == {"total_tracked": 3, "low_stock": 1, "out_of_stock": 0, "in_stock": 3}
    assert [i["id"] for i in body["low_stock"]] == [THALI]


@pytest.mark.asyncio
async def test_stock_item_update(client):
    r = await client.put(f"/admin/stock/{DOSA}", json={"daily_stock": 5, "current_stock": 0}, headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["is_out_of_stock"] is True

    r = await client.put("/admin/stock/ghost", json={"daily_stock": 5, "current_stock": 5}, headers=ADMIN)
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_bulk_update_and_reset(client, session_factory):
    r = await client.put(
        "/admin/stock/bulk-update",
        json={"updates": [{"item_id": DOSA, "daily_stock": 40}, {"item_id": THALI, "daily_stock": 8}]},
        headers=ADMIN,
    )
    assert r.status_code == 200
    assert r.json()["modified_count"] == 2
    assert (await stock_of(session_factory, DOSA)).current_stock == 40

    r = await client.put(
        "/admin/stock/bulk-update", json={"updates": [{"item_id": "ghost", "daily_stock": 1}]}, headers=ADMIN
    )
    assert r.status_code == 404

    await place_cash_order(client, (DOSA, 4))
    r = await client.post("/admin/stock/reset", headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["modified_count"] == 3
    assert (await stock_of(session_factory, DOSA)).current_stock == 40


# ── Feedback ──────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_feedback_endpoints(client):
    created = await place_cash_order(client, (DOSA, 1))
    feedback = {"order_id": created["id"], "menu_item_id": DOSA, "rating": 5, "guest_email": "asha@example.com"}

    r = await client.post("/feedback", json=feedback)
    assert r.status_code == 400

    for _ in range(4):
        await client.post(f"/admin/orders/{created['id']}/advance", headers=ADMIN)

    r = await client.post("/feedback", json=feedback)
    assert r.status_code == 201

    summary = (await client.get(f"/feedback/menu-item/{DOSA}")).json()
    assert summary["average"] == 5.0
    assert summary["count"] == 1
    assert (await client.get(f"/orders/{created['id']}")).json()["feedback_submitted"] is True


# ── Idempotency ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_idempotent_replay(client, session_factory):
    headers = {"Idempotency-Key": "key-123"}
    first = await client.post("/orders", json=cart((DOSA, 2)), headers=headers)
    second = await client.post("/orders", json=cart((DOSA, 2)), headers=headers)

    assert first.status_code == second.status_code == 201
    assert second.headers["X-Idempotency-Replay"] == "true"
    assert second.json()["id"] == first.json()["id"]
    assert (await stock_of(session_factory, DOSA)).current_stock == 8


@pytest.mark.asyncio
async def test_health_reports_dependencies(client):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json()["dependencies"] == {"database": "ok", "redis": "ok"}


@pytest.mark.asyncio
async def test_idempotent_replay_is_scoped_to_the_caller(client):
    headers = {"Idempotency-Key": "shared-key"}
    mine = await client.post("/orders", json=cart((DOSA, 1), guest=None), headers={**headers, **STAFFLESS})
    theirs = await client.post(
        "/orders", json=cart((DOSA, 1), guest=None), headers={**headers, **auth_header(sub="user-99")}
    )

    assert mine.status_code == theirs.status_code == 201
    assert "X-Idempotency-Replay" not in theirs.headers
    assert theirs.json()["id"] != mine.json()["id"]
    assert theirs.json()["customer"] == {"kind": "registered", "user_id": "user-99"}
