import uuid

import pytest

from storefront.orders.tests.helpers import ADMIN, ALICE, BOB

CREATE_URL = "/api/orders/"


@pytest.fixture
def order_id(client, cart_ready):
    r = client.post(
        CREATE_URL,
        json={"shipping_address_id": cart_ready["address_id"], "payment_method": "PAYPAL"},
        headers=ALICE,
    )
    assert r.status_code == 201
    return r.json()["id"]


def test_owner_and_admin_can_read_the_order(client, order_id):
    r = client.get(f"/api/orders/{order_id}", headers=ALICE)
    assert r.status_code == 200
    assert r.json()["id"] == order_id
    assert client.get(f"/api/orders/{order_id}", headers=ADMIN).status_code == 200


def test_other_users_are_forbidden(client, order_id):
    r = client.get(f"/api/orders/{order_id}", headers=BOB)
    assert r.status_code == 403
    assert r.json()["detail"] == "FORBIDDEN"


def test_unknown_and_malformed_ids(client):
    r = client.get(f"/api/orders/{uuid.uuid4()}", headers=ALICE)
    assert r.status_code == 404
    assert r.json()["detail"] == "ORDER_NOT_FOUND"
    assert client.get("/api/orders/not-a-uuid", headers=ALICE).status_code == 400


def test_list_my_orders(client, order_id):
    r = client.get("/api/orders/", headers=ALICE)
    assert r.status_code == 200
    body = r.json()
    assert body["count"] == 1 and body["pages"] == 1
    assert body["results"][0]["id"] == order_id
    assert body["results"][0]["item_count"] == 2
    assert body["results"][0]["total_amount"] == "15.00"

    assert client.get("/api/orders/", headers=BOB).json()["count"] == 0
    assert client.get("/api/orders/?status=shipped", headers=ALICE).json()["count"] == 0
    assert client.get("/api/orders/?status=bogus", headers=ALICE).status_code == 400


def test_status_history(client, order_id):
    r = client.get(f"/api/orders/{order_id}/status-history", headers=ALICE)
    assert r.status_code == 200
    assert [e["status"] for e in r.json()] == ["PENDING", "CONFIRMED"]
    assert client.get(f"/api/orders/{order_id}/status-history", headers=BOB).status_code == 403


def test_owner_can_cancel(client, order_id, services, cart_ready):
    r = client.put(f"/api/orders/{order_id}/cancel", json={"reason": "wrong size"}, headers=ALICE)
    assert r.status_code == 200
    assert r.json()["status"] == "CANCELLED"
    assert services.ledger.stock_of(cart_ready["product_id"]) == 3

    again = client.put(f"/api/orders/{order_id}/cancel", json={"reason": "again"}, headers=ALICE)
    assert again.status_code == 409
    assert again.json()["detail"] == "INVALID_TRANSITION"
