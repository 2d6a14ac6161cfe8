from storefront.orders.tests.helpers import ALICE

CREATE_URL = "/api/orders/"


def test_idempotent_same_payload_returns_same_order_and_status_on_retry(client, cart_ready, gateway):
    key = "idem-same-1"
    payload = {"shipping_address_id": cart_ready["address_id"], "payment_method": "PAYPAL"}
    headers = {**ALICE, "Idempotency-Key": key}

    r1 = client.post(CREATE_URL, json=payload, headers=headers)
    assert r1.status_code == 201
    body1 = r1.json()

    r2 = client.post(CREATE_URL, json=payload, headers=headers)
    assert r2.status_code == r1.status_code
    assert r2.json() == body1
    assert r2.headers.get("Idempotent-Replay") == "true"
    assert len(gateway.charges) == 1


def test_idempotent_conflict_on_different_payload_with_same_key(client, cart_ready):
    headers = {**ALICE, "Idempotency-Key": "idem-conflict-1"}
    p1 = {"shipping_address_id": cart_ready["address_id"], "payment_method": "PAYPAL"}
    p2 = {**p1, "payment_method": "CREDIT_CARD"}

    r1 = client.post(CREATE_URL, json=p1, headers=headers)
    assert r1.status_code == 201

    r2 = client.post(CREATE_URL, json=p2, headers=headers)
    assert r2.status_code == 409
    assert r2.json()["detail"] == "IDEMPOTENCY_CONFLICT"


def test_idempotent_replay_preserves_422_status(client, cart_ready, carts):
    carts.add_item(1, cart_ready["product_id"], 999)
    headers = {**ALICE, "Idempotency-Key": "idem-422"}
    payload = {"shipping_address_id": cart_ready["address_id"], "payment_method": "PAYPAL"}

    r1 = client.post(CREATE_URL, json=payload, headers=headers)
    assert r1.status_code == 422

    r2 = client.post(CREATE_URL, json=payload, headers=headers)
    assert r2.status_code == 422
    assert r2.json() == r1.json()
    assert r2.headers.get("Idempotent-Replay") == "true"


def test_same_key_from_another_user_is_a_conflict(client, cart_ready):
    payload = {"shipping_address_id": cart_ready["address_id"], "payment_method": "PAYPAL"}
    r1 = client.post(CREATE_URL, json=payload, headers={**ALICE, "Idempotency-Key": "shared"})
    assert r1.status_code == 201

    r2 = client.post(
        CREATE_URL,
        json=payload,
        headers={"X-User-Id": "2", "X-User-Email": "bob@example.com", "Idempotency-Key": "shared"},
    )
    assert r2.status_code == 409


def test_unexpected_failure_is_stored_and_replayed_as_503(client, cart_ready, services, monkeypatch):
    calls = []

    def broken_place_order(*args, **kwargs):
        calls.append(args)
        raise RuntimeError("connection reset")

    monkeypatch.setattr(services.placement, "place_order", broken_place_order)
    headers = {**ALICE, "Idempotency-Key": "idem-unexpected"}
    payload = {"shipping_address_id": cart_ready["address_id"], "payment_method": "PAYPAL"}

    r1 = client.post(CREATE_URL, json=payload, headers=headers)
    assert r1.status_code == 503
    assert r1.json()["detail"] == "UPSTREAM_UNAVAILABLE"

    r2 = client.post(CREATE_URL, json=payload, headers=headers)
    assert r2.status_code == 503
    assert r2.json() == r1.json()
    assert r2.headers.get("Idempotent-Replay") == "true"
    assert len(calls) == 1
