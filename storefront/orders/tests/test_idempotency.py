import pytest

from storefront.errors import IdempotencyConflict
from storefront.orders.idempotency import finalize, get_or_create_idempotent


def test_first_request_creates_an_in_progress_record(db):
    existing, rec = get_or_create_idempotent(db, "k-1", {"a": 1})
    assert existing is False
    assert rec.response_status == 0


def test_retry_after_finalize_replays_the_stored_response(db):
    _, rec = get_or_create_idempotent(db, "k-2", {"a": 1, "b": [1, 2]})
    finalize(db, rec, 422, {"detail": "INSUFFICIENT_STOCK"})

    existing, replay = get_or_create_idempotent(db, "k-2", {"b": [1, 2], "a": 1})

    assert existing is True
    assert replay.response_status == 422
    assert replay.response_body == {"detail": "INSUFFICIENT_STOCK"}


def test_same_key_with_different_payload_conflicts(db):
    _, rec = get_or_create_idempotent(db, "k-3", {"a": 1})
    finalize(db, rec, 201, {"id": "x"})
    with pytest.raises(IdempotencyConflict) as ei:
        get_or_create_idempotent(db, "k-3", {"a": 2})
    assert ei.value.message == "IDEMPOTENCY_CONFLICT"


def test_retry_while_first_request_is_running(db):
    get_or_create_idempotent(db, "k-4", {"a": 1})
    with pytest.raises(IdempotencyConflict) as ei:
        get_or_create_idempotent(db, "k-4", {"a": 1})
    assert ei.value.message == "IDEMPOTENCY_IN_PROGRESS"
