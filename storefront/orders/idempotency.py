"""Stored responses for requests sent with an ``Idempotency-Key``.

The first request under a key claims it with an empty response; once the
order is placed (or rejected) the response is written back. Retries with
the same key and payload replay that response; anything else under the key
is a conflict.
"""

import hashlib
import json
from dataclasses import dataclass
from typing import Optional
import uuid

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..db import Database
from ..errors import IdempotencyConflict
from .models import IdempotencyKey


@dataclass(frozen=True)
class IdempotencyRecord:
    key: str
    request_hash: str
    response_status: int
    response_body: dict
    order_id: Optional[uuid.UUID] = None


def _hash(payload: dict) -> str:
    """SHA-256 of the payload serialized as canonical JSON."""
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


def get_or_create_idempotent(db: Database, key: str, payload: dict) -> tuple[bool, IdempotencyRecord]:
    """Claim ``key`` for this payload, or return the response stored under it.

    Behavior:
        - First request with a new key: create a record and return
          (existing=False, rec).
        - Later request with the same key and payload whose response was
          stored: return (existing=True, rec) for replay.
        - Same key with a different payload, or while the first request is
          still running: raise ``IdempotencyConflict``.

    Args:
        db: Database holding ``idempotency_keys``.
        key: Value of the ``Idempotency-Key`` header.
        payload: What the request asks for; compared by hash on retries.

    Returns:
        tuple[bool, IdempotencyRecord]: (existing, rec).

    Raises:
        IdempotencyConflict: If the key exists with a different payload hash
            or has no stored response yet.
    """
    digest = _hash(payload)
    try:
        with db.transaction() as s:
            s.add(IdempotencyKey(key=key, request_hash=digest, response_status=0, response_body={}))
        return False, IdempotencyRecord(key=key, request_hash=digest, response_status=0, response_body={})
    except IntegrityError:
        pass

    with db.session() as s:
        rec = s.get(IdempotencyKey, key)
        if rec is None:
            raise IdempotencyConflict("IDEMPOTENCY_CONFLICT")
        if rec.request_hash != digest:
            raise IdempotencyConflict("IDEMPOTENCY_CONFLICT")
        if not rec.response_status:
            raise IdempotencyConflict("IDEMPOTENCY_IN_PROGRESS")
        return True, IdempotencyRecord(
            key=rec.key,
            request_hash=rec.request_hash,
            response_status=rec.response_status,
            response_body=dict(rec.response_body or {}),
            order_id=rec.order_id,
        )


def finalize(db: Database, rec: IdempotencyRecord, status_code: int, body: dict, order_id=None) -> None:
    """Write the response a claimed key will replay from now on."""
    values = dict(response_status=status_code, response_body=body)
    if order_id:
        values["order_id"] = order_id
    with db.transaction() as s:
        s.execute(
            update(IdempotencyKey)
            .where(IdempotencyKey.key == rec.key)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
