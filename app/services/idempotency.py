import hashlib
import json
from fastapi import Header, HTTPException
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.idempotency import IdempotencyKey

MAX_KEY_LENGTH = 200


def _hash_request(path: str, body: dict) -> str:
    # Stable hash to detect conflicts (same idempotency key but different request)
    raw = json.dumps({"path": path, "body": body}, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")
    return "sha256:" + hashlib.sha256(raw).hexdigest()


async def optional_idempotency_key(idempotency_key: str | None = Header(default=None)) -> str | None:
    if idempotency_key is None:
        return None
    idempotency_key = idempotency_key.strip()
    if not idempotency_key:
        raise HTTPException(status_code=400, detail="Empty Idempotency-Key header")
    if len(idempotency_key) > MAX_KEY_LENGTH:
        raise HTTPException(status_code=400, detail="Idempotency-Key too long")
    return idempotency_key


async def get_or_reserve_idempotency(
    *,
    db: AsyncSession,
    reviewer_id: str,
    idempotency_key: str,
    request_path: str,
    request_body: dict,
) -> IdempotencyKey | None:
    """
    Returns the existing record for (reviewer, key), or None after reserving it.

    A record with a stored response should be replayed as-is. A record with an
    empty response is still being processed by another request (409).
    """
    req_hash = _hash_request(request_path, request_body)

    stmt = select(IdempotencyKey).where(
        IdempotencyKey.reviewer_id == reviewer_id,
        IdempotencyKey.key == idempotency_key,
    )
    existing = (await db.execute(stmt)).scalar_one_or_none()
    if existing:
        if existing.request_hash != req_hash:
            raise HTTPException(status_code=409, detail="Idempotency-Key reuse with different request")
        if not existing.response:
            raise HTTPException(status_code=409, detail="Request with this Idempotency-Key is still in progress")
        return existing

    # Reserve by inserting an empty response row
    db.add(
        IdempotencyKey(
            reviewer_id=reviewer_id,
            key=idempotency_key,
            request_hash=req_hash,
            response={},
        )
    )
    # Flush so the unique constraint is enforced now
    await db.flush()
    return None


async def store_idempotency_response(
    *,
    db: AsyncSession,
    reviewer_id: str,
    idempotency_key: str,
    response: dict,
) -> None:
    stmt = select(IdempotencyKey).where(
        IdempotencyKey.reviewer_id == reviewer_id,
        IdempotencyKey.key == idempotency_key,
    )
    row = (await db.execute(stmt)).scalar_one()
    row.response = response
    await db.flush()


async def release_idempotency(
    *,
    db: AsyncSession,
    reviewer_id: str,
    idempotency_key: str,
) -> None:
    # for requests that failed without a stored response
    await db.execute(
        delete(IdempotencyKey).where(
            IdempotencyKey.reviewer_id == reviewer_id,
            IdempotencyKey.key == idempotency_key,
        )
    )
    await db.flush()
