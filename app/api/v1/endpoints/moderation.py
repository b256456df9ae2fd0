import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.errors import http_error
from app.core.config import settings
from app.core.db import get_db
from app.core.errors import ModerationError
from app.models.enums import ModerationStatus, Priority
from app.schemas.moderation import (
    ApproveIn,
    DecideIn,
    FeatureOut,
    QueuePageOut,
    RejectIn,
    TransitionOut,
)
from app.services.admin_auth import Reviewer, get_reviewer
from app.services.idempotency import (
    get_or_reserve_idempotency,
    optional_idempotency_key,
    release_idempotency,
    store_idempotency_response,
)
from app.services.moderation import (
    NOT_FOUND,
    TransitionResult,
    approve_listing,
    decide_listings,
    reject_listing,
    toggle_featured,
)
from app.services.moderation_queue import (
    OwnerVerificationFilter,
    PageRequest,
    QueryFilter,
    list_moderation_queue,
)

log = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/moderation")


@router.get("/listings", response_model=QueuePageOut)
async def moderation_queue(
    status: ModerationStatus | None = Query(default=None),
    search: str | None = Query(default=None, max_length=200),
    explicit_priority: Priority | None = Query(default=None),
    priority: Priority | None = Query(default=None),
    owner_verification: OwnerVerificationFilter | None = Query(default=None),
    page: int = Query(default=1),
    page_size: int = Query(default=settings.default_page_size),
    _: Reviewer = Depends(get_reviewer),
    db: AsyncSession = Depends(get_db),
) -> QueuePageOut:
    try:
        result = await list_moderation_queue(
            db,
            filter=QueryFilter(
                status=status,
                search=search,
                explicit_priority=explicit_priority,
                priority=priority,
                owner_verification=owner_verification,
            ),
            page=PageRequest(page=page, page_size=page_size),
        )
    except ModerationError as e:
        raise http_error(e)
    return QueuePageOut.from_page(result)


@router.post("/listings/decide", response_model=TransitionOut)
async def decide(
    payload: DecideIn,
    request: Request,
    reviewer: Reviewer = Depends(get_reviewer),
    idempotency_key: str | None = Depends(optional_idempotency_key),
    db: AsyncSession = Depends(get_db),
) -> TransitionOut:
    if idempotency_key:
        try:
            existing = await get_or_reserve_idempotency(
                db=db,
                reviewer_id=reviewer.reviewer_id,
                idempotency_key=idempotency_key,
                request_path=str(request.url.path),
                request_body=payload.model_dump(mode="json"),
            )
            if existing:
                # Safe retry: return stored response
                return TransitionOut(**existing.response)
            # the reservation must survive rollbacks inside the batch
            await db.commit()
        except IntegrityError:
            await db.rollback()
            log.exception("idempotency reservation raced")
            raise HTTPException(status_code=409, detail="Request with this Idempotency-Key is still in progress")

    try:
        result = await decide_listings(
            db,
            listing_ids=payload.listing_ids,
            action=payload.action,
            reviewer_id=reviewer.reviewer_id,
            reason=payload.reason,
            featured=payload.featured,
        )
    except ModerationError as e:
        if idempotency_key:
            # nothing was applied; let the caller retry with the same key
            await release_idempotency(db=db, reviewer_id=reviewer.reviewer_id, idempotency_key=idempotency_key)
            await db.commit()
        raise http_error(e)
    except Exception:
        if idempotency_key:
            # listings committed before the failure are reported as ALREADY_* on retry
            await db.rollback()
            await release_idempotency(db=db, reviewer_id=reviewer.reviewer_id, idempotency_key=idempotency_key)
            await db.commit()
        raise

    resp = TransitionOut.from_result(result)
    if idempotency_key:
        await store_idempotency_response(
            db=db,
            reviewer_id=reviewer.reviewer_id,
            idempotency_key=idempotency_key,
            response=resp.model_dump(mode="json"),
        )
        await db.commit()
    return resp



def _single_outcome(result: TransitionResult, listing_id: str) -> TransitionOut:
    # an unknown id fails; ALREADY_* and lost races come back as a skip
    if result.skip_reason(listing_id) == NOT_FOUND:
        raise HTTPException(status_code=404, detail={"code": NOT_FOUND, "message": f"listing {listing_id} not found"})
    return TransitionOut.from_result(result)


@router.post("/listings/{listing_id}/approve", response_model=TransitionOut)
async def approve(
    listing_id: str,
    payload: ApproveIn,
    reviewer: Reviewer = Depends(get_reviewer),
    db: AsyncSession = Depends(get_db),
) -> TransitionOut:
    try:
        result = await approve_listing(
            db,
            listing_id=listing_id,
            reviewer_id=reviewer.reviewer_id,
            notes=payload.notes,
            featured=payload.featured,
        )
    except ModerationError as e:
        raise http_error(e)
    return _single_outcome(result, listing_id)


@router.post("/listings/{listing_id}/reject", response_model=TransitionOut)
async def reject(
    listing_id: str,
    payload: RejectIn,
    reviewer: Reviewer = Depends(get_reviewer),
    db: AsyncSession = Depends(get_db),
) -> TransitionOut:
    try:
        result = await reject_listing(
            db,
            listing_id=listing_id,
            reviewer_id=reviewer.reviewer_id,
            reason=payload.reason,
        )
    except ModerationError as e:
        raise http_error(e)
    return _single_outcome(result, listing_id)


@router.post("/listings/{listing_id}/feature", response_model=FeatureOut)
async def feature(
    listing_id: str,
    reviewer: Reviewer = Depends(get_reviewer),
    db: AsyncSession = Depends(get_db),
) -> FeatureOut:
    try:
        featured = await toggle_featured(db, listing_id=listing_id, reviewer_id=reviewer.reviewer_id)
    except ModerationError as e:
        raise http_error(e)
    return FeatureOut(id=listing_id, is_featured=featured)
