from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.errors import http_error
from app.core.db import get_db
from app.core.errors import ModerationError
from app.schemas.verification import ReviewIn, ReviewOut, TrustTierOut
from app.services.admin_auth import Reviewer, get_reviewer
from app.services.verification_ledger import (
    TrustTier,
    grant_full_verification,
    recompute_trust_tier,
    review_document,
)

router = APIRouter(prefix="/admin/verification")


def _tier_out(tier: TrustTier) -> TrustTierOut:
    return TrustTierOut(
        user_id=tier.user_id,
        previous_level=tier.previous_level,
        verification_level=tier.verification_level,
        is_verified=tier.is_verified,
        kyc_status=tier.kyc_status,
    )


@router.post("/documents/{document_id}/review", response_model=ReviewOut)
async def review(
    document_id: str,
    payload: ReviewIn,
    reviewer: Reviewer = Depends(get_reviewer),
    db: AsyncSession = Depends(get_db),
) -> ReviewOut:
    try:
        result = await review_document(
            db,
            document_id=document_id,
            outcome=payload.outcome,
            reviewer_id=reviewer.reviewer_id,
            reason=payload.reason,
        )
    except ModerationError as e:
        raise http_error(e)

    return ReviewOut(
        document_id=result.document_id,
        status=result.status,
        user_id=result.user_id,
        previous_level=result.previous_level,
        verification_level=result.verification_level,
        is_verified=result.is_verified,
    )


@router.post("/users/{user_id}/recompute", response_model=TrustTierOut)
async def recompute(
    user_id: str,
    _: Reviewer = Depends(get_reviewer),
    db: AsyncSession = Depends(get_db),
) -> TrustTierOut:
    try:
        tier = await recompute_trust_tier(db, user_id=user_id)
    except ModerationError as e:
        raise http_error(e)
    return _tier_out(tier)


@router.post("/users/{user_id}/full-verification", response_model=TrustTierOut)
async def full_verification(
    user_id: str,
    reviewer: Reviewer = Depends(get_reviewer),
    db: AsyncSession = Depends(get_db),
) -> TrustTierOut:
    try:
        tier = await grant_full_verification(db, user_id=user_id, reviewer_id=reviewer.reviewer_id)
    except ModerationError as e:
        raise http_error(e)
    return _tier_out(tier)
