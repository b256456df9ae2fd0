from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import (
    ConcurrentModificationError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from app.core.telemetry import get_tracer
from app.models.enums import (
    DocumentStatus,
    KycStatus,
    ReviewOutcome,
    VERIFIED_LEVELS,
    VerificationLevel,
)
from app.models.user import User
from app.models.verification_document import VerificationDocument
from app.services import audit as audit_tags
from app.services import notifications as notices
from app.services.audit import AuditSink
from app.services.notifications import NotificationSink
from app.services.side_effects import fire_and_continue
from app.services.store import EntityStore

log = logging.getLogger(__name__)
tracer = get_tracer(__name__)


@dataclass(frozen=True)
class TrustTier:
    user_id: str
    previous_level: VerificationLevel
    verification_level: VerificationLevel
    is_verified: bool
    kyc_status: KycStatus


@dataclass(frozen=True)
class ReviewResult:
    document_id: str
    document_type: str
    status: DocumentStatus
    user_id: str
    previous_level: VerificationLevel
    verification_level: VerificationLevel
    is_verified: bool


def level_for(approved_types: int) -> VerificationLevel:
    if approved_types >= 2:
        return VerificationLevel.VERIFIED
    if approved_types == 1:
        return VerificationLevel.PARTIAL
    return VerificationLevel.NONE


def derive_is_verified(level: VerificationLevel, approved_types: int, *, legacy: bool | None = None) -> bool:
    """
    Tier-based by default. The legacy rule (any approved document counts)
    is kept behind LEGACY_IS_VERIFIED_RULE for older callers.
    """
    legacy = settings.legacy_is_verified_rule if legacy is None else legacy
    if level in VERIFIED_LEVELS:
        return True
    return legacy and approved_types > 0


def derive_kyc_status(level: VerificationLevel, documents: Iterable[VerificationDocument]) -> KycStatus:
    active = [d for d in documents if d.is_active]
    if level == VerificationLevel.FULL_VERIFIED:
        return KycStatus.COMPLETED
    if any(d.verification_status == DocumentStatus.PENDING for d in active):
        return KycStatus.IN_REVIEW
    if level == VerificationLevel.VERIFIED:
        return KycStatus.APPROVED
    if level == VerificationLevel.PARTIAL:
        return KycStatus.IN_REVIEW
    if any(d.verification_status == DocumentStatus.REJECTED for d in active):
        return KycStatus.REJECTED
    return KycStatus.PENDING


def approved_document_types(documents: Iterable[VerificationDocument]) -> set[str]:
    return {
        d.document_type
        for d in documents
        if d.is_active and d.verification_status == DocumentStatus.APPROVED
    }


RECOMPUTE_ATTEMPTS = 3


async def _recompute(store: EntityStore, user: User) -> TrustTier:
    """
    Flush-only; the caller commits (or rolls back on ConcurrentModificationError).

    The write is conditioned on the tier read at the start of each attempt, so
    a concurrent grant or review is re-read instead of overwritten.
    """
    user_id = user.id
    for attempt in range(1, RECOMPUTE_ATTEMPTS + 1):
        current = await store.lock_user(user_id)
        if current is None:
            raise NotFoundError(f"user {user_id} not found")
        documents = await store.list_documents(user_id)
        approved = approved_document_types(documents)

        previous = VerificationLevel(current.verification_level)
        previous_kyc = KycStatus(current.kyc_status)
        if previous == VerificationLevel.FULL_VERIFIED:
            # set outside the ledger; never downgraded here
            level = previous
        else:
            level = level_for(len(approved))

        tier = TrustTier(
            user_id=user_id,
            previous_level=previous,
            verification_level=level,
            is_verified=derive_is_verified(level, len(approved)),
            kyc_status=derive_kyc_status(level, documents),
        )
        ok = await store.conditional_update_user(user_id, previous, previous_kyc, {
            "verification_level": tier.verification_level,
            "is_verified": tier.is_verified,
            "kyc_status": tier.kyc_status,
        })
        if ok:
            if previous != level:
                log.info("trust tier: user=%s %s -> %s", user_id, previous.value, level.value)
            return tier
        log.info("trust tier: user=%s changed underneath (attempt %d)", user_id, attempt)

    raise ConcurrentModificationError(f"user {user_id} tier kept changing during recompute")


async def _recompute_or_rollback(db: AsyncSession, store: EntityStore, user: User) -> TrustTier:
    try:
        return await _recompute(store, user)
    except ConcurrentModificationError:
        await db.rollback()
        raise


def _coerce_outcome(outcome: ReviewOutcome | str) -> ReviewOutcome:
    try:
        return ReviewOutcome(outcome)
    except ValueError:
        raise ValidationError(f"unknown review outcome {outcome!r}")


async def recompute_trust_tier(
    db: AsyncSession,
    *,
    user_id: str,
    store: EntityStore | None = None,
) -> TrustTier:
    """Recompute and persist a user's tier from their documents (repair/backfill)."""
    store = store or EntityStore(db)

    user = await store.get_user(user_id)
    if user is None:
        raise NotFoundError(f"user {user_id} not found")

    tier = await _recompute_or_rollback(db, store, user)
    await db.commit()
    return tier


async def review_document(
    db: AsyncSession,
    *,
    document_id: str,
    outcome: ReviewOutcome,
    reviewer_id: str,
    reason: str | None = None,
    store: EntityStore | None = None,
    notifier: NotificationSink | None = None,
    auditor: AuditSink | None = None,
) -> ReviewResult:
    """
    Approve or reject one PENDING verification document, then recompute the
    owner's trust tier in the same commit.

    Raises NotFoundError (unknown document), InvalidStateError (already
    decided or superseded), ValidationError (rejection without a reason) and
    ConcurrentModificationError (another reviewer got there first).
    """
    outcome = _coerce_outcome(outcome)
    store = store or EntityStore(db)
    notifier = notifier or NotificationSink(db)
    auditor = auditor or AuditSink(db)

    with tracer.start_as_current_span("verification.review") as span:
        span.set_attribute("verification.outcome", outcome.value)

        document = await store.get_document(document_id)
        if document is None:
            raise NotFoundError(f"document {document_id} not found")

        if not document.is_active:
            raise InvalidStateError(f"document {document_id} was superseded by {document.superseded_by}")
        if document.verification_status != DocumentStatus.PENDING:
            raise InvalidStateError(
                f"document {document_id} is already {DocumentStatus(document.verification_status).value}"
            )

        if not (reviewer_id or "").strip():
            raise ValidationError("reviewer_id is required")
        reason = (reason or "").strip() or None
        if outcome == ReviewOutcome.REJECT and reason is None:
            raise ValidationError("a rejection reason is required")

        user = await store.get_user(document.user_id)
        if user is None:
            raise NotFoundError(f"user {document.user_id} not found")

        approve = outcome == ReviewOutcome.APPROVE
        new_status = DocumentStatus.APPROVED if approve else DocumentStatus.REJECTED
        ok = await store.conditional_update_document(document_id, DocumentStatus.PENDING, {
            "verification_status": new_status,
            "reviewed_at": datetime.now(timezone.utc),
            "reviewed_by": reviewer_id,
            "rejection_reason": None if approve else reason,
        })
        if not ok:
            await db.rollback()
            raise ConcurrentModificationError(f"document {document_id} changed during review")

        # a rejection only ever removes candidates, so this can hold or lower the tier, never raise it
        tier = await _recompute_or_rollback(db, store, user)
        await db.commit()

    result = ReviewResult(
        document_id=document_id,
        document_type=document.document_type,
        status=new_status,
        user_id=tier.user_id,
        previous_level=tier.previous_level,
        verification_level=tier.verification_level,
        is_verified=tier.is_verified,
    )
    await _emit_review_effects(db, notifier=notifier, auditor=auditor, result=result, reviewer_id=reviewer_id, reason=reason)

    log.info(
        "review: document=%s outcome=%s user=%s level=%s",
        document_id, outcome.value, result.user_id, result.verification_level.value,
    )
    return result


async def _emit_review_effects(
    db: AsyncSession,
    *,
    notifier: NotificationSink,
    auditor: AuditSink,
    result: ReviewResult,
    reviewer_id: str,
    reason: str | None,
) -> None:
    approved = result.status == DocumentStatus.APPROVED
    if approved:
        ntype = notices.KYC_APPROVED
        title, message = notices.kyc_approved(result.document_type)
    else:
        ntype = notices.KYC_REJECTED
        title, message = notices.kyc_rejected(result.document_type, reason or "")
    payload = {
        "documentId": result.document_id,
        "documentType": result.document_type,
        "verificationLevel": result.verification_level.value,
        "reason": None if approved else reason,
    }
    await fire_and_continue(
        db,
        f"notify {ntype} {result.document_id}",
        lambda: notifier.send(result.user_id, ntype, title, message, payload),
    )

    detail = {
        "document_id": result.document_id,
        "document_type": result.document_type,
        "outcome": "APPROVE" if approved else "REJECT",
        "reason": None if approved else reason,
        "previous_level": result.previous_level.value,
        "new_level": result.verification_level.value,
    }
    await fire_and_continue(
        db,
        f"audit {audit_tags.VERIFY_USER_KYC} {result.document_id}",
        lambda: auditor.append(audit_tags.VERIFY_USER_KYC, reviewer_id, audit_tags.TARGET_USER, result.user_id, detail),
    )


async def submit_document(
    db: AsyncSession,
    *,
    user_id: str,
    document_type: str,
    document_url: str,
    document_number: str | None = None,
    store: EntityStore | None = None,
) -> VerificationDocument:
    """
    Owner upload flow: a fresh PENDING record per submission. Earlier PENDING
    or REJECTED records of the same type are superseded; approved ones stay.
    """
    store = store or EntityStore(db)

    document_type = (document_type or "").strip().upper()
    document_url = (document_url or "").strip()
    if not document_type:
        raise ValidationError("document_type is required")
    if not document_url:
        raise ValidationError("document_url is required")

    user = await store.get_user(user_id)
    if user is None:
        raise NotFoundError(f"user {user_id} not found")

    document = VerificationDocument(
        user_id=user_id,
        document_type=document_type,
        document_url=document_url,
        document_number=document_number,
        verification_status=DocumentStatus.PENDING,
    )
    store.add(document)
    await store.flush()

    replaced = await store.supersede_documents(user_id, document_type, document.id)
    await _recompute_or_rollback(db, store, user)
    await db.commit()

    log.info("document submitted: user=%s type=%s id=%s replaced=%d", user_id, document_type, document.id, replaced)
    return document


async def grant_full_verification(
    db: AsyncSession,
    *,
    user_id: str,
    reviewer_id: str,
    store: EntityStore | None = None,
    notifier: NotificationSink | None = None,
    auditor: AuditSink | None = None,
) -> TrustTier:
    """
    Admin override to the top tier (phone + e-mail + KYC checked elsewhere).
    Sits outside the document rule; the ledger never lowers it afterwards.
    """
    store = store or EntityStore(db)
    notifier = notifier or NotificationSink(db)
    auditor = auditor or AuditSink(db)

    if not (reviewer_id or "").strip():
        raise ValidationError("reviewer_id is required")

    user = await store.get_user(user_id)
    if user is None:
        raise NotFoundError(f"user {user_id} not found")

    previous = VerificationLevel(user.verification_level)
    tier = TrustTier(
        user_id=user_id,
        previous_level=previous,
        verification_level=VerificationLevel.FULL_VERIFIED,
        is_verified=True,
        kyc_status=KycStatus.COMPLETED,
    )
    if previous == VerificationLevel.FULL_VERIFIED:
        return tier

    await store.update_user(user_id, {
        "verification_level": tier.verification_level,
        "is_verified": tier.is_verified,
        "kyc_status": tier.kyc_status,
    })
    await db.commit()

    title, message = notices.account_verified()
    await fire_and_continue(
        db,
        f"notify {notices.ACCOUNT_VERIFIED} {user_id}",
        lambda: notifier.send(user_id, notices.ACCOUNT_VERIFIED, title, message, {"verificationLevel": tier.verification_level.value}),
    )
    await fire_and_continue(
        db,
        f"audit {audit_tags.VERIFY_USER} {user_id}",
        lambda: auditor.append(
            audit_tags.VERIFY_USER,
            reviewer_id,
            audit_tags.TARGET_USER,
            user_id,
            {"previous_level": previous.value, "new_level": tier.verification_level.value},
        ),
    )
    log.info("user %s fully verified by %s", user_id, reviewer_id)
    return tier
