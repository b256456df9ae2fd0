from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import (
    ConcurrentModificationError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from app.core.telemetry import get_tracer
from app.models.enums import ModerationAction, ModerationStatus
from app.services import audit as audit_tags
from app.services import notifications as notices
from app.services.audit import AuditSink
from app.services.notifications import NotificationSink
from app.services.side_effects import fire_and_continue
from app.services.store import EntityStore

log = logging.getLogger(__name__)
tracer = get_tracer(__name__)

# skip reasons (besides ALREADY_<STATUS>)
NOT_FOUND = "NOT_FOUND"
CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"


@dataclass(frozen=True)
class SkippedListing:
    id: str
    reason: str


@dataclass
class TransitionResult:
    applied: list[str] = field(default_factory=list)
    skipped: list[SkippedListing] = field(default_factory=list)

    @property
    def applied_count(self) -> int:
        return len(self.applied)

    def skip_reason(self, listing_id: str) -> str | None:
        for s in self.skipped:
            if s.id == listing_id:
                return s.reason
        return None


@dataclass(frozen=True)
class _Applied:
    listing_id: str
    owner_id: str
    title: str
    previous_status: ModerationStatus


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _coerce_action(action: ModerationAction | str) -> ModerationAction:
    try:
        return ModerationAction(action)
    except ValueError:
        raise ValidationError(f"unknown moderation action {action!r}")


def _unique_ids(listing_ids: Iterable[str]) -> list[str]:
    # keep first-seen order so results line up with the request
    seen: dict[str, None] = {}
    for raw in listing_ids:
        listing_id = (raw or "").strip()
        if listing_id:
            seen.setdefault(listing_id, None)
    return list(seen)


def _validate_decision(
    ids: list[str],
    action: ModerationAction,
    reviewer_id: str,
    reason: str | None,
    featured: bool,
) -> str | None:
    if not ids:
        raise ValidationError("listing_ids must contain at least one id")
    if not (reviewer_id or "").strip():
        raise ValidationError("reviewer_id is required")

    reason = (reason or "").strip() or None
    if action == ModerationAction.REJECT:
        if reason is None:
            raise ValidationError("a rejection reason is required")
        if featured:
            raise ValidationError("featured only applies to approvals")
    return reason


def _transition_patch(
    action: ModerationAction,
    reviewer_id: str,
    reason: str | None,
    featured: bool,
) -> dict[str, Any]:
    approve = action == ModerationAction.APPROVE
    patch: dict[str, Any] = {
        "moderation_status": ModerationStatus.APPROVED if approve else ModerationStatus.REJECTED,
        "is_active": approve,
        "reviewed_at": _now(),
        "reviewed_by": reviewer_id,
        "rejection_reason": None if approve else reason,
    }
    if approve and featured:
        patch["is_featured"] = True
    return patch


async def _apply_one(
    store: EntityStore,
    listing_id: str,
    patch: dict[str, Any],
) -> _Applied:
    listing = await store.get_listing(listing_id)
    if listing is None:
        raise NotFoundError(f"listing {listing_id} not found", code=NOT_FOUND)

    if listing.moderation_status != ModerationStatus.PENDING:
        # also what makes a retried decision a no-op
        status = ModerationStatus(listing.moderation_status)
        raise InvalidStateError(
            f"listing {listing_id} is {status.value}",
            code=f"ALREADY_{status.value}",
        )

    # capture before the update; the row may change under us afterwards
    applied = _Applied(
        listing_id=listing.id,
        owner_id=listing.owner_id,
        title=listing.title,
        previous_status=ModerationStatus.PENDING,
    )

    ok = await store.conditional_update_listing(listing_id, ModerationStatus.PENDING, patch)
    if not ok:
        raise ConcurrentModificationError(
            f"listing {listing_id} changed during review",
            code=CONCURRENT_MODIFICATION,
        )
    return applied


async def decide_listings(
    db: AsyncSession,
    *,
    listing_ids: Iterable[str],
    action: ModerationAction,
    reviewer_id: str,
    reason: str | None = None,
    featured: bool = False,
    store: EntityStore | None = None,
    notifier: NotificationSink | None = None,
    auditor: AuditSink | None = None,
) -> TransitionResult:
    """
    Approve or reject one or more listings.

    Validation (ids, reviewer, rejection reason) runs before anything is
    touched. After that every listing is conditioned on its own: a listing
    that is missing, no longer PENDING, or lost a concurrent race is reported
    under `skipped` with a reason and the rest of the batch carries on.
    Each applied transition is committed individually, then its notification
    and audit record are written best-effort.

    Note: reviewer_id is assumed to be an already-authorized admin.
    """
    action = _coerce_action(action)
    ids = _unique_ids(listing_ids)
    reason = _validate_decision(ids, action, reviewer_id, reason, featured)

    store = store or EntityStore(db)
    notifier = notifier or NotificationSink(db)
    auditor = auditor or AuditSink(db)
    bulk = len(ids) > 1

    result = TransitionResult()

    with tracer.start_as_current_span("moderation.decide") as span:
        span.set_attribute("moderation.action", action.value)
        span.set_attribute("moderation.batch_size", len(ids))

        for listing_id in ids:
            patch = _transition_patch(action, reviewer_id, reason, featured)
            try:
                applied = await _apply_one(store, listing_id, patch)
            except (NotFoundError, InvalidStateError, ConcurrentModificationError) as e:
                if isinstance(e, ConcurrentModificationError):
                    # release the failed write's transaction
                    await db.rollback()
                result.skipped.append(SkippedListing(id=listing_id, reason=e.code))
                log.info("decide: skipped %s (%s)", listing_id, e.code)
                continue

            await db.commit()
            result.applied.append(listing_id)

            await _emit_transition_effects(
                db,
                notifier=notifier,
                auditor=auditor,
                applied=applied,
                new_status=patch["moderation_status"],
                reviewer_id=reviewer_id,
                reason=reason,
                featured=featured,
                bulk=bulk,
            )

        span.set_attribute("moderation.applied", result.applied_count)

    log.info(
        "decide: action=%s reviewer=%s applied=%d skipped=%d",
        action.value, reviewer_id, result.applied_count, len(result.skipped),
    )
    return result


async def _emit_transition_effects(
    db: AsyncSession,
    *,
    notifier: NotificationSink,
    auditor: AuditSink,
    applied: _Applied,
    new_status: ModerationStatus,
    reviewer_id: str,
    reason: str | None,
    featured: bool,
    bulk: bool,
) -> None:
    approved = new_status == ModerationStatus.APPROVED

    if approved:
        ntype = notices.PROPERTY_APPROVED
        title, message = notices.property_approved(applied.title)
        payload = {"propertyId": applied.listing_id, "propertyTitle": applied.title, "adminNotes": reason}
    else:
        ntype = notices.PROPERTY_REJECTED
        title, message = notices.property_rejected(applied.title, reason or "")
        payload = {"propertyId": applied.listing_id, "propertyTitle": applied.title, "reason": reason}

    await fire_and_continue(
        db,
        f"notify {ntype} {applied.listing_id}",
        lambda: notifier.send(applied.owner_id, ntype, title, message, payload),
    )

    action = audit_tags.APPROVE_PROPERTY if approved else audit_tags.REJECT_PROPERTY
    detail = {
        "previous_status": applied.previous_status.value,
        "new_status": new_status.value,
        "bulk_action": bulk,
        "reason": None if approved else reason,
        "notes": reason if approved else None,
        "featured": bool(approved and featured),
    }
    await fire_and_continue(
        db,
        f"audit {action} {applied.listing_id}",
        lambda: auditor.append(action, reviewer_id, audit_tags.TARGET_PROPERTY, applied.listing_id, detail),
    )


async def approve_listing(
    db: AsyncSession,
    *,
    listing_id: str,
    reviewer_id: str,
    notes: str | None = None,
    featured: bool = False,
    **collaborators: Any,
) -> TransitionResult:
    return await decide_listings(
        db,
        listing_ids=[listing_id],
        action=ModerationAction.APPROVE,
        reviewer_id=reviewer_id,
        reason=notes,
        featured=featured,
        **collaborators,
    )


async def reject_listing(
    db: AsyncSession,
    *,
    listing_id: str,
    reviewer_id: str,
    reason: str | None,
    **collaborators: Any,
) -> TransitionResult:
    return await decide_listings(
        db,
        listing_ids=[listing_id],
        action=ModerationAction.REJECT,
        reviewer_id=reviewer_id,
        reason=reason,
        **collaborators,
    )


async def toggle_featured(
    db: AsyncSession,
    *,
    listing_id: str,
    reviewer_id: str,
    store: EntityStore | None = None,
    auditor: AuditSink | None = None,
) -> bool:
    """Flip is_featured on an approved listing. Returns the new flag."""
    store = store or EntityStore(db)
    auditor = auditor or AuditSink(db)

    listing = await store.get_listing(listing_id)
    if listing is None:
        raise NotFoundError(f"listing {listing_id} not found")
    if listing.moderation_status != ModerationStatus.APPROVED:
        raise InvalidStateError(f"only approved listings can be featured (listing is {listing.moderation_status.value})")

    featured = not listing.is_featured
    ok = await store.conditional_update_listing(listing_id, ModerationStatus.APPROVED, {"is_featured": featured})
    if not ok:
        await db.rollback()
        raise ConcurrentModificationError(f"listing {listing_id} changed during update")
    await db.commit()

    await fire_and_continue(
        db,
        f"audit {audit_tags.FEATURE_PROPERTY} {listing_id}",
        lambda: auditor.append(
            audit_tags.FEATURE_PROPERTY,
            reviewer_id,
            audit_tags.TARGET_PROPERTY,
            listing_id,
            {"featured": featured},
        ),
    )
    log.info("listing %s featured=%s", listing_id, featured)
    return featured

