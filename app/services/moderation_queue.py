from __future__ import annotations

import enum
import math
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import ValidationError
from app.core.telemetry import get_tracer
from app.models.enums import (
    KycStatus,
    ModerationStatus,
    Priority,
    VerificationLevel,
)
from app.models.listing import Listing
from app.models.user import User
from app.services.priority import rank, score
from app.services.store import EntityStore, ListingPredicate

tracer = get_tracer(__name__)

QUEUE_STATUSES = (ModerationStatus.PENDING, ModerationStatus.REJECTED)


class OwnerVerificationFilter(str, enum.Enum):
    VERIFIED_ONLY = "VERIFIED_ONLY"
    UNVERIFIED_ONLY = "UNVERIFIED_ONLY"


class PrioritySource(str, enum.Enum):
    EXPLICIT = "EXPLICIT"
    COMPUTED = "COMPUTED"


@dataclass(frozen=True)
class QueryFilter:
    # None -> both PENDING and REJECTED
    status: ModerationStatus | None = None
    # case-insensitive match on title, location or owner name
    search: str | None = None
    # the stored operator override
    explicit_priority: Priority | None = None
    # the effective (explicit or computed) priority
    priority: Priority | None = None
    owner_verification: OwnerVerificationFilter | None = None


@dataclass(frozen=True)
class PageRequest:
    page: int = 1
    page_size: int = settings.default_page_size


@dataclass(frozen=True)
class OwnerSummary:
    id: str
    name: str
    verification_level: VerificationLevel
    kyc_status: KycStatus
    is_verified: bool


@dataclass(frozen=True)
class RankedListing:
    id: str
    title: str
    location: str
    price: Decimal
    currency: str
    media_count: int
    has_legal_documents: bool
    moderation_status: ModerationStatus
    explicit_priority: Priority
    priority: Priority
    priority_source: PrioritySource
    is_featured: bool
    submitted_at: datetime
    rejection_reason: str | None
    owner: OwnerSummary


@dataclass(frozen=True)
class QueuePage:
    items: list[RankedListing]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.total else 0


def _validate(filter: QueryFilter, page: PageRequest) -> None:
    if filter.status is not None and filter.status not in QUEUE_STATUSES:
        raise ValidationError(f"queue only holds PENDING/REJECTED listings, got {filter.status.value}")
    # NONE only means "no override"; it is never an effective priority
    if filter.priority == Priority.NONE:
        raise ValidationError("priority filter must be LOW, MEDIUM or HIGH")
    if page.page < 1:
        raise ValidationError("page must be >= 1")
    if page.page_size < 1 or page.page_size > settings.max_page_size:
        raise ValidationError(f"page_size must be between 1 and {settings.max_page_size}")


def _to_predicate(filter: QueryFilter) -> ListingPredicate:
    owner_verified = None
    if filter.owner_verification == OwnerVerificationFilter.VERIFIED_ONLY:
        owner_verified = True
    elif filter.owner_verification == OwnerVerificationFilter.UNVERIFIED_ONLY:
        owner_verified = False

    search = (filter.search or "").strip() or None
    return ListingPredicate(
        statuses=(filter.status,) if filter.status else QUEUE_STATUSES,
        search=search,
        explicit_priority=filter.explicit_priority,
        owner_verified=owner_verified,
    )


def _rank_row(listing: Listing, owner: User) -> RankedListing:
    priority = score(listing, owner)
    source = PrioritySource.COMPUTED if listing.explicit_priority == Priority.NONE else PrioritySource.EXPLICIT
    return RankedListing(
        id=listing.id,
        title=listing.title,
        location=listing.location,
        price=listing.price,
        currency=listing.currency,
        media_count=listing.media_count,
        has_legal_documents=listing.has_legal_documents,
        moderation_status=listing.moderation_status,
        explicit_priority=listing.explicit_priority,
        priority=priority,
        priority_source=source,
        is_featured=listing.is_featured,
        submitted_at=listing.submitted_at,
        rejection_reason=listing.rejection_reason,
        owner=OwnerSummary(
            id=owner.id,
            name=owner.name,
            verification_level=owner.verification_level,
            kyc_status=owner.kyc_status,
            is_verified=owner.is_verified,
        ),
    )


async def list_moderation_queue(
    db: AsyncSession,
    *,
    filter: QueryFilter | None = None,
    page: PageRequest | None = None,
    store: EntityStore | None = None,
) -> QueuePage:
    """
    Read-only view of listings awaiting (or failed) review.

    Rows come back from storage ordered by (submitted_at, id); they are then
    scored and stable-sorted by priority, so the final order is
    (priority desc, submitted_at asc, id asc) and page boundaries are stable.
    """
    filter = filter or QueryFilter()
    page = page or PageRequest()
    _validate(filter, page)
    store = store or EntityStore(db)

    with tracer.start_as_current_span("moderation.queue"):
        rows = await store.query_listings(_to_predicate(filter))

        ranked = [_rank_row(listing, owner) for listing, owner in rows]
        if filter.priority is not None:
            ranked = [r for r in ranked if r.priority == filter.priority]

        # sort is stable: equal priorities keep the storage order
        ranked.sort(key=lambda r: rank(r.priority), reverse=True)

        start = (page.page - 1) * page.page_size
        return QueuePage(
            items=ranked[start:start + page.page_size],
            total=len(ranked),
            page=page.page,
            page_size=page.page_size,
        )
