from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from app.models.enums import (
    KycStatus,
    ModerationAction,
    ModerationStatus,
    Priority,
    VerificationLevel,
)
from app.services.moderation import TransitionResult
from app.services.moderation_queue import PrioritySource, QueuePage, RankedListing


class DecideIn(BaseModel):
    listing_ids: list[str] = Field(min_length=1)
    action: ModerationAction
    reason: str | None = Field(default=None, max_length=2000)
    featured: bool = False


class ApproveIn(BaseModel):
    notes: str | None = Field(default=None, max_length=2000)
    featured: bool = False


class RejectIn(BaseModel):
    reason: str = Field(max_length=2000)


class SkippedOut(BaseModel):
    id: str
    reason: str


class TransitionOut(BaseModel):
    applied: list[str]
    skipped: list[SkippedOut]
    applied_count: int

    @classmethod
    def from_result(cls, result: TransitionResult) -> "TransitionOut":
        return cls(
            applied=list(result.applied),
            skipped=[SkippedOut(id=s.id, reason=s.reason) for s in result.skipped],
            applied_count=result.applied_count,
        )


class FeatureOut(BaseModel):
    id: str
    is_featured: bool


class OwnerOut(BaseModel):
    id: str
    name: str
    verification_level: VerificationLevel
    kyc_status: KycStatus
    is_verified: bool


class QueueItemOut(BaseModel):
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
    owner: OwnerOut

    @classmethod
    def from_ranked(cls, item: RankedListing) -> "QueueItemOut":
        return cls(
            id=item.id,
            title=item.title,
            location=item.location,
            price=item.price,
            currency=item.currency,
            media_count=item.media_count,
            has_legal_documents=item.has_legal_documents,
            moderation_status=item.moderation_status,
            explicit_priority=item.explicit_priority,
            priority=item.priority,
            priority_source=item.priority_source,
            is_featured=item.is_featured,
            submitted_at=item.submitted_at,
            rejection_reason=item.rejection_reason,
            owner=OwnerOut(
                id=item.owner.id,
                name=item.owner.name,
                verification_level=item.owner.verification_level,
                kyc_status=item.owner.kyc_status,
                is_verified=item.owner.is_verified,
            ),
        )


class QueuePageOut(BaseModel):
    items: list[QueueItemOut]
    total: int
    page: int
    page_size: int
    total_pages: int

    @classmethod
    def from_page(cls, page: QueuePage) -> "QueuePageOut":
        return cls(
            items=[QueueItemOut.from_ranked(i) for i in page.items],
            total=page.total,
            page=page.page,
            page_size=page.page_size,
            total_pages=page.total_pages,
        )
