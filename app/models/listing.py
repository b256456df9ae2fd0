from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Enum, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from app.core.ids import LISTING, gen_id
from app.models.base import Base, TimestampMixin
from app.models.enums import ModerationStatus, Priority


class Listing(TimestampMixin, Base):
    __tablename__ = "listings"
    __table_args__ = (
        # APPROVED => active
        CheckConstraint(
            "moderation_status <> 'APPROVED' OR is_active",
            name="ck_listing_approved_is_active",
        ),
        # REJECTED => inactive with a reason
        CheckConstraint(
            "moderation_status <> 'REJECTED' OR "
            "(NOT is_active AND rejection_reason IS NOT NULL AND rejection_reason <> '')",
            name="ck_listing_rejected_has_reason",
        ),
        Index("ix_listings_queue", "moderation_status", "submitted_at", "id"),
        Index("ix_listings_owner_id", "owner_id"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id(LISTING))
    owner_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False)

    title: Mapped[str] = mapped_column(String(300), nullable=False)
    location: Mapped[str] = mapped_column(String(300), nullable=False, default="")
    price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="NGN")
    media_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    has_legal_documents: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    moderation_status: Mapped[ModerationStatus] = mapped_column(
        Enum(ModerationStatus, native_enum=False, length=20),
        nullable=False,
        default=ModerationStatus.PENDING,
    )
    # operator override; NONE means "compute it"
    explicit_priority: Mapped[Priority] = mapped_column(
        Enum(Priority, native_enum=False, length=20),
        nullable=False,
        default=Priority.NONE,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_featured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # hash of owner-editable fields for change detection
    content_hash: Mapped[str] = mapped_column(String(80), nullable=False)

    def invariant_violations(self) -> list[str]:
        problems = []
        if self.moderation_status == ModerationStatus.APPROVED and not self.is_active:
            problems.append("approved listing must be active")
        if self.moderation_status == ModerationStatus.REJECTED:
            if self.is_active:
                problems.append("rejected listing must be inactive")
            if not (self.rejection_reason or "").strip():
                problems.append("rejected listing must carry a rejection reason")
        return problems
