from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFoundError, ValidationError
from app.models.enums import ModerationStatus, Priority
from app.models.listing import Listing
from app.services.store import EntityStore

log = logging.getLogger(__name__)

# fields an owner may change; anything else is ignored by edit_listing
EDITABLE_FIELDS = (
    "title",
    "location",
    "price",
    "currency",
    "media_count",
    "has_legal_documents",
)


@dataclass(frozen=True)
class ListingContent:
    title: str
    location: str
    price: Decimal
    currency: str
    media_count: int
    has_legal_documents: bool

    def as_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "location": self.location,
            # normalized so 100 and 100.00 hash the same
            "price": str(self.price.quantize(Decimal("0.01"))),
            "currency": self.currency,
            "media_count": self.media_count,
            "has_legal_documents": self.has_legal_documents,
        }


def _stable_json(obj: Any) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def content_hash(content: ListingContent) -> str:
    return "sha256:" + hashlib.sha256(_stable_json(content.as_dict())).hexdigest()


def normalize_content_or_raise(raw: dict[str, Any]) -> ListingContent:
    title = (raw.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required")

    try:
        price = Decimal(str(raw.get("price", 0)))
    except (InvalidOperation, ValueError):
        raise ValidationError("price must be a decimal number")
    if not price.is_finite() or price < 0:
        raise ValidationError("price must be >= 0")

    try:
        media_count = int(raw.get("media_count") or 0)
    except (TypeError, ValueError):
        raise ValidationError("media_count must be an integer")
    if media_count < 0:
        raise ValidationError("media_count must be >= 0")

    currency = (raw.get("currency") or "NGN").strip().upper()
    if len(currency) != 3:
        raise ValidationError("currency must be a 3-letter code")

    return ListingContent(
        title=title,
        location=(raw.get("location") or "").strip(),
        price=price,
        currency=currency,
        media_count=media_count,
        has_legal_documents=bool(raw.get("has_legal_documents", False)),
    )


def _content_of(listing: Listing) -> dict[str, Any]:
    return {name: getattr(listing, name) for name in EDITABLE_FIELDS}


async def submit_listing(
    db: AsyncSession,
    *,
    owner_id: str,
    title: str,
    location: str = "",
    price: Decimal | int | str = 0,
    currency: str = "NGN",
    media_count: int = 0,
    has_legal_documents: bool = False,
    explicit_priority: Priority = Priority.NONE,
    store: EntityStore | None = None,
) -> Listing:
    """Create a PENDING, inactive listing for an owner."""
    store = store or EntityStore(db)

    content = normalize_content_or_raise({
        "title": title,
        "location": location,
        "price": price,
        "currency": currency,
        "media_count": media_count,
        "has_legal_documents": has_legal_documents,
    })

    owner = await store.get_user(owner_id)
    if owner is None:
        raise NotFoundError(f"user {owner_id} not found")

    listing = Listing(
        owner_id=owner_id,
        title=content.title,
        location=content.location,
        price=content.price,
        currency=content.currency,
        media_count=content.media_count,
        has_legal_documents=content.has_legal_documents,
        explicit_priority=Priority(explicit_priority),
        moderation_status=ModerationStatus.PENDING,
        is_active=False,
        submitted_at=datetime.now(timezone.utc),
        content_hash=content_hash(content),
    )
    store.add(listing)
    await store.flush()
    await db.commit()

    log.info("listing submitted: id=%s owner=%s", listing.id, owner_id)
    return listing


async def edit_listing(
    db: AsyncSession,
    *,
    listing_id: str,
    changes: dict[str, Any],
    store: EntityStore | None = None,
) -> tuple[Listing, bool]:
    """
    Apply owner edits. Returns (listing, changed).

    Only a material change (different content hash) touches the row; it also
    sends the listing back to PENDING for another review.
    """
    store = store or EntityStore(db)

    listing = await store.get_listing(listing_id)
    if listing is None:
        raise NotFoundError(f"listing {listing_id} not found")

    merged = _content_of(listing)
    merged.update({k: v for k, v in changes.items() if k in EDITABLE_FIELDS})
    content = normalize_content_or_raise(merged)
    new_hash = content_hash(content)

    if listing.content_hash == new_hash:
        return listing, False

    previous = ModerationStatus(listing.moderation_status)
    listing.title = content.title
    listing.location = content.location
    listing.price = content.price
    listing.currency = content.currency
    listing.media_count = content.media_count
    listing.has_legal_documents = content.has_legal_documents
    listing.content_hash = new_hash

    # back to the queue as a fresh submission
    listing.moderation_status = ModerationStatus.PENDING
    listing.is_active = False
    listing.reviewed_at = None
    listing.reviewed_by = None
    listing.rejection_reason = None
    listing.submitted_at = datetime.now(timezone.utc)

    await store.flush()
    await db.commit()

    log.info("listing edited: id=%s %s -> PENDING", listing_id, previous.value)
    return listing, True
