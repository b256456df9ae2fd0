from __future__ import annotations

from decimal import Decimal
from typing import Protocol

from app.core.config import settings
from app.models.enums import Priority, VERIFIED_LEVELS, VerificationLevel

# listings with at least this many photos/videos count as "media complete"
MEDIA_COMPLETE_COUNT = 5

# higher rank is reviewed first
PRIORITY_RANK = {
    Priority.LOW: 1,
    Priority.MEDIUM: 2,
    Priority.HIGH: 3,
}


class ScorableListing(Protocol):
    explicit_priority: Priority
    media_count: int
    has_legal_documents: bool
    price: Decimal


class ScorableOwner(Protocol):
    verification_level: VerificationLevel


def priority_points(
    listing: ScorableListing,
    owner: ScorableOwner,
    *,
    high_value_threshold: Decimal,
) -> int:
    points = 0
    if owner.verification_level in VERIFIED_LEVELS:
        points += 1
    if (listing.media_count or 0) >= MEDIA_COMPLETE_COUNT:
        points += 1
    if listing.has_legal_documents:
        points += 1
    if Decimal(listing.price or 0) > high_value_threshold:
        points += 1
    return points


def score(
    listing: ScorableListing,
    owner: ScorableOwner,
    *,
    high_value_threshold: Decimal | None = None,
) -> Priority:
    """
    Moderation priority for one listing. Pure: no I/O, same inputs -> same output.

    An explicit (operator-set) priority always wins. Otherwise one point each
    for a verified owner, complete media, legal documents and a high price:
    3+ -> HIGH, 2 -> MEDIUM, else LOW.
    """
    explicit = Priority(listing.explicit_priority or Priority.NONE)
    if explicit != Priority.NONE:
        return explicit

    threshold = settings.high_value_price_threshold if high_value_threshold is None else high_value_threshold
    points = priority_points(listing, owner, high_value_threshold=threshold)

    if points >= 3:
        return Priority.HIGH
    if points == 2:
        return Priority.MEDIUM
    return Priority.LOW


def rank(priority: Priority) -> int:
    return PRIORITY_RANK.get(Priority(priority), 0)
