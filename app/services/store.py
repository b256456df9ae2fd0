from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enums import DocumentStatus, KycStatus, ModerationStatus, Priority, VERIFIED_LEVELS, VerificationLevel
from app.models.listing import Listing
from app.models.user import User
from app.models.verification_document import VerificationDocument


def _escape_like(text: str) -> str:
    # free text is matched literally
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


@dataclass(frozen=True)
class ListingPredicate:
    """
    Storage-side predicates for the moderation queue.
    Every supported filter is an explicit field; None means "don't filter".
    """
    statuses: tuple[ModerationStatus, ...]
    search: str | None = None
    explicit_priority: Priority | None = None
    owner_verified: bool | None = None


class EntityStore:
    """
    SQLAlchemy adapter for the entities the core reads and writes.

    Reads always repopulate identity-map objects so a caller never sees a row
    as it was before another session's commit. Writes are flushed, never
    committed: commit boundaries belong to the calling service.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # listings

    async def get_listing(self, listing_id: str) -> Listing | None:
        return await self.db.get(Listing, listing_id, populate_existing=True)

    async def query_listings(self, predicate: ListingPredicate) -> list[tuple[Listing, User]]:
        stmt = (
            select(Listing, User)
            .join(User, User.id == Listing.owner_id)
            .where(Listing.moderation_status.in_(predicate.statuses))
        )

        if predicate.search:
            needle = f"%{_escape_like(predicate.search.strip())}%"
            stmt = stmt.where(or_(
                Listing.title.ilike(needle, escape="\\"),
                Listing.location.ilike(needle, escape="\\"),
                User.name.ilike(needle, escape="\\"),
            ))

        if predicate.explicit_priority is not None:
            stmt = stmt.where(Listing.explicit_priority == predicate.explicit_priority)

        if predicate.owner_verified is True:
            stmt = stmt.where(User.verification_level.in_(sorted(VERIFIED_LEVELS)))
        elif predicate.owner_verified is False:
            stmt = stmt.where(User.verification_level.not_in(sorted(VERIFIED_LEVELS)))

        # base order; priority ranking is layered on top by the queue
        stmt = stmt.order_by(Listing.submitted_at.asc(), Listing.id.asc())
        stmt = stmt.execution_options(populate_existing=True)

        rows = (await self.db.execute(stmt)).all()
        return [(row[0], row[1]) for row in rows]

    async def conditional_update_listing(
        self,
        listing_id: str,
        expected_status: ModerationStatus,
        patch: dict[str, Any],
    ) -> bool:
        """Compare-and-swap on moderation_status. False means the precondition no longer held."""
        result = await self.db.execute(
            update(Listing)
            .where(Listing.id == listing_id, Listing.moderation_status == expected_status)
            .values(**patch)
            .execution_options(synchronize_session=False)
        )
        await self.db.flush()
        return result.rowcount == 1

    # users

    async def get_user(self, user_id: str) -> User | None:
        return await self.db.get(User, user_id, populate_existing=True)

    async def lock_user(self, user_id: str) -> User | None:
        """Re-read a user under a row lock (no-op on backends without FOR UPDATE)."""
        stmt = (
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def conditional_update_user(
        self,
        user_id: str,
        expected_level: VerificationLevel,
        expected_kyc: KycStatus,
        patch: dict[str, Any],
    ) -> bool:
        """Compare-and-swap on the tier columns read before the recompute."""
        result = await self.db.execute(
            update(User)
            .where(
                User.id == user_id,
                User.verification_level == expected_level,
                User.kyc_status == expected_kyc,
            )
            .values(**patch)
            .execution_options(synchronize_session=False)
        )
        await self.db.flush()
        return result.rowcount == 1

    async def update_user(self, user_id: str, patch: dict[str, Any]) -> None:
        await self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(**patch)
            .execution_options(synchronize_session=False)
        )
        await self.db.flush()

    # verification documents

    async def get_document(self, document_id: str) -> VerificationDocument | None:
        return await self.db.get(VerificationDocument, document_id, populate_existing=True)

    async def conditional_update_document(
        self,
        document_id: str,
        expected_status: DocumentStatus,
        patch: dict[str, Any],
    ) -> bool:
        result = await self.db.execute(
            update(VerificationDocument)
            .where(
                VerificationDocument.id == document_id,
                VerificationDocument.verification_status == expected_status,
                VerificationDocument.superseded_by.is_(None),
            )
            .values(**patch)
            .execution_options(synchronize_session=False)
        )
        await self.db.flush()
        return result.rowcount == 1

    async def supersede_documents(self, user_id: str, document_type: str, replacement_id: str) -> int:
        """Point earlier undecided/rejected records of a type at their replacement."""
        result = await self.db.execute(
            update(VerificationDocument)
            .where(
                VerificationDocument.user_id == user_id,
                VerificationDocument.document_type == document_type,
                VerificationDocument.id != replacement_id,
                VerificationDocument.superseded_by.is_(None),
                VerificationDocument.verification_status.in_([DocumentStatus.PENDING, DocumentStatus.REJECTED]),
            )
            .values(superseded_by=replacement_id)
            .execution_options(synchronize_session=False)
        )
        await self.db.flush()
        return int(result.rowcount or 0)

    async def list_documents(self, user_id: str) -> list[VerificationDocument]:
        stmt = (
            select(VerificationDocument)
            .where(VerificationDocument.user_id == user_id)
            .order_by(VerificationDocument.created_at.asc(), VerificationDocument.id.asc())
            .execution_options(populate_existing=True)
        )
        return list((await self.db.execute(stmt)).scalars().all())

    def add(self, obj: Any) -> None:
        self.db.add(obj)

    async def flush(self) -> None:
        await self.db.flush()
