import pytest
from sqlalchemy import select

from app.core.errors import ConcurrentModificationError, InvalidStateError, NotFoundError, ValidationError
from app.models.audit_log import AuditLog
from app.models.enums import DocumentStatus, KycStatus, ReviewOutcome, VerificationLevel
from app.models.notification import Notification
from app.models.user import User
from app.models.verification_document import VerificationDocument
from app.services import audit as audit_tags
from app.services import notifications as notices
from app.services.store import EntityStore
from app.services.verification_ledger import (
    derive_kyc_status,
    grant_full_verification,
    recompute_trust_tier,
    review_document,
    submit_document,
)
from fixtures_seed import make_document, make_user


async def _user(db, user_id) -> User:
    return await db.get(User, user_id, populate_existing=True)


async def _doc(db, document_id) -> VerificationDocument:
    return await db.get(VerificationDocument, document_id, populate_existing=True)


async def test_tier_ladder(db_session):
    owner = await make_user(db_session, name="Ngozi")
    national_id = await make_document(db_session, owner, document_type="NATIONAL_ID")
    passport = await make_document(db_session, owner, document_type="PASSPORT")
    await db_session.commit()

    first = await review_document(
        db_session, document_id=national_id.id, outcome=ReviewOutcome.APPROVE, reviewer_id="adm_1"
    )
    assert first.previous_level == VerificationLevel.NONE
    assert first.verification_level == VerificationLevel.PARTIAL
    assert first.is_verified is False
    user = await _user(db_session, owner.id)
    # the passport is still waiting
    assert user.kyc_status == KycStatus.IN_REVIEW

    second = await review_document(
        db_session, document_id=passport.id, outcome=ReviewOutcome.APPROVE, reviewer_id="adm_1"
    )
    assert second.verification_level == VerificationLevel.VERIFIED
    assert second.is_verified is True
    user = await _user(db_session, owner.id)
    assert user.verification_level == VerificationLevel.VERIFIED
    assert user.is_verified is True
    assert user.kyc_status == KycStatus.APPROVED


async def test_same_type_twice_counts_once(db_session):
    owner = await make_user(db_session, name="Tunde")
    await make_document(db_session, owner, document_type="NATIONAL_ID", status=DocumentStatus.APPROVED)
    await make_document(db_session, owner, document_type="NATIONAL_ID", status=DocumentStatus.APPROVED)
    await db_session.commit()

    tier = await recompute_trust_tier(db_session, user_id=owner.id)
    assert tier.verification_level == VerificationLevel.PARTIAL


async def test_review_records_document_fields_and_side_effects(db_session):
    owner = await make_user(db_session, name="Amaka")
    doc = await make_document(db_session, owner, document_type="PASSPORT")
    await db_session.commit()

    await review_document(db_session, document_id=doc.id, outcome=ReviewOutcome.APPROVE, reviewer_id="adm_1")

    doc = await _doc(db_session, doc.id)
    assert doc.verification_status == DocumentStatus.APPROVED
    assert doc.reviewed_by == "adm_1"
    assert doc.reviewed_at is not None
    assert doc.rejection_reason is None

    note = (await db_session.execute(
        select(Notification).where(Notification.user_id == owner.id)
    )).scalar_one()
    assert note.type == notices.KYC_APPROVED

    audit = (await db_session.execute(select(AuditLog))).scalar_one()
    assert audit.action == audit_tags.VERIFY_USER_KYC
    assert audit.target_type == audit_tags.TARGET_USER
    assert audit.target_id == owner.id
    assert audit.detail["document_id"] == doc.id
    assert audit.detail["previous_level"] == "NONE"
    assert audit.detail["new_level"] == "PARTIAL"


async def test_reject_needs_reason(db_session):
    owner = await make_user(db_session, name="Emeka")
    doc = await make_document(db_session, owner)
    await db_session.commit()

    with pytest.raises(ValidationError):
        await review_document(db_session, document_id=doc.id, outcome=ReviewOutcome.REJECT, reviewer_id="adm_1", reason=" ")

    assert (await _doc(db_session, doc.id)).verification_status == DocumentStatus.PENDING


async def test_unknown_document(db_session):
    with pytest.raises(NotFoundError):
        await review_document(db_session, document_id="doc_missing", outcome=ReviewOutcome.APPROVE, reviewer_id="adm_1")


async def test_decided_document_cannot_be_reviewed_again(db_session):
    owner = await make_user(db_session, name="Femi")
    doc = await make_document(db_session, owner, status=DocumentStatus.APPROVED)
    await db_session.commit()

    with pytest.raises(InvalidStateError):
        await review_document(
            db_session, document_id=doc.id, outcome=ReviewOutcome.REJECT, reviewer_id="adm_1", reason="fake"
        )

    # the state check comes before the reason check
    with pytest.raises(InvalidStateError):
        await review_document(db_session, document_id=doc.id, outcome=ReviewOutcome.REJECT, reviewer_id="adm_1")


async def test_unknown_outcome_is_a_validation_error(db_session):
    owner = await make_user(db_session, name="Uche")
    doc = await make_document(db_session, owner)
    await db_session.commit()

    with pytest.raises(ValidationError):
        await review_document(db_session, document_id=doc.id, outcome="MAYBE", reviewer_id="adm_1")


async def test_rejecting_a_resubmission_never_raises_the_tier(db_session):
    owner = await make_user(db_session, name="Kemi")
    await make_document(db_session, owner, document_type="NATIONAL_ID", status=DocumentStatus.APPROVED)
    await db_session.commit()
    await recompute_trust_tier(db_session, user_id=owner.id)

    resubmitted = await submit_document(
        db_session, user_id=owner.id, document_type="national_id", document_url="https://files.example.com/n2.pdf"
    )
    assert resubmitted.document_type == "NATIONAL_ID"

    result = await review_document(
        db_session,
        document_id=resubmitted.id,
        outcome=ReviewOutcome.REJECT,
        reviewer_id="adm_1",
        reason="expired",
    )
    assert result.previous_level == VerificationLevel.PARTIAL
    assert result.verification_level == VerificationLevel.PARTIAL

    user = await _user(db_session, owner.id)
    assert user.verification_level == VerificationLevel.PARTIAL
    assert user.kyc_status == KycStatus.IN_REVIEW


async def test_resubmission_supersedes_rejected_record(db_session):
    owner = await make_user(db_session, name="Sade")
    old = await make_document(db_session, owner, document_type="PASSPORT", status=DocumentStatus.REJECTED)
    await db_session.commit()

    tier = await recompute_trust_tier(db_session, user_id=owner.id)
    assert tier.kyc_status == KycStatus.REJECTED

    new = await submit_document(
        db_session, user_id=owner.id, document_type="PASSPORT", document_url="https://files.example.com/p2.pdf"
    )

    old = await _doc(db_session, old.id)
    assert old.superseded_by == new.id
    assert (await _user(db_session, owner.id)).kyc_status == KycStatus.IN_REVIEW

    with pytest.raises(InvalidStateError):
        await review_document(
            db_session, document_id=old.id, outcome=ReviewOutcome.APPROVE, reviewer_id="adm_1"
        )


async def test_submit_document_validation(db_session):
    owner = await make_user(db_session, name="Bayo")
    await db_session.commit()

    with pytest.raises(ValidationError):
        await submit_document(db_session, user_id=owner.id, document_type=" ", document_url="https://x/y.pdf")
    with pytest.raises(ValidationError):
        await submit_document(db_session, user_id=owner.id, document_type="PASSPORT", document_url="")
    with pytest.raises(NotFoundError):
        await submit_document(db_session, user_id="usr_missing", document_type="PASSPORT", document_url="https://x/y.pdf")


async def test_full_verification_is_never_downgraded(db_session):
    owner = await make_user(db_session, name="Chidi", level=VerificationLevel.FULL_VERIFIED)
    doc = await make_document(db_session, owner)
    await db_session.commit()

    result = await review_document(
        db_session, document_id=doc.id, outcome=ReviewOutcome.REJECT, reviewer_id="adm_1", reason="illegible"
    )
    assert result.verification_level == VerificationLevel.FULL_VERIFIED

    user = await _user(db_session, owner.id)
    assert user.verification_level == VerificationLevel.FULL_VERIFIED
    assert user.is_verified is True
    assert user.kyc_status == KycStatus.COMPLETED


async def test_legacy_is_verified_rule(db_session, monkeypatch):
    from app.core.config import settings

    monkeypatch.setattr(settings, "legacy_is_verified_rule", True)
    owner = await make_user(db_session, name="Ifeoma")
    doc = await make_document(db_session, owner)
    await db_session.commit()

    result = await review_document(db_session, document_id=doc.id, outcome=ReviewOutcome.APPROVE, reviewer_id="adm_1")
    assert result.verification_level == VerificationLevel.PARTIAL
    assert result.is_verified is True


async def test_recompute_unknown_user(db_session):
    with pytest.raises(NotFoundError):
        await recompute_trust_tier(db_session, user_id="usr_missing")


async def test_grant_full_verification(db_session):
    owner = await make_user(db_session, name="Zainab", level=VerificationLevel.PARTIAL)
    await db_session.commit()

    tier = await grant_full_verification(db_session, user_id=owner.id, reviewer_id="adm_1")
    assert tier.verification_level == VerificationLevel.FULL_VERIFIED

    user = await _user(db_session, owner.id)
    assert user.verification_level == VerificationLevel.FULL_VERIFIED
    assert user.is_verified is True
    assert user.kyc_status == KycStatus.COMPLETED

    # second grant is a no-op
    await grant_full_verification(db_session, user_id=owner.id, reviewer_id="adm_1")
    actions = (await db_session.execute(select(AuditLog.action))).scalars().all()
    assert actions == [audit_tags.VERIFY_USER]
    types = (await db_session.execute(select(Notification.type))).scalars().all()
    assert types == [notices.ACCOUNT_VERIFIED]


class RacingDocumentStore(EntityStore):
    def __init__(self, db, session_factory):
        super().__init__(db)
        self.session_factory = session_factory

    async def get_document(self, document_id):
        doc = await super().get_document(document_id)
        async with self.session_factory() as other:
            await review_document(
                other, document_id=document_id, outcome=ReviewOutcome.REJECT, reviewer_id="adm_other", reason="fake"
            )
        return doc


async def test_concurrent_review_loses_cleanly(db_session, session_factory):
    owner = await make_user(db_session, name="Yemi")
    doc = await make_document(db_session, owner)
    await db_session.commit()
    doc_id = doc.id

    with pytest.raises(ConcurrentModificationError):
        await review_document(
            db_session,
            document_id=doc_id,
            outcome=ReviewOutcome.APPROVE,
            reviewer_id="adm_1",
            store=RacingDocumentStore(db_session, session_factory),
        )

    async with session_factory() as fresh:
        stored = await fresh.get(VerificationDocument, doc_id)
        assert stored.verification_status == DocumentStatus.REJECTED
        assert stored.reviewed_by == "adm_other"


class GrantingUserStore(EntityStore):
    """Another admin grants FULL_VERIFIED right after the first user read."""

    def __init__(self, db, session_factory):
        super().__init__(db)
        self.session_factory = session_factory
        self.raced = False

    async def get_user(self, user_id):
        user = await super().get_user(user_id)
        if not self.raced:
            self.raced = True
            async with self.session_factory() as other:
                await grant_full_verification(other, user_id=user_id, reviewer_id="adm_other")
        return user


async def test_recompute_does_not_overwrite_concurrent_grant(db_session, session_factory):
    owner = await make_user(db_session, name="Bisi")
    await db_session.commit()
    owner_id = owner.id

    tier = await recompute_trust_tier(
        db_session, user_id=owner_id, store=GrantingUserStore(db_session, session_factory)
    )
    assert tier.verification_level == VerificationLevel.FULL_VERIFIED

    async with session_factory() as fresh:
        stored = await fresh.get(User, owner_id)
        assert stored.verification_level == VerificationLevel.FULL_VERIFIED
        assert stored.is_verified is True
        assert stored.kyc_status == KycStatus.COMPLETED


class ReviewingUserStore(EntityStore):
    """Another reviewer approves a second document of the same owner mid-review."""

    def __init__(self, db, session_factory, other_document_id):
        super().__init__(db)
        self.session_factory = session_factory
        self.other_document_id = other_document_id

    async def get_user(self, user_id):
        user = await super().get_user(user_id)
        if self.other_document_id:
            document_id, self.other_document_id = self.other_document_id, None
            async with self.session_factory() as other:
                await review_document(
                    other, document_id=document_id, outcome=ReviewOutcome.APPROVE, reviewer_id="adm_other"
                )
        return user


async def test_parallel_approvals_promote_to_verified(db_session, session_factory):
    owner = await make_user(db_session, name="Obi")
    national_id = await make_document(db_session, owner, document_type="NATIONAL_ID")
    passport = await make_document(db_session, owner, document_type="PASSPORT")
    await db_session.commit()
    owner_id, national_id_id, passport_id = owner.id, national_id.id, passport.id

    result = await review_document(
        db_session,
        document_id=national_id_id,
        outcome=ReviewOutcome.APPROVE,
        reviewer_id="adm_1",
        store=ReviewingUserStore(db_session, session_factory, passport_id),
    )
    assert result.previous_level == VerificationLevel.PARTIAL
    assert result.verification_level == VerificationLevel.VERIFIED

    async with session_factory() as fresh:
        stored = await fresh.get(User, owner_id)
        assert stored.verification_level == VerificationLevel.VERIFIED
        assert stored.is_verified is True
        assert stored.kyc_status == KycStatus.APPROVED


class ContendedUserStore(EntityStore):
    async def conditional_update_user(self, user_id, expected_level, expected_kyc, patch):
        return False


async def test_review_rolls_back_when_tier_keeps_changing(db_session, session_factory):
    owner = await make_user(db_session, name="Dayo")
    doc = await make_document(db_session, owner)
    await db_session.commit()
    doc_id = doc.id

    with pytest.raises(ConcurrentModificationError):
        await review_document(
            db_session,
            document_id=doc_id,
            outcome=ReviewOutcome.APPROVE,
            reviewer_id="adm_1",
            store=ContendedUserStore(db_session),
        )

    async with session_factory() as fresh:
        stored = await fresh.get(VerificationDocument, doc_id)
        assert stored.verification_status == DocumentStatus.PENDING


def test_kyc_status_derivation():
    def doc(status, superseded_by=None):
        return VerificationDocument(
            user_id="usr_1",
            document_type="PASSPORT",
            document_url="https://x",
            verification_status=status,
            superseded_by=superseded_by,
        )

    assert derive_kyc_status(VerificationLevel.NONE, []) == KycStatus.PENDING
    assert derive_kyc_status(VerificationLevel.NONE, [doc(DocumentStatus.REJECTED)]) == KycStatus.REJECTED
    assert derive_kyc_status(VerificationLevel.NONE, [doc(DocumentStatus.REJECTED, "doc_2")]) == KycStatus.PENDING
    assert derive_kyc_status(VerificationLevel.PARTIAL, [doc(DocumentStatus.APPROVED)]) == KycStatus.IN_REVIEW
    assert derive_kyc_status(VerificationLevel.VERIFIED, [doc(DocumentStatus.PENDING)]) == KycStatus.IN_REVIEW
    assert derive_kyc_status(VerificationLevel.FULL_VERIFIED, [doc(DocumentStatus.PENDING)]) == KycStatus.COMPLETED
