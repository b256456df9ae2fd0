import pytest

from app.core.errors import ValidationError
from app.models.enums import ModerationStatus, Priority
from app.services.moderation_queue import (
    OwnerVerificationFilter,
    PageRequest,
    PrioritySource,
    QueryFilter,
    list_moderation_queue,
)
from fixtures_seed import make_listing, make_user


async def test_queue_orders_by_priority_then_submission(db_session, seed):
    page = await list_moderation_queue(db_session)

    assert [i.id for i in page.items] == [seed["strong"], seed["pending"], seed["rejected"]]
    assert page.total == 3
    assert page.items[0].priority == Priority.HIGH
    assert page.items[0].priority_source == PrioritySource.COMPUTED
    assert page.items[0].owner.is_verified is True
    assert seed["approved"] not in {i.id for i in page.items}


async def test_status_filter(db_session, seed):
    page = await list_moderation_queue(db_session, filter=QueryFilter(status=ModerationStatus.REJECTED))
    assert [i.id for i in page.items] == [seed["rejected"]]
    assert page.items[0].rejection_reason == "blurry photos"


async def test_approved_status_is_not_a_queue(db_session, seed):
    with pytest.raises(ValidationError):
        await list_moderation_queue(db_session, filter=QueryFilter(status=ModerationStatus.APPROVED))


async def test_search_matches_title_location_and_owner_name(db_session, seed):
    by_title = await list_moderation_queue(db_session, filter=QueryFilter(search="yaba"))
    by_location = await list_moderation_queue(db_session, filter=QueryFilter(search="IKOYI"))
    by_owner = await list_moderation_queue(db_session, filter=QueryFilter(search="newcomer"))

    assert [i.id for i in by_title.items] == [seed["pending"]]
    assert [i.id for i in by_location.items] == [seed["strong"]]
    assert {i.id for i in by_owner.items} == {seed["pending"], seed["rejected"]}


async def test_owner_verification_filter(db_session, seed):
    verified = await list_moderation_queue(
        db_session, filter=QueryFilter(owner_verification=OwnerVerificationFilter.VERIFIED_ONLY)
    )
    unverified = await list_moderation_queue(
        db_session, filter=QueryFilter(owner_verification=OwnerVerificationFilter.UNVERIFIED_ONLY)
    )
    assert [i.id for i in verified.items] == [seed["strong"]]
    assert {i.id for i in unverified.items} == {seed["pending"], seed["rejected"]}


async def test_explicit_priority_overrides_and_filters(db_session, seed):
    carol = await make_user(db_session, name="Carol")
    flagged = await make_listing(db_session, carol, title="Shop in Ikeja", explicit_priority=Priority.HIGH, minutes=20)
    await db_session.commit()

    page = await list_moderation_queue(db_session)
    # same priority: earlier submission first
    assert [i.id for i in page.items][:2] == [seed["strong"], flagged.id]
    assert page.items[1].priority_source == PrioritySource.EXPLICIT

    only_explicit = await list_moderation_queue(db_session, filter=QueryFilter(explicit_priority=Priority.HIGH))
    assert [i.id for i in only_explicit.items] == [flagged.id]

    effective_high = await list_moderation_queue(db_session, filter=QueryFilter(priority=Priority.HIGH))
    assert [i.id for i in effective_high.items] == [seed["strong"], flagged.id]


async def test_paging_is_stable(db_session, seed):
    first = await list_moderation_queue(db_session, page=PageRequest(page=1, page_size=2))
    second = await list_moderation_queue(db_session, page=PageRequest(page=2, page_size=2))

    assert first.total == second.total == 3
    assert first.total_pages == 2
    assert [i.id for i in first.items] + [i.id for i in second.items] == [
        seed["strong"], seed["pending"], seed["rejected"],
    ]


@pytest.mark.parametrize("page", [PageRequest(page=0), PageRequest(page_size=0), PageRequest(page_size=101)])
async def test_page_bounds(db_session, page):
    with pytest.raises(ValidationError):
        await list_moderation_queue(db_session, page=page)


async def test_priority_none_is_not_an_effective_priority(db_session):
    with pytest.raises(ValidationError):
        await list_moderation_queue(db_session, filter=QueryFilter(priority=Priority.NONE))


async def test_search_wildcards_match_literally(db_session, seed):
    dapo = await make_user(db_session, name="Dapo")
    serviced = await make_listing(db_session, dapo, title="Penthouse 100% serviced", minutes=30)
    block_b = await make_listing(db_session, dapo, title="Flat_B in Ajah", minutes=40)
    await db_session.commit()

    percent = await list_moderation_queue(db_session, filter=QueryFilter(search="%"))
    underscore = await list_moderation_queue(db_session, filter=QueryFilter(search="_"))
    backslash = await list_moderation_queue(db_session, filter=QueryFilter(search="\\"))

    assert [i.id for i in percent.items] == [serviced.id]
    assert [i.id for i in underscore.items] == [block_b.id]
    assert backslash.items == []
