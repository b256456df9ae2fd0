import logging
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import func

from app.core.config import settings
from app.models.outbox import OutboxEvent
from worker.celery_app import celery

log = logging.getLogger(__name__)

DELIVER_TASK = "notifications.deliver"


async def requeue_expired_leases(db: AsyncSession) -> int:
    result = await db.execute(
        update(OutboxEvent)
        .where(
            OutboxEvent.status == "processing",
            OutboxEvent.lease_expires_at.is_not(None),
            OutboxEvent.lease_expires_at < datetime.now(timezone.utc),
        )
        .values(
            status="pending",
            lease_id=None,
            lease_expires_at=None,
            processing_started_at=None,
            last_error="requeued: lease expired",
        )
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)


async def claim_outbox_event_ids(db: AsyncSession, batch_size: int = 100, lease_minutes: int = 10) -> tuple[str, list[str]]:
    lease_id = uuid.uuid4().hex
    expires_at = datetime.now(timezone.utc) + timedelta(minutes=lease_minutes)

    # skip_locked lets several dispatchers run side by side
    stmt = (
        select(OutboxEvent.id)
        .where(OutboxEvent.status == "pending")
        .order_by(OutboxEvent.created_at.asc(), OutboxEvent.id.asc())
        .with_for_update(skip_locked=True)
        .limit(batch_size)
    )
    ids = list((await db.execute(stmt)).scalars().all())
    if not ids:
        return lease_id, []

    await db.execute(
        update(OutboxEvent)
        .where(OutboxEvent.id.in_(ids))
        .values(
            status="processing",
            processing_started_at=func.now(),
            attempts=OutboxEvent.attempts + 1,
            last_error=None,
            lease_id=lease_id,
            lease_expires_at=expires_at,
        )
        .execution_options(synchronize_session=False)
    )
    await db.flush()
    return lease_id, ids


async def dispatch_outbox(db: AsyncSession, batch_size: int = 100, lease_minutes: int = 10) -> int:
    """Hand pending notification events to Celery. Returns how many were enqueued."""
    requeued = await requeue_expired_leases(db)
    if requeued:
        log.info("outbox: requeued %d expired leases", requeued)

    lease_id, ids = await claim_outbox_event_ids(db, batch_size=batch_size, lease_minutes=lease_minutes)

    # Commit before enqueue so workers see the claimed rows
    await db.commit()

    if not ids:
        return 0

    failed: list[tuple[str, str]] = []
    sent: list[str] = []

    for outbox_id in ids:
        try:
            celery.send_task(DELIVER_TASK, args=[outbox_id, lease_id], queue=settings.notification_queue)
            sent.append(outbox_id)
        except Exception as e:
            log.exception("outbox: enqueue failed for %s", outbox_id)
            failed.append((outbox_id, f"{type(e).__name__}: {e}"))

    if sent:
        await db.execute(
            update(OutboxEvent)
            .where(OutboxEvent.id.in_(sent), OutboxEvent.lease_id == lease_id)
            .values(status="dispatched", sent_at=func.now(), lease_expires_at=None)
            .execution_options(synchronize_session=False)
        )

    # return failed items to pending
    for outbox_id, msg in failed:
        await db.execute(
            update(OutboxEvent)
            .where(OutboxEvent.id == outbox_id, OutboxEvent.lease_id == lease_id)
            .values(
                status="pending",
                lease_id=None,
                lease_expires_at=None,
                processing_started_at=None,
                last_error=f"enqueue failed: {msg}",
            )
            .execution_options(synchronize_session=False)
        )
    await db.commit()

    return len(sent)
