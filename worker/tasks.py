import asyncio
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from worker.celery_app import celery
from app.core.config import settings
import app.models  # noqa: F401  # ensures Models are registered
from app.models.notification import Notification
from app.models.outbox import OutboxEvent

log = logging.getLogger(__name__)


async def _deliver_notification(outbox_id: str, lease_id: str) -> bool:
    engine = create_async_engine(settings.database_url, pool_pre_ping=True)
    Session = async_sessionmaker(engine, expire_on_commit=False)

    try:
        async with Session() as db:
            ev = (await db.execute(select(OutboxEvent).where(OutboxEvent.id == outbox_id))).scalar_one_or_none()
            if not ev or ev.lease_id != lease_id:
                # requeued and claimed by another dispatcher
                log.info("deliver: stale or missing event %s", outbox_id)
                return False

            notification = await db.get(Notification, ev.aggregate_id)
            if notification is None:
                log.warning("deliver: notification %s is gone", ev.aggregate_id)
                return False

            # push/e-mail providers subscribe to this log line until a channel is wired in
            log.info(
                "deliver: user=%s type=%s notification=%s",
                notification.user_id, notification.type, notification.id,
            )
            return True
    finally:
        await engine.dispose()


@celery.task(name="notifications.deliver", bind=True, max_retries=5)
def deliver_notification(self, outbox_id: str, lease_id: str) -> bool:
    return asyncio.run(_deliver_notification(outbox_id, lease_id))
