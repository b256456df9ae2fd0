import asyncio
import logging

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from app.core.config import settings
from app.services.outbox_dispatcher import dispatch_outbox
from worker.celery_app import celery


log = logging.getLogger(__name__)

POLL_SECONDS = 2
BATCH_SIZE = 100


async def _tick(Session) -> int:
    async with Session() as db:
        sent = await dispatch_outbox(db, batch_size=BATCH_SIZE)
    if sent:
        log.info("tick: enqueued %d notifications", sent)
    return sent


async def main():
    celery.connection().ensure_connection(max_retries=3)

    logging.basicConfig(level=settings.log_level)
    engine = create_async_engine(settings.database_url, pool_pre_ping=True)
    Session = async_sessionmaker(engine, expire_on_commit=False)

    log.info("dispatcher: started")
    try:
        while True:
            try:
                await _tick(Session)
            except Exception:
                log.exception("dispatcher: tick crashed")
            await asyncio.sleep(POLL_SECONDS)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
