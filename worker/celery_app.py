from celery import Celery
from app.core.config import settings

celery = Celery(
    "moderation-worker",
    broker=settings.rabbitmq_url,
    include=["worker.tasks"],
)

celery.conf.update(
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_default_queue="default",
    task_ignore_result=True,
    task_routes={
        "notifications.deliver": {"queue": settings.notification_queue},
    },
)
