# core/celery_app.py
from celery import Celery

from paycollect.core.config import settings

celery_app = Celery(
    "paycollect",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "paycollect.tasks.generate_links",
        "paycollect.tasks.batch_sms",
        "paycollect.tasks.fetch_statuses",
        "paycollect.tasks.client_sms",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    broker_connection_retry_on_startup=True,
    broker_transport_options={
        # Must outlast the longest job or Redis redelivers it mid-run
        "visibility_timeout": settings.GENERATE_LINKS_TIME_LIMIT + 600,
    },
    # Each job walks its items sequentially; one job per worker slot
    worker_prefetch_multiplier=1,
)
