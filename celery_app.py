# Worker entrypoint: celery -A celery_app worker --loglevel=info
from paycollect.core.celery_app import celery_app

__all__ = ["celery_app"]
