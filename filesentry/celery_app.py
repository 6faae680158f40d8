"""Celery application for FileSentry background scans.

The broker and result backend both use Redis (``settings.redis_url``).  Scan
tasks are routed to the ``filesentry`` queue.

Usage (importing the app in a task module)::

    from filesentry.celery_app import celery_app

    @celery_app.task
    def my_task():
        ...

Starting a worker::

    celery -A filesentry.celery_app worker --loglevel=info -Q filesentry
"""

from celery import Celery

from filesentry.config import settings

#: Shared Celery application instance.  Import this in task modules.
celery_app = Celery(
    "filesentry",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["filesentry.workers.scan_worker"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_default_queue="filesentry",
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    # One scan per prefetch slot; scans are long and uneven.
    worker_prefetch_multiplier=1,
    result_expires=settings.status_ttl_seconds,
)
