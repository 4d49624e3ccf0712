"""Celery application: RabbitMQ broker, Redis result backend.

Crawls run inside the API process; Celery carries the follow-up work
(enrichment) and the periodic maintenance jobs.
"""
from __future__ import annotations

from celery import Celery
from celery.signals import worker_process_init
from kombu import Exchange, Queue

from serendip.config import settings
from serendip.logging_config import setup_logging

celery = Celery(
    "serendip",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.REDIS_URL,
    include=[
        "serendip.workers.enrich",
        "serendip.workers.reputation",
        "serendip.workers.topic_repair",
    ],
)

# ── Serialisation ──
celery.conf.accept_content = ["json"]
celery.conf.task_serializer = "json"
celery.conf.result_serializer = "json"
celery.conf.timezone = "UTC"
celery.conf.enable_utc = True

# ── Reliability ──
celery.conf.task_acks_late = True
celery.conf.worker_prefetch_multiplier = 1
celery.conf.task_reject_on_worker_lost = True

# ── Exchanges & Queues ──
default_exchange = Exchange("serendip", type="direct")

celery.conf.task_queues = (
    Queue("enrich", default_exchange, routing_key="enrich"),
    Queue("maintenance", default_exchange, routing_key="maintenance"),
)

celery.conf.task_default_queue = "maintenance"
celery.conf.task_default_exchange = "serendip"
celery.conf.task_default_routing_key = "maintenance"

# ── Task routes ──
celery.conf.task_routes = {
    "serendip.workers.enrich.run_enrichment": {"queue": "enrich"},
    "serendip.workers.reputation.run_reputation_update_all": {"queue": "maintenance"},
    "serendip.workers.topic_repair.run_topic_repair": {"queue": "maintenance"},
}

# ── Beat Schedule ──
celery.conf.beat_schedule = {
    "reputation-update-daily": {
        "task": "serendip.workers.reputation.run_reputation_update_all",
        "schedule": 86400.0,
    },
    "topic-repair-hourly": {
        "task": "serendip.workers.topic_repair.run_topic_repair",
        "schedule": 3600.0,
    },
}


@worker_process_init.connect
def _configure_worker_logging(**_kwargs) -> None:
    setup_logging()

