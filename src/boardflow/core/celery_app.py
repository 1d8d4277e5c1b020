"""Celery application configuration.

Provides task queue infrastructure with Redis broker for:
- Approval outbox relay (high priority)
- Background operations
"""

from celery import Celery
from kombu import Exchange, Queue

from boardflow.core.config import get_settings

settings = get_settings()

# Create Celery application
celery_app = Celery(
    "boardflow",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "boardflow.tasks.approval_tasks",
    ],
)

# Define exchanges
default_exchange = Exchange("default", type="direct")
priority_exchange = Exchange("priority", type="direct")

# Priority: high (5) > normal (0)
celery_app.conf.task_queues = (
    # High: approval event delivery
    Queue(
        "high",
        exchange=priority_exchange,
        routing_key="high",
        queue_arguments={"x-max-priority": 5},
    ),
    # Normal: regular background tasks
    Queue(
        "normal",
        exchange=default_exchange,
        routing_key="normal",
        queue_arguments={"x-max-priority": 0},
    ),
)

# Default queue
celery_app.conf.task_default_queue = "normal"
celery_app.conf.task_default_exchange = "default"
celery_app.conf.task_default_routing_key = "normal"

# Task routing
celery_app.conf.task_routes = {
    "boardflow.tasks.approval_tasks.*": {"queue": "high"},
}

# Celery configuration
celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    # Task execution
    task_acks_late=True,  # Acknowledge after task completes
    task_reject_on_worker_lost=True,  # Requeue if worker dies
    task_track_started=True,

    # Result backend
    result_expires=3600,

    # Worker configuration
    worker_prefetch_multiplier=4,
    worker_max_tasks_per_child=1000,

    # Retry configuration
    task_default_retry_delay=60,
    task_max_retries=3,

    # Logging
    worker_hijack_root_logger=False,  # configure_logging owns the root logger

    # Broker settings
    broker_connection_retry_on_startup=True,
    broker_connection_max_retries=10,
    broker_pool_limit=10,

    # Beat scheduler
    beat_scheduler="celery.beat:PersistentScheduler",
    beat_schedule_filename=".celery-beat-schedule",
)

# Celery Beat schedule (periodic tasks)
celery_app.conf.beat_schedule = {
    # Re-publish approval events whose delivery was interrupted
    "relay-approval-events": {
        "task": "boardflow.tasks.approval_tasks.relay_approval_events",
        "schedule": settings.approval_event_relay_interval_seconds,
        "options": {"queue": "high"},
    },
}
