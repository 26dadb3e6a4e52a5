"""
Celery application configuration for background tasks
"""
from celery import Celery
from celery.signals import worker_process_init, worker_process_shutdown
import structlog

from packages.common.config import get_settings
from packages.common.logging_config import configure_logging

logger = structlog.get_logger()
settings = get_settings()

configure_logging(settings.log_level, settings.log_format)

# Create Celery app
app = Celery(
    "fodmap_classifier_worker",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

# Celery configuration
app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task execution settings (a run never outlives its overlap lock)
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=settings.job_lock_ttl_seconds + 30,
    task_soft_time_limit=settings.job_lock_ttl_seconds,

    # Result backend settings
    result_expires=3600,  # Results expire after 1 hour

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=50,

    # Task routing
    task_routes={
        "services.worker.tasks.classify_products.*": {"queue": "classification"},
    },

    # Beat schedule (periodic tasks)
    beat_schedule={
        "classify-pending-products": {
            "task": "services.worker.tasks.classify_products.run_pending_classification_pass",
            "schedule": settings.schedule_interval_seconds,
            "options": {
                "queue": "classification",
                # A trigger nobody picked up before the next one is redundant
                "expires": settings.schedule_interval_seconds,
            },
        },
    },
)

# Import tasks explicitly to register them
from services.worker.tasks import classify_products  # noqa: E402,F401


@worker_process_init.connect
def init_worker(**kwargs):
    """Initialize worker process"""
    logger.info("celery_worker_starting",
                concurrency=kwargs.get("concurrency", "unknown"),
                classifier=settings.classifier)


@worker_process_shutdown.connect
def shutdown_worker(**kwargs):
    """Clean up worker process"""
    logger.info("celery_worker_shutting_down")


if __name__ == "__main__":
    app.start()
