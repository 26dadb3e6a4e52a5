"""Task queue wrappers - API sends task names, never imports worker code."""
from typing import Optional

from celery import Celery
from packages.common.config import get_settings

settings = get_settings()

celery_app = Celery('fodmap_classifier')
celery_app.conf.broker_url = settings.celery_broker_url
celery_app.conf.result_backend = settings.celery_result_backend


def queue_classification_pass(override: Optional[str] = None) -> str:
    """Queue an immediate classification pass (no-op on the worker if one is running)."""
    task = celery_app.send_task(
        'services.worker.tasks.classify_products.run_pending_classification_pass',
        kwargs={'override': override},
        queue='classification',
    )
    return task.id
