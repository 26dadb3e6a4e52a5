"""
Scheduled classification task

Flow (every FODMAP_SCHEDULE_INTERVAL_SECONDS via beat, or on submission):
1. Acquire the overlap lock (held → no-op, the running pass covers the work)
2. Select the configured classifier with the WAIT rate-limit policy
3. Run passes until the queue drains or the lock deadline is near
4. Release the lock

A batch transport failure has already been recorded as UNKNOWN by the job;
the task retries up to 3 attempts (10s, 30s backoff) for the batches behind it.

Each invocation runs its own event loop, so the database engine and Redis
client are created and closed per invocation.
"""
import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

from services.worker.celery_app import app
from packages.common.classification_cache import RedisCacheStore
from packages.common.config import Settings, get_settings
from packages.common.database import DatabaseSessionManager
from packages.common.overlap_lock import CLASSIFICATION_LOCK_KEY, OverlapLock, RedisOverlapLock
from packages.common.redis_client import create_redis_client
from packages.domain.classification.classification_job import (
    MAX_ATTEMPTS,
    ClassificationJob,
    PendingClassificationRunner,
    SessionFactory,
    retry_countdown,
)
from packages.domain.classification.classifier_router import ClassifierRouter
from packages.domain.classification.exceptions import ClassificationTransportError
from packages.domain.classification.rate_limiter import RateLimitPolicy, RedisRateWindow

logger = structlog.get_logger()


async def run_pending_classification(
    settings: Settings,
    session_factory: SessionFactory,
    router: ClassifierRouter,
    lock: OverlapLock,
    override: Optional[str] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Dict[str, Any]:
    """
    Run classification passes under the overlap lock.

    Args:
        settings: Application settings
        session_factory: Zero-arg callable returning a session context manager
        router: Classifier router
        lock: Overlap lock implementation
        override: Classifier name overriding configuration
        sleep: Delay function between passes

    Returns:
        Dict with run summary (skipped=True when another run holds the lock)
    """
    token = await lock.acquire(CLASSIFICATION_LOCK_KEY, settings.job_lock_ttl_seconds)
    if token is None:
        logger.info("classification_run_skipped", reason="previous_run_active")
        return {"skipped": True, "reason": "previous_run_active"}

    try:
        classifier = router.select(override, rate_limit_policy=RateLimitPolicy.WAIT)
        job = ClassificationJob(classifier, session_factory, batch_size=settings.job_batch_size)
        runner = PendingClassificationRunner(
            job,
            continuation_delay_seconds=settings.job_continuation_delay_seconds,
            deadline_seconds=settings.job_lock_ttl_seconds,
            sleep=sleep,
        )
        summary = await runner.run()
    finally:
        if not await lock.release(CLASSIFICATION_LOCK_KEY, token):
            logger.warning("classification_lock_expired_before_release",
                           ttl_seconds=settings.job_lock_ttl_seconds)

    return {
        "skipped": False,
        "classifier": classifier.name,
        "passes": summary.passes,
        "persisted": summary.persisted,
        "remaining": summary.remaining,
        "stopped_reason": summary.stopped_reason,
    }


async def _run_with_fresh_resources(override: Optional[str] = None) -> Dict[str, Any]:
    settings = get_settings()

    db = DatabaseSessionManager()
    await db.init(settings.database_url)
    redis = create_redis_client(settings.redis_url)

    try:
        router = ClassifierRouter(settings, RedisRateWindow(redis), RedisCacheStore(redis))
        return await run_pending_classification(
            settings,
            db.session,
            router,
            RedisOverlapLock(redis),
            override=override,
        )
    finally:
        await redis.aclose()
        await db.close()


@app.task(
    bind=True,
    name="services.worker.tasks.classify_products.run_pending_classification_pass",
    max_retries=MAX_ATTEMPTS - 1,
)
def run_pending_classification_pass(self, override: Optional[str] = None) -> Dict[str, Any]:
    """
    Classify PENDING products (scheduled entry point, no required arguments).

    Args:
        override: Optional classifier name ("rules", "ai", "cached_ai")

    Returns:
        Dict with run summary
    """
    logger.info("classification_task_started",
                attempt=self.request.retries + 1,
                override=override)

    try:
        result = asyncio.run(_run_with_fresh_resources(override))
    except ClassificationTransportError as e:
        countdown = retry_countdown(self.request.retries)
        logger.warning("classification_task_retrying",
                       attempt=self.request.retries + 1,
                       max_attempts=MAX_ATTEMPTS,
                       countdown=countdown,
                       error=str(e))
        raise self.retry(exc=e, countdown=countdown)

    logger.info("classification_task_complete", **result)
    return result
