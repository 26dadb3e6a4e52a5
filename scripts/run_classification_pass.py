#!/usr/bin/env python3
"""
Run a classification pass immediately, without waiting for the scheduler.

Usage:
    python scripts/run_classification_pass.py [--rules | --ai | --cached-ai] [--batch-size N] [--drain]

Example:
    python scripts/run_classification_pass.py --rules --batch-size 20
    python scripts/run_classification_pass.py --drain
"""
import sys
import os
import argparse
import asyncio

# Add parent directory to path so we can import modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from packages.common.classification_cache import RedisCacheStore
from packages.common.config import get_settings
from packages.common.database import DatabaseSessionManager
from packages.common.logging_config import configure_logging
from packages.common.overlap_lock import RedisOverlapLock
from packages.common.redis_client import create_redis_client
from packages.domain.classification.classification_job import ClassificationJob
from packages.domain.classification.classifier_router import ClassifierRouter
from packages.domain.classification.rate_limiter import RateLimitPolicy, RedisRateWindow
from services.worker.tasks.classify_products import run_pending_classification


def parse_args():
    parser = argparse.ArgumentParser(description="Classify PENDING products now")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--rules", dest="override", action="store_const", const="rules",
                       help="Use the rule-based classifier")
    group.add_argument("--ai", dest="override", action="store_const", const="ai",
                       help="Use the AI classifier without cache")
    group.add_argument("--cached-ai", dest="override", action="store_const", const="cached_ai",
                       help="Use the cached AI classifier")
    parser.add_argument("--batch-size", type=int, default=None,
                        help="Products per pass (max 50)")
    parser.add_argument("--drain", action="store_true",
                        help="Keep running passes (under the overlap lock) until nothing is PENDING")
    return parser.parse_args()


async def main():
    args = parse_args()

    settings = get_settings()
    configure_logging(settings.log_level, "console")

    if args.batch_size is not None:
        settings = settings.model_copy(update={"job_batch_size": max(1, min(args.batch_size, 50))})

    db = DatabaseSessionManager()
    await db.init(settings.database_url)
    redis = create_redis_client(settings.redis_url)

    try:
        router = ClassifierRouter(settings, RedisRateWindow(redis), RedisCacheStore(redis))

        if args.drain:
            result = await run_pending_classification(
                settings, db.session, router, RedisOverlapLock(redis), override=args.override
            )
            print("\nResult:")
            for key, value in result.items():
                print(f"  {key}: {value}")
            return

        classifier = router.select(args.override, rate_limit_policy=RateLimitPolicy.WAIT)
        print(f"Classifying up to {settings.job_batch_size} products with '{classifier.name}'...")

        job = ClassificationJob(classifier, db.session, batch_size=settings.job_batch_size)
        outcome = await job.run_pass()

        print("\nResult:")
        print(f"  Fetched: {outcome.fetched}")
        print(f"  Persisted: {outcome.persisted}")
        for status, count in sorted(outcome.status_counts.items()):
            print(f"    {status}: {count}")
        print(f"  Still pending: {outcome.remaining}")
    finally:
        await redis.aclose()
        await db.close()


if __name__ == "__main__":
    asyncio.run(main())
