"""
Redis client factory

One asyncio client per process (API) or per task invocation (worker, since
each Celery task runs its own event loop).
"""
from typing import Optional

import redis.asyncio as redis
import structlog

from packages.common.config import get_settings

logger = structlog.get_logger()


def create_redis_client(url: Optional[str] = None) -> redis.Redis:
    """Build an asyncio Redis client that returns str values"""
    url = url or get_settings().redis_url
    logger.debug("redis_client_created", url=url.rsplit("@", 1)[-1])
    return redis.from_url(url, decode_responses=True)
