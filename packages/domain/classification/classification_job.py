"""
Classification Job - drives PENDING products through the classifier

One pass:
    Idle → Fetching → Classifying → Persisting → Rescheduling | Done
                          ↓
                        Failed (unfinished records marked UNKNOWN, error re-raised)

1. Fetching: up to batch_size PENDING records, oldest first; none → Done
2. Classifying: one classify_batch call on the records still PENDING
3. Persisting: each record written in its own transaction
   (status, is_food, explanation, processed_at together)
4. Rescheduling: remaining PENDING count > 0 → continuation signal

A pass never enqueues another pass. It returns a PassOutcome and the caller
(PendingClassificationRunner, inside the overlap lock) decides whether to
continue.

Retries are attempt-level and owned by the task queue: 3 attempts with 10s,
30s and 60s backoff.
"""
import asyncio
import time
import uuid
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from packages.common.metrics import BATCH_FAILURES, PRODUCTS_CLASSIFIED
from packages.common.product_repository import ProductRepository, product_repository, utcnow
from packages.domain.classification.base import FodmapClassifier
from packages.domain.classification.exceptions import ClassificationTransportError
from packages.domain.classification.pending_queue import PendingWorkQueue
from packages.domain.classification.schemas import ClassificationResult, ProductRecord

logger = structlog.get_logger()

DEFAULT_BATCH_SIZE = 50
MAX_ATTEMPTS = 3
RETRY_BACKOFF_SECONDS = (10, 30, 60)

MISSING_RESULT_EXPLANATION = "Classifier returned no result for this product"

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


def retry_countdown(retries: int) -> int:
    """Delay before the next attempt, given how many retries already happened"""
    index = min(retries, len(RETRY_BACKOFF_SECONDS) - 1)
    return RETRY_BACKOFF_SECONDS[index]


class JobState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    CLASSIFYING = "classifying"
    PERSISTING = "persisting"
    RESCHEDULING = "rescheduling"
    DONE = "done"
    FAILED = "failed"


@dataclass
class PassOutcome:
    """Result of one pass; has_more is the continuation signal"""
    run_id: str
    state: JobState
    fetched: int = 0
    persisted: int = 0
    remaining: int = 0
    status_counts: Dict[str, int] = field(default_factory=dict)

    @property
    def has_more(self) -> bool:
        return self.state is JobState.RESCHEDULING


class ClassificationJob:
    """
    One bounded classification pass over the PENDING queue.

    Usage:
        job = ClassificationJob(classifier, sessionmanager.session, batch_size=50)
        outcome = await job.run_pass()
        if outcome.has_more: ...
    """

    def __init__(
        self,
        classifier: FodmapClassifier,
        session_factory: SessionFactory,
        batch_size: int = DEFAULT_BATCH_SIZE,
        queue: Optional[PendingWorkQueue] = None,
        repository: ProductRepository = product_repository,
    ):
        self.classifier = classifier
        self.session_factory = session_factory
        self.batch_size = batch_size
        self.repository = repository
        self.queue = queue or PendingWorkQueue(repository)
        self.state = JobState.IDLE

    def _transition(self, state: JobState, **context) -> None:
        logger.debug("classification_job_state", from_state=self.state.value, to_state=state.value, **context)
        self.state = state

    async def run_pass(self) -> PassOutcome:
        run_id = uuid.uuid4().hex[:12]
        with structlog.contextvars.bound_contextvars(run_id=run_id):
            return await self._run_pass(run_id)

    async def _run_pass(self, run_id: str) -> PassOutcome:
        self._transition(JobState.FETCHING)

        async with self.session_factory() as db:
            records = await self.queue.next_batch(self.batch_size, db)

        if not records:
            self._transition(JobState.DONE)
            logger.info("no_pending_products")
            return PassOutcome(run_id=run_id, state=JobState.DONE)

        # A concurrent run may have finished some of these since the fetch
        async with self.session_factory() as db:
            pending = await self.queue.still_pending([r.identity_hash for r in records], db)
        records = [r for r in records if r.identity_hash in pending]

        logger.info("classification_pass_started",
                    classifier=self.classifier.name,
                    product_count=len(records))

        if records:
            self._transition(JobState.CLASSIFYING, product_count=len(records))
            try:
                results = await self.classifier.classify_batch(records)
            except Exception as e:
                partial = e.partial_results if isinstance(e, ClassificationTransportError) else {}
                if partial:
                    self._transition(JobState.PERSISTING, partial=len(partial))
                    await self._persist([r for r in records if r.identity_hash in partial], partial)
                await self._fail_batch([r for r in records if r.identity_hash not in partial], e)
                raise

            self._transition(JobState.PERSISTING)
            status_counts = await self._persist(records, results)
        else:
            status_counts = {}

        async with self.session_factory() as db:
            remaining = await self.queue.remaining(db)

        state = JobState.RESCHEDULING if remaining > 0 else JobState.DONE
        self._transition(state, remaining=remaining)

        outcome = PassOutcome(
            run_id=run_id,
            state=state,
            fetched=len(records),
            persisted=sum(status_counts.values()),
            remaining=remaining,
            status_counts=status_counts,
        )

        logger.info("classification_pass_complete",
                    fetched=outcome.fetched,
                    persisted=outcome.persisted,
                    remaining=remaining,
                    status_counts=status_counts)

        return outcome

    async def _persist(
        self,
        records: List[ProductRecord],
        results: Dict[str, ClassificationResult],
    ) -> Dict[str, int]:
        status_counts: Dict[str, int] = {}

        for record in records:
            result = results.get(record.identity_hash)
            if result is None:
                logger.warning("classification_result_missing",
                               identity_hash=record.identity_hash,
                               product_name=record.name)
                result = ClassificationResult.unknown(MISSING_RESULT_EXPLANATION)

            async with self.session_factory() as db:
                updated = await self.repository.update_classification(
                    record.identity_hash, result, db, processed_at=utcnow()
                )

            if updated:
                status_counts[result.status.value] = status_counts.get(result.status.value, 0) + 1
                PRODUCTS_CLASSIFIED.labels(status=result.status.value).inc()
                logger.debug("product_classified",
                             identity_hash=record.identity_hash,
                             product_name=record.name,
                             status=result.status.value)

        return status_counts

    async def _fail_batch(self, records: List[ProductRecord], error: Exception) -> None:
        """Never leave an attempted record PENDING: the whole batch becomes UNKNOWN"""
        self._transition(JobState.FAILED, error=str(error))
        BATCH_FAILURES.inc()

        async with self.session_factory() as db:
            marked = await self.repository.mark_unknown(
                [r.identity_hash for r in records],
                f"Classification failed: {error}",
                db,
                processed_at=utcnow(),
            )

        PRODUCTS_CLASSIFIED.labels(status="UNKNOWN").inc(marked)
        logger.error("classification_batch_failed",
                     product_count=len(records),
                     marked_unknown=marked,
                     error=str(error),
                     error_type=type(error).__name__)


@dataclass
class RunSummary:
    passes: int = 0
    persisted: int = 0
    remaining: int = 0
    stopped_reason: str = "drained"


class PendingClassificationRunner:
    """
    Runs passes back to back while work remains.

    Sleeps continuation_delay between passes to smooth the external call rate
    and stops before the next pass would outlive the overlap-lock deadline.
    """

    def __init__(
        self,
        job: ClassificationJob,
        continuation_delay_seconds: float = 2.0,
        deadline_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.job = job
        self.continuation_delay_seconds = continuation_delay_seconds
        self.deadline_seconds = deadline_seconds
        self._sleep = sleep
        self._clock = clock

    async def run(self) -> RunSummary:
        summary = RunSummary()
        started = self._clock()

        while True:
            outcome = await self.job.run_pass()
            summary.passes += 1
            summary.persisted += outcome.persisted
            summary.remaining = outcome.remaining

            if not outcome.has_more:
                summary.stopped_reason = "drained"
                break

            if self.deadline_seconds is not None:
                elapsed = self._clock() - started
                average_pass = elapsed / summary.passes
                if elapsed + self.continuation_delay_seconds + average_pass > self.deadline_seconds:
                    summary.stopped_reason = "deadline"
                    logger.info("classification_run_deadline_reached",
                                elapsed_seconds=round(elapsed, 2),
                                remaining=outcome.remaining)
                    break

            await self._sleep(self.continuation_delay_seconds)

        logger.info("classification_run_complete",
                    passes=summary.passes,
                    persisted=summary.persisted,
                    remaining=summary.remaining,
                    stopped_reason=summary.stopped_reason)

        return summary
