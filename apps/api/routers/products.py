"""
Products API Router
Handles product submission, status lookup, preview classification and
re-classification requests
"""
from typing import List, Literal, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from kombu.exceptions import OperationalError
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from apps.api.tasks import queue_classification_pass
from packages.common.config import AI_BATCH_SIZE_CEILING
from packages.common.database import get_db_session
from packages.domain.classification.classifier_router import ClassifierRouter
from packages.domain.classification.exceptions import ClassificationTransportError
from packages.domain.classification.product_service import IdentityMismatchError, product_service
from packages.domain.classification.schemas import (
    PreviewReport,
    ProductSubmission,
    StatusReport,
    SubmissionReport,
)

logger = structlog.get_logger()
router = APIRouter()


class SubmitRequest(BaseModel):
    products: List[ProductSubmission] = Field(..., min_length=1, max_length=1000)


class StatusRequest(BaseModel):
    identities: List[str] = Field(..., min_length=1, max_length=1000)


class ClassifyRequest(BaseModel):
    products: List[ProductSubmission] = Field(..., min_length=1, max_length=AI_BATCH_SIZE_CEILING)
    classifier: Optional[Literal["rules", "ai", "cached_ai"]] = Field(
        None, description="Override the configured classifier"
    )


class ReclassifyRequest(BaseModel):
    identities: List[str] = Field(..., min_length=1, max_length=1000)


class ReclassifyResponse(BaseModel):
    requested: int
    reset: int


def get_classifier_router(request: Request) -> ClassifierRouter:
    """Classifier router built at startup"""
    return request.app.state.classifier_router


def _queue_pass() -> Optional[str]:
    # The beat schedule picks the work up if the broker is unreachable
    try:
        return queue_classification_pass()
    except OperationalError as e:
        logger.warning("classification_queue_failed", error=str(e))
        return None


@router.post("/submit", response_model=SubmissionReport, status_code=status.HTTP_202_ACCEPTED)
async def submit_products(
    payload: SubmitRequest,
    db: AsyncSession = Depends(get_db_session),
) -> SubmissionReport:
    """
    Submit products for classification

    Creates PENDING placeholders for unknown identities. Products already
    known (any status) are skipped, so resubmission is safe.
    """
    try:
        report = await product_service.submit(payload.products, db)
    except IdentityMismatchError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    await db.commit()

    if report.submitted:
        task_id = _queue_pass()
        logger.info("classification_pass_queued", task_id=task_id, submitted=report.submitted)

    return report


@router.post("/status", response_model=StatusReport)
async def product_status(
    payload: StatusRequest,
    db: AsyncSession = Depends(get_db_session),
) -> StatusReport:
    """Current classification per identity; unknown identities are listed in missing_ids"""
    return await product_service.status(payload.identities, db)


@router.post("/classify", response_model=PreviewReport)
async def classify_products(
    payload: ClassifyRequest,
    classifier_router: ClassifierRouter = Depends(get_classifier_router),
) -> PreviewReport:
    """
    Classify products immediately without storing them

    Uses the REJECT rate-limit policy: when the AI budget is exhausted the
    affected products come back UNKNOWN instead of waiting.
    """
    try:
        return await product_service.classify_preview(
            payload.products, classifier_router, override=payload.classifier
        )
    except IdentityMismatchError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except ClassificationTransportError as e:
        logger.error("classification_preview_failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="AI classification service unavailable",
        )


@router.post("/reclassify", response_model=ReclassifyResponse)
async def reclassify_products(
    payload: ReclassifyRequest,
    db: AsyncSession = Depends(get_db_session),
) -> ReclassifyResponse:
    """Send products back to PENDING so the next pass classifies them again"""
    reset = await product_service.request_reclassification(payload.identities, db)
    await db.commit()

    if reset:
        _queue_pass()

    return ReclassifyResponse(requested=len(payload.identities), reset=reset)
