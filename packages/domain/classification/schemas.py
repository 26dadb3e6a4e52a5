"""
Data schemas for the classification module
"""
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_CATEGORY = "Uncategorized"


class FodmapStatus(str, Enum):
    """Classification status of a product"""
    PENDING = "PENDING"       # Submitted, not yet attempted
    LOW = "LOW"
    MODERATE = "MODERATE"
    HIGH = "HIGH"
    NA = "NA"                 # Not a food item
    UNKNOWN = "UNKNOWN"       # Attempted, could not be determined


# Statuses a classifier may produce (PENDING is a record state, never a result)
RESULT_STATUSES = frozenset(s for s in FodmapStatus if s is not FodmapStatus.PENDING)

# Statuses worth memoizing; UNKNOWN may be transient
CACHEABLE_STATUSES = frozenset({
    FodmapStatus.LOW,
    FodmapStatus.MODERATE,
    FodmapStatus.HIGH,
    FodmapStatus.NA,
})


class ClassificationResult(BaseModel):
    """
    Output of every classifier strategy.

    Always fully populated before it is applied to a product record.
    """
    model_config = ConfigDict(frozen=True)

    status: FodmapStatus
    is_food: Optional[bool] = None
    explanation: Optional[str] = None

    @field_validator("status")
    @classmethod
    def status_is_a_result(cls, v: FodmapStatus) -> FodmapStatus:
        if v is FodmapStatus.PENDING:
            raise ValueError("PENDING is not a classification result")
        return v

    @classmethod
    def unknown(cls, explanation: str) -> "ClassificationResult":
        """UNKNOWN result with an explanation of why"""
        return cls(status=FodmapStatus.UNKNOWN, is_food=None, explanation=explanation)

    @property
    def is_cacheable(self) -> bool:
        return self.status in CACHEABLE_STATUSES


class ClassifiableProduct(BaseModel):
    """Minimal product shape the classifiers work on"""
    identity_hash: str
    name: str
    category: str = DEFAULT_CATEGORY


class ProductRecord(ClassifiableProduct):
    """Persisted product row"""
    model_config = ConfigDict(from_attributes=True)

    is_food: Optional[bool] = None
    status: FodmapStatus = FodmapStatus.PENDING
    explanation: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None


class ProductSubmission(BaseModel):
    """One product in a submission request"""
    name: str = Field(..., min_length=1, max_length=255)
    category: Optional[str] = Field(None, max_length=255)
    identity_hash: Optional[str] = Field(
        None, description="Client-computed identity hash; must match the server's"
    )

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name must not be blank")
        return v


class SubmissionReport(BaseModel):
    submitted: int
    skipped: int
    identities: List[str]
    message: str


class ProductStatusEntry(BaseModel):
    identity_hash: str
    name: str
    category: str
    status: FodmapStatus
    is_food: Optional[bool] = None
    explanation: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None


class StatusReport(BaseModel):
    """Status query answer: every requested identity is in results or missing_ids"""
    results: List[ProductStatusEntry]
    found: int
    missing: int
    missing_ids: List[str]


class PreviewReport(BaseModel):
    results: Dict[str, ClassificationResult]
