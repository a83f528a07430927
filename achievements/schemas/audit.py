"""
Canonical Audit Record Schema

One record per review decision. Records are facts: once appended
they are never edited or removed.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


class AuditDecision(str, Enum):
    """Outcome of a single review."""
    APPROVED = "approved"
    REJECTED = "rejected"


class AuditRecord(BaseModel):
    """
    Immutable record of a review decision.

    submitted_at is copied from the achievement at decision time so that
    processing time can be derived from the trail alone.
    """
    model_config = ConfigDict(frozen=True)

    record_id: UUID = Field(
        ...,
        description="Unique identifier"
    )

    achievement_id: UUID = Field(
        ...,
        description="Which achievement was reviewed"
    )

    auditor_id: UUID = Field(
        ...,
        description="Who made the decision"
    )

    decision: AuditDecision = Field(
        ...,
        description="Approved or rejected"
    )

    decided_at: datetime = Field(
        ...,
        description="When the decision was made"
    )

    submitted_at: datetime = Field(
        ...,
        description="When the reviewed round was submitted"
    )

    comment: Optional[str] = Field(
        default=None,
        description="Reviewer comment; the reason for rejections"
    )

    @model_validator(mode="after")
    def _rejection_needs_reason(self) -> "AuditRecord":
        if self.decision == AuditDecision.REJECTED:
            if self.comment is None or not self.comment.strip():
                raise ValueError("Rejected records require a non-empty reason")
        return self

    @property
    def processing_hours(self) -> float:
        return (self.decided_at - self.submitted_at).total_seconds() / 3600.0


class ApprovalStatistics(BaseModel):
    """Derived review figures, computed on demand."""
    pending_count: int = Field(
        default=0,
        description="Active achievements awaiting review"
    )

    today_approved_count: int = Field(
        default=0,
        description="Approvals since the start of the current day"
    )

    avg_processing_hours: float = Field(
        default=0.0,
        description="Mean hours from submission to decision"
    )

    rejection_rate: float = Field(
        default=0.0,
        description="rejected / (approved + rejected)"
    )
