"""
Canonical Achievement Schema

An achievement is a user-submitted work that must be reviewed
before it is published. Ownership never changes after creation.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class AuditState(str, Enum):
    """
    Review lifecycle.

    Only PENDING may move forward. APPROVED and REJECTED return to
    PENDING solely through re-submission (an edit by the owner).
    """
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Achievement(BaseModel):
    """
    The governed resource.

    Never hard-deleted: removal sets is_active=False.
    """
    id: UUID = Field(
        ...,
        description="Unique identifier"
    )

    owner_id: UUID = Field(
        ...,
        description="Creator; immutable"
    )

    name: str = Field(
        ...,
        min_length=1,
        description="Achievement title"
    )

    category: str = Field(
        default="",
        description="Free-form category label"
    )

    content: str = Field(
        default="",
        description="Body / abstract of the achievement"
    )

    audit_state: AuditState = Field(
        default=AuditState.PENDING,
        description="Current review state"
    )

    is_active: bool = Field(
        default=True,
        description="False once soft-deleted"
    )

    created_at: datetime = Field(
        ...,
        description="When the achievement was first submitted"
    )

    submitted_at: datetime = Field(
        ...,
        description="When the current review round began"
    )

    updated_at: Optional[datetime] = Field(
        default=None,
        description="Last content edit"
    )

    audited_at: Optional[datetime] = Field(
        default=None,
        description="When the last review decision was made"
    )

    auditor_id: Optional[UUID] = Field(
        default=None,
        description="Who made the last review decision"
    )

    @property
    def is_pending(self) -> bool:
        return self.audit_state == AuditState.PENDING


class AchievementDraft(BaseModel):
    """Input for a new submission."""
    name: str = Field(..., min_length=1)
    category: str = Field(default="")
    content: str = Field(default="")


class AchievementChanges(BaseModel):
    """
    Partial edit of an achievement's mutable fields.

    At least one field must be supplied.
    """
    name: Optional[str] = Field(default=None, min_length=1)
    category: Optional[str] = None
    content: Optional[str] = None

    @model_validator(mode="after")
    def _require_some_change(self) -> "AchievementChanges":
        if self.name is None and self.category is None and self.content is None:
            raise ValueError("At least one of name, category or content must be set")
        return self

    def as_update(self) -> dict:
        return self.model_dump(exclude_none=True)
