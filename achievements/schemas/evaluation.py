"""
Evaluation Schema

Ratings and comments left by users on published work. One active
evaluation per (user, achievement); removal is a soft delete.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


MIN_RATING = 1
MAX_RATING = 5


class Evaluation(BaseModel):
    """A user's rating of one achievement, with an optional comment."""
    evaluation_id: UUID = Field(
        ...,
        description="Unique identifier"
    )

    achievement_id: UUID = Field(
        ...,
        description="The evaluated achievement"
    )

    user_id: UUID = Field(
        ...,
        description="Author of the evaluation; only they may edit it"
    )

    rating: int = Field(
        ...,
        ge=MIN_RATING,
        le=MAX_RATING,
        description="Score from 1 to 5"
    )

    comment: str = Field(
        default="",
        description="Free text; empty when the user only rated"
    )

    created_at: datetime = Field(
        ...,
        description="When the evaluation was submitted"
    )

    updated_at: Optional[datetime] = Field(
        default=None,
        description="Last edit by the author"
    )

    is_active: bool = Field(
        default=True,
        description="False once deleted"
    )

    @property
    def evaluated_at(self) -> datetime:
        """Time of the latest submission or edit; listings sort on this."""
        return self.updated_at or self.created_at


class EvaluationDraft(BaseModel):
    """Input for a new evaluation."""
    rating: int = Field(..., ge=MIN_RATING, le=MAX_RATING)
    comment: str = Field(default="")

    @property
    def has_comment(self) -> bool:
        return bool(self.comment.strip())


class EvaluationChanges(BaseModel):
    """Partial edit of an evaluation. At least one field must be supplied."""
    rating: Optional[int] = Field(default=None, ge=MIN_RATING, le=MAX_RATING)
    comment: Optional[str] = None

    @model_validator(mode="after")
    def _require_some_change(self) -> "EvaluationChanges":
        if self.rating is None and self.comment is None:
            raise ValueError("At least one of rating or comment must be set")
        return self

    @property
    def has_comment(self) -> bool:
        return bool(self.comment and self.comment.strip())

    def as_update(self) -> dict:
        return self.model_dump(exclude_none=True)


class EvaluationSummary(BaseModel):
    """Aggregate of the active evaluations on one achievement."""
    achievement_id: UUID
    total_count: int = Field(..., ge=0)
    average_rating: float = Field(
        ...,
        description="Mean rating rounded to 1 decimal; 0.0 without evaluations"
    )
    rating_distribution: dict[int, int] = Field(
        ...,
        description="Count per rating value, every value from 1 to 5 present"
    )

    @classmethod
    def from_counts(cls, achievement_id: UUID, counts: dict[int, int]) -> "EvaluationSummary":
        distribution = {
            rating: int(counts.get(rating, 0))
            for rating in range(MIN_RATING, MAX_RATING + 1)
        }
        total = sum(distribution.values())
        average = (
            sum(rating * n for rating, n in distribution.items()) / total
            if total else 0.0
        )
        return cls(
            achievement_id=achievement_id,
            total_count=total,
            average_rating=round(average, 1),
            rating_distribution=distribution,
        )
