"""Data model for the recommendation engine.

Defines behavior events, stored similarity records and the scored
recommendations returned to callers.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BehaviorType(str, Enum):
    """Kinds of user interaction recorded in the behavior store."""

    VIEW = "view"
    CLICK = "click"
    CART = "cart"
    FAVORITE = "favorite"
    PURCHASE = "purchase"
    SEARCH = "search"


class RecommendationType(str, Enum):
    """Strategy that produced a recommendation."""

    USER_BASED = "user-based"
    ITEM_BASED = "item-based"
    HYBRID = "hybrid"
    POPULAR = "popular"


class SimilarityType(str, Enum):
    """Origin of an item-item similarity value."""

    CONTENT = "content"
    COLLABORATIVE = "collaborative"
    HYBRID = "hybrid"


# Behaviors that signal interest strongly enough to drive scoring
INTEREST_BEHAVIORS = frozenset(
    {BehaviorType.VIEW, BehaviorType.CART, BehaviorType.PURCHASE}
)


class BehaviorEvent(BaseModel):
    """A single user interaction. Events are never mutated once recorded."""

    model_config = ConfigDict(frozen=True)

    user_id: int = Field(..., gt=0)
    product_id: Optional[int] = Field(default=None, gt=0)
    category_id: Optional[int] = Field(default=None, gt=0)
    behavior_type: BehaviorType
    timestamp: datetime = Field(default_factory=utcnow)

    @field_validator("timestamp")
    @classmethod
    def _aware_timestamp(cls, value: datetime) -> datetime:
        # naive timestamps are taken as UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def _product_required(self) -> "BehaviorEvent":
        if self.product_id is None and self.behavior_type != BehaviorType.SEARCH:
            raise ValueError(
                f"product_id is required for behavior_type={self.behavior_type.value}"
            )
        return self


class UserSimilarityRecord(BaseModel):
    """Stored similarity of an unordered user pair, kept with ``user_id_a < user_id_b``."""

    user_id_a: int
    user_id_b: int
    similarity: float = Field(..., ge=0.0, le=1.0)
    algorithm: str = "jaccard"
    last_updated: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _ordered(self) -> "UserSimilarityRecord":
        if not self.user_id_a < self.user_id_b:
            raise ValueError("user_id_a must be less than user_id_b")
        return self


class ItemSimilarityRecord(BaseModel):
    """Stored similarity of an unordered product pair, kept with ``product_id_a < product_id_b``."""

    product_id_a: int
    product_id_b: int
    similarity: float = Field(..., ge=0.0, le=1.0)
    similarity_type: SimilarityType = SimilarityType.COLLABORATIVE
    last_calculated: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _ordered(self) -> "ItemSimilarityRecord":
        if not self.product_id_a < self.product_id_b:
            raise ValueError("product_id_a must be less than product_id_b")
        return self

    def other(self, product_id: int) -> int:
        """Return the product on the other side of the pair."""
        return self.product_id_b if product_id == self.product_id_a else self.product_id_a


class RecommendationScore(BaseModel):
    """A scored product recommendation with a human-readable reason."""

    product_id: int
    score: float
    reason: str
    recommendation_type: RecommendationType


def ordered_pair(a: int, b: int) -> tuple:
    """Return ``(min, max)`` of two ids, the storage key of a similarity pair."""
    return (a, b) if a < b else (b, a)


class RecommendationLogEntry(BaseModel):
    """A recommendation shown to a user and what the user did with it.

    At most one entry exists per ``(user_id, product_id)``; showing the
    product again refreshes score, type and reason but keeps the feedback
    flags.
    """

    user_id: int = Field(..., gt=0)
    product_id: int = Field(..., gt=0)
    score: float
    recommendation_type: RecommendationType
    reason: str = ""
    is_displayed: bool = True
    is_clicked: bool = False
    is_purchased: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
