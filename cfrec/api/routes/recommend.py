"""Recommendation endpoints for the CFRec API.

Thin HTTP wrappers around the engine facade. Contract errors raised by the
engine surface as 400 responses; store failures during reads surface as an
empty recommendation list. Personalized lists are logged as displayed so
clicks and purchases on them can be reported back and evaluated.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Query, Request, status
from pydantic import BaseModel, Field, ValidationError

from cfrec.exceptions import InvalidRequestError
from cfrec.recommender.engine import RecommendationEngine
from cfrec.recommender.models import BehaviorEvent, BehaviorType, RecommendationScore

# Configure module logger
logger = logging.getLogger(__name__)

# Create API router
router = APIRouter(
    prefix="/recommend",
    tags=["recommendations"],
)


class Strategy(str, Enum):
    USER_BASED = "user-based"
    ITEM_BASED = "item-based"
    HYBRID = "hybrid"


class RecommendationResponse(BaseModel):
    """Response model for recommendation requests.

    Attributes:
        user_id: User the list was generated for, if personalized.
        strategy: Strategy that produced the list.
        count: Number of recommendations.
        recommendations: Scored recommendations, best first.
    """

    user_id: Optional[int] = Field(default=None, description="User ID for recommendations")
    strategy: str = Field(..., description="Recommendation strategy")
    count: int = Field(..., description="Number of recommendations")
    recommendations: List[RecommendationScore] = Field(
        ..., description="Scored recommendations, best first"
    )


class SimilarityResponse(BaseModel):
    kind: str
    id_a: int
    id_b: int
    similarity: float


class FeedbackRequest(BaseModel):
    """Click or purchase of a displayed recommendation."""

    user_id: int
    product_id: Optional[int] = None
    recommendation_type: str = "hybrid"


class BehaviorRequest(BaseModel):
    """A behavior event reported by the host application."""

    user_id: int
    product_id: Optional[int] = None
    category_id: Optional[int] = None
    behavior_type: BehaviorType
    timestamp: Optional[datetime] = None


def _engine(request: Request) -> RecommendationEngine:
    return request.app.state.engine


def _response(
    strategy: str,
    recommendations: List[RecommendationScore],
    user_id: Optional[int] = None,
) -> RecommendationResponse:
    return RecommendationResponse(
        user_id=user_id,
        strategy=strategy,
        count=len(recommendations),
        recommendations=recommendations,
    )


@router.get("/popular", response_model=RecommendationResponse)
def get_popular(
    request: Request,
    limit: int = 10,
    category_id: Optional[int] = None,
) -> RecommendationResponse:
    """Most purchased products, optionally within one category."""
    recommendations = _engine(request).get_popular_recommendations(limit, category_id)
    return _response("popular", recommendations)


@router.get("/similar/{product_id}", response_model=RecommendationResponse)
def get_similar(request: Request, product_id: int, limit: int = 10) -> RecommendationResponse:
    """Products most similar to ``product_id``."""
    recommendations = _engine(request).get_similar_products(product_id, limit)
    return _response("similar", recommendations)


@router.get("/similarity/users/{user_a}/{user_b}", response_model=SimilarityResponse)
def get_user_similarity(request: Request, user_a: int, user_b: int) -> SimilarityResponse:
    value = _engine(request).calculate_user_similarity(user_a, user_b)
    return SimilarityResponse(kind="user", id_a=user_a, id_b=user_b, similarity=value)


@router.get("/similarity/items/{product_a}/{product_b}", response_model=SimilarityResponse)
def get_item_similarity(request: Request, product_a: int, product_b: int) -> SimilarityResponse:
    value = _engine(request).calculate_item_similarity(product_a, product_b)
    return SimilarityResponse(kind="item", id_a=product_a, id_b=product_b, similarity=value)


@router.post("/click")
def record_click(request: Request, body: FeedbackRequest) -> dict:
    """Mark a displayed recommendation as clicked."""
    updated = _engine(request).record_click(
        body.user_id, body.product_id, body.recommendation_type
    )
    return {"status": "recorded", "updated": updated}


@router.post("/purchase")
def record_purchase(request: Request, body: FeedbackRequest) -> dict:
    """Mark a displayed recommendation as purchased."""
    updated = _engine(request).record_purchase(
        body.user_id, body.product_id, body.recommendation_type
    )
    return {"status": "recorded", "updated": updated}


@router.get("/stats/{user_id}")
def get_stats(
    request: Request,
    user_id: int,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Display, click and purchase counts and rates, overall and per type."""
    stats = _engine(request).get_recommendation_stats(user_id, start, end)
    return {"user_id": user_id, **stats}


@router.get("/evaluation/{user_id}")
def get_evaluation(
    request: Request,
    user_id: int,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    metrics: Optional[List[str]] = Query(default=None),
) -> Dict[str, Any]:
    """Quality metrics of the recommendations shown to a user.

    Example:
        GET /recommend/evaluation/42?metrics=coverage&metrics=serendipity
    """
    evaluation = _engine(request).evaluate_recommendations(user_id, start, end, metrics)
    return {"user_id": user_id, **evaluation}


@router.get("/{user_id}", response_model=RecommendationResponse)
def get_recommendations(
    request: Request,
    user_id: int,
    strategy: Strategy = Strategy.HYBRID,
    limit: int = 10,
) -> RecommendationResponse:
    """Get personalized recommendations for a user.

    Example:
        GET /recommend/42?strategy=item-based&limit=5
        Returns up to 5 item-based recommendations for user 42.
    """
    engine = _engine(request)
    if strategy == Strategy.USER_BASED:
        recommendations = engine.get_user_based_recommendations(user_id, limit)
    elif strategy == Strategy.ITEM_BASED:
        recommendations = engine.get_item_based_recommendations(user_id, limit)
    else:
        recommendations = engine.get_hybrid_recommendations(user_id, limit)
    engine.record_impressions(user_id, recommendations)
    return _response(strategy.value, recommendations, user_id=user_id)


@router.post("/behavior", status_code=status.HTTP_202_ACCEPTED)
def record_behavior(request: Request, body: BehaviorRequest) -> dict:
    """Record a behavior event and refresh the user's recommendations.

    The similarity refresh runs in the background, hence 202.
    """
    fields = body.model_dump(exclude_none=True)
    try:
        event = BehaviorEvent(**fields)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or "event"
        raise InvalidRequestError(field, first.get("input"), first.get("msg", "invalid")) from e

    _engine(request).record_behavior(event)
    return {"status": "accepted", "user_id": event.user_id}
