"""Recommendation scoring.

Turns neighbors (similar users) or similar items, together with the weighted
behaviors behind them, into per-product scores with explanatory reasons.
All functions are pure: the engine fetches the data and passes it in.
"""

import logging
from collections import defaultdict
from typing import Callable, Dict, Iterable, List, Mapping, NamedTuple, Sequence

from cfrec.recommender.models import (
    BehaviorEvent,
    BehaviorType,
    RecommendationScore,
    RecommendationType,
)
from cfrec.recommender.similarity import jaccard_similarity, product_set

logger = logging.getLogger(__name__)

DEFAULT_SIMILARITY_THRESHOLD = 0.1
DEFAULT_MAX_SIMILAR_USERS = 20

BEHAVIOR_WEIGHTS: Dict[BehaviorType, float] = {
    BehaviorType.PURCHASE: 1.0,
    BehaviorType.CART: 0.8,
    BehaviorType.VIEW: 0.5,
}
DEFAULT_BEHAVIOR_WEIGHT = 0.3


class SimilarUser(NamedTuple):
    user_id: int
    similarity: float


class SimilarItem(NamedTuple):
    """A similarity row seen from one of the user's products."""

    source_product_id: int
    product_id: int
    similarity: float


def behavior_weight(behavior_type: BehaviorType) -> float:
    """Importance of an interaction type: purchase > cart > view > other."""
    return BEHAVIOR_WEIGHTS.get(behavior_type, DEFAULT_BEHAVIOR_WEIGHT)


def format_percent(value: float) -> str:
    return f"{value * 100:.1f}%"


def rank_scores(
    scores: Mapping[int, float],
    recommendation_type: RecommendationType,
    reason: Callable[[float], str],
) -> List[RecommendationScore]:
    """Sort accumulated scores (score desc, product id asc) into recommendations."""
    ordered = sorted(scores.items(), key=lambda item: (-item[1], item[0]))
    return [
        RecommendationScore(
            product_id=product_id,
            score=score,
            reason=reason(score),
            recommendation_type=recommendation_type,
        )
        for product_id, score in ordered
    ]


def find_similar_users(
    user_id: int,
    user_behaviors: Sequence[BehaviorEvent],
    candidate_behaviors: Mapping[int, Sequence[BehaviorEvent]],
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    max_users: int = DEFAULT_MAX_SIMILAR_USERS,
) -> List[SimilarUser]:
    """Find the users most similar to ``user_id``.

    Args:
        user_id: Target user.
        user_behaviors: The target user's behaviors.
        candidate_behaviors: Behaviors of each candidate user, keyed by user id.
            The caller restricts candidates to sufficiently active users.
        threshold: Neighbors must have similarity strictly above this value.
        max_users: Maximum number of neighbors returned.

    Returns:
        Neighbors sorted by similarity descending, then user id ascending.
    """
    products = product_set(user_behaviors)
    if not products:
        return []

    neighbors = []
    for candidate_id, behaviors in candidate_behaviors.items():
        if candidate_id == user_id:
            continue
        similarity = jaccard_similarity(products, product_set(behaviors))
        if similarity > threshold:
            neighbors.append(SimilarUser(candidate_id, similarity))

    neighbors.sort(key=lambda n: (-n.similarity, n.user_id))
    logger.debug(
        "Found similar users",
        extra={
            "user_id": user_id,
            "num_candidates": len(candidate_behaviors),
            "num_neighbors": len(neighbors),
        },
    )
    return neighbors[:max_users]


def calculate_recommendation_scores(
    user_id: int,
    user_behaviors: Sequence[BehaviorEvent],
    similar_users: Sequence[SimilarUser],
    similar_user_behaviors: Iterable[BehaviorEvent],
) -> List[RecommendationScore]:
    """Score products from neighbor behaviors.

    Each neighbor behavior on a product the target user has not touched adds
    ``neighbor_similarity * behavior_weight`` to that product. Contributions
    are summed without normalization.
    """
    touched = product_set(user_behaviors)
    similarity_by_user = {n.user_id: n.similarity for n in similar_users}
    scores: Dict[int, float] = defaultdict(float)

    for behavior in similar_user_behaviors:
        if behavior.product_id is None or behavior.product_id in touched:
            continue
        similarity = similarity_by_user.get(behavior.user_id)
        if similarity is None or behavior.user_id == user_id:
            continue
        scores[behavior.product_id] += similarity * behavior_weight(behavior.behavior_type)

    return rank_scores(
        scores,
        RecommendationType.USER_BASED,
        lambda score: f"Recommended by similar users, score: {format_percent(score)}",
    )


def calculate_item_based_scores(
    user_id: int,
    user_behaviors: Sequence[BehaviorEvent],
    similar_items: Iterable[SimilarItem],
    interested_products: Iterable[int],
) -> List[RecommendationScore]:
    """Score products similar to the ones the user showed interest in.

    Similarities from different source products to the same candidate are
    summed. Products the user already touched are excluded.
    """
    touched = product_set(user_behaviors)
    interested = set(interested_products)
    scores: Dict[int, float] = defaultdict(float)

    for item in similar_items:
        if item.source_product_id not in interested:
            continue
        if item.product_id in touched or item.product_id == item.source_product_id:
            continue
        scores[item.product_id] += item.similarity

    logger.debug(
        "Calculated item-based scores",
        extra={"user_id": user_id, "num_candidates": len(scores)},
    )
    return rank_scores(
        scores,
        RecommendationType.ITEM_BASED,
        lambda score: f"Similar to products you viewed, similarity: {format_percent(score)}",
    )
