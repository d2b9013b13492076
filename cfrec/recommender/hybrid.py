"""Hybrid recommendation module.

Blends user-based and item-based rankings with a fixed linear combination.
"""

import logging
from typing import Dict, List, Sequence

from cfrec.recommender.models import RecommendationScore, RecommendationType
from cfrec.recommender.scoring import format_percent, rank_scores

# Configure module logger
logger = logging.getLogger(__name__)

# Default weights for hybrid scoring
DEFAULT_USER_BASED_WEIGHT = 0.6  # 60% user-based
DEFAULT_ITEM_BASED_WEIGHT = 0.4  # 40% item-based


def merge_recommendations(
    user_based: Sequence[RecommendationScore],
    item_based: Sequence[RecommendationScore],
    limit: int,
    user_weight: float = DEFAULT_USER_BASED_WEIGHT,
    item_weight: float = DEFAULT_ITEM_BASED_WEIGHT,
) -> List[RecommendationScore]:
    """Merge two ranked lists into one hybrid ranking.

    User-based scores are scaled by ``user_weight``; item-based scores are
    scaled by ``item_weight`` and added to any user-based score for the same
    product. The result is sorted by combined score (ties by product id) and
    truncated to ``limit``. Combined scores are not renormalized.
    """
    combined: Dict[int, float] = {}

    for rec in user_based:
        combined[rec.product_id] = combined.get(rec.product_id, 0.0) + rec.score * user_weight

    for rec in item_based:
        combined[rec.product_id] = combined.get(rec.product_id, 0.0) + rec.score * item_weight

    merged = rank_scores(
        combined,
        RecommendationType.HYBRID,
        lambda score: f"Blended from similar users and similar products, score: {format_percent(score)}",
    )

    logger.debug(
        f"Merged {len(user_based)} user-based and {len(item_based)} item-based "
        f"recommendations into {len(merged)} hybrid candidates"
    )

    return merged[:limit]


class HybridBlender:
    """Holds the blend weights used by the engine."""

    def __init__(
        self,
        user_weight: float = DEFAULT_USER_BASED_WEIGHT,
        item_weight: float = DEFAULT_ITEM_BASED_WEIGHT,
    ):
        self.user_weight = user_weight
        self.item_weight = item_weight

        logger.info(
            f"Initialized HybridBlender: "
            f"user-based weight={self.user_weight:.2f}, "
            f"item-based weight={self.item_weight:.2f}"
        )

    def blend(
        self,
        user_based: Sequence[RecommendationScore],
        item_based: Sequence[RecommendationScore],
        limit: int,
    ) -> List[RecommendationScore]:
        return merge_recommendations(
            user_based,
            item_based,
            limit,
            user_weight=self.user_weight,
            item_weight=self.item_weight,
        )
