"""Feedback statistics and quality metrics for served recommendations.

Pure functions over recommendation log entries; the engine gathers the
inputs. Rates and metrics are percentages rounded to two decimals, and an
empty denominator yields 0.0.
"""

import logging
from collections import defaultdict
from typing import AbstractSet, Any, Dict, List, Mapping, Optional, Sequence

from cfrec.recommender.models import RecommendationLogEntry

logger = logging.getLogger(__name__)

EVALUATION_METRICS = (
    "click_rate",
    "purchase_rate",
    "diversity",
    "novelty",
    "coverage",
    "serendipity",
)
DEFAULT_EVALUATION_METRICS = ("click_rate", "purchase_rate", "diversity", "novelty")

# Products among the N most purchased recommended products are not novel
NOVELTY_TOP_N = 10


def _percent(part: float, whole: float) -> float:
    if not whole:
        return 0.0
    return round(part / whole * 100, 2)


def _feedback_counts(entries: Sequence[RecommendationLogEntry]) -> Dict[str, Any]:
    displayed = sum(1 for e in entries if e.is_displayed)
    clicked = sum(1 for e in entries if e.is_clicked)
    purchased = sum(1 for e in entries if e.is_purchased)
    return {
        "total": len(entries),
        "displayed": displayed,
        "clicked": clicked,
        "purchased": purchased,
        "click_rate": _percent(clicked, displayed),
        "purchase_rate": _percent(purchased, displayed),
    }


def summarize_feedback(entries: Sequence[RecommendationLogEntry]) -> Dict[str, Any]:
    """Display, click and purchase counts overall and per recommendation type."""
    summary = _feedback_counts(entries)
    grouped: Dict[str, List[RecommendationLogEntry]] = defaultdict(list)
    for entry in entries:
        grouped[entry.recommendation_type.value].append(entry)
    summary["by_type"] = {
        kind: _feedback_counts(group) for kind, group in sorted(grouped.items())
    }
    return summary


def compute_quality_metrics(
    entries: Sequence[RecommendationLogEntry],
    categories: Mapping[int, Optional[int]],
    purchase_counts: Mapping[int, int],
    user_products: AbstractSet[int],
    total_products: int,
    metrics: Sequence[str] = DEFAULT_EVALUATION_METRICS,
) -> Dict[str, Any]:
    """Quality of the recommendations a user was shown.

    Args:
        entries: The user's recommendation log.
        categories: Category id of each recommended product, None if unknown.
        purchase_counts: Purchase count of each recommended product.
        user_products: Products the user has interacted with.
        total_products: Number of products known to the behavior store.
        metrics: Names selected into the ``metrics`` mapping of the result.

    Returns:
        Accuracy, diversity, novelty, coverage and serendipity over the
        displayed recommendations, plus the selected ``metrics``.
    """
    displayed = [e for e in entries if e.is_displayed]
    recommended = [e.product_id for e in displayed]
    total = len(recommended)
    clicked = sum(1 for e in displayed if e.is_clicked)
    purchased = sum(1 for e in displayed if e.is_purchased)

    unique_categories = {categories.get(p) for p in recommended} - {None}

    ranked = sorted(
        ((p, c) for p, c in purchase_counts.items() if c > 0),
        key=lambda item: (-item[1], item[0]),
    )
    popular = {p for p, _ in ranked[:NOVELTY_TOP_N]}

    values = {
        "click_rate": _percent(clicked, total),
        "purchase_rate": _percent(purchased, total),
        "diversity": _percent(len(unique_categories), total),
        "novelty": _percent(sum(1 for p in recommended if p not in popular), total),
        "coverage": _percent(len(set(recommended)), total_products),
        "serendipity": _percent(sum(1 for p in recommended if p not in user_products), total),
    }

    logger.debug(
        "Computed recommendation quality",
        extra={"num_recommendations": total, "num_categories": len(unique_categories)},
    )
    return {
        "total_recommendations": total,
        "accuracy": _percent(clicked + purchased, total),
        "diversity": values["diversity"],
        "novelty": values["novelty"],
        "coverage": values["coverage"],
        "serendipity": values["serendipity"],
        "metrics": {name: values[name] for name in metrics},
    }
