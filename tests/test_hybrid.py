"""Unit tests for the hybrid blender."""

import pytest

from cfrec.recommender.hybrid import HybridBlender, merge_recommendations
from cfrec.recommender.models import RecommendationScore, RecommendationType


def _rec(product_id, score, kind=RecommendationType.USER_BASED):
    return RecommendationScore(
        product_id=product_id,
        score=score,
        reason="test",
        recommendation_type=kind,
    )


@pytest.fixture
def user_based():
    return [_rec(3, 0.5)]


@pytest.fixture
def item_based():
    return [
        _rec(3, 0.6, RecommendationType.ITEM_BASED),
        _rec(4, 0.4, RecommendationType.ITEM_BASED),
    ]


def test_blend_weights(user_based, item_based):
    """P3 = 0.5*0.6 + 0.6*0.4 and P4 = 0.4*0.4, in that order."""
    blended = merge_recommendations(user_based, item_based, limit=5)

    assert [r.product_id for r in blended] == [3, 4]
    assert blended[0].score == pytest.approx(0.54)
    assert blended[1].score == pytest.approx(0.16)
    assert all(r.recommendation_type == RecommendationType.HYBRID for r in blended)


def test_blend_truncates_to_limit(user_based, item_based):
    blended = merge_recommendations(user_based, item_based, limit=1)
    assert [r.product_id for r in blended] == [3]


def test_blend_is_deterministic():
    """Tied combined scores are ordered by product id regardless of input order."""
    a = [_rec(9, 0.5), _rec(2, 0.5)]
    b = [_rec(5, 1.0, RecommendationType.ITEM_BASED)]

    first = merge_recommendations(a, b, limit=10, user_weight=1.0, item_weight=0.5)
    second = merge_recommendations(
        list(reversed(a)), b, limit=10, user_weight=1.0, item_weight=0.5
    )

    assert [r.product_id for r in first] == [2, 5, 9]
    assert [(r.product_id, r.score) for r in first] == [(r.product_id, r.score) for r in second]


def test_blend_empty_sides():
    assert merge_recommendations([], [], limit=5) == []

    only_items = merge_recommendations([], [_rec(7, 0.5, RecommendationType.ITEM_BASED)], limit=5)
    assert only_items[0].score == pytest.approx(0.2)


def test_custom_weights(user_based, item_based):
    """Scores are not renormalized by the weight sum."""
    blender = HybridBlender(user_weight=1.0, item_weight=1.0)

    blended = blender.blend(user_based, item_based, limit=5)

    assert blended[0].product_id == 3
    assert blended[0].score == pytest.approx(1.1)


def test_reason_carries_score(user_based, item_based):
    blended = merge_recommendations(user_based, item_based, limit=5)
    assert "54.0%" in blended[0].reason
