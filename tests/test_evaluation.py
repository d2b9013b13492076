"""Tests for recommendation feedback statistics and quality metrics."""

import pytest

from cfrec.recommender.evaluation import compute_quality_metrics, summarize_feedback
from cfrec.recommender.models import RecommendationLogEntry, RecommendationType


def _entry(product_id, kind="hybrid", displayed=True, clicked=False, purchased=False):
    return RecommendationLogEntry(
        user_id=1,
        product_id=product_id,
        score=0.5,
        recommendation_type=kind,
        is_displayed=displayed,
        is_clicked=clicked,
        is_purchased=purchased,
    )


@pytest.fixture
def entries():
    return [
        _entry(1, clicked=True),
        _entry(2, purchased=True),
        _entry(3, kind="user-based"),
        _entry(4, kind="user-based"),
        _entry(5, kind="user-based", displayed=False),
    ]


def test_summarize_feedback(entries):
    summary = summarize_feedback(entries)

    assert summary["total"] == 5
    assert summary["displayed"] == 4
    assert summary["clicked"] == 1
    assert summary["purchased"] == 1
    assert summary["click_rate"] == 25.0
    assert summary["purchase_rate"] == 25.0

    by_type = summary["by_type"]
    assert set(by_type) == {RecommendationType.HYBRID.value, RecommendationType.USER_BASED.value}
    assert by_type["hybrid"]["click_rate"] == 50.0
    assert by_type["hybrid"]["purchase_rate"] == 50.0
    assert by_type["user-based"]["total"] == 3
    assert by_type["user-based"]["displayed"] == 2
    assert by_type["user-based"]["click_rate"] == 0.0


def test_summarize_without_entries():
    summary = summarize_feedback([])

    assert summary["total"] == 0
    assert summary["click_rate"] == 0.0
    assert summary["by_type"] == {}


def test_quality_metrics(entries):
    result = compute_quality_metrics(
        entries,
        categories={1: 7, 2: 7, 3: 8, 4: None},
        purchase_counts={1: 3, 2: 0, 3: 1, 4: 0},
        user_products={1, 2},
        total_products=16,
    )

    assert result["total_recommendations"] == 4
    assert result["accuracy"] == 50.0
    assert result["diversity"] == 50.0
    # products 1 and 3 are the purchased ones, 2 and 4 are novel
    assert result["novelty"] == 50.0
    assert result["coverage"] == 25.0
    assert result["serendipity"] == 50.0
    assert result["metrics"] == {
        "click_rate": 25.0,
        "purchase_rate": 25.0,
        "diversity": 50.0,
        "novelty": 50.0,
    }


def test_only_the_ten_most_purchased_are_not_novel():
    entries = [_entry(p) for p in range(1, 13)]

    result = compute_quality_metrics(
        entries,
        categories={},
        purchase_counts={p: p for p in range(1, 13)},
        user_products=set(),
        total_products=12,
        metrics=["novelty", "coverage", "serendipity"],
    )

    assert result["novelty"] == 16.67
    assert result["metrics"] == {"novelty": 16.67, "coverage": 100.0, "serendipity": 100.0}


def test_quality_metrics_without_recommendations():
    result = compute_quality_metrics([], {}, {}, set(), total_products=0)

    assert result["total_recommendations"] == 0
    assert result["accuracy"] == 0.0
    assert result["coverage"] == 0.0
