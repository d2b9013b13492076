"""Tests for the in-memory behavior, similarity and recommendation log stores."""

from datetime import datetime, timedelta, timezone

import pytest

from cfrec.recommender.models import (
    BehaviorEvent,
    BehaviorType,
    RecommendationScore,
    RecommendationType,
    SimilarityType,
)
from cfrec.recommender.stores import (
    InMemoryBehaviorStore,
    InMemoryRecommendationLogStore,
    InMemorySimilarityStore,
)

T0 = datetime(2024, 3, 1, tzinfo=timezone.utc)


def _event(user_id, product_id, behavior_type="view", minutes=0, category_id=None):
    return BehaviorEvent(
        user_id=user_id,
        product_id=product_id,
        behavior_type=behavior_type,
        category_id=category_id,
        timestamp=T0 + timedelta(minutes=minutes),
    )


@pytest.fixture
def behavior_store():
    events = [_event(1, p, minutes=p) for p in range(1, 7)]  # 6 events
    events += [_event(2, p) for p in range(1, 6)]  # 5 events
    events += [_event(3, 1, "purchase", category_id=9), _event(4, 1, "purchase", category_id=9)]
    events += [_event(3, 2, "purchase", category_id=8)]
    return InMemoryBehaviorStore(events)


def test_behaviors_by_user_most_recent_first(behavior_store):
    events = behavior_store.list_behaviors_by_user(1)

    assert [e.product_id for e in events] == [6, 5, 4, 3, 2, 1]
    assert behavior_store.list_behaviors_by_user(99) == []


def test_behaviors_by_product(behavior_store):
    users = {e.user_id for e in behavior_store.list_behaviors_by_product(1)}
    assert users == {1, 2, 3, 4}


def test_active_floors_are_strict(behavior_store):
    """Active means strictly more events than the floor."""
    assert behavior_store.list_active_users(5) == [1]
    assert behavior_store.list_active_users(4) == [1, 2]
    # product 1: users 1, 2, 3, 4 -> 4 events
    assert behavior_store.list_active_products(3) == [1]


def test_popular_products(behavior_store):
    assert behavior_store.list_popular_products(BehaviorType.PURCHASE, 10) == [(1, 2), (2, 1)]
    assert behavior_store.list_popular_products(BehaviorType.PURCHASE, 1) == [(1, 2)]
    assert behavior_store.list_popular_products(
        BehaviorType.PURCHASE, 10, category_id=8
    ) == [(2, 1)]


def test_len_counts_searches():
    store = InMemoryBehaviorStore([BehaviorEvent(user_id=1, behavior_type="search")])

    assert len(store) == 1
    assert store.list_behaviors_by_user(1)[0].product_id is None


def test_upsert_orders_pair_and_overwrites():
    store = InMemorySimilarityStore()
    store.upsert_user_similarity(5, 2, 0.3)
    store.upsert_user_similarity(2, 5, 0.4)

    record = store.get_user_similarity(5, 2)
    assert (record.user_id_a, record.user_id_b) == (2, 5)
    assert record.similarity == 0.4
    assert record.algorithm == "jaccard"
    assert store.user_pair_count() == 1


def test_self_pairs_are_ignored():
    store = InMemorySimilarityStore()
    store.upsert_user_similarity(3, 3, 1.0)
    store.upsert_item_similarity(7, 7, 1.0)

    assert store.user_pair_count() == 0
    assert store.item_pair_count() == 0


def test_find_similar_items_threshold_and_order():
    store = InMemorySimilarityStore()
    store.upsert_item_similarity(1, 4, 0.5)
    store.upsert_item_similarity(3, 1, 0.5)
    store.upsert_item_similarity(1, 2, 0.9)
    store.upsert_item_similarity(1, 5, 0.1)  # not above threshold
    store.upsert_item_similarity(6, 7, 0.9)

    assert store.find_similar_items(1, 0.1, 10) == [(2, 0.9), (3, 0.5), (4, 0.5)]
    assert store.find_similar_items(1, 0.1, 2) == [(2, 0.9), (3, 0.5)]
    assert store.find_similar_items(99, 0.1, 10) == []


def test_item_similarity_type_is_kept():
    store = InMemorySimilarityStore()
    store.upsert_item_similarity(1, 2, 0.5, SimilarityType.CONTENT)

    assert store.get_item_similarity(2, 1).similarity_type == SimilarityType.CONTENT


def test_export_import_records():
    store = InMemorySimilarityStore()
    store.upsert_user_similarity(1, 2, 0.25)
    store.upsert_item_similarity(3, 4, 0.75)

    copy = InMemorySimilarityStore()
    copy.import_records(store.export_records())

    assert copy.get_user_similarity(1, 2).similarity == 0.25
    assert copy.find_similar_items(4, 0.1, 10) == [(3, 0.75)]


def _shown(product_id, score=0.5, kind=RecommendationType.HYBRID, reason="because"):
    return RecommendationScore(
        product_id=product_id, score=score, reason=reason, recommendation_type=kind
    )


def test_log_upsert_keeps_feedback_flags():
    """Showing a product again refreshes the entry without losing its click."""
    log = InMemoryRecommendationLogStore()
    log.upsert_displayed(1, [_shown(10), _shown(11)])
    assert log.mark_clicked(1, 10, RecommendationType.HYBRID) == 1

    log.upsert_displayed(1, [_shown(10, score=0.9, reason="again")])

    entries = {e.product_id: e for e in log.list_entries(1)}
    assert len(log) == 2
    assert entries[10].score == 0.9
    assert entries[10].reason == "again"
    assert entries[10].is_clicked is True
    assert entries[10].is_displayed is True
    assert entries[11].is_clicked is False


def test_log_marks_require_matching_type():
    log = InMemoryRecommendationLogStore()
    log.upsert_displayed(1, [_shown(10, kind=RecommendationType.ITEM_BASED)])

    assert log.mark_purchased(1, 10, RecommendationType.HYBRID) == 0
    assert log.mark_purchased(1, 99, RecommendationType.ITEM_BASED) == 0
    assert log.mark_purchased(1, 10, RecommendationType.ITEM_BASED) == 1
    assert log.list_entries(1)[0].is_purchased is True


def test_log_entries_filtered_by_user_and_window():
    log = InMemoryRecommendationLogStore()
    log.upsert_displayed(1, [_shown(10)])
    log.upsert_displayed(2, [_shown(20)])
    created = log.list_entries(1)[0].created_at

    assert [e.product_id for e in log.list_entries(2)] == [20]
    assert len(log.list_entries(1, start=created, end=created)) == 1
    assert log.list_entries(1, start=created + timedelta(seconds=1)) == []
    assert log.list_entries(1, end=created - timedelta(seconds=1)) == []
