"""Tests for the offline similarity rebuild and snapshot helpers."""

import pandas as pd
import pytest

from cfrec.recommender.batch import cosine_pairs, jaccard_pairs, rebuild_from_csv, rebuild_similarities
from cfrec.recommender.models import BehaviorType
from cfrec.recommender.similarity import cosine_similarity, jaccard_similarity
from cfrec.recommender.stores import InMemorySimilarityStore
from cfrec.recommender.utils import (
    behaviors_from_frame,
    build_incidence_matrix,
    check_snapshot_exists,
    load_behaviors_csv,
    load_store_snapshot,
    save_store_snapshot,
)


@pytest.fixture
def behaviors_df():
    """Four active users (6+ events each) over five products."""
    rows = []
    baskets = {
        1: [10, 11, 12, 10, 11, 12],
        2: [10, 11, 13, 13, 10, 11],
        3: [12, 13, 14, 14, 12, 13],
        4: [10, 14, 10, 14, 10, 14, 11],
        5: [10],  # inactive
    }
    for user_id, products in baskets.items():
        for product_id in products:
            rows.append(
                {"user_id": user_id, "product_id": product_id, "behavior_type": "purchase"}
            )
    return pd.DataFrame(rows)


@pytest.fixture
def behaviors_csv(tmp_path, behaviors_df):
    path = tmp_path / "behaviors.csv"
    behaviors_df.to_csv(path, index=False)
    return path


def _products_of(df, user_id):
    return set(df[df["user_id"] == user_id]["product_id"])


def _users_of(df, product_id):
    return set(df[df["product_id"] == product_id]["user_id"])


def test_build_incidence_matrix_is_binary(behaviors_df):
    matrix, row_map, col_map = build_incidence_matrix(behaviors_df, "user_id", "product_id")

    assert matrix.shape == (5, 5)
    assert matrix.max() == 1.0
    assert matrix[row_map[4], col_map[10]] == 1.0
    assert matrix[row_map[5], col_map[14]] == 0.0


def test_pairwise_helpers_match_set_formulas(behaviors_df):
    matrix, row_map, _ = build_incidence_matrix(behaviors_df, "user_id", "product_id")
    idx_to_user = {idx: uid for uid, idx in row_map.items()}

    for i, j, value in jaccard_pairs(matrix):
        expected = jaccard_similarity(
            _products_of(behaviors_df, idx_to_user[i]), _products_of(behaviors_df, idx_to_user[j])
        )
        assert value == pytest.approx(expected)

    for i, j, value in cosine_pairs(matrix):
        expected = cosine_similarity(
            _products_of(behaviors_df, idx_to_user[i]), _products_of(behaviors_df, idx_to_user[j])
        )
        assert value == pytest.approx(expected)


def test_rebuild_matches_per_pair_calculator(behaviors_df):
    store = InMemorySimilarityStore()

    summary = rebuild_similarities(behaviors_df, store, min_user_events=5, min_product_events=3)

    assert summary["active_users"] == 4
    # users 1-4 all share at least one product
    assert summary["user_pairs"] == 6
    record = store.get_user_similarity(1, 2)
    assert record.similarity == pytest.approx(
        jaccard_similarity(_products_of(behaviors_df, 1), _products_of(behaviors_df, 2))
    )
    assert store.get_user_similarity(1, 5) is None

    record = store.get_item_similarity(10, 13)
    assert record.similarity == pytest.approx(
        cosine_similarity(_users_of(behaviors_df, 10), _users_of(behaviors_df, 13))
    )


def test_rebuild_skips_zero_pairs():
    df = pd.DataFrame(
        [{"user_id": 1, "product_id": 1, "behavior_type": "view"}] * 6
        + [{"user_id": 2, "product_id": 2, "behavior_type": "view"}] * 6
    )
    store = InMemorySimilarityStore()

    summary = rebuild_similarities(df, store)

    assert summary["active_users"] == 2
    assert summary["user_pairs"] == 0
    assert store.user_pair_count() == 0


def test_rebuild_from_csv_and_snapshot(behaviors_csv, tmp_path):
    store = InMemorySimilarityStore()
    summary = rebuild_from_csv(str(behaviors_csv), store)

    snapshot_dir = tmp_path / "snapshots"
    path = save_store_snapshot(store, str(snapshot_dir))

    assert path.exists()
    assert check_snapshot_exists(str(snapshot_dir))

    restored = load_store_snapshot(str(snapshot_dir))
    assert restored.user_pair_count() == summary["user_pairs"]
    assert restored.item_pair_count() == summary["item_pairs"]
    assert restored.find_similar_items(10, 0.1, 10) == store.find_similar_items(10, 0.1, 10)


def test_load_snapshot_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_store_snapshot(str(tmp_path))
    assert not check_snapshot_exists(str(tmp_path))


def test_load_behaviors_csv_validation(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_behaviors_csv(str(tmp_path / "missing.csv"))

    bad = tmp_path / "bad.csv"
    bad.write_text("user_id,product_id\n1,2\n")
    with pytest.raises(ValueError, match="missing required columns"):
        load_behaviors_csv(str(bad))

    empty = tmp_path / "empty.csv"
    empty.write_text("user_id,product_id,behavior_type\n")
    with pytest.raises(ValueError, match="empty"):
        load_behaviors_csv(str(empty))


def test_behaviors_from_frame(tmp_path):
    path = tmp_path / "events.csv"
    path.write_text(
        "user_id,product_id,behavior_type,category_id,timestamp\n"
        "1,10,view,3,2024-01-01T10:00:00Z\n"
        "1,,search,,2024-01-01T11:00:00Z\n"
    )

    events = behaviors_from_frame(load_behaviors_csv(str(path)))

    assert len(events) == 2
    assert events[0].behavior_type == BehaviorType.VIEW
    assert events[0].category_id == 3
    assert events[0].timestamp.tzinfo is not None
    assert events[1].product_id is None
