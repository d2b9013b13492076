"""Tests for the FastAPI application endpoints.

This module contains integration tests for the CFRec API endpoints, driving a
real engine over in-memory stores through the application lifespan.
"""

import pytest
from fastapi.testclient import TestClient

from cfrec import __version__
from cfrec.api.main import create_app
from cfrec.config import EngineSettings
from cfrec.recommender.cache import MemoryCacheBackend, RecommendationCache
from cfrec.recommender.engine import RecommendationEngine
from cfrec.recommender.metrics import MetricsService
from cfrec.recommender.models import BehaviorEvent
from cfrec.recommender.stores import InMemoryBehaviorStore, InMemorySimilarityStore


@pytest.fixture
def engine():
    """Engine where user 1 has a single neighbor (user 2, similarity 0.5)."""
    events = [
        BehaviorEvent(user_id=1, product_id=p, behavior_type="purchase") for p in (1, 2)
    ] + [
        BehaviorEvent(user_id=2, product_id=p, behavior_type="purchase") for p in (1, 2, 3, 4)
    ] + [
        BehaviorEvent(user_id=2, product_id=p, behavior_type="view") for p in (1, 2)
    ]
    similarity_store = InMemorySimilarityStore()
    similarity_store.upsert_item_similarity(1, 5, 0.8)
    similarity_store.upsert_item_similarity(1, 6, 0.3)

    return RecommendationEngine(
        behavior_store=InMemoryBehaviorStore(events),
        similarity_store=similarity_store,
        cache=RecommendationCache(MemoryCacheBackend()),
        settings=EngineSettings(),
        metrics=MetricsService(),
    )


@pytest.fixture
def client(engine):
    app = create_app(engine=engine, settings=EngineSettings())
    with TestClient(app) as test_client:
        yield test_client


def test_ping_endpoint(client):
    """Test that the /ping endpoint returns correct status and JSON."""
    response = client.get("/ping")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_status_endpoint(client):
    """Test that /status reports refresher and cache state."""
    response = client.get("/status")

    assert response.status_code == 200
    data = response.json()

    assert data["refresher_running"] is True
    assert data["refresh_queue_depth"] == 0
    assert data["cache_backend"] == "memory"
    assert data["cache_ttl_seconds"] == 3600
    assert data["version"] == __version__


def test_request_id_header(client):
    response = client.get("/ping")
    assert "X-Request-ID" in response.headers


def test_user_based_recommendations(client):
    response = client.get("/recommend/1?strategy=user-based&limit=10")

    assert response.status_code == 200
    data = response.json()
    assert data["user_id"] == 1
    assert data["strategy"] == "user-based"
    assert data["count"] == 2
    assert [r["product_id"] for r in data["recommendations"]] == [3, 4]
    assert data["recommendations"][0]["score"] == pytest.approx(0.5)
    assert data["recommendations"][0]["recommendation_type"] == "user-based"


def test_item_based_recommendations(client):
    response = client.get("/recommend/1?strategy=item-based")

    assert response.status_code == 200
    assert [r["product_id"] for r in response.json()["recommendations"]] == [5, 6]


def test_hybrid_is_default_strategy(client):
    response = client.get("/recommend/1?limit=3")

    assert response.status_code == 200
    data = response.json()
    assert data["strategy"] == "hybrid"
    assert len(data["recommendations"]) <= 3
    assert all(r["recommendation_type"] == "hybrid" for r in data["recommendations"])


def test_unknown_user_gets_empty_list(client):
    response = client.get("/recommend/999")

    assert response.status_code == 200
    assert response.json()["recommendations"] == []


def test_invalid_limit_returns_400(client):
    response = client.get("/recommend/1?limit=0")

    assert response.status_code == 400
    data = response.json()
    assert data["error"] == "InvalidRequestError"
    assert data["details"]["field"] == "limit"


def test_invalid_user_id_returns_400(client):
    response = client.get("/recommend/0")
    assert response.status_code == 400


def test_unknown_strategy_returns_422(client):
    response = client.get("/recommend/1?strategy=random")
    assert response.status_code == 422


def test_record_behavior_refreshes_recommendations(client, engine):
    response = client.post(
        "/recommend/behavior",
        json={"user_id": 1, "product_id": 3, "behavior_type": "purchase"},
    )

    assert response.status_code == 202
    assert response.json() == {"status": "accepted", "user_id": 1}

    data = client.get("/recommend/1?strategy=user-based").json()
    assert [r["product_id"] for r in data["recommendations"]] == [4]
    assert engine.refresher.wait_until_idle(timeout=5)


def test_record_behavior_without_product_returns_400(client):
    response = client.post("/recommend/behavior", json={"user_id": 1, "behavior_type": "view"})

    assert response.status_code == 400
    assert response.json()["error"] == "InvalidRequestError"


def test_record_search_without_product(client):
    response = client.post("/recommend/behavior", json={"user_id": 1, "behavior_type": "search"})
    assert response.status_code == 202


def test_record_unknown_behavior_type_returns_422(client):
    response = client.post(
        "/recommend/behavior",
        json={"user_id": 1, "product_id": 3, "behavior_type": "teleport"},
    )
    assert response.status_code == 422


def test_popular_endpoint(client):
    response = client.get("/recommend/popular?limit=2")

    assert response.status_code == 200
    data = response.json()
    assert data["strategy"] == "popular"
    assert data["user_id"] is None
    assert [r["product_id"] for r in data["recommendations"]] == [1, 2]
    assert data["recommendations"][0]["reason"] == "Popular product, purchased 2 times"


def test_similar_endpoint(client):
    response = client.get("/recommend/similar/1")

    assert response.status_code == 200
    data = response.json()
    assert data["strategy"] == "similar"
    assert [r["product_id"] for r in data["recommendations"]] == [5, 6]


def test_similarity_endpoints(client):
    response = client.get("/recommend/similarity/users/1/2")
    assert response.status_code == 200
    assert response.json()["similarity"] == pytest.approx(0.5)

    response = client.get("/recommend/similarity/items/1/2")
    assert response.status_code == 200
    assert response.json()["similarity"] == pytest.approx(1.0)


def test_metrics_endpoint(client):
    client.get("/recommend/1?strategy=user-based")
    client.get("/recommend/1?strategy=user-based")

    response = client.get("/metrics")

    assert response.status_code == 200
    data = response.json()
    assert data["requests"]["user-based"]["count"] == 2
    assert data["cache"]["hits"] == 1


def test_click_and_stats_endpoints(client):
    client.get("/recommend/1?strategy=item-based")

    response = client.post(
        "/recommend/click",
        json={"user_id": 1, "product_id": 5, "recommendation_type": "item-based"},
    )
    assert response.status_code == 200
    assert response.json() == {"status": "recorded", "updated": True}

    response = client.post("/recommend/purchase", json={"user_id": 1, "product_id": 6})
    # shown as item-based, reported as the default hybrid
    assert response.json()["updated"] is False

    data = client.get("/recommend/stats/1").json()
    assert data["user_id"] == 1
    assert data["displayed"] == 2
    assert data["clicked"] == 1
    assert data["click_rate"] == 50.0
    assert data["by_type"]["item-based"]["clicked"] == 1


def test_feedback_without_product_returns_400(client):
    response = client.post("/recommend/click", json={"user_id": 1})

    assert response.status_code == 400
    assert response.json()["details"]["field"] == "product_id"


def test_evaluation_endpoint(client):
    client.get("/recommend/1?strategy=item-based")

    response = client.get("/recommend/evaluation/1?metrics=coverage&metrics=serendipity")

    assert response.status_code == 200
    data = response.json()
    assert data["total_recommendations"] == 2
    # products 5 and 6 out of the four with recorded behavior
    assert data["metrics"] == {"coverage": 50.0, "serendipity": 100.0}


def test_evaluation_unknown_metric_returns_400(client):
    response = client.get("/recommend/evaluation/1?metrics=bogus")

    assert response.status_code == 400
    assert response.json()["details"]["field"] == "metrics"
