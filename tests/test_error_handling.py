"""Tests for error handling in the CFRec API and exception types.

Store outages during reads degrade to empty lists; store outages while
recording behavior surface as 503; caller mistakes surface as 400.
"""

import pytest
from fastapi.testclient import TestClient

from cfrec.api.main import create_app
from cfrec.config import EngineSettings
from cfrec.exceptions import (
    CacheError,
    CFRecException,
    InvalidRequestError,
    StoreUnavailableError,
)
from cfrec.recommender.cache import MemoryCacheBackend, RecommendationCache
from cfrec.recommender.engine import RecommendationEngine
from cfrec.recommender.metrics import MetricsService
from cfrec.recommender.stores import InMemoryBehaviorStore, InMemorySimilarityStore


class UnavailableBehaviorStore(InMemoryBehaviorStore):
    """Behavior store whose every call fails."""

    def add_behavior(self, event):
        raise ConnectionError("connection refused")

    def list_behaviors_by_user(self, user_id):
        raise ConnectionError("connection refused")

    def list_behaviors_by_product(self, product_id):
        raise ConnectionError("connection refused")

    def list_popular_products(self, behavior_type, limit, category_id=None):
        raise ConnectionError("connection refused")


@pytest.fixture
def client():
    engine = RecommendationEngine(
        behavior_store=UnavailableBehaviorStore(),
        similarity_store=InMemorySimilarityStore(),
        cache=RecommendationCache(MemoryCacheBackend()),
        settings=EngineSettings(),
        metrics=MetricsService(),
    )
    app = create_app(engine=engine, settings=EngineSettings())
    with TestClient(app) as test_client:
        yield test_client


def test_exception_hierarchy():
    """All engine errors share the CFRec base with an HTTP status."""
    invalid = InvalidRequestError("limit", 0, "must be greater than zero")
    store = StoreUnavailableError("list_active_users", TimeoutError("timed out"))
    cache = CacheError("get", ConnectionError("refused"))

    assert all(isinstance(e, CFRecException) for e in (invalid, store, cache))
    assert invalid.status_code == 400
    assert invalid.details == {"field": "limit", "value": "0", "reason": "must be greater than zero"}
    assert store.status_code == 503
    assert store.details["operation"] == "list_active_users"
    assert store.details["error_type"] == "TimeoutError"
    assert "Cache operation 'get' failed" in cache.message


def test_recommendations_degrade_to_empty_list(client):
    """A behavior store outage yields an empty list, not an error."""
    for strategy in ("user-based", "item-based", "hybrid"):
        response = client.get(f"/recommend/1?strategy={strategy}")

        assert response.status_code == 200
        assert response.json()["recommendations"] == []

    metrics = client.get("/metrics").json()
    assert metrics["degraded_responses"] == 3


def test_popular_degrades_to_empty_list(client):
    response = client.get("/recommend/popular")

    assert response.status_code == 200
    assert response.json()["count"] == 0


def test_similarity_degrades_to_zero(client):
    response = client.get("/recommend/similarity/users/1/2")

    assert response.status_code == 200
    assert response.json()["similarity"] == 0.0


def test_record_behavior_store_failure_returns_503(client):
    response = client.post(
        "/recommend/behavior",
        json={"user_id": 1, "product_id": 2, "behavior_type": "view"},
    )

    assert response.status_code == 503
    data = response.json()
    assert data["error"] == "StoreUnavailableError"
    assert data["details"]["operation"] == "add_behavior"


def test_contract_errors_are_not_masked(client):
    """Invalid arguments still return 400 while the store is down."""
    response = client.get("/recommend/1?limit=-3")

    assert response.status_code == 400
    assert response.json()["details"]["reason"] == "must be greater than zero"
