"""Recommendation engine facade.

The single entry point the rest of the application uses to get
recommendations and to report new behavior. Each read is a request-scoped
pipeline:

    cache lookup -> behavior fetch -> candidate discovery -> scoring
    -> (hybrid) blending -> purchased-product filter -> cache write

Store and cache access are the only blocking steps. Every store call runs
with a timeout and any failure is converted to ``StoreUnavailableError`` at
the call site; the public read methods turn that into an empty list. Failures
confined to one candidate user, one source product or one hybrid side are
skipped instead, and the partial result is served without being cached.
Invalid arguments raise ``InvalidRequestError`` before any I/O.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from cfrec.config import EngineSettings
from cfrec.exceptions import CacheError, InvalidRequestError, StoreUnavailableError
from cfrec.recommender.cache import RecommendationCache
from cfrec.recommender.evaluation import (
    DEFAULT_EVALUATION_METRICS,
    EVALUATION_METRICS,
    compute_quality_metrics,
    summarize_feedback,
)
from cfrec.recommender.hybrid import HybridBlender
from cfrec.recommender.metrics import MetricsService
from cfrec.recommender.models import (
    INTEREST_BEHAVIORS,
    BehaviorEvent,
    BehaviorType,
    RecommendationScore,
    RecommendationType,
    SimilarityType,
)
from cfrec.recommender.refresh import RefreshJob, SimilarityRefresher
from cfrec.recommender.scoring import (
    SimilarItem,
    calculate_item_based_scores,
    calculate_recommendation_scores,
    find_similar_users,
    format_percent,
)
from cfrec.recommender.similarity import item_similarity, product_set, user_similarity
from cfrec.recommender.stores import (
    BehaviorStore,
    InMemoryRecommendationLogStore,
    ProductCatalog,
    RecommendationLogStore,
    SimilarityStore,
)

# Configure module logger
logger = logging.getLogger(__name__)

POPULAR_SCORE = 0.5


def _validate_id(field: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidRequestError(field, value, "must be an integer")
    if value <= 0:
        raise InvalidRequestError(field, value, "must be positive")
    return value


def _validate_limit(limit: Any) -> int:
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise InvalidRequestError("limit", limit, "must be an integer")
    if limit <= 0:
        raise InvalidRequestError("limit", limit, "must be greater than zero")
    return limit


def _validate_behavior_type(value: Union[BehaviorType, str]) -> BehaviorType:
    try:
        return BehaviorType(value)
    except ValueError:
        allowed = ", ".join(b.value for b in BehaviorType)
        raise InvalidRequestError("behavior_type", value, f"must be one of: {allowed}") from None


def _validate_recommendation_type(
    value: Union[RecommendationType, str]
) -> RecommendationType:
    try:
        return RecommendationType(value)
    except ValueError:
        allowed = ", ".join(t.value for t in RecommendationType)
        raise InvalidRequestError(
            "recommendation_type", value, f"must be one of: {allowed}"
        ) from None


def _validate_window(start: Optional[datetime], end: Optional[datetime]) -> tuple:
    # naive bounds are taken as UTC, like behavior timestamps
    if start is not None and start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    if end is not None and end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)
    if start is not None and end is not None and end < start:
        raise InvalidRequestError("end", end, "must not be before start")
    return start, end


def _purchased(behaviors: List[BehaviorEvent]) -> set:
    return {
        b.product_id
        for b in behaviors
        if b.behavior_type == BehaviorType.PURCHASE and b.product_id is not None
    }


class PartialRecommendations(list):
    """Recommendations computed while some store reads failed.

    Served to the caller like any other list but never cached.
    """


class RecommendationEngine:
    """Collaborative filtering facade over injected stores and cache.

    Call ``start()`` before reporting behavior (it launches the background
    similarity refresher) and ``close()`` at shutdown. The engine can also be
    used as a context manager.
    """

    def __init__(
        self,
        behavior_store: BehaviorStore,
        similarity_store: SimilarityStore,
        cache: RecommendationCache,
        settings: Optional[EngineSettings] = None,
        metrics: Optional[MetricsService] = None,
        catalog: Optional[ProductCatalog] = None,
        log_store: Optional[RecommendationLogStore] = None,
    ):
        self.behavior_store = behavior_store
        self.similarity_store = similarity_store
        self.cache = cache
        self.settings = settings or EngineSettings()
        self.metrics = metrics or MetricsService()
        self.catalog = catalog
        self.log_store = log_store if log_store is not None else InMemoryRecommendationLogStore()
        self.blender = HybridBlender(
            user_weight=self.settings.user_based_weight,
            item_weight=self.settings.item_based_weight,
        )
        self.refresher = SimilarityRefresher(
            self._refresh_similarities,
            queue_size=self.settings.refresh_queue_size,
            workers=self.settings.refresh_workers,
            metrics=self.metrics,
        )
        self._executor = ThreadPoolExecutor(
            max_workers=self.settings.store_max_workers,
            thread_name_prefix="cfrec-store",
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> "RecommendationEngine":
        self.refresher.start()
        return self

    def close(self) -> None:
        """Stop the refresher, release store workers and close the cache client."""
        self.refresher.stop()
        self._executor.shutdown(wait=True)
        try:
            self.cache.close()
        except Exception as e:
            logger.warning(f"Failed to close cache client: {e}")
        logger.info("Recommendation engine closed")

    def __enter__(self) -> "RecommendationEngine":
        return self.start()

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Public recommendation surface
    # ------------------------------------------------------------------

    def get_user_based_recommendations(
        self, user_id: int, limit: int = 10, timeout: Optional[float] = None
    ) -> List[RecommendationScore]:
        """Recommend products liked by users with similar behavior."""
        _validate_id("user_id", user_id)
        _validate_limit(limit)
        return self._serve(
            RecommendationType.USER_BASED,
            user_id,
            lambda: self._cached(
                RecommendationType.USER_BASED,
                user_id,
                limit,
                lambda: self._compute_user_based(user_id, limit, timeout),
            ),
        )

    def get_item_based_recommendations(
        self, user_id: int, limit: int = 10, timeout: Optional[float] = None
    ) -> List[RecommendationScore]:
        """Recommend products similar to the ones the user recently engaged with."""
        _validate_id("user_id", user_id)
        _validate_limit(limit)
        return self._serve(
            RecommendationType.ITEM_BASED,
            user_id,
            lambda: self._cached(
                RecommendationType.ITEM_BASED,
                user_id,
                limit,
                lambda: self._compute_item_based(user_id, limit, timeout),
            ),
        )

    def get_hybrid_recommendations(
        self, user_id: int, limit: int = 10, timeout: Optional[float] = None
    ) -> List[RecommendationScore]:
        """Blend user-based and item-based recommendations."""
        _validate_id("user_id", user_id)
        _validate_limit(limit)
        return self._serve(
            RecommendationType.HYBRID,
            user_id,
            lambda: self._cached(
                RecommendationType.HYBRID,
                user_id,
                limit,
                lambda: self._compute_hybrid(user_id, limit, timeout),
            ),
        )

    def get_popular_recommendations(
        self,
        limit: int = 10,
        category_id: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> List[RecommendationScore]:
        """Non-personalized fallback: most purchased products, optionally per category."""
        _validate_limit(limit)
        if category_id is not None:
            _validate_id("category_id", category_id)

        def compute() -> List[RecommendationScore]:
            rows = self._call(
                "list_popular_products",
                self.behavior_store.list_popular_products,
                BehaviorType.PURCHASE,
                limit,
                category_id,
                timeout=timeout,
            )
            recs = [
                RecommendationScore(
                    product_id=product_id,
                    score=POPULAR_SCORE,
                    reason=f"Popular product, purchased {count} times",
                    recommendation_type=RecommendationType.POPULAR,
                )
                for product_id, count in rows
            ]
            return self._drop_missing_products(recs, limit, timeout)

        return self._serve(RecommendationType.POPULAR, None, compute)

    def get_similar_products(
        self, product_id: int, limit: int = 10, timeout: Optional[float] = None
    ) -> List[RecommendationScore]:
        """Products most similar to ``product_id`` according to the similarity store."""
        _validate_id("product_id", product_id)
        _validate_limit(limit)

        def compute() -> List[RecommendationScore]:
            rows = self._call(
                "find_similar_items",
                self.similarity_store.find_similar_items,
                product_id,
                self.settings.similarity_threshold,
                limit,
                timeout=timeout,
            )
            recs = [
                RecommendationScore(
                    product_id=other_id,
                    score=similarity,
                    reason=f"Similar to this product, similarity: {format_percent(similarity)}",
                    recommendation_type=RecommendationType.ITEM_BASED,
                )
                for other_id, similarity in rows
                if other_id != product_id
            ]
            return self._drop_missing_products(recs, limit, timeout)

        return self._serve(RecommendationType.ITEM_BASED, None, compute, label="similar")

    def calculate_user_similarity(
        self, user_a: int, user_b: int, timeout: Optional[float] = None
    ) -> float:
        """Jaccard similarity of the products two users touched; 0.0 on failure."""
        _validate_id("user_a", user_a)
        _validate_id("user_b", user_b)
        try:
            behaviors_a = self._call(
                "list_behaviors_by_user", self.behavior_store.list_behaviors_by_user, user_a,
                timeout=timeout,
            )
            behaviors_b = self._call(
                "list_behaviors_by_user", self.behavior_store.list_behaviors_by_user, user_b,
                timeout=timeout,
            )
        except StoreUnavailableError as e:
            logger.error(
                "User similarity unavailable",
                extra={"user_a": user_a, "user_b": user_b, "error": e.message},
            )
            return 0.0
        return user_similarity(behaviors_a, behaviors_b)

    def calculate_item_similarity(
        self, product_a: int, product_b: int, timeout: Optional[float] = None
    ) -> float:
        """Cosine similarity of the users who touched two products; 0.0 on failure."""
        _validate_id("product_a", product_a)
        _validate_id("product_b", product_b)
        try:
            behaviors_a = self._call(
                "list_behaviors_by_product", self.behavior_store.list_behaviors_by_product,
                product_a, timeout=timeout,
            )
            behaviors_b = self._call(
                "list_behaviors_by_product", self.behavior_store.list_behaviors_by_product,
                product_b, timeout=timeout,
            )
        except StoreUnavailableError as e:
            logger.error(
                "Item similarity unavailable",
                extra={"product_a": product_a, "product_b": product_b, "error": e.message},
            )
            return 0.0
        return item_similarity(behaviors_a, behaviors_b)

    def update_recommendations(
        self,
        user_id: int,
        product_id: Optional[int],
        behavior_type: Union[BehaviorType, str],
    ) -> None:
        """React to a newly recorded behavior.

        Synchronously drops every cached recommendation list of ``user_id``,
        then queues a background refresh of the user's and the product's
        similarity rows. Never raises for infrastructure failures.
        """
        _validate_id("user_id", user_id)
        if product_id is not None:
            _validate_id("product_id", product_id)
        behavior = _validate_behavior_type(behavior_type)

        try:
            self.cache.invalidate(user_id)
        except CacheError as e:
            logger.error(
                "Cache invalidation failed",
                extra={"user_id": user_id, "error": e.message},
            )

        self.refresher.submit(RefreshJob(user_id, product_id, behavior))
        logger.info(
            "Recommendations updated",
            extra={
                "user_id": user_id,
                "product_id": product_id,
                "behavior_type": behavior.value,
            },
        )

    def record_behavior(self, event: BehaviorEvent, timeout: Optional[float] = None) -> None:
        """Append ``event`` to the behavior store, then update recommendations.

        Raises:
            StoreUnavailableError: If the event could not be stored.
        """
        self._call("add_behavior", self.behavior_store.add_behavior, event, timeout=timeout)
        self.update_recommendations(event.user_id, event.product_id, event.behavior_type)

    # ------------------------------------------------------------------
    # Feedback and evaluation
    # ------------------------------------------------------------------

    def record_impressions(
        self,
        user_id: int,
        recommendations: Sequence[RecommendationScore],
        timeout: Optional[float] = None,
    ) -> None:
        """Log recommendations as displayed to ``user_id``.

        Logging failures never fail the read that served the list.
        """
        _validate_id("user_id", user_id)
        if not recommendations:
            return
        try:
            self._call(
                "upsert_displayed",
                self.log_store.upsert_displayed,
                user_id,
                list(recommendations),
                timeout=timeout,
            )
        except StoreUnavailableError as e:
            logger.error(
                "Failed to log displayed recommendations",
                extra={"user_id": user_id, "error": e.message},
            )
            return
        logger.debug(
            "Logged displayed recommendations",
            extra={"user_id": user_id, "num_recommendations": len(recommendations)},
        )

    def record_click(
        self,
        user_id: int,
        product_id: int,
        recommendation_type: Union[RecommendationType, str] = RecommendationType.HYBRID,
        timeout: Optional[float] = None,
    ) -> bool:
        """Mark a displayed recommendation as clicked.

        Returns:
            True if a matching logged recommendation was updated.

        Raises:
            StoreUnavailableError: If the log store could not be updated.
        """
        return self._record_feedback(
            "mark_clicked", user_id, product_id, recommendation_type, timeout
        )

    def record_purchase(
        self,
        user_id: int,
        product_id: int,
        recommendation_type: Union[RecommendationType, str] = RecommendationType.HYBRID,
        timeout: Optional[float] = None,
    ) -> bool:
        """Mark a displayed recommendation as purchased. See ``record_click``."""
        return self._record_feedback(
            "mark_purchased", user_id, product_id, recommendation_type, timeout
        )

    def get_recommendation_stats(
        self,
        user_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Display, click and purchase counts and rates for one user.

        Raises:
            StoreUnavailableError: If the log store could not be read.
        """
        _validate_id("user_id", user_id)
        start, end = _validate_window(start, end)
        entries = self._call(
            "list_entries", self.log_store.list_entries, user_id, start, end, timeout=timeout
        )
        return summarize_feedback(entries)

    def evaluate_recommendations(
        self,
        user_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        metrics: Optional[Sequence[str]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Accuracy, diversity, novelty, coverage and serendipity of a user's recommendations.

        Raises:
            InvalidRequestError: If ``metrics`` names an unknown metric.
            StoreUnavailableError: If a store could not be read.
        """
        _validate_id("user_id", user_id)
        start, end = _validate_window(start, end)
        selected = list(metrics) if metrics else list(DEFAULT_EVALUATION_METRICS)
        for name in selected:
            if name not in EVALUATION_METRICS:
                raise InvalidRequestError(
                    "metrics", name, f"must be one of: {', '.join(EVALUATION_METRICS)}"
                )

        start_time = time.time()
        entries = self._call(
            "list_entries", self.log_store.list_entries, user_id, start, end, timeout=timeout
        )
        recommended = sorted({e.product_id for e in entries if e.is_displayed})

        categories: Dict[int, Optional[int]] = {}
        purchase_counts: Dict[int, int] = {}
        for product_id in recommended:
            behaviors = self._product_behaviors(product_id, timeout)
            categories[product_id] = next(
                (b.category_id for b in behaviors if b.category_id is not None), None
            )
            purchase_counts[product_id] = sum(
                1 for b in behaviors if b.behavior_type == BehaviorType.PURCHASE
            )

        user_products = product_set(self._user_behaviors(user_id, timeout))
        total_products = len(
            self._call(
                "list_active_products",
                self.behavior_store.list_active_products,
                0,
                timeout=timeout,
            )
        )

        result = compute_quality_metrics(
            entries,
            categories,
            purchase_counts,
            user_products,
            total_products,
            selected,
        )
        logger.info(
            "Recommendations evaluated",
            extra={
                "user_id": user_id,
                "num_recommendations": result["total_recommendations"],
                "total_time_ms": round((time.time() - start_time) * 1000, 2),
            },
        )
        return result

    def status(self) -> Dict[str, Any]:
        return {
            "refresher_running": self.refresher.running,
            "refresh_queue_depth": self.refresher.queue_depth(),
            "cache_ttl_seconds": self.cache.ttl,
            "similarity_threshold": self.settings.similarity_threshold,
        }

    # ------------------------------------------------------------------
    # Pipeline internals
    # ------------------------------------------------------------------

    def _serve(
        self,
        strategy: RecommendationType,
        user_id: Optional[int],
        compute: Callable[[], List[RecommendationScore]],
        label: Optional[str] = None,
    ) -> List[RecommendationScore]:
        """Run a read pipeline, degrading store failures to an empty list."""
        start_time = time.time()
        name = label or strategy.value
        try:
            recommendations = compute()
        except StoreUnavailableError as e:
            self.metrics.record_degraded()
            logger.error(
                "Recommendation generation failed, returning empty list",
                extra={
                    "user_id": user_id,
                    "strategy": name,
                    "error": e.message,
                    "operation": e.details.get("operation"),
                },
            )
            recommendations = []

        latency_ms = (time.time() - start_time) * 1000
        self.metrics.record_request(name, latency_ms)
        logger.info(
            "Recommendations served",
            extra={
                "user_id": user_id,
                "strategy": name,
                "num_recommendations": len(recommendations),
                "total_time_ms": round(latency_ms, 2),
            },
        )
        return recommendations

    def _cached(
        self,
        strategy: RecommendationType,
        user_id: int,
        limit: int,
        compute: Callable[[], List[RecommendationScore]],
    ) -> List[RecommendationScore]:
        """Return the cached list for the key, or compute and store it.

        Cache failures behave as misses. Empty and partial results are not
        stored; a partial result is passed on as ``PartialRecommendations``.
        """
        cached = self._cache_lookup(strategy, user_id, limit)
        if cached is not None:
            return cached

        result = compute()
        if isinstance(result, PartialRecommendations):
            self.metrics.record_degraded()
            return PartialRecommendations(result[:limit])

        recommendations = result[:limit]
        self._cache_store(strategy, user_id, limit, recommendations)
        return recommendations

    def _cache_lookup(
        self, strategy: RecommendationType, user_id: int, limit: int
    ) -> Optional[List[RecommendationScore]]:
        try:
            cached = self.cache.get(strategy, user_id, limit)
        except CacheError as e:
            logger.warning(f"Cache read failed, recomputing: {e.message}")
            cached = None

        self.metrics.record_cache(hit=cached is not None)
        if cached is not None:
            logger.debug(
                "Cache hit",
                extra={"user_id": user_id, "strategy": strategy.value, "limit": limit},
            )
        return cached

    def _cache_store(
        self,
        strategy: RecommendationType,
        user_id: int,
        limit: int,
        recommendations: List[RecommendationScore],
    ) -> None:
        if not recommendations:
            return
        try:
            self.cache.set(strategy, user_id, limit, recommendations)
        except CacheError as e:
            logger.warning(f"Cache write failed: {e.message}")

    def _call(self, operation: str, fn: Callable, *args, timeout: Optional[float] = None):
        """Run a store call with a timeout, converting any failure to StoreUnavailableError."""
        wait = timeout if timeout is not None else self.settings.store_timeout_seconds
        try:
            future = self._executor.submit(fn, *args)
        except RuntimeError as e:
            # executor already shut down
            raise StoreUnavailableError(operation, e) from e
        try:
            return future.result(timeout=wait)
        except FutureTimeoutError as e:
            future.cancel()
            raise StoreUnavailableError(
                operation, TimeoutError(f"timed out after {wait:.2f}s")
            ) from e
        except Exception as e:
            raise StoreUnavailableError(operation, e) from e

    def _record_feedback(
        self,
        operation: str,
        user_id: int,
        product_id: int,
        recommendation_type: Union[RecommendationType, str],
        timeout: Optional[float],
    ) -> bool:
        _validate_id("user_id", user_id)
        _validate_id("product_id", product_id)
        kind = _validate_recommendation_type(recommendation_type)
        updated = self._call(
            operation,
            getattr(self.log_store, operation),
            user_id,
            product_id,
            kind,
            timeout=timeout,
        )
        logger.info(
            "Recommendation feedback recorded",
            extra={
                "user_id": user_id,
                "product_id": product_id,
                "recommendation_type": kind.value,
                "operation": operation,
                "updated": updated,
            },
        )
        return updated > 0

    def _user_behaviors(self, user_id: int, timeout: Optional[float]) -> List[BehaviorEvent]:
        return self._call(
            "list_behaviors_by_user",
            self.behavior_store.list_behaviors_by_user,
            user_id,
            timeout=timeout,
        )

    def _product_behaviors(self, product_id: int, timeout: Optional[float]) -> List[BehaviorEvent]:
        return self._call(
            "list_behaviors_by_product",
            self.behavior_store.list_behaviors_by_product,
            product_id,
            timeout=timeout,
        )

    def _compute_user_based(
        self, user_id: int, limit: int, timeout: Optional[float]
    ) -> List[RecommendationScore]:
        user_behaviors = self._user_behaviors(user_id, timeout)
        if not user_behaviors:
            logger.debug("No behavior recorded", extra={"user_id": user_id})
            return []

        candidates = self._call(
            "list_active_users",
            self.behavior_store.list_active_users,
            self.settings.min_user_events,
            timeout=timeout,
        )
        candidate_behaviors = {}
        skipped = 0
        last_error = None
        for candidate_id in candidates:
            if candidate_id == user_id:
                continue
            try:
                candidate_behaviors[candidate_id] = self._user_behaviors(candidate_id, timeout)
            except StoreUnavailableError as e:
                skipped += 1
                logger.warning(
                    "Skipping candidate with unavailable behaviors",
                    extra={"user_id": user_id, "candidate_id": candidate_id, "error": e.message},
                )
                last_error = e
        if skipped and not candidate_behaviors:
            raise last_error

        similar_users = find_similar_users(
            user_id,
            user_behaviors,
            candidate_behaviors,
            threshold=self.settings.similarity_threshold,
            max_users=self.settings.max_similar_users,
        )
        if not similar_users:
            return PartialRecommendations() if skipped else []

        neighbor_behaviors = [
            behavior
            for neighbor in similar_users
            for behavior in candidate_behaviors[neighbor.user_id]
            if behavior.behavior_type in INTEREST_BEHAVIORS
        ]
        scores = calculate_recommendation_scores(
            user_id, user_behaviors, similar_users, neighbor_behaviors
        )

        purchased = _purchased(user_behaviors)
        scores = [rec for rec in scores if rec.product_id not in purchased]
        recommendations = self._drop_missing_products(scores, limit, timeout)
        return PartialRecommendations(recommendations) if skipped else recommendations

    def _compute_item_based(
        self, user_id: int, limit: int, timeout: Optional[float]
    ) -> List[RecommendationScore]:
        user_behaviors = self._user_behaviors(user_id, timeout)
        if not user_behaviors:
            logger.debug("No behavior recorded", extra={"user_id": user_id})
            return []

        recent = sorted(user_behaviors, key=lambda b: b.timestamp, reverse=True)
        recent = recent[: self.settings.recent_behavior_limit]
        interested_products: List[int] = []
        for behavior in recent:
            if behavior.behavior_type not in INTEREST_BEHAVIORS or behavior.product_id is None:
                continue
            if behavior.product_id not in interested_products:
                interested_products.append(behavior.product_id)

        if not interested_products:
            return []

        similar_items = []
        skipped = 0
        last_error = None
        for source_id in interested_products:
            try:
                rows = self._call(
                    "find_similar_items",
                    self.similarity_store.find_similar_items,
                    source_id,
                    self.settings.similarity_threshold,
                    self.settings.max_similar_items,
                    timeout=timeout,
                )
            except StoreUnavailableError as e:
                skipped += 1
                last_error = e
                logger.warning(
                    "Skipping source product with unavailable similarities",
                    extra={"user_id": user_id, "product_id": source_id, "error": e.message},
                )
                continue
            similar_items.extend(
                SimilarItem(source_id, product_id, similarity) for product_id, similarity in rows
            )
        if skipped == len(interested_products):
            raise last_error

        scores = calculate_item_based_scores(
            user_id, user_behaviors, similar_items, interested_products
        )

        purchased = _purchased(user_behaviors)
        scores = [rec for rec in scores if rec.product_id not in purchased]
        recommendations = self._drop_missing_products(scores, limit, timeout)
        return PartialRecommendations(recommendations) if skipped else recommendations

    def _compute_hybrid(
        self, user_id: int, limit: int, timeout: Optional[float]
    ) -> List[RecommendationScore]:
        """Blend both sides; a failed side contributes nothing.

        The blend is partial (served, not cached) when one side failed or was
        itself partial. When both sides fail the error propagates.
        """
        # Each side is asked for twice the final size so the blend has room to reorder
        fan_out = limit * 2
        sides: Dict[RecommendationType, List[RecommendationScore]] = {}
        errors: List[StoreUnavailableError] = []
        for strategy, compute in (
            (RecommendationType.USER_BASED, self._compute_user_based),
            (RecommendationType.ITEM_BASED, self._compute_item_based),
        ):
            try:
                sides[strategy] = self._cached(
                    strategy,
                    user_id,
                    fan_out,
                    lambda compute=compute: compute(user_id, fan_out, timeout),
                )
            except StoreUnavailableError as e:
                if errors:
                    raise
                errors.append(e)
                sides[strategy] = []
                logger.warning(
                    "Hybrid side unavailable, blending without it",
                    extra={
                        "user_id": user_id,
                        "strategy": strategy.value,
                        "error": e.message,
                        "operation": e.details.get("operation"),
                    },
                )

        blended = self.blender.blend(
            sides[RecommendationType.USER_BASED],
            sides[RecommendationType.ITEM_BASED],
            limit,
        )
        if errors or any(isinstance(side, PartialRecommendations) for side in sides.values()):
            return PartialRecommendations(blended)
        return blended

    def _drop_missing_products(
        self,
        recommendations: List[RecommendationScore],
        limit: int,
        timeout: Optional[float],
    ) -> List[RecommendationScore]:
        """Drop products the catalog no longer knows, then truncate to ``limit``."""
        if self.catalog is None or not recommendations:
            return recommendations[:limit]

        existing = self._call(
            "existing_products",
            self.catalog.existing_products,
            [rec.product_id for rec in recommendations],
            timeout=timeout,
        )
        kept = [rec for rec in recommendations if rec.product_id in existing]
        dropped = len(recommendations) - len(kept)
        if dropped:
            logger.info(
                "Dropped recommendations for missing products",
                extra={"num_dropped": dropped},
            )
        return kept[:limit]

    # ------------------------------------------------------------------
    # Background refresh
    # ------------------------------------------------------------------

    def _refresh_similarities(self, job: RefreshJob) -> None:
        """Recompute and upsert the similarity rows touched by one behavior event."""
        start_time = time.time()

        active_users = self._call(
            "list_active_users",
            self.behavior_store.list_active_users,
            self.settings.min_user_events,
        )
        job_behaviors = self._user_behaviors(job.user_id, None)
        user_pairs = 0
        for other_id in active_users:
            if other_id == job.user_id:
                continue
            similarity = user_similarity(job_behaviors, self._user_behaviors(other_id, None))
            self._call(
                "upsert_user_similarity",
                self.similarity_store.upsert_user_similarity,
                job.user_id,
                other_id,
                similarity,
                "jaccard",
            )
            user_pairs += 1

        item_pairs = 0
        if job.product_id is not None:
            active_products = self._call(
                "list_active_products",
                self.behavior_store.list_active_products,
                self.settings.min_product_events,
            )
            product_behaviors = self._product_behaviors(job.product_id, None)
            for other_id in active_products:
                if other_id == job.product_id:
                    continue
                similarity = item_similarity(
                    product_behaviors, self._product_behaviors(other_id, None)
                )
                self._call(
                    "upsert_item_similarity",
                    self.similarity_store.upsert_item_similarity,
                    job.product_id,
                    other_id,
                    similarity,
                    SimilarityType.COLLABORATIVE,
                )
                item_pairs += 1

        logger.info(
            "Similarities refreshed",
            extra={
                "user_id": job.user_id,
                "product_id": job.product_id,
                "behavior_type": job.behavior_type.value,
                "user_pairs": user_pairs,
                "item_pairs": item_pairs,
                "total_time_ms": round((time.time() - start_time) * 1000, 2),
            },
        )
