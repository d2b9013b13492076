"""Behavior, similarity and recommendation log store interfaces.

The engine only talks to storage through these narrow repositories. The
in-memory implementations back the API service, the CLI tools and the tests;
a database-backed deployment provides its own classes with the same methods.
"""

import logging
import threading
from collections import Counter, defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Set, Tuple

from cfrec.recommender.models import (
    BehaviorEvent,
    BehaviorType,
    ItemSimilarityRecord,
    RecommendationLogEntry,
    RecommendationScore,
    RecommendationType,
    SimilarityType,
    UserSimilarityRecord,
    ordered_pair,
    utcnow,
)

logger = logging.getLogger(__name__)


class BehaviorStore(Protocol):
    """Read/append access to the behavior event log."""

    def add_behavior(self, event: BehaviorEvent) -> None: ...

    def list_behaviors_by_user(self, user_id: int) -> List[BehaviorEvent]: ...

    def list_behaviors_by_product(self, product_id: int) -> List[BehaviorEvent]: ...

    def list_active_users(self, min_events: int) -> List[int]: ...

    def list_active_products(self, min_events: int) -> List[int]: ...

    def list_popular_products(
        self,
        behavior_type: BehaviorType,
        limit: int,
        category_id: Optional[int] = None,
    ) -> List[Tuple[int, int]]: ...


class SimilarityStore(Protocol):
    """Durable pairwise similarity table."""

    def upsert_user_similarity(
        self, user_a: int, user_b: int, value: float, algorithm: str = "jaccard"
    ) -> None: ...

    def upsert_item_similarity(
        self,
        product_a: int,
        product_b: int,
        value: float,
        similarity_type: SimilarityType = SimilarityType.COLLABORATIVE,
    ) -> None: ...

    def find_similar_items(
        self, product_id: int, min_similarity: float, limit: int
    ) -> List[Tuple[int, float]]: ...


class ProductCatalog(Protocol):
    """Lookup of live products, used to drop references to deleted products."""

    def existing_products(self, product_ids: Iterable[int]) -> Set[int]: ...


class RecommendationLogStore(Protocol):
    """Record of served recommendations and the feedback they received."""

    def upsert_displayed(
        self, user_id: int, recommendations: Sequence[RecommendationScore]
    ) -> None: ...

    def mark_clicked(
        self, user_id: int, product_id: int, recommendation_type: RecommendationType
    ) -> int: ...

    def mark_purchased(
        self, user_id: int, product_id: int, recommendation_type: RecommendationType
    ) -> int: ...

    def list_entries(
        self,
        user_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[RecommendationLogEntry]: ...


class InMemoryBehaviorStore:
    """Append-only behavior log held in process memory."""

    def __init__(self, events: Iterable[BehaviorEvent] = ()):
        self._lock = threading.Lock()
        self._by_user: Dict[int, List[BehaviorEvent]] = defaultdict(list)
        self._by_product: Dict[int, List[BehaviorEvent]] = defaultdict(list)
        self._count = 0
        for event in events:
            self.add_behavior(event)

    def add_behavior(self, event: BehaviorEvent) -> None:
        with self._lock:
            self._by_user[event.user_id].append(event)
            if event.product_id is not None:
                self._by_product[event.product_id].append(event)
            self._count += 1

    def list_behaviors_by_user(self, user_id: int) -> List[BehaviorEvent]:
        """Behaviors of one user, most recent first."""
        with self._lock:
            events = list(self._by_user.get(user_id, ()))
        return sorted(events, key=lambda e: e.timestamp, reverse=True)

    def list_behaviors_by_product(self, product_id: int) -> List[BehaviorEvent]:
        with self._lock:
            events = list(self._by_product.get(product_id, ()))
        return sorted(events, key=lambda e: e.timestamp, reverse=True)

    def list_active_users(self, min_events: int) -> List[int]:
        """Users with more than ``min_events`` recorded behaviors."""
        with self._lock:
            return sorted(u for u, events in self._by_user.items() if len(events) > min_events)

    def list_active_products(self, min_events: int) -> List[int]:
        """Products with more than ``min_events`` recorded behaviors."""
        with self._lock:
            return sorted(p for p, events in self._by_product.items() if len(events) > min_events)

    def list_popular_products(
        self,
        behavior_type: BehaviorType,
        limit: int,
        category_id: Optional[int] = None,
    ) -> List[Tuple[int, int]]:
        """``(product_id, count)`` of the products with the most ``behavior_type`` events."""
        counts: Counter = Counter()
        with self._lock:
            for product_id, events in self._by_product.items():
                for event in events:
                    if event.behavior_type != behavior_type:
                        continue
                    if category_id is not None and event.category_id != category_id:
                        continue
                    counts[product_id] += 1
        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        return ranked[:limit]

    def __len__(self) -> int:
        return self._count


class InMemorySimilarityStore:
    """Pairwise similarity table keyed by ordered id pairs.

    Upserts overwrite the previous value of a pair, so replaying them in any
    order converges to the last computed value per pair.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._users: Dict[Tuple[int, int], UserSimilarityRecord] = {}
        self._items: Dict[Tuple[int, int], ItemSimilarityRecord] = {}
        self._item_neighbors: Dict[int, set] = defaultdict(set)

    def upsert_user_similarity(
        self, user_a: int, user_b: int, value: float, algorithm: str = "jaccard"
    ) -> None:
        if user_a == user_b:
            return
        a, b = ordered_pair(user_a, user_b)
        record = UserSimilarityRecord(
            user_id_a=a,
            user_id_b=b,
            similarity=value,
            algorithm=algorithm,
            last_updated=utcnow(),
        )
        with self._lock:
            self._users[(a, b)] = record

    def upsert_item_similarity(
        self,
        product_a: int,
        product_b: int,
        value: float,
        similarity_type: SimilarityType = SimilarityType.COLLABORATIVE,
    ) -> None:
        if product_a == product_b:
            return
        a, b = ordered_pair(product_a, product_b)
        record = ItemSimilarityRecord(
            product_id_a=a,
            product_id_b=b,
            similarity=value,
            similarity_type=similarity_type,
            last_calculated=utcnow(),
        )
        with self._lock:
            self._items[(a, b)] = record
            self._item_neighbors[a].add(b)
            self._item_neighbors[b].add(a)

    def get_user_similarity(self, user_a: int, user_b: int) -> Optional[UserSimilarityRecord]:
        with self._lock:
            return self._users.get(ordered_pair(user_a, user_b))

    def get_item_similarity(
        self, product_a: int, product_b: int
    ) -> Optional[ItemSimilarityRecord]:
        with self._lock:
            return self._items.get(ordered_pair(product_a, product_b))

    def find_similar_items(
        self, product_id: int, min_similarity: float, limit: int
    ) -> List[Tuple[int, float]]:
        """Products whose similarity to ``product_id`` is above ``min_similarity``."""
        with self._lock:
            rows = [
                self._items[ordered_pair(product_id, other)]
                for other in self._item_neighbors.get(product_id, ())
            ]
        matches = [
            (row.other(product_id), row.similarity)
            for row in rows
            if row.similarity > min_similarity
        ]
        matches.sort(key=lambda m: (-m[1], m[0]))
        return matches[:limit]

    def user_pair_count(self) -> int:
        return len(self._users)

    def item_pair_count(self) -> int:
        return len(self._items)

    def export_records(self) -> Dict[str, list]:
        """Plain-dict dump of every record, used for snapshots."""
        with self._lock:
            return {
                "users": [r.model_dump() for r in self._users.values()],
                "items": [r.model_dump() for r in self._items.values()],
            }

    def import_records(self, records: Dict[str, list]) -> None:
        users = [UserSimilarityRecord(**r) for r in records.get("users", [])]
        items = [ItemSimilarityRecord(**r) for r in records.get("items", [])]
        with self._lock:
            for r in users:
                self._users[(r.user_id_a, r.user_id_b)] = r
            for r in items:
                self._items[(r.product_id_a, r.product_id_b)] = r
                self._item_neighbors[r.product_id_a].add(r.product_id_b)
                self._item_neighbors[r.product_id_b].add(r.product_id_a)
        logger.info(
            "Imported similarity records",
            extra={"num_user_pairs": len(users), "num_item_pairs": len(items)},
        )


class InMemoryRecommendationLogStore:
    """Served recommendations keyed by ``(user_id, product_id)``."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: Dict[Tuple[int, int], RecommendationLogEntry] = {}

    def upsert_displayed(
        self, user_id: int, recommendations: Sequence[RecommendationScore]
    ) -> None:
        now = utcnow()
        with self._lock:
            for rec in recommendations:
                key = (user_id, rec.product_id)
                existing = self._entries.get(key)
                if existing is None:
                    self._entries[key] = RecommendationLogEntry(
                        user_id=user_id,
                        product_id=rec.product_id,
                        score=rec.score,
                        recommendation_type=rec.recommendation_type,
                        reason=rec.reason,
                        created_at=now,
                        updated_at=now,
                    )
                else:
                    self._entries[key] = existing.model_copy(
                        update={
                            "score": rec.score,
                            "recommendation_type": rec.recommendation_type,
                            "reason": rec.reason,
                            "is_displayed": True,
                            "updated_at": now,
                        }
                    )

    def mark_clicked(
        self, user_id: int, product_id: int, recommendation_type: RecommendationType
    ) -> int:
        return self._mark(user_id, product_id, recommendation_type, "is_clicked")

    def mark_purchased(
        self, user_id: int, product_id: int, recommendation_type: RecommendationType
    ) -> int:
        return self._mark(user_id, product_id, recommendation_type, "is_purchased")

    def list_entries(
        self,
        user_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[RecommendationLogEntry]:
        """Entries of one user created within ``[start, end]``, oldest first."""
        with self._lock:
            entries = [e for (uid, _), e in self._entries.items() if uid == user_id]
        if start is not None:
            entries = [e for e in entries if e.created_at >= start]
        if end is not None:
            entries = [e for e in entries if e.created_at <= end]
        return sorted(entries, key=lambda e: (e.created_at, e.product_id))

    def _mark(
        self,
        user_id: int,
        product_id: int,
        recommendation_type: RecommendationType,
        flag: str,
    ) -> int:
        key = (user_id, product_id)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.recommendation_type != recommendation_type:
                return 0
            self._entries[key] = entry.model_copy(update={flag: True, "updated_at": utcnow()})
        return 1

    def __len__(self) -> int:
        return len(self._entries)
