"""Pairwise similarity calculator.

Pure functions over behavior sets. User-user similarity is the Jaccard index
of the products each user touched; item-item similarity is the cosine of the
binary user-incidence vectors of two products. Nothing here does I/O or keeps
state, so calls for different pairs may run concurrently.
"""

import math
from typing import AbstractSet, Iterable, Set

from cfrec.recommender.models import BehaviorEvent


def product_set(behaviors: Iterable[BehaviorEvent]) -> Set[int]:
    """Distinct product ids touched by any behavior type."""
    return {b.product_id for b in behaviors if b.product_id is not None}


def user_set(behaviors: Iterable[BehaviorEvent]) -> Set[int]:
    """Distinct user ids found in a list of behaviors."""
    return {b.user_id for b in behaviors}


def jaccard_similarity(a: AbstractSet, b: AbstractSet) -> float:
    """Jaccard index ``|a & b| / |a | b|``.

    Returns 0.0 when either set is empty.
    """
    if not a or not b:
        return 0.0
    intersection = len(a & b)
    if intersection == 0:
        return 0.0
    return intersection / len(a | b)


def cosine_similarity(a: AbstractSet, b: AbstractSet) -> float:
    """Cosine similarity of two binary incidence vectors given as sets.

    Equals ``|a & b| / sqrt(|a| * |b|)``; 0.0 when either set is empty.
    """
    if not a or not b:
        return 0.0
    intersection = len(a & b)
    if intersection == 0:
        return 0.0
    # Guard against float drift pushing identical sets above 1.0
    return min(1.0, intersection / math.sqrt(len(a) * len(b)))


def user_similarity(
    behaviors_a: Iterable[BehaviorEvent],
    behaviors_b: Iterable[BehaviorEvent],
) -> float:
    """Jaccard similarity of two users from their behavior lists."""
    return jaccard_similarity(product_set(behaviors_a), product_set(behaviors_b))


def item_similarity(
    behaviors_a: Iterable[BehaviorEvent],
    behaviors_b: Iterable[BehaviorEvent],
) -> float:
    """Cosine similarity of two products from their behavior lists."""
    return cosine_similarity(user_set(behaviors_a), user_set(behaviors_b))
