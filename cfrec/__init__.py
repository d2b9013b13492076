"""CFRec: collaborative-filtering recommendation engine.

This package turns user interaction events (views, cart-adds, purchases,
favorites, searches) into ranked product recommendations backed by a
similarity store and a TTL recommendation cache.

Modules:
    api: FastAPI wrapper, logging setup and metrics
    recommender: similarity, scoring, blending, caching and the engine facade
"""

__version__ = "0.1.0"
