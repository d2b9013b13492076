"""CLI script for getting product recommendations.

Useful for testing and evaluation. Loads a behavior CSV, loads (or rebuilds)
the similarity store, and prints recommendations for one user.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from cfrec.config import EngineSettings
from cfrec.recommender.batch import rebuild_similarities
from cfrec.recommender.cache import MemoryCacheBackend, RecommendationCache
from cfrec.recommender.engine import RecommendationEngine
from cfrec.recommender.models import RecommendationScore
from cfrec.recommender.stores import InMemoryBehaviorStore, InMemorySimilarityStore
from cfrec.recommender.utils import (
    behaviors_from_frame,
    check_snapshot_exists,
    load_behaviors_csv,
    load_store_snapshot,
)

# Setup logging
logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s: %(message)s"
)
logger = logging.getLogger(__name__)

STRATEGIES = ["hybrid", "user-based", "item-based", "popular"]


def get_recommendations(
    csv_path: str,
    user_id: int,
    limit: int = 10,
    strategy: str = "hybrid",
    snapshot_dir: Optional[str] = None,
) -> List[RecommendationScore]:
    """Get recommendations for a user from a behavior CSV.

    Args:
        csv_path: Behavior log to load
        user_id: User ID to get recommendations for
        limit: Number of recommendations to return
        strategy: One of hybrid, user-based, item-based, popular
        snapshot_dir: Directory with a similarity snapshot; rebuilt from the
            CSV when missing

    Returns:
        Scored recommendations, best first
    """
    settings = EngineSettings()
    df = load_behaviors_csv(csv_path)
    behavior_store = InMemoryBehaviorStore(behaviors_from_frame(df))

    similarity_store = InMemorySimilarityStore()
    if snapshot_dir and check_snapshot_exists(snapshot_dir):
        load_store_snapshot(snapshot_dir, similarity_store)
    else:
        logger.warning("No similarity snapshot, rebuilding from CSV")
        rebuild_similarities(
            df,
            similarity_store,
            min_user_events=settings.min_user_events,
            min_product_events=settings.min_product_events,
        )

    engine = RecommendationEngine(
        behavior_store=behavior_store,
        similarity_store=similarity_store,
        cache=RecommendationCache(MemoryCacheBackend()),
        settings=settings,
    )
    try:
        if strategy == "user-based":
            return engine.get_user_based_recommendations(user_id, limit)
        if strategy == "item-based":
            return engine.get_item_based_recommendations(user_id, limit)
        if strategy == "popular":
            return engine.get_popular_recommendations(limit)
        return engine.get_hybrid_recommendations(user_id, limit)
    finally:
        engine.close()


def main() -> None:
    """Main CLI function."""
    parser = argparse.ArgumentParser(
        description="Get product recommendations for a user",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/recommend_cli.py data/fake_behaviors.csv 42
  python scripts/recommend_cli.py data/fake_behaviors.csv 42 --limit 5
  python scripts/recommend_cli.py data/fake_behaviors.csv 42 --strategy item-based --explain
        """
    )

    parser.add_argument("csv_path", type=str, help="Behavior CSV to load")
    parser.add_argument("user_id", type=int, help="User ID to get recommendations for")
    parser.add_argument(
        "--limit",
        type=int,
        default=10,
        help="Number of recommendations to return (default: 10)"
    )
    parser.add_argument(
        "--strategy",
        type=str,
        choices=STRATEGIES,
        default="hybrid",
        help="Recommendation strategy (default: hybrid)"
    )
    parser.add_argument(
        "--snapshot-dir",
        type=str,
        default=None,
        help="Directory containing a similarity snapshot"
    )
    parser.add_argument(
        "--explain",
        action="store_true",
        help="Show score and reason for each recommendation"
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging"
    )

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.INFO)

    try:
        recommendations = get_recommendations(
            csv_path=args.csv_path,
            user_id=args.user_id,
            limit=args.limit,
            strategy=args.strategy,
            snapshot_dir=args.snapshot_dir,
        )
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"\nRecommendations for user {args.user_id} (strategy: {args.strategy}):")
    print(f"  Top {len(recommendations)} products: {[r.product_id for r in recommendations]}")

    if args.explain and recommendations:
        print(f"\nScore breakdown:")
        for rec in recommendations:
            print(f"  {rec.product_id}: {rec.score:.4f}  {rec.reason}")

    print()


if __name__ == "__main__":
    main()
