"""Command-line interface for the offline similarity rebuild.

Computes every user-user and item-item similarity from a behavior CSV and
saves the resulting similarity store as a snapshot the service can load
(``CFREC_SNAPSHOT_DIR``).

Example:
    Rebuild with default settings:
        $ python scripts/rebuild_similarities.py data/fake_behaviors.csv

    Rebuild with custom activity floors:
        $ python scripts/rebuild_similarities.py data/behaviors.csv \\
            --output-dir snapshots/prod \\
            --min-user-events 10 \\
            --min-product-events 5
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to Python path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from cfrec.recommender.batch import (
    DEFAULT_MIN_PRODUCT_EVENTS,
    DEFAULT_MIN_USER_EVENTS,
    rebuild_from_csv,
)
from cfrec.recommender.stores import InMemorySimilarityStore
from cfrec.recommender.utils import save_store_snapshot


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the script.

    Args:
        verbose: If True, set log level to DEBUG. Otherwise, use INFO.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def parse_arguments() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Rebuild the similarity store from a behavior CSV.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Rebuild with default settings
  python scripts/rebuild_similarities.py data/behaviors.csv

  # Rebuild into a custom directory with verbose logging
  python scripts/rebuild_similarities.py data/behaviors.csv --output-dir snapshots --verbose
        """,
    )

    parser.add_argument(
        "csv_path",
        type=str,
        help="Path to CSV file with columns: user_id, product_id, behavior_type "
        "[, category_id, timestamp]",
    )
    parser.add_argument(
        "--output-dir",
        type=str,
        default="snapshots",
        help="Directory to save the similarity snapshot (default: snapshots)",
    )
    parser.add_argument(
        "--min-user-events",
        type=int,
        default=DEFAULT_MIN_USER_EVENTS,
        help=f"Users need more than this many events (default: {DEFAULT_MIN_USER_EVENTS})",
    )
    parser.add_argument(
        "--min-product-events",
        type=int,
        default=DEFAULT_MIN_PRODUCT_EVENTS,
        help=f"Products need more than this many events (default: {DEFAULT_MIN_PRODUCT_EVENTS})",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose (DEBUG level) logging",
    )

    return parser.parse_args()


def main() -> int:
    """Main entry point for the rebuild CLI.

    Returns:
        Exit code (0 for success, 1 for failure).
    """
    args = parse_arguments()
    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    if args.min_user_events < 0 or args.min_product_events < 0:
        logger.error("Activity floors must be non-negative")
        return 1

    store = InMemorySimilarityStore()
    try:
        summary = rebuild_from_csv(
            csv_path=args.csv_path,
            store=store,
            min_user_events=args.min_user_events,
            min_product_events=args.min_product_events,
        )
        snapshot_path = save_store_snapshot(store, args.output_dir)
    except FileNotFoundError as e:
        logger.error(f"File not found: {e}")
        return 1
    except ValueError as e:
        logger.error(f"Invalid data: {e}")
        return 1
    except Exception as e:
        logger.error(f"Unexpected error during rebuild: {e}", exc_info=True)
        return 1

    print("\n" + "=" * 60)
    print("Rebuild Summary")
    print("=" * 60)
    print(f"Active users: {summary['active_users']}")
    print(f"Active products: {summary['active_products']}")
    print(f"User pairs written: {summary['user_pairs']}")
    print(f"Item pairs written: {summary['item_pairs']}")
    print(f"Snapshot: {snapshot_path}")
    print("=" * 60)

    return 0


if __name__ == "__main__":
    sys.exit(main())
