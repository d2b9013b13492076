"""Generate fake user behavior data for testing and development.

Creates a CSV of simulated interaction events (views, clicks, cart-adds,
favorites, purchases and searches) for exercising the recommendation engine.

Example:
    Run the script directly to generate default data:
        $ python scripts/generate_fake_behaviors.py

    Or import and use programmatically:
        from scripts.generate_fake_behaviors import generate_fake_behaviors
        df = generate_fake_behaviors(num_users=100, num_products=200)
"""

import random
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pandas as pd

# Default configuration constants
DEFAULT_NUM_USERS = 50
DEFAULT_NUM_PRODUCTS = 100
DEFAULT_NUM_CATEGORIES = 8
DEFAULT_NUM_EVENTS = 3000
DEFAULT_DAYS_BACK = 90
SECONDS_PER_DAY = 86400

# Relative frequency of each behavior type; views dominate, purchases are rare
BEHAVIOR_MIX = {
    "view": 0.55,
    "click": 0.15,
    "cart": 0.1,
    "favorite": 0.06,
    "purchase": 0.08,
    "search": 0.06,
}


def generate_fake_behaviors(
    num_users: int = DEFAULT_NUM_USERS,
    num_products: int = DEFAULT_NUM_PRODUCTS,
    num_events: int = DEFAULT_NUM_EVENTS,
    num_categories: int = DEFAULT_NUM_CATEGORIES,
    seed: Optional[int] = None,
) -> pd.DataFrame:
    """Generate synthetic behavior events.

    Each user gets a couple of favourite categories and picks products mostly
    from them, so collaborative signal exists between users with overlapping
    tastes.

    Args:
        num_users: Number of unique users to simulate.
        num_products: Number of unique products available.
        num_events: Total number of events to generate.
        num_categories: Number of product categories.
        seed: Random seed for reproducibility.

    Returns:
        DataFrame with columns user_id, product_id, category_id,
        behavior_type and timestamp, sorted by timestamp. ``product_id`` and
        ``category_id`` are empty for searches.

    Raises:
        ValueError: If any numeric parameter is non-positive.
    """
    if min(num_users, num_products, num_events, num_categories) <= 0:
        raise ValueError(
            "num_users, num_products, num_events and num_categories must be positive"
        )

    rng = random.Random(seed)
    category_of = {pid: (pid - 1) % num_categories + 1 for pid in range(1, num_products + 1)}
    products_in = {}
    for pid, cid in category_of.items():
        products_in.setdefault(cid, []).append(pid)

    tastes = {
        uid: rng.sample(range(1, num_categories + 1), k=min(2, num_categories))
        for uid in range(1, num_users + 1)
    }

    end_date = datetime.now(timezone.utc)
    start_date = end_date - timedelta(days=DEFAULT_DAYS_BACK)
    behavior_types = list(BEHAVIOR_MIX)
    weights = list(BEHAVIOR_MIX.values())

    events = []
    for _ in range(num_events):
        user_id = rng.randint(1, num_users)
        behavior_type = rng.choices(behavior_types, weights=weights)[0]
        timestamp = start_date + timedelta(
            days=rng.randrange(DEFAULT_DAYS_BACK),
            seconds=rng.randrange(SECONDS_PER_DAY),
        )

        if behavior_type == "search":
            product_id, category_id = None, None
        else:
            # 80% of interactions stay within the user's favourite categories
            if rng.random() < 0.8:
                category_id = rng.choice(tastes[user_id])
                product_id = rng.choice(products_in[category_id])
            else:
                product_id = rng.randint(1, num_products)
                category_id = category_of[product_id]

        events.append({
            "user_id": user_id,
            "product_id": product_id,
            "category_id": category_id,
            "behavior_type": behavior_type,
            "timestamp": timestamp,
        })

    df = pd.DataFrame(events)
    df["product_id"] = df["product_id"].astype("Int64")
    df["category_id"] = df["category_id"].astype("Int64")
    return df.sort_values("timestamp").reset_index(drop=True)


def main() -> None:
    """Generate default data and save it to data/fake_behaviors.csv."""
    print(f"Generating {DEFAULT_NUM_EVENTS} fake behavior events...")
    print(f"Users: {DEFAULT_NUM_USERS}, Products: {DEFAULT_NUM_PRODUCTS}")

    df = generate_fake_behaviors(seed=42)

    data_dir = Path(__file__).parent.parent / "data"
    data_dir.mkdir(exist_ok=True)

    output_path = data_dir / "fake_behaviors.csv"
    df.to_csv(output_path, index=False)

    print(f"\nData generated successfully!")
    print(f"Saved to: {output_path}")
    print(f"\nData preview:")
    print(df.head(10))
    print(f"\nData summary:")
    print(f"  Total events: {len(df)}")
    print(f"  Unique users: {df['user_id'].nunique()}")
    print(f"  Unique products: {df['product_id'].nunique()}")
    print(f"  Behavior mix:\n{df['behavior_type'].value_counts().to_string()}")


if __name__ == "__main__":
    main()
