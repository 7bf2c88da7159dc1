"""Review score smoothing and metadata freshness."""

import math
from datetime import datetime, timedelta, timezone
from typing import Optional

DEFAULT_CONFIDENCE_THRESHOLD = 100   # reviews needed before the raw score dominates
DEFAULT_PRIOR_SCORE = 70             # assumed storefront-wide average
METADATA_FRESHNESS_DAYS = 7


def weighted_review_score(
    score: float,
    count: int,
    confidence: int = DEFAULT_CONFIDENCE_THRESHOLD,
    prior: float = DEFAULT_PRIOR_SCORE,
) -> int:
    """Bayesian-smoothed review percentage.

    Few reviews pull the score toward ``prior``; many reviews let the raw
    score through:

        (count / (count + m)) * score + (m / (count + m)) * C
    """
    weighted = (count / (count + confidence)) * score + (confidence / (count + confidence)) * prior
    # Exact halves round down: (85, 100) -> 77
    return int(math.ceil(weighted - 0.5))


def is_metadata_fresh(
    synced_at: Optional[datetime],
    now: Optional[datetime] = None,
    days: int = METADATA_FRESHNESS_DAYS,
) -> bool:
    if synced_at is None:
        return False
    now = now or datetime.now(timezone.utc)
    if synced_at.tzinfo is None:
        synced_at = synced_at.replace(tzinfo=timezone.utc)
    return now - synced_at < timedelta(days=days)
