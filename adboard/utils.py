"""
Utility functions for the ad board.
"""

import logging
import threading
from typing import Dict, Iterable, List

from adboard.schemas import CATEGORIES

logger = logging.getLogger(__name__)


def group_by_category(ads: Iterable) -> Dict[str, List]:
    """
    Bucket ads by lower-cased category, keeping their input order.

    Every known category is present in the result, possibly empty. Ads whose
    category is not one of CATEGORIES are dropped.
    """
    grouped: Dict[str, List] = {category: [] for category in CATEGORIES}
    dropped = 0
    for ad in ads:
        bucket = grouped.get((ad.category or "").lower())
        if bucket is None:
            dropped += 1
            continue
        bucket.append(ad)
    if dropped:
        logger.debug(f"Skipped {dropped} ads with unknown categories")
    return grouped


class StripedLock:
    """
    A fixed pool of locks selected by key hash.

    Two keys may share a lock, which only costs some contention; the same
    key always maps to the same lock.
    """

    def __init__(self, stripes: int = 64):
        self._locks = [threading.Lock() for _ in range(stripes)]

    def for_key(self, key: str) -> threading.Lock:
        return self._locks[hash(key) % len(self._locks)]
