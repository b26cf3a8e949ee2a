"""
Capacity eviction shared by the in-memory stores.
"""

import math
from typing import Callable, Dict, TypeVar

K = TypeVar("K")
V = TypeVar("V")


def evict_oldest(records: Dict[K, V], age_key: Callable[[V], float], fraction: float) -> int:
    """
    Remove the oldest `fraction` of records, oldest first by `age_key`.

    Callers hold the store lock. Returns the number of records removed.
    """
    to_remove = math.floor(len(records) * fraction)
    if to_remove <= 0:
        return 0

    oldest = sorted(records.items(), key=lambda item: age_key(item[1]))[:to_remove]
    for key, _ in oldest:
        del records[key]
    return to_remove
