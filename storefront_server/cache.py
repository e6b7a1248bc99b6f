"""In-memory product cache keyed by product and variant IDs."""

import logging
import time
from typing import Callable, Iterable, NamedTuple, Optional

from .models import Product

logger = logging.getLogger(__name__)

DEFAULT_FRESHNESS_WINDOW = 5 * 60  # seconds


class CacheEntry(NamedTuple):
    record: Product
    fetched_at: float


class ProductCache:
    """
    TTL cache for product records.

    Both a product's own ID and each of its variant IDs resolve to the same
    record. Entries expire at read time only; there is no size bound.
    """

    def __init__(
        self,
        freshness_window: float = DEFAULT_FRESHNESS_WINDOW,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the cache.

        Args:
            freshness_window: Maximum entry age in seconds
            clock: Time source, returns seconds
        """
        self.freshness_window = freshness_window
        self.clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.lookup(key) is not None

    def lookup(self, key: str) -> Optional[Product]:
        """Return the cached record if it is still fresh, else None."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self.clock() - entry.fetched_at >= self.freshness_window:
            logger.debug(f"Cache entry for {key} expired")
            return None
        return entry.record

    def put(self, key: str, record: Product, now: Optional[float] = None) -> None:
        """Store a record under key, replacing whatever was there."""
        fetched_at = self.clock() if now is None else now
        self._entries[key] = CacheEntry(record, fetched_at)

    def populate_from_list(self, records: Iterable[Product], now: Optional[float] = None) -> int:
        """
        Store every record under its product ID and all of its variant IDs.

        Args:
            records: Full product records, e.g. from a product listing
            now: Timestamp to record; defaults to the clock

        Returns:
            Number of keys written
        """
        fetched_at = self.clock() if now is None else now
        written = 0
        for record in records:
            for key in [record.product_id, *record.variant_ids]:
                if key:
                    self.put(key, record, fetched_at)
                    written += 1
        logger.debug(f"Populated {written} cache key(s)")
        return written

    def invalidate(self, key: str) -> bool:
        """Drop one key. Returns True if it existed."""
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()
