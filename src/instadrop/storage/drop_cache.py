# src/instadrop/storage/drop_cache.py
from __future__ import annotations

import threading
from typing import Dict, List, Optional, Tuple

from instadrop.storage.drop_store import JsonDropStore
from instadrop.storage.records import Drop


class CachedDropStore:
    """Read cache in front of a JsonDropStore.

    Reads are served from an in-memory snapshot tagged with the backing file's
    (inode, mtime_ns, size). The snapshot is dropped on every write made
    through this object and rebuilt whenever the file fingerprint changes
    (another process wrote to it). A read uses the list and id index of one
    snapshot, so a concurrent invalidate never empties it halfway.
    """

    def __init__(self, store: JsonDropStore) -> None:
        self.store = store
        self._lock = threading.Lock()
        self._fingerprint: Optional[Tuple[int, int, int]] = None
        self._ordered: List[Drop] = []
        self._by_id: Dict[str, Drop] = {}
        self.hits = 0
        self.misses = 0

    def invalidate(self) -> None:
        with self._lock:
            self._fingerprint = None
            self._ordered = []
            self._by_id = {}

    def _snapshot(self) -> Tuple[List[Drop], Dict[str, Drop]]:
        """Ordered list and id index from the same generation."""
        fp = self.store.fingerprint()
        with self._lock:
            if self._fingerprint is not None and self._fingerprint == fp:
                self.hits += 1
                return self._ordered, self._by_id

        # Tag with the fingerprint seen before reading so a concurrent write
        # forces a rebuild on the next call.
        drops = self.store.list()
        by_id = {d.id: d for d in drops}
        with self._lock:
            self.misses += 1
            self._ordered = drops
            self._by_id = by_id
            self._fingerprint = fp
        return drops, by_id

    def list(self) -> List[Drop]:
        return list(self._snapshot()[0])

    def get(self, drop_id: str) -> Optional[Drop]:
        return self._snapshot()[1].get(drop_id)

    def list_by_seller(self, address: str) -> List[Drop]:
        return [d for d in self._snapshot()[0] if d.seller_wallet == address]

    def append(self, drop: Drop) -> Drop:
        try:
            return self.store.append(drop)
        finally:
            self.invalidate()

    def increment_downloads(self, drop_id: str) -> Optional[Drop]:
        try:
            return self.store.increment_downloads(drop_id)
        finally:
            self.invalidate()

    def stats(self) -> dict:
        drops, _ = self._snapshot()
        return {
            "total_files": len(drops),
            "total_downloads": sum(d.downloads for d in drops),
            "total_sellers": len({d.seller_wallet for d in drops}),
        }
