# src/instadrop/storage/drop_store.py
from __future__ import annotations

import fcntl
import json
import logging
import os
import shutil
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from instadrop.api.config import CORRUPT_FAIL, CORRUPT_RESET
from instadrop.api.structured_logging import log_event
from instadrop.storage.records import Drop, newest_first

Json = Dict[str, Any]

logger = logging.getLogger("instadrop.store")


class DropStoreError(Exception):
    pass


class StoreCorruptError(DropStoreError):
    pass


class StoreWriteError(DropStoreError):
    pass


class DuplicateDropError(DropStoreError):
    pass


def _now_ms() -> int:
    return int(time.time() * 1000)


class JsonDropStore:
    """Drop metadata persisted as one JSON array file.

    This provides:
      - list()/get()/list_by_seller(): read the full collection
      - append(drop): add one record
      - increment_downloads(id): read-modify-write of one counter

    Every mutation is serialized: a per-store thread lock plus an exclusive
    flock on `<db>.lock`, so concurrent increments from threads or worker
    processes are never lost. Writes go to a temp file and are swapped in with
    os.replace.

    Unparseable files follow `corrupt_policy`:
      - "reset": copy the bad file aside (`<db>.corrupt-<ms>`) and start empty
      - "fail": raise StoreCorruptError until an operator repairs it
    """

    def __init__(self, path: Path, *, corrupt_policy: str = CORRUPT_RESET) -> None:
        if corrupt_policy not in (CORRUPT_RESET, CORRUPT_FAIL):
            raise ValueError(f"unknown corrupt policy: {corrupt_policy!r}")
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self.corrupt_policy = corrupt_policy
        self._mutex = threading.Lock()

        with self._exclusive():
            if not self.path.exists():
                self._write_records([])

    # ---- locking / raw IO ----

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        with self._mutex:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.lock_path, "a+") as fd:
                fcntl.flock(fd, fcntl.LOCK_EX)
                try:
                    yield
                finally:
                    fcntl.flock(fd, fcntl.LOCK_UN)

    def _write_records(self, records: List[Json]) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            tmp.write_text(json.dumps(records, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as e:
            raise StoreWriteError(f"cannot write drop store: {e}") from e

    def _reset_corrupt(self, why: str) -> List[Json]:
        backup = self.path.with_name(f"{self.path.name}.corrupt-{_now_ms()}")
        try:
            shutil.copyfile(self.path, backup)
        except OSError:
            backup = None  # type: ignore[assignment]
        log_event(
            logger,
            "drop_store_corrupt_reset",
            level=logging.WARNING,
            path=str(self.path.name),
            backup=backup.name if backup is not None else None,
            reason=why,
        )
        self._write_records([])
        return []

    def _load_records(self) -> List[Json]:
        """Read the raw collection. Caller must hold the exclusive lock when it
        may need to reset a corrupt file."""
        if not self.path.exists():
            self._write_records([])
            return []

        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise StoreCorruptError(f"cannot read drop store: {e}") from e

        why: Optional[str] = None
        data: Any = None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            why = f"invalid json: {e.msg}"
        if why is None and not isinstance(data, list):
            why = "top-level value is not an array"

        if why is not None:
            if self.corrupt_policy == CORRUPT_FAIL:
                raise StoreCorruptError(f"drop store is corrupt: {why}")
            return self._reset_corrupt(why)

        return [r for r in data if isinstance(r, dict)]

    def _load(self) -> List[Drop]:
        out: List[Drop] = []
        for rec in self._load_records():
            try:
                out.append(Drop.from_dict(rec))
            except ValueError:
                # Records without an id can't be addressed; skip them.
                continue
        return out

    # ---- reads ----

    def fingerprint(self) -> Tuple[int, int, int]:
        """(inode, mtime_ns, size) of the backing file, used by the read cache.

        Every write swaps in a new file, so the inode changes even when mtime
        and size do not.
        """
        try:
            st = self.path.stat()
        except FileNotFoundError:
            return (0, 0, 0)
        return (int(st.st_ino), int(st.st_mtime_ns), int(st.st_size))

    def list(self) -> List[Drop]:
        with self._exclusive():
            return newest_first(self._load())

    def get(self, drop_id: str) -> Optional[Drop]:
        for d in self.list():
            if d.id == drop_id:
                return d
        return None

    def list_by_seller(self, address: str) -> List[Drop]:
        return [d for d in self.list() if d.seller_wallet == address]

    # ---- writes ----

    def update(self, mut: Callable[[List[Json]], Any]) -> Any:
        """Read-modify-write of the raw collection under the exclusive lock."""
        with self._exclusive():
            records = self._load_records()
            result = mut(records)
            self._write_records(records)
            return result

    def append(self, drop: Drop) -> Drop:
        def _add(records: List[Json]) -> Drop:
            if any(str(r.get("id")) == drop.id for r in records):
                raise DuplicateDropError(f"drop id already exists: {drop.id}")
            records.append(drop.to_dict())
            return drop

        return self.update(_add)

    def increment_downloads(self, drop_id: str) -> Optional[Drop]:
        def _bump(records: List[Json]) -> Optional[Drop]:
            for rec in records:
                if str(rec.get("id")) == drop_id:
                    try:
                        cur = int(rec.get("downloads") or 0)
                    except (TypeError, ValueError):
                        cur = 0
                    rec["downloads"] = max(0, cur) + 1
                    return Drop.from_dict(rec)
            return None

        return self.update(_bump)

    def stats(self) -> Json:
        drops = self.list()
        return {
            "total_files": len(drops),
            "total_downloads": sum(d.downloads for d in drops),
            "total_sellers": len({d.seller_wallet for d in drops}),
        }
