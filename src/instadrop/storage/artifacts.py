# src/instadrop/storage/artifacts.py
from __future__ import annotations

import os
import re
import secrets
import time
from pathlib import Path
from typing import BinaryIO, Optional


class ArtifactError(Exception):
    pass


class ArtifactTooLarge(ArtifactError):
    def __init__(self, max_bytes: int) -> None:
        super().__init__(f"artifact exceeds {max_bytes} bytes")
        self.max_bytes = int(max_bytes)


def sanitize_filename(name: str) -> str:
    name = os.path.basename((name or "").strip())
    if not name:
        return "upload"
    name = re.sub(r"[^a-zA-Z0-9._-]+", "_", name)
    return name[:128] or "upload"


class ArtifactStorage:
    """Flat directory of uploaded artifacts addressed by storage key.

    Artifacts are only ever served through the download gate; this class
    never exposes filesystem paths to callers outside the service.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def new_key(self, original_name: str) -> str:
        """`<epoch-ms>-<8 hex>-<sanitized name>`; unique even within one millisecond."""
        return f"{int(time.time() * 1000)}-{secrets.token_hex(4)}-{sanitize_filename(original_name)}"

    def path_for(self, storage_key: str) -> Optional[Path]:
        """Resolve a storage key, refusing anything that escapes the root."""
        key = (storage_key or "").strip()
        if not key or key in {".", ".."} or "/" in key or "\\" in key:
            return None
        return self.root / key

    def exists(self, storage_key: str) -> bool:
        p = self.path_for(storage_key)
        return p is not None and p.is_file()

    def open(self, storage_key: str) -> BinaryIO:
        p = self.path_for(storage_key)
        if p is None:
            raise FileNotFoundError(storage_key)
        return open(p, "rb")

    def save_stream(self, storage_key: str, src: BinaryIO, *, max_bytes: int, chunk_bytes: int = 1024 * 1024) -> int:
        """Copy a file-like object into storage without buffering it whole.

        Returns the number of bytes written. Raises ArtifactTooLarge (and
        removes the partial file) once more than max_bytes arrive.
        """
        p = self.path_for(storage_key)
        if p is None:
            raise ArtifactError(f"invalid storage key: {storage_key!r}")

        tmp = p.with_name(p.name + ".part")
        written = 0
        try:
            with open(tmp, "wb") as out:
                while True:
                    chunk = src.read(chunk_bytes)
                    if not chunk:
                        break
                    written += len(chunk)
                    if written > max_bytes:
                        raise ArtifactTooLarge(max_bytes)
                    out.write(chunk)
            os.replace(tmp, p)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        return written

    def remove(self, storage_key: str) -> None:
        p = self.path_for(storage_key)
        if p is not None:
            p.unlink(missing_ok=True)
