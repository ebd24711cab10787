# src/instadrop/runtime/transfer.py
from __future__ import annotations

import logging
import os
from typing import BinaryIO, Iterator
from urllib.parse import quote

from starlette.responses import StreamingResponse

from instadrop.api.errors import ApiError
from instadrop.api.structured_logging import log_event
from instadrop.storage.artifacts import ArtifactStorage
from instadrop.storage.records import Drop

logger = logging.getLogger("instadrop.transfer")

DEFAULT_MEDIA_TYPE = "application/octet-stream"


def content_disposition(filename: str) -> str:
    name = (filename or "").replace("\r", "").replace("\n", "").replace('"', "") or "download"
    ascii_name = name.encode("ascii", "ignore").decode("ascii") or "download"
    if ascii_name == name:
        return f'attachment; filename="{ascii_name}"'
    return f"attachment; filename=\"{ascii_name}\"; filename*=utf-8''{quote(name, safe='')}"


def _iter_file(fh: BinaryIO, chunk_bytes: int) -> Iterator[bytes]:
    try:
        while True:
            chunk = fh.read(chunk_bytes)
            if not chunk:
                break
            yield chunk
    finally:
        fh.close()


def stream_artifact(drop: Drop, artifacts: ArtifactStorage, *, chunk_bytes: int = 64 * 1024) -> StreamingResponse:
    """Stream an authorized drop's artifact.

    The file is opened here, before any response bytes exist, so a storage
    failure becomes a clean 500 instead of a truncated body. Bytes are read in
    chunk_bytes pieces; nothing holds the whole file in memory.
    """
    try:
        fh = artifacts.open(drop.storage_key)
        try:
            size = os.fstat(fh.fileno()).st_size
        except OSError:
            fh.close()
            raise
    except OSError as e:
        log_event(logger, "artifact_unreadable", level=logging.ERROR, drop_id=drop.id, error=type(e).__name__)
        raise ApiError.internal("artifact_unreadable", "Stored file could not be opened") from e

    headers = {
        "Content-Length": str(size),
        "Content-Disposition": content_disposition(drop.original_name),
    }
    return StreamingResponse(
        _iter_file(fh, chunk_bytes),
        media_type=drop.mime_type or DEFAULT_MEDIA_TYPE,
        headers=headers,
    )
