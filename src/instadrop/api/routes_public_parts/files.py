from __future__ import annotations

from fastapi import APIRouter, Request

from instadrop.api.errors import ApiError
from instadrop.api.routes_public_parts.common import Json, _ok, _store

router = APIRouter()


@router.get("/files")
def list_files(request: Request) -> Json:
    """All drops, newest first."""
    return _ok([d.to_dict() for d in _store(request).list()])


@router.get("/files/seller/{address}")
def list_seller_files(address: str, request: Request) -> Json:
    return _ok([d.to_dict() for d in _store(request).list_by_seller(address)])


@router.get("/files/{drop_id}")
def get_file(drop_id: str, request: Request) -> Json:
    drop = _store(request).get(drop_id)
    if drop is None:
        raise ApiError.not_found("not_found", "File not found")
    return _ok(drop.to_dict())


@router.get("/stats")
def stats(request: Request) -> Json:
    s = _store(request).stats()
    return _ok(
        {
            "totalFiles": int(s["total_files"]),
            "totalDownloads": int(s["total_downloads"]),
            "totalSellers": int(s["total_sellers"]),
        }
    )
