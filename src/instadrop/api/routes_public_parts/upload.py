from __future__ import annotations

import logging
import mimetypes
import os
import secrets
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, File, Form, Request, UploadFile
from starlette.concurrency import run_in_threadpool

from instadrop.api.errors import ApiError
from instadrop.api.routes_public_parts.common import Json, _artifacts, _cfg, _form_str, _ok, _store
from instadrop.api.structured_logging import log_event
from instadrop.storage.artifacts import ArtifactTooLarge
from instadrop.storage.drop_store import DuplicateDropError
from instadrop.storage.records import Drop, to_decimal, utc_now_iso

router = APIRouter()

logger = logging.getLogger("instadrop.upload")

_ID_ATTEMPTS = 3


def _new_drop_id() -> str:
    return secrets.token_hex(6)


def _parse_price(raw: str, is_free: bool) -> Decimal:
    if is_free:
        return Decimal(0)
    if not raw:
        raise ApiError.bad_request("invalid_price", "Invalid price")
    price = to_decimal(raw, default=Decimal(-1))
    if price < 0:
        raise ApiError.bad_request("invalid_price", "Invalid price")
    return price


def _max_size_label(max_bytes: int) -> str:
    mb = max_bytes / (1024 * 1024)
    return f"{mb:g}MB"


@router.post("/upload")
async def upload(
    request: Request,
    file: Optional[UploadFile] = File(None),
    title: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    seller_wallet: Optional[str] = Form(None, alias="sellerWallet"),
    description: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    is_free: Optional[str] = Form(None, alias="isFree"),
) -> Json:
    """Create a drop from a multipart upload (file + listing fields)."""
    cfg = _cfg(request)
    store = _store(request)
    artifacts = _artifacts(request)

    if file is None or not (file.filename or "").strip():
        raise ApiError.bad_request("no_file", "No file uploaded")

    original_name = os.path.basename(file.filename or "").strip()
    ext = os.path.splitext(original_name)[1].lower()
    if ext not in cfg.allowed_extensions:
        raise ApiError.bad_request(
            "file_type_not_allowed",
            f"File type {ext or '(none)'} is not allowed. Allowed: {', '.join(cfg.allowed_extensions)}",
        )

    wallet = _form_str(seller_wallet)
    if not wallet:
        raise ApiError.bad_request("seller_wallet_required", "Seller wallet address required")

    free = _form_str(is_free).lower() == "true"
    amount = _parse_price(_form_str(price), free)
    if amount == 0:
        free = True

    storage_key = artifacts.new_key(original_name)
    try:
        size = await run_in_threadpool(
            artifacts.save_stream, storage_key, file.file, max_bytes=cfg.max_upload_bytes
        )
    except ArtifactTooLarge:
        raise ApiError.bad_request(
            "file_too_large", f"File too large. Maximum size is {_max_size_label(cfg.max_upload_bytes)}."
        )
    finally:
        await file.close()

    mime = (file.content_type or "").strip() or (mimetypes.guess_type(original_name)[0] or "")

    drop: Optional[Drop] = None
    try:
        for _ in range(_ID_ATTEMPTS):
            candidate = Drop(
                id=_new_drop_id(),
                title=_form_str(title) or original_name,
                price=amount,
                is_free=free,
                seller_wallet=wallet,
                storage_key=storage_key,
                original_name=original_name,
                size=int(size),
                mime_type=mime,
                description=_form_str(description),
                category=_form_str(category),
                downloads=0,
                created_at=utc_now_iso(),
            )
            try:
                drop = await run_in_threadpool(store.append, candidate)
                break
            except DuplicateDropError:
                continue
    except BaseException:
        await run_in_threadpool(artifacts.remove, storage_key)
        raise

    if drop is None:
        await run_in_threadpool(artifacts.remove, storage_key)
        raise ApiError.internal("id_exhausted", "Upload failed")

    log_event(
        logger,
        "drop_uploaded",
        drop_id=drop.id,
        size=drop.size,
        is_free=drop.is_free,
        seller=wallet[:10] + "...",
    )
    return _ok(drop.to_dict())
