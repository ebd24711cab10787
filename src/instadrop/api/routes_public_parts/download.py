from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Query, Request

from instadrop.api.routes_public_parts.common import _artifacts, _cfg, _gate
from instadrop.runtime.transfer import stream_artifact

router = APIRouter()

PAYMENT_HEADER = "x-payment-txid"


@router.get("/download/{drop_id}")
async def download(
    drop_id: str,
    request: Request,
    tx_id: Optional[str] = Query(None, alias="txId"),
):
    """Payment-gated download.

    The tx reference comes from ?txId= or the X-Payment-TxId header. Paid drops
    without one get a 402 with the payment terms.
    """
    reference = tx_id or request.headers.get(PAYMENT_HEADER)

    auth = await _gate(request).authorize(drop_id, reference)

    resp = stream_artifact(auth.drop, _artifacts(request), chunk_bytes=_cfg(request).stream_chunk_bytes)
    if auth.verdict is not None:
        resp.headers["x-payment-verification"] = "skipped" if auth.verdict.skipped else "verified"
    return resp
